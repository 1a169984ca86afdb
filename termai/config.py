"""Configuration management for the TermAI agent core."""

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Paths
DEFAULT_CONFIG_PATH = Path("~/.termai/config.yaml").expanduser()
LOCAL_CONFIG_FILENAME = "termai.yaml"


class AgentConfig(BaseModel):
    """Agent run configuration."""

    mode: Literal["scout", "navigator", "copilot", "pilot"] = "pilot"
    max_iterations: int = Field(default=100, ge=0)  # 0 = unlimited
    reflection_interval: int = Field(default=0, ge=0)  # 0 = never
    require_command_approval: bool = False
    max_backoff_seconds: float = Field(default=60.0, gt=0)
    file_lock_timeout: float = Field(default=30.0, gt=0)
    context_keep_messages: int = Field(default=12, ge=1)


class ShellToolConfig(BaseModel):
    """Shell tool configuration."""

    timeout: float = 300.0
    shell: str = "/bin/sh"
    max_output_chars: int = 50000


class HttpRequestToolConfig(BaseModel):
    """HTTP request tool configuration."""

    timeout: float = 30.0
    max_body_chars: int = 2000


class ReadFileToolConfig(BaseModel):
    """Read file tool configuration."""

    max_chars: int = 100000


class ToolsConfig(BaseModel):
    """Tools configuration."""

    shell: ShellToolConfig = Field(default_factory=ShellToolConfig)
    http_request: HttpRequestToolConfig = Field(default_factory=HttpRequestToolConfig)
    read_file: ReadFileToolConfig = Field(default_factory=ReadFileToolConfig)


class OutputBufferConfig(BaseModel):
    """Limits for the searchable command-output buffer."""

    max_entries: int = 50
    max_total_size: int = 500000


class ProcessConfig(BaseModel):
    """Background process manager configuration."""

    shell: str = "/bin/sh"
    stdout_cap: int = 50000
    stdout_keep: int = 40000
    stderr_cap: int = 10000
    stderr_keep: int = 8000
    refresh_interval: float = 2.0
    dead_grace_period: float = 5.0
    default_timeout: float = 5.0
    initial_output_wait: float = 0.5
    poll_interval: float = 0.1

    @model_validator(mode="after")
    def _check_buffer_limits(self) -> "ProcessConfig":
        if self.stdout_keep > self.stdout_cap or self.stderr_keep > self.stderr_cap:
            raise ValueError("buffer keep size must not exceed its cap")
        return self


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: Literal["console", "json"] = "console"


class Config(BaseSettings):
    """Main configuration for the TermAI agent core."""

    agent: AgentConfig = Field(default_factory=AgentConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    output_buffer: OutputBufferConfig = Field(default_factory=OutputBufferConfig)
    processes: ProcessConfig = Field(default_factory=ProcessConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="TERMAI_",
        env_file=".env",
        env_nested_delimiter="__",
    )

    @classmethod
    def resolve_default_config_path(cls) -> Path:
        """Resolve default config path with local-first precedence."""
        local_path = Path.cwd() / LOCAL_CONFIG_FILENAME
        if local_path.exists():
            return local_path
        return DEFAULT_CONFIG_PATH

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML file."""
        config_path = Path(path).expanduser() if path else cls.resolve_default_config_path()

        if not config_path.exists():
            return cls()

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def load(cls) -> "Config":
        """Load configuration; env vars are applied by pydantic-settings."""
        return cls.from_yaml()

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file."""
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Config | None) -> None:
    """Set (or with None, reset) the global configuration instance."""
    global _config
    _config = config
