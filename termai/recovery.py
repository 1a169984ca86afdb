"""Error taxonomy and recovery strategies for agent API operations."""

from __future__ import annotations

import asyncio
import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

from termai.exceptions import TermAIError


class ErrorKind(str, Enum):
    # Transport
    NETWORK_UNAVAILABLE = "network_unavailable"
    CONNECTION_FAILED = "connection_failed"
    TIMEOUT = "timeout"
    CONNECTION_LOST = "connection_lost"
    # Authentication
    API_KEY_MISSING = "api_key_missing"
    API_KEY_INVALID = "api_key_invalid"
    AUTHENTICATION_FAILED = "authentication_failed"
    # Quota / rate limit
    RATE_LIMITED = "rate_limited"
    QUOTA_EXCEEDED = "quota_exceeded"
    # Server
    SERVER_ERROR = "server_error"
    SERVER_OVERLOADED = "server_overloaded"
    SERVICE_UNAVAILABLE = "service_unavailable"
    # Response shape
    INVALID_RESPONSE = "invalid_response"
    EMPTY_RESPONSE = "empty_response"
    DECODING_FAILED = "decoding_failed"
    UNEXPECTED_FORMAT = "unexpected_format"
    # Model
    MODEL_NOT_FOUND = "model_not_found"
    MODEL_UNAVAILABLE = "model_unavailable"
    CONTEXT_LENGTH_EXCEEDED = "context_length_exceeded"
    # Cancellation
    CANCELLED = "cancelled"


_CATEGORIES: dict[ErrorKind, str] = {
    ErrorKind.NETWORK_UNAVAILABLE: "transport",
    ErrorKind.CONNECTION_FAILED: "transport",
    ErrorKind.TIMEOUT: "transport",
    ErrorKind.CONNECTION_LOST: "transport",
    ErrorKind.API_KEY_MISSING: "auth",
    ErrorKind.API_KEY_INVALID: "auth",
    ErrorKind.AUTHENTICATION_FAILED: "auth",
    ErrorKind.RATE_LIMITED: "rate_limit",
    ErrorKind.QUOTA_EXCEEDED: "rate_limit",
    ErrorKind.SERVER_ERROR: "server",
    ErrorKind.SERVER_OVERLOADED: "server",
    ErrorKind.SERVICE_UNAVAILABLE: "server",
    ErrorKind.INVALID_RESPONSE: "response",
    ErrorKind.EMPTY_RESPONSE: "response",
    ErrorKind.DECODING_FAILED: "response",
    ErrorKind.UNEXPECTED_FORMAT: "response",
    ErrorKind.MODEL_NOT_FOUND: "model",
    ErrorKind.MODEL_UNAVAILABLE: "model",
    ErrorKind.CONTEXT_LENGTH_EXCEEDED: "model",
    ErrorKind.CANCELLED: "cancellation",
}


class RecoveryAction(str, Enum):
    FAIL = "fail"
    RETRY_WITH_BACKOFF = "retry_with_backoff"
    REDUCE_CONTEXT = "reduce_context"
    SWITCH_MODEL = "switch_model"
    USER_ACTION_REQUIRED = "user_action_required"


@dataclass(frozen=True)
class RecoveryStrategy:
    """How the orchestration loop should react to an error."""

    action: RecoveryAction
    initial_delay: float = 0.0
    max_retries: int = 0
    message: str = ""

    @classmethod
    def fail(cls) -> "RecoveryStrategy":
        return cls(RecoveryAction.FAIL)

    @classmethod
    def retry_with_backoff(cls, initial_delay: float, max_retries: int) -> "RecoveryStrategy":
        return cls(
            RecoveryAction.RETRY_WITH_BACKOFF,
            initial_delay=float(initial_delay),
            max_retries=int(max_retries),
        )

    @classmethod
    def reduce_context(cls) -> "RecoveryStrategy":
        return cls(RecoveryAction.REDUCE_CONTEXT)

    @classmethod
    def switch_model(cls) -> "RecoveryStrategy":
        return cls(RecoveryAction.SWITCH_MODEL)

    @classmethod
    def user_action_required(cls, message: str) -> "RecoveryStrategy":
        return cls(RecoveryAction.USER_ACTION_REQUIRED, message=message)

    @property
    def is_retry(self) -> bool:
        return self.action is RecoveryAction.RETRY_WITH_BACKOFF

    def delay_for_attempt(self, attempt: int, max_delay: float | None = None) -> float:
        """Exponential backoff delay for a 1-based retry attempt.

        ``max_delay`` caps the growth only; a larger ``initial_delay`` (a
        server retry-after hint) is always honored.
        """
        delay = self.initial_delay * (2 ** max(0, attempt - 1))
        if max_delay is not None:
            delay = max(self.initial_delay, min(delay, max_delay))
        return delay


class AgentAPIError(TermAIError):
    """Typed failure of a model API operation.

    ``message`` is user facing; ``details`` keeps the raw technical text for
    diagnostics and copy-to-clipboard.
    """

    def __init__(
        self,
        kind: ErrorKind,
        *,
        provider: str = "",
        host: str = "",
        operation: str = "",
        status_code: int | None = None,
        retry_after: float | None = None,
        model_id: str = "",
        limit: int = 0,
        requested: int = 0,
        expected: str = "",
        received: str = "",
        details: str = "",
    ):
        self.kind = kind
        self.provider = provider
        self.host = host
        self.operation = operation
        self.status_code = status_code
        self.retry_after = retry_after
        self.model_id = model_id
        self.limit = limit
        self.requested = requested
        self.expected = expected
        self.received = received
        self.details = details
        super().__init__(self.message)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AgentAPIError):
            return NotImplemented
        return (self.kind, self.message) == (other.kind, other.message)

    def __hash__(self) -> int:
        return hash((self.kind, self.message))

    def __repr__(self) -> str:
        return f"AgentAPIError({self.kind.value!r}, {self.message!r})"

    @property
    def category(self) -> str:
        return _CATEGORIES[self.kind]

    @property
    def message(self) -> str:
        k = self.kind
        if k is ErrorKind.NETWORK_UNAVAILABLE:
            return "No network connection available"
        if k is ErrorKind.CONNECTION_FAILED:
            return f"Cannot connect to {self.host or 'unknown'}"
        if k is ErrorKind.TIMEOUT:
            return f"Request timed out during {self.operation or 'network request'}"
        if k is ErrorKind.CONNECTION_LOST:
            return "Network connection was lost"
        if k is ErrorKind.API_KEY_MISSING:
            return f"{self.provider} API key not configured"
        if k is ErrorKind.API_KEY_INVALID:
            return f"{self.provider} API key is invalid"
        if k is ErrorKind.AUTHENTICATION_FAILED:
            return f"{self.provider} authentication failed: {self.details}"
        if k is ErrorKind.RATE_LIMITED:
            if self.retry_after is not None:
                return f"Rate limited. Try again in {int(self.retry_after)} seconds"
            return "Rate limited. Please wait before retrying"
        if k is ErrorKind.QUOTA_EXCEEDED:
            return f"{self.provider} usage quota exceeded"
        if k is ErrorKind.SERVER_ERROR:
            return f"Server error ({self.status_code}): {self.details}"
        if k is ErrorKind.SERVER_OVERLOADED:
            return "Server is temporarily overloaded"
        if k is ErrorKind.SERVICE_UNAVAILABLE:
            return f"{self.provider} service is temporarily unavailable"
        if k is ErrorKind.INVALID_RESPONSE:
            return f"Invalid response from server: {self.details}"
        if k is ErrorKind.EMPTY_RESPONSE:
            return "Empty response from server"
        if k is ErrorKind.DECODING_FAILED:
            return f"Failed to parse response: {self.details}"
        if k is ErrorKind.UNEXPECTED_FORMAT:
            return f"Expected {self.expected} format but received: {self.received[:100]}"
        if k is ErrorKind.MODEL_NOT_FOUND:
            return f"Model '{self.model_id or 'unknown'}' not found"
        if k is ErrorKind.MODEL_UNAVAILABLE:
            return f"Model '{self.model_id or 'unknown'}' is currently unavailable"
        if k is ErrorKind.CONTEXT_LENGTH_EXCEEDED:
            return f"Context length exceeded (limit: {self.limit}, requested: {self.requested})"
        return "Operation was cancelled"

    @property
    def recovery_strategy(self) -> RecoveryStrategy:
        k = self.kind
        if k in (ErrorKind.NETWORK_UNAVAILABLE, ErrorKind.CONNECTION_FAILED, ErrorKind.CONNECTION_LOST):
            return RecoveryStrategy.retry_with_backoff(2.0, 3)
        if k is ErrorKind.TIMEOUT:
            return RecoveryStrategy.retry_with_backoff(1.0, 2)
        if k in (ErrorKind.API_KEY_MISSING, ErrorKind.API_KEY_INVALID):
            return RecoveryStrategy.user_action_required("Please configure your API key in Settings")
        if k is ErrorKind.AUTHENTICATION_FAILED:
            return RecoveryStrategy.user_action_required("Check your API key in Settings")
        if k is ErrorKind.RATE_LIMITED:
            delay = self.retry_after if self.retry_after is not None else 60.0
            return RecoveryStrategy.retry_with_backoff(delay, 1)
        if k is ErrorKind.QUOTA_EXCEEDED:
            return RecoveryStrategy.user_action_required("Check your usage limits with your provider")
        if k is ErrorKind.SERVER_ERROR:
            if self._is_5xx:
                return RecoveryStrategy.retry_with_backoff(5.0, 2)
            return RecoveryStrategy.fail()
        if k in (ErrorKind.SERVER_OVERLOADED, ErrorKind.SERVICE_UNAVAILABLE):
            return RecoveryStrategy.retry_with_backoff(10.0, 3)
        if k in (ErrorKind.INVALID_RESPONSE, ErrorKind.DECODING_FAILED, ErrorKind.UNEXPECTED_FORMAT):
            return RecoveryStrategy.retry_with_backoff(1.0, 2)
        if k is ErrorKind.EMPTY_RESPONSE:
            return RecoveryStrategy.retry_with_backoff(0.5, 3)
        if k in (ErrorKind.MODEL_NOT_FOUND, ErrorKind.MODEL_UNAVAILABLE):
            return RecoveryStrategy.user_action_required("Select a different model")
        if k is ErrorKind.CONTEXT_LENGTH_EXCEEDED:
            return RecoveryStrategy.reduce_context()
        return RecoveryStrategy.fail()

    @property
    def is_transient(self) -> bool:
        """Whether a retry might succeed."""
        if self.kind is ErrorKind.SERVER_ERROR:
            return self._is_5xx
        return self.kind in _TRANSIENT_KINDS

    @property
    def _is_5xx(self) -> bool:
        return self.status_code is not None and 500 <= self.status_code < 600


_TRANSIENT_KINDS = frozenset(
    {
        ErrorKind.NETWORK_UNAVAILABLE,
        ErrorKind.CONNECTION_FAILED,
        ErrorKind.CONNECTION_LOST,
        ErrorKind.TIMEOUT,
        ErrorKind.RATE_LIMITED,
        ErrorKind.SERVER_OVERLOADED,
        ErrorKind.SERVICE_UNAVAILABLE,
        ErrorKind.EMPTY_RESPONSE,
    }
)

_RETRY_AFTER_RE = re.compile(r"retry.{0,10}?(\d+)", re.IGNORECASE)


def parse_retry_after(message: str) -> float | None:
    """Find a retry-after hint (seconds) in an error body."""
    match = _RETRY_AFTER_RE.search(message or "")
    if not match:
        return None
    try:
        return float(match.group(1))
    except ValueError:
        return 60.0


def classify_transport_error(error: BaseException, host: str | None = None) -> AgentAPIError:
    """Map a transport-level exception to a typed error. Total over all inputs."""
    if isinstance(error, AgentAPIError):
        return error
    if isinstance(error, asyncio.CancelledError):
        return AgentAPIError(ErrorKind.CANCELLED)
    if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return AgentAPIError(ErrorKind.TIMEOUT, operation="network request", details=str(error))
    request_host = host or _host_from_httpx_error(error)
    if isinstance(error, (httpx.RemoteProtocolError, httpx.ReadError, httpx.WriteError)):
        return AgentAPIError(ErrorKind.CONNECTION_LOST, host=request_host, details=str(error))
    if isinstance(error, ConnectionResetError):
        return AgentAPIError(ErrorKind.CONNECTION_LOST, host=request_host, details=str(error))
    if isinstance(error, httpx.ConnectError):
        text = str(error).lower()
        if "name or service not known" in text or "network is unreachable" in text:
            return AgentAPIError(ErrorKind.NETWORK_UNAVAILABLE, details=str(error))
        return AgentAPIError(ErrorKind.CONNECTION_FAILED, host=request_host or "unknown", details=str(error))
    if isinstance(error, httpx.HTTPStatusError):
        response = error.response
        return classify_http_status(response.status_code, response.text, request_host or "")
    if isinstance(error, json.JSONDecodeError):
        return AgentAPIError(ErrorKind.DECODING_FAILED, details=str(error))
    return AgentAPIError(
        ErrorKind.CONNECTION_FAILED,
        host=request_host or str(error) or type(error).__name__,
        details=str(error),
    )


def _host_from_httpx_error(error: BaseException) -> str:
    if not isinstance(error, httpx.RequestError):
        return ""
    try:
        return error.request.url.host or ""
    except RuntimeError:
        return ""


def classify_http_status(status_code: int, body: str | bytes | None, provider: str) -> AgentAPIError:
    """Map an HTTP status and body to a typed error. Total over all inputs."""
    if isinstance(body, bytes):
        message = body.decode("utf-8", errors="replace")
    else:
        message = body or "No details"

    if status_code == 401:
        return AgentAPIError(ErrorKind.API_KEY_INVALID, provider=provider, status_code=status_code, details=message)
    if status_code == 403:
        return AgentAPIError(
            ErrorKind.AUTHENTICATION_FAILED, provider=provider, status_code=status_code, details=message
        )
    if status_code == 404:
        return AgentAPIError(ErrorKind.MODEL_NOT_FOUND, model_id="unknown", status_code=status_code, details=message)
    if status_code == 429:
        return AgentAPIError(
            ErrorKind.RATE_LIMITED,
            provider=provider,
            status_code=status_code,
            retry_after=parse_retry_after(message),
            details=message,
        )
    if 500 <= status_code < 600:
        if status_code == 503:
            return AgentAPIError(
                ErrorKind.SERVICE_UNAVAILABLE, provider=provider, status_code=status_code, details=message
            )
        if status_code == 529 or "overloaded" in message:
            return AgentAPIError(
                ErrorKind.SERVER_OVERLOADED, provider=provider, status_code=status_code, details=message
            )
    return AgentAPIError(ErrorKind.SERVER_ERROR, provider=provider, status_code=status_code, details=message)


def classify(
    error_or_status: BaseException | int,
    body: str | bytes | None = None,
    provider: str = "",
    host: str | None = None,
) -> AgentAPIError:
    """Classify either a transport exception or an HTTP status + body."""
    if isinstance(error_or_status, BaseException):
        return classify_transport_error(error_or_status, host=host)
    return classify_http_status(int(error_or_status), body, provider)


@dataclass(frozen=True)
class ChatAPIError:
    """An API error with a user-friendly message and full technical details."""

    friendly_message: str
    full_details: str
    status_code: int | None = None
    provider: str | None = None

    def __str__(self) -> str:
        return self.friendly_message

    @classmethod
    def from_response(cls, status_code: int, error_body: str, provider: str) -> "ChatAPIError":
        return cls(
            friendly_message=_friendly_provider_message(status_code, error_body, provider),
            full_details=f"HTTP {status_code}: {error_body}",
            status_code=status_code,
            provider=provider,
        )

    @classmethod
    def from_agent_error(cls, error: AgentAPIError) -> "ChatAPIError":
        return cls(
            friendly_message=error.message,
            full_details=error.details or error.message,
            status_code=error.status_code,
            provider=error.provider or None,
        )


def _parse_error_payload(error_body: str) -> tuple[str | None, str | None]:
    """Extract (message, status) from OpenAI / Anthropic / Google error JSON."""
    try:
        payload: Any = json.loads(error_body)
    except (TypeError, ValueError):
        return None, None
    if not isinstance(payload, dict):
        return None, None
    error = payload.get("error")
    if not isinstance(error, dict):
        return None, None
    message = error.get("message")
    status = error.get("status")
    return (
        message if isinstance(message, str) else None,
        status if isinstance(status, str) else None,
    )


def _friendly_provider_message(status_code: int, error_body: str, provider: str) -> str:
    error_message, error_status = _parse_error_payload(error_body)
    msg = (error_message or "").lower()

    if status_code == 400:
        if "api key" in msg or "api_key" in msg:
            return f"Invalid API key format. Please check your {provider} API key in Settings."
        if "model" in msg:
            return "Invalid model configuration. The selected model may not support this request."
        if "content" in msg or "safety" in msg:
            return "Request was blocked due to content policy. Please modify your message."
        return f"Bad request to {provider}. {error_message or 'Please check your request.'}"
    if status_code == 401:
        return f"Authentication failed. Please verify your {provider} API key in Settings."
    if status_code == 403:
        if "permission" in msg or "access" in msg:
            return f"Access denied. Your {provider} API key may not have permission for this operation."
        if "region" in msg or "country" in msg:
            return f"{provider} service is not available in your region."
        return f"Access forbidden. Please check your {provider} API key permissions."
    if status_code == 404:
        if "model" in msg:
            return "Model not found. The selected model may not be available or the name is incorrect."
        return f"Resource not found on {provider}. Please check your configuration."
    if status_code == 429:
        if "quota" in msg or error_status == "RESOURCE_EXHAUSTED":
            return f"Quota exceeded on {provider}. Check your usage limits or upgrade your plan."
        if "token" in msg or "rpm" in msg or "tpm" in msg:
            return "Rate limit reached. Please wait a moment before sending more requests."
        return f"Too many requests to {provider}. Please wait a moment and try again."
    if status_code == 500:
        return f"{provider} server error. The service is experiencing issues. Please try again."
    if status_code == 502:
        return f"{provider} gateway error. The service may be updating. Please try again in a moment."
    if status_code == 503:
        if "overloaded" in msg or "capacity" in msg:
            return f"{provider} is currently overloaded. Please try again in a few minutes."
        return f"{provider} service is temporarily unavailable. Please try again later."
    if status_code == 504:
        return f"{provider} request timed out. The service may be slow. Please try again."
    if status_code == 529:
        return f"{provider} is overloaded. Please try again in a few minutes."
    if status_code >= 500:
        return f"{provider} server error (HTTP {status_code}). Please try again later."
    truncated = (error_message or error_body or "")[:100]
    suffix = "..." if len(truncated) >= 100 else ""
    return f"{provider} error: {truncated}{suffix}"
