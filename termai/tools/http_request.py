"""HTTP request tool for probing APIs and local servers."""

from typing import Any

import httpx

from termai.config import get_config
from termai.logging import get_logger
from termai.tools.registry import Tool, ToolResult

log = get_logger(__name__)

BODY_METHODS = {"POST", "PUT", "PATCH"}


def parse_headers(raw: str | None) -> dict[str, str]:
    """Parse ``key:value`` pairs separated by commas."""
    headers: dict[str, str] = {}
    for pair in (raw or "").split(","):
        key, sep, value = pair.partition(":")
        if sep and key.strip():
            headers[key.strip()] = value.strip()
    return headers


class HttpRequestTool(Tool):
    """Make an HTTP request."""

    name = "http_request"
    description = (
        "Make an HTTP request to test APIs. Args: url (required), method (optional: "
        "GET/POST/PUT/DELETE, default: GET), body (optional - JSON string for POST/PUT), "
        "headers (optional - comma-separated key:value pairs)"
    )
    parameters = {
        "type": "object",
        "properties": {
            "url": {"type": "string", "description": "URL to request"},
            "method": {
                "type": "string",
                "description": "HTTP method",
                "enum": ["GET", "POST", "PUT", "DELETE", "PATCH"],
            },
            "body": {"type": "string", "description": "Request body (JSON string for POST/PUT/PATCH)"},
            "headers": {"type": "string", "description": "Headers as comma-separated key:value pairs"},
        },
        "required": ["url"],
    }

    def __init__(self):
        cfg = get_config().tools.http_request
        self.timeout = cfg.timeout
        self.max_body_chars = cfg.max_body_chars
        self.client = httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            headers={"User-Agent": "TermAI/0.1.0 (HTTP Request Tool)"},
        )

    async def execute(
        self,
        url: str | None = None,
        method: str | None = None,
        body: str | None = None,
        headers: str | None = None,
        **kwargs: Any,
    ) -> ToolResult:
        if not url:
            return ToolResult.fail("Missing required argument: url")
        if not url.startswith(("http://", "https://")):
            return ToolResult.fail(f"Invalid URL: {url}")

        method = (method or "GET").upper()
        request_headers = parse_headers(headers)
        content: bytes | None = None
        if body and method in BODY_METHODS:
            if not any(key.lower() == "content-type" for key in request_headers):
                request_headers["Content-Type"] = "application/json"
            content = body.encode("utf-8")

        try:
            response = await self.client.request(method, url, headers=request_headers, content=content)
        except httpx.TimeoutException:
            return ToolResult.fail(f"Request timed out after {self.timeout}s")
        except httpx.ConnectError:
            return ToolResult.fail("Cannot connect to host. Is the server running?")
        except (httpx.RemoteProtocolError, httpx.ReadError):
            return ToolResult.fail("Network connection lost")
        except httpx.HTTPError as e:
            log.error("HTTP request failed", url=url, error=str(e))
            return ToolResult.fail(f"Request failed: {e}")

        status = response.status_code
        marker = "✓" if 200 <= status < 300 else "✗"
        lines = [f"{marker} HTTP {status} {response.reason_phrase}".rstrip(), f"URL: {method} {url}"]
        content_type = response.headers.get("content-type")
        if content_type:
            lines.append(f"Content-Type: {content_type}")
        output = "\n".join(lines)

        try:
            text = response.content.decode("utf-8")
        except UnicodeDecodeError:
            output += f"\n\nResponse: {len(response.content)} bytes (non-text)"
            return ToolResult.ok(output)

        output += f"\n\nResponse body:\n{text[: self.max_body_chars]}"
        if len(text) > self.max_body_chars:
            output += f"\n... (truncated, {len(text)} total chars)"
        return ToolResult.ok(output)

    async def aclose(self) -> None:
        await self.client.aclose()
