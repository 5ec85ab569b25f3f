"""
Error taxonomy shared by the token manager, the Graph client and every tool.

Each error carries a JSON-RPC style code. Tools never let these escape as
bare exceptions: `handle_tool_errors` turns them into an error result whose
text starts with "<kind> (<code>)" so the client can tell failures apart.
"""

import functools
from typing import Any, Optional

from mcp.shared.exceptions import McpError
from mcp.types import INTERNAL_ERROR, INVALID_PARAMS, CallToolResult, ErrorData, TextContent

from .logging_setup import get_logger

logger = get_logger(__name__)

UPSTREAM_ERROR = -32001

STATUS_GUIDANCE = {
    400: "• Invalid request format\n• Missing required properties\n• Check the request payload",
    401: "• Token has expired\n• Insufficient permissions\n• Check if admin consent was granted",
    403: "• Insufficient permissions\n• Check API permissions in Azure app registration\n• Ensure admin consent was granted",
    404: "• Resource not found\n• Check if the user/group exists\n• Verify the email address or ID is correct",
    409: "• Resource already exists\n• Conflict with existing data",
    429: "• Request was throttled by Microsoft Graph\n• Retry later or raise max_retries",
}

TRANSPORT_GUIDANCE = "• Network connectivity issues\n• Microsoft Graph API may be temporarily unavailable\n• Try again in a few moments"


class M365Error(McpError):
    kind = "m365_error"
    code = INTERNAL_ERROR

    def __init__(self, message: str, data: Optional[Any] = None):
        super().__init__(ErrorData(code=self.code, message=message, data=data))
        self.message = message

    def __str__(self) -> str:
        return f"{self.kind} ({self.code}): {self.message}"


class InvalidParamsError(M365Error):
    """A required field is missing or a value is out of range."""

    kind = "invalid_params"
    code = INVALID_PARAMS


class UpstreamError(M365Error):
    """Microsoft Graph or Azure Resource Manager answered with a failure."""

    kind = "upstream_error"
    code = UPSTREAM_ERROR

    def __init__(self, message: str, status: Optional[int] = None, details: Optional[Any] = None):
        super().__init__(message, data={"status": status, "details": details})
        self.status = status
        self.details = details

    @property
    def guidance(self) -> str:
        if self.status in STATUS_GUIDANCE:
            return STATUS_GUIDANCE[self.status]
        if self.status is None or self.status >= 500:
            return TRANSPORT_GUIDANCE
        return ""


class AuthenticationError(UpstreamError):
    """The token endpoint refused the client-credentials grant."""

    kind = "authentication_error"


class InternalError(M365Error):
    kind = "internal_error"
    code = INTERNAL_ERROR


def error_result(error: M365Error, guidance: str = "") -> CallToolResult:
    """Failed tool result carrying the error kind and code in both text and structured form."""
    text = f"❌ Error: {error}"
    if guidance:
        text += f"\n\n🔧 This usually means:\n{guidance}"
    return CallToolResult(
        content=[TextContent(type="text", text=text)],
        structuredContent={
            "error": {
                "kind": error.kind,
                "code": error.code,
                "message": error.message,
                "data": error.error.data,
            }
        },
        isError=True,
    )


def handle_tool_errors(func):
    """Decorator to provide consistent error handling for all tool functions."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except UpstreamError as e:
            logger.warning("tool_upstream_error", tool=func.__name__, status=e.status, error=e.message)
            return error_result(e, e.guidance)
        except M365Error as e:
            logger.info("tool_rejected", tool=func.__name__, kind=e.kind, error=e.message)
            return error_result(e)
        except Exception as e:
            logger.exception("tool_failed", tool=func.__name__)
            return error_result(InternalError(f"{type(e).__name__}: {e}"))

    return wrapper
