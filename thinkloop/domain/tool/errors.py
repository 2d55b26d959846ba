"""
Error taxonomy surfaced to tool dispatch callers.

Every error carries ``type``, ``code``, ``message`` and ``details`` so it can be
written to the audit trail and rendered by the HTTP layer unchanged.
"""

import asyncio
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError


class ToolError(Exception):
    """Base class for structured tool errors"""

    type: str = "execution"
    code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(type={self.type!r}, code={self.code}, message={self.message!r})"


class ValidationError(ToolError):
    type = "validation"
    code = 400


class NotFoundError(ToolError):
    type = "not_found"
    code = 404


class ToolTimeoutError(ToolError):
    type = "timeout"
    code = 408


class RateLimitError(ToolError):
    type = "rate_limit"
    code = 429


class ExternalServiceError(ToolError):
    type = "external_service"
    code = 502


class ExecutionError(ToolError):
    type = "execution"
    code = 500


def classify_error(error: BaseException) -> ToolError:
    """Map an arbitrary exception onto the taxonomy"""

    if isinstance(error, ToolError):
        return error

    if isinstance(error, PydanticValidationError):
        return ValidationError(
            "Invalid tool payload",
            details={"errors": error.errors(include_url=False, include_context=False)}
        )

    if isinstance(error, asyncio.TimeoutError):
        return ToolTimeoutError(str(error) or "Tool execution timed out")

    # Upstream HTTP clients expose the response status on the exception or its response
    status_code = getattr(error, "status_code", None)
    if status_code is None:
        status_code = getattr(getattr(error, "response", None), "status_code", None)

    details = {"exception": error.__class__.__name__}
    if isinstance(status_code, int):
        details["status_code"] = status_code
        if status_code == 429:
            return RateLimitError(str(error) or "Upstream rate limit exceeded", details=details)
        if status_code >= 500:
            return ExternalServiceError(str(error) or "Upstream service failed", details=details)

    return ExecutionError(str(error) or error.__class__.__name__, details=details)
