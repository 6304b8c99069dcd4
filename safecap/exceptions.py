"""
SafeCap - Custom exceptions for error handling.
"""

from typing import Any, Optional


class SafeCapError(Exception):
    """Base exception for all SafeCap errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response = response

    def to_response(self) -> dict[str, Any]:
        """Error envelope returned by the JSON endpoints."""
        return {
            "success": False,
            "error": self.message,
            "details": self.response,
        }


class ValidationError(SafeCapError):
    """Raised when request validation fails (bad API key, missing fields)."""

    def __init__(self, message: str, errors: Optional[list[Any]] = None, **kwargs: Any) -> None:
        kwargs.setdefault("status_code", 400)
        super().__init__(message, **kwargs)
        self.errors = errors or []


class BackendCallError(SafeCapError):
    """Raised when talking to the agent backend fails."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("status_code", 502)
        super().__init__(message, **kwargs)


class MaxRoundsExceeded(BackendCallError):
    """Raised when the model keeps requesting tools past the round-trip ceiling."""

    def __init__(self, rounds: int, **kwargs: Any) -> None:
        super().__init__(
            f"Agent still requested tools after {rounds} round trips",
            **kwargs,
        )
        self.rounds = rounds


class ToolExecutionError(SafeCapError):
    """Raised when a tool is unknown or its handler fails."""

    def __init__(self, message: str, tool_name: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.tool_name = tool_name


class InvalidConversationError(SafeCapError):
    """Raised when a conversation would be structurally invalid for the backend."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("status_code", 500)
        super().__init__(message, **kwargs)


class CompletionError(SafeCapError):
    """Raised when the upstream completions API fails or rejects a request."""

    pass


class OrchestrationCancelled(SafeCapError):
    """Raised when the client went away and no further work should be issued."""

    pass
