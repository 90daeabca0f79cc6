"""
Error taxonomy shared by the pipeline, the AI client and the HTTP layer.

Every error carries an HTTP status and a stable ``kind`` so callers can tell
a bad request from an upstream AI failure, and one AI failure from another
(retry, fail fast, or show the message to the user).
"""
import copy
from typing import List, Optional


class AppError(Exception):
    """Base class for all errors surfaced to API callers"""

    status_code = 500
    kind = "SERVER_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message

    def with_context(self, context: str) -> "AppError":
        """Return a copy of this error with ``context`` prefixed to the message"""
        wrapped = copy.copy(self)
        wrapped.message = f"{context}: {self.message}"
        wrapped.__cause__ = self
        return wrapped

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class InputValidationError(AppError):
    """Missing or empty required input"""
    status_code = 400
    kind = "INPUT_VALIDATION"


class NotFoundError(AppError):
    status_code = 404
    kind = "NOT_FOUND"


class StateTransitionError(AppError):
    """A phase was requested on a record whose status does not allow it"""
    status_code = 409
    kind = "INVALID_STATE"


class StorageError(AppError):
    kind = "STORAGE_ERROR"


class AIConfigurationError(AppError):
    kind = "AI_NOT_CONFIGURED"

    def __init__(self, message: str = "AI service is not configured"):
        super().__init__(message)


class UpstreamAIError(AppError):
    """Base class for failures of the generative AI call"""
    kind = "AI_ERROR"


class AICallFailed(UpstreamAIError):
    """Transport, quota or API failure"""
    kind = "AI_CALL_FAILED"


class AIContentBlocked(UpstreamAIError):
    """The safety filter blocked the prompt or the response"""
    kind = "AI_CONTENT_BLOCKED"

    def __init__(self, message: str, block_reason: Optional[str] = None):
        super().__init__(message)
        self.block_reason = block_reason


class AIResponseMalformed(UpstreamAIError):
    """JSON was requested but the response is not valid JSON"""
    kind = "AI_RESPONSE_MALFORMED"

    def __init__(self, message: str, raw_excerpt: str = ""):
        super().__init__(message)
        self.raw_excerpt = raw_excerpt


class AIResponseIncomplete(UpstreamAIError):
    """Valid JSON that lacks required keys"""
    kind = "AI_RESPONSE_INCOMPLETE"

    def __init__(self, message: str, missing_keys: Optional[List[str]] = None):
        super().__init__(message)
        self.missing_keys = missing_keys or []
