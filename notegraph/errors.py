"""
Error taxonomy shared by the stores, the suggestion engine and the AI client.

Every error carries a stable ``code`` and an HTTP status so the API layer can
render it without knowing which component raised it. Storage-level failures
never leave the stores untranslated.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class DomainError(Exception):
    code = "INTERNAL_ERROR"
    http_status = 500
    default_message = "An unexpected error occurred"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class NotFound(DomainError):
    """Row missing, or owned by someone else. The two are never distinguished."""
    code = "NOT_FOUND"
    http_status = 404
    default_message = "Resource not found"


class Conflict(DomainError):
    code = "CONFLICT"
    http_status = 409
    default_message = "Resource already exists"


class InvalidOperation(DomainError):
    code = "INVALID_OPERATION"
    http_status = 400
    default_message = "Operation not allowed"


class InvalidStateTransition(DomainError):
    code = "INVALID_STATE_TRANSITION"
    http_status = 409
    default_message = "Invalid state transition"


class ConsentRequired(DomainError):
    code = "AI_CONSENT_REQUIRED"
    http_status = 403
    default_message = "User has not agreed to AI data processing"


class ContentTooShort(DomainError):
    code = "CONTENT_TOO_SHORT"
    http_status = 400
    default_message = "Note content is too short for analysis"


class ValidationError(DomainError):
    code = "VALIDATION_ERROR"
    http_status = 400
    default_message = "Invalid request data"


# --- AI provider errors ---

class AIError(DomainError):
    code = "AI_SERVICE_ERROR"
    http_status = 502
    default_message = "AI service error"
    retryable = False


class AuthenticationError(AIError):
    code = "AI_AUTHENTICATION_ERROR"
    default_message = "AI provider rejected the credentials"


class BadRequestError(AIError):
    code = "AI_BAD_REQUEST"
    default_message = "AI provider rejected the request"


class RateLimitError(AIError):
    code = "AI_RATE_LIMITED"
    http_status = 429
    default_message = "AI provider rate limit exceeded"
    retryable = True


class ModelNotFoundError(AIError):
    code = "AI_MODEL_NOT_FOUND"
    default_message = "AI model not found"


class APIError(AIError):
    code = "AI_API_ERROR"
    default_message = "AI provider server error"
    retryable = True


class NetworkError(AIError):
    code = "AI_NETWORK_ERROR"
    http_status = 503
    default_message = "AI provider unreachable or timed out"
    retryable = True


class ResponseValidationError(AIError):
    code = "AI_RESPONSE_INVALID"
    default_message = "AI response did not match the expected schema"
