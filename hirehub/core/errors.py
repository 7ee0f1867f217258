# hirehub/core/errors.py
"""
Typed error taxonomy shared by the HTTP API, the socket dispatcher and the
evaluation pipeline. Callers branch on the class (or its `code`); user-facing
surfaces translate to `{"success": false, "error": {"code", "message"}}`.
"""

from typing import Any, Dict, List, Optional


class HireHubError(Exception):
    code = "error"
    status_code = 500

    def __init__(self, message: str = "", **details: Any):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}


class AuthenticationError(HireHubError):
    code = "unauthenticated"
    status_code = 401


class AuthorizationError(HireHubError):
    code = "forbidden"
    status_code = 403


class NotParticipantError(AuthorizationError):
    code = "not_participant"


class NotFoundError(HireHubError):
    code = "not_found"
    status_code = 404


class ValidationError(HireHubError):
    code = "validation_error"
    status_code = 400


class OcrRequiredError(ValidationError):
    code = "ocr_required"


class RateLimitError(HireHubError):
    code = "rate_limited"
    status_code = 429

    def __init__(self, message: str = "", retry_after: float = 0.0, **details: Any):
        super().__init__(message, **details)
        self.retry_after = retry_after

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out["retry_after"] = int(self.retry_after + 0.999)
        return out


class InvalidTransitionError(HireHubError):
    code = "invalid_transition"
    status_code = 409


class ScoringError(HireHubError):
    code = "scoring_error"
    status_code = 502


class ModelNotFoundError(ScoringError):
    code = "model_not_found"


class QuotaExceededError(ScoringError):
    code = "quota_exceeded"


class ModelOverloadedError(ScoringError):
    code = "model_overloaded"


class InvalidScoringResponseError(ScoringError):
    code = "invalid_scoring_response"


class ScoringExhaustedError(ScoringError):
    code = "scoring_exhausted"

    def __init__(self, message: str, models_tried: Optional[List[str]] = None,
                 last_model: Optional[str] = None, last_error: Optional[BaseException] = None):
        super().__init__(message)
        self.models_tried = list(models_tried or [])
        self.last_model = last_model
        self.last_error = last_error
