"""
Domain error hierarchy.

Services raise these; the API layer turns them into JSON responses with a stable
`error` code so clients can branch without parsing messages.
"""
from typing import Any


class ClinicalError(Exception):
    """Base class for every error raised by the clinical core."""

    code = "CLINICAL_ERROR"
    status_code = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}


class NotFoundError(ClinicalError):
    """Referenced entity does not exist."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} not found.", details={"entity": entity, "id": str(entity_id)})
        self.entity = entity
        self.entity_id = entity_id


class InvalidStateError(ClinicalError):
    """Operation is illegal for the record's current lifecycle state."""

    code = "INVALID_STATE"
    status_code = 409


class ValidationError(ClinicalError):
    """Input breaks a format, required-field or cross-reference rule."""

    code = "VALIDATION_ERROR"
    status_code = 422


class UnauthorizedError(ClinicalError):
    """Acting clinician is not responsible for the record."""

    code = "UNAUTHORIZED"
    status_code = 403
