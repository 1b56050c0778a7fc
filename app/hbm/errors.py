"""
Service-layer error taxonomy.

Every error carries a machine-readable ``code`` and the HTTP status the Flask
glue should answer with; the core never formats responses itself.
"""
from __future__ import annotations


class ServiceError(RuntimeError):
    code = "SERVICE_ERROR"
    status_code = 500

    def __init__(self, message: str = "", **details: object) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(ServiceError):
    code = "VALIDATION_ERROR"
    status_code = 400


class BusinessRuleViolationError(ValidationError):
    code = "BUSINESS_RULE_VIOLATION"
    status_code = 422


class PermissionDeniedError(ServiceError):
    code = "PERMISSION_DENIED"
    status_code = 403

    def __init__(self, message: str = "Insufficient permissions", **details: object) -> None:
        super().__init__(message, **details)


class NotFoundError(ServiceError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str, entity_id: object | None = None) -> None:
        if entity_id is None:
            message = f"{resource} not found"
        else:
            message = f"{resource} with id {entity_id} not found"
        super().__init__(message, resource=resource, entity_id=entity_id)
