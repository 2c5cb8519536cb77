"""
Service-layer error taxonomy.
Routers never need to catch these: main.py maps each class to its HTTP status.
"""


class ServiceError(Exception):
    """Base class; status_code is the HTTP status the API reports."""
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(ServiceError):
    status_code = 404

    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class ValidationFailure(ServiceError):
    """Bad percentage split, bad topic weights, broken item numbering, malformed question content."""
    status_code = 422


class AuthorizationDenied(ServiceError):
    status_code = 403


class ConflictError(ServiceError):
    """State does not allow the operation (locked blueprint, illegal review transition)."""
    status_code = 409


class InsufficientInventory(ServiceError):
    status_code = 409

    def __init__(self, message: str, shortfall: list):
        super().__init__(message)
        self.shortfall = shortfall


class ExternalServiceError(ServiceError):
    """Classifier, generator or export backend failed and no degraded path applies."""
    status_code = 502


class ClassificationFailed(ExternalServiceError):
    pass
