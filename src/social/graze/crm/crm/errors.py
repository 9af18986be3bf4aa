from typing import Any, Dict, List, Optional


class ErrorCodes:
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"

    NOT_FOUND = "NOT_FOUND"
    ALREADY_EXISTS = "ALREADY_EXISTS"

    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_STAGE = "INVALID_STAGE"

    DELETION_HAS_DEPENDENCIES = "DELETION_HAS_DEPENDENCIES"
    DUPLICATE_INVITE = "DUPLICATE_INVITE"
    USER_INACTIVE = "USER_INACTIVE"
    CANNOT_DEACTIVATE_SELF = "CANNOT_DEACTIVATE_SELF"
    CANNOT_DEACTIVATE_LAST_ADMIN = "CANNOT_DEACTIVATE_LAST_ADMIN"

    INTERNAL_ERROR = "INTERNAL_ERROR"


class CRMError(Exception):
    """
    A domain error raised by the CRM capability layer.

    The code is machine readable and travels unchanged to the client inside the JSON-RPC error
    `data` member; details carry optional structured context (for example the valid stages
    when a stage is rejected).
    """

    def __init__(self, code: str, message: str, details: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


def unauthorized(message: str = "Authentication required") -> CRMError:
    return CRMError(ErrorCodes.UNAUTHORIZED, message)


def forbidden(message: str = "Permission denied") -> CRMError:
    return CRMError(ErrorCodes.FORBIDDEN, message)


def not_found(entity: str, id: Optional[str] = None) -> CRMError:
    if id:
        return CRMError(ErrorCodes.NOT_FOUND, f"{entity} with id '{id}' not found")
    return CRMError(ErrorCodes.NOT_FOUND, f"{entity} not found")


def validation_error(message: str, details: Any = None) -> CRMError:
    return CRMError(ErrorCodes.VALIDATION_ERROR, message, details)


def invalid_stage(stage: str, valid_stages: List[str]) -> CRMError:
    return CRMError(
        ErrorCodes.INVALID_STAGE,
        f"Invalid stage '{stage}'. Valid stages: {', '.join(valid_stages)}",
        {"stage": stage, "validStages": list(valid_stages)},
    )


def has_dependencies(entity: str, dependency_type: str, count: int) -> CRMError:
    return CRMError(
        ErrorCodes.DELETION_HAS_DEPENDENCIES,
        f"Cannot delete {entity}: has {count} {dependency_type}",
        {"dependencyType": dependency_type, "count": count},
    )


def duplicate_invite(email: str) -> CRMError:
    return CRMError(
        ErrorCodes.DUPLICATE_INVITE,
        f"User with email '{email}' already exists in this tenant",
    )


def format_error(error: BaseException) -> Dict[str, Any]:
    """Shape any exception as `{code, message, details}`; unknown failures are INTERNAL_ERROR."""
    if isinstance(error, CRMError):
        return error.to_dict()
    message = str(error) or "An unexpected error occurred"
    return {"code": ErrorCodes.INTERNAL_ERROR, "message": message, "details": None}
