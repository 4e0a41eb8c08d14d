import json
from typing import Any, Optional

from fastapi import status

# literal: the starlette name for 422 changed between releases
HTTP_422_UNPROCESSABLE = 422


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class SchemaRejection(ServiceError):
    """Insert/update rejected because the remote schema lacks a column or table."""

    def __init__(
        self,
        message: str,
        *,
        hint: Optional[str] = None,
        details: Optional[str] = None,
        code: Optional[str] = None,
    ) -> None:
        super().__init__(message, HTTP_422_UNPROCESSABLE)
        self.hint = hint
        self.details = details
        self.code = code


class NetworkUnavailable(ServiceError):
    def __init__(self, message: str = "Remote store unreachable") -> None:
        super().__init__(message, status.HTTP_503_SERVICE_UNAVAILABLE)


class ValidationFailure(ServiceError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class UniqueConstraintConflict(ServiceError):
    def __init__(self, message: str = "Record already exists") -> None:
        super().__init__(message, status.HTTP_409_CONFLICT)


class NotFound(ServiceError):
    def __init__(self, message: str = "Not found") -> None:
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class InvalidTransition(ServiceError):
    def __init__(self, entity: str, from_status: str, to_status: str) -> None:
        super().__init__(
            f"Invalid status transition for {entity}: {from_status} -> {to_status}",
            status.HTTP_409_CONFLICT,
        )
        self.entity = entity
        self.from_status = from_status
        self.to_status = to_status


class LedgerError(ServiceError):
    """Fee ledger operation refused (installment limit, nothing left to assign)."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class IngestRejected(ServiceError):
    """Every reachable insert strategy was rejected by the remote schema."""

    def __init__(self, message: str, buffered_id: Optional[str] = None) -> None:
        super().__init__(message, HTTP_422_UNPROCESSABLE)
        self.buffered_id = buffered_id


def describe_error(error: Any) -> str:
    """
    Single human-readable message for an error object.
    Priority: message, hint, details, "Error <code>", then a dump of the object.
    """
    for attr in ("message", "hint", "details"):
        value = _field(error, attr)
        if isinstance(value, str) and value:
            return value
    code = _field(error, "code")
    if isinstance(code, str) and code:
        return f"Error {code}"
    if isinstance(error, dict):
        return json.dumps(error, default=str, sort_keys=True)
    if isinstance(error, BaseException):
        return str(error) or error.__class__.__name__
    return str(error)


def _field(error: Any, name: str) -> Any:
    if isinstance(error, dict):
        return error.get(name)
    return getattr(error, name, None)
