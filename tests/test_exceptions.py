from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError

from admitflow.core.exceptions import (
    IngestRejected,
    NetworkUnavailable,
    SchemaRejection,
    ServiceError,
    UniqueConstraintConflict,
    ValidationFailure,
    describe_error,
)
from admitflow.db.remote import classify_db_error


class _PgError(Exception):
    def __init__(self, message, sqlstate):
        super().__init__(message)
        self.sqlstate = sqlstate


def test_describe_error_priority() -> None:
    assert describe_error({"message": "m", "hint": "h"}) == "m"
    assert describe_error({"message": "", "hint": "h", "details": "d"}) == "h"
    assert describe_error({"details": "d"}) == "d"
    assert describe_error({"code": "42703"}) == "Error 42703"
    assert describe_error({"foo": 1}) == '{"foo": 1}'
    assert describe_error(SchemaRejection("column x missing")) == "column x missing"
    assert describe_error(ValueError("bad value")) == "bad value"
    assert describe_error(RuntimeError()) == "RuntimeError"


def test_service_errors_carry_status_codes() -> None:
    assert NetworkUnavailable().status_code == 503
    assert UniqueConstraintConflict().status_code == 409
    assert ValidationFailure("x").status_code == 400
    assert ServiceError("x").status_code == 500
    assert SchemaRejection("x").status_code == 422
    assert IngestRejected("x", buffered_id="local-1").status_code == 422


def test_unknown_column_is_schema_rejection() -> None:
    error = classify_db_error(OperationalError("INSERT", {}, Exception("table applications has no column named fee_total")))
    assert isinstance(error, SchemaRejection)
    assert "fee_total" in error.details


def test_sqlstate_undefined_table() -> None:
    error = classify_db_error(ProgrammingError("SELECT", {}, _PgError("relation missing", "42P01")))
    assert isinstance(error, SchemaRejection)
    assert error.code == "42P01"


def test_integrity_errors() -> None:
    unique = classify_db_error(IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: applications.app_id")))
    assert isinstance(unique, UniqueConstraintConflict)
    not_null = classify_db_error(IntegrityError("INSERT", {}, Exception("NOT NULL constraint failed: applications.name")))
    assert isinstance(not_null, ValidationFailure)


def test_connectivity_errors() -> None:
    assert isinstance(classify_db_error(ConnectionRefusedError("refused")), NetworkUnavailable)
    assert isinstance(classify_db_error(OperationalError("SELECT", {}, Exception("unable to open database file"))), NetworkUnavailable)


def test_service_error_passes_through() -> None:
    original = ValidationFailure("already classified")
    assert classify_db_error(original) is original
