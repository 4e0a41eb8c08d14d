"""
Remote relational store access for tables whose exact columns are not known ahead of time.

Statements are built from lightweight table()/column() constructs derived from the payload,
so an unknown column surfaces as a driver error that classify_db_error maps onto the
service taxonomy (SchemaRejection, NetworkUnavailable, ValidationFailure, UniqueConstraintConflict).
Each call runs in its own transaction: a rejected statement never poisons the next attempt.
"""

import asyncio
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from fastapi.encoders import jsonable_encoder
from sqlalchemy import JSON, DateTime, column, delete, insert, literal_column, select, table, update
from sqlalchemy.exc import (
    DataError,
    DBAPIError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    ProgrammingError,
    SQLAlchemyError,
)
from sqlalchemy.ext.asyncio import AsyncEngine

from admitflow.core.exceptions import (
    NetworkUnavailable,
    SchemaRejection,
    ServiceError,
    UniqueConstraintConflict,
    ValidationFailure,
)

logger = logging.getLogger(__name__)

# Lower-cased fragments of driver messages that mean "the schema does not have that".
_SCHEMA_MARKERS = (
    "no such column",
    "has no column named",
    "no such table",
    "does not exist",
    "could not find the",
    "schema cache",
    "unknown column",
)
# SQLSTATE codes: undefined_column, undefined_table
_SCHEMA_SQLSTATES = ("42703", "42P01")
_UNIQUE_MARKERS = ("unique", "duplicate key")


def _sqlstate(exc: BaseException) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    for candidate in (orig, getattr(orig, "__cause__", None), exc):
        if candidate is None:
            continue
        code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if code:
            return str(code)
    return None


def classify_db_error(exc: BaseException) -> ServiceError:
    """Map a driver/SQLAlchemy exception onto the service error taxonomy."""
    if isinstance(exc, ServiceError):
        return exc
    if isinstance(exc, (OSError, asyncio.TimeoutError)):
        return NetworkUnavailable(f"Remote store unreachable: {exc}")

    orig = getattr(exc, "orig", None)
    message = str(orig if orig is not None else exc).strip()
    lowered = message.lower()
    code = _sqlstate(exc)

    if isinstance(exc, IntegrityError):
        if any(m in lowered for m in _UNIQUE_MARKERS) or code == "23505":
            return UniqueConstraintConflict(f"Record already exists: {message}")
        return ValidationFailure(f"Missing or invalid required field: {message}")
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return NetworkUnavailable(f"Remote store connection lost: {message}")
    if code in _SCHEMA_SQLSTATES or any(m in lowered for m in _SCHEMA_MARKERS):
        return SchemaRejection(message, details=message, code=code)
    if isinstance(exc, (InterfaceError, OperationalError)):
        return NetworkUnavailable(f"Remote store unreachable: {message}")
    if isinstance(exc, DataError):
        return ValidationFailure(message)
    if isinstance(exc, ProgrammingError):
        return SchemaRejection(message, details=message, code=code)
    return ServiceError(message or exc.__class__.__name__)


def _bind_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, (list, dict)):
        return jsonable_encoder(value)
    if isinstance(value, date) and not isinstance(value, datetime):
        return value.isoformat()
    return value


def _adhoc_table(name: str, values: Dict[str, Any], extra: Iterable[str] = ()):
    cols = []
    for key, value in values.items():
        if isinstance(value, (list, dict)):
            cols.append(column(key, JSON()))
        elif isinstance(value, datetime):
            cols.append(column(key, DateTime(timezone=True)))
        else:
            cols.append(column(key))
    known = set(values)
    cols.extend(column(k) for k in extra if k not in known)
    return table(name, *cols)


def _candidates(key_value: Any) -> List[Any]:
    """Numeric-looking ids are tried as integers first, then as text."""
    if isinstance(key_value, str) and key_value.isdigit():
        return [int(key_value), key_value]
    return [key_value]


class RemoteStore:
    """Repository over the primary relational store. `engine=None` means not configured."""

    def __init__(self, engine: Optional[AsyncEngine]) -> None:
        self._engine = engine

    @property
    def available(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> Optional[AsyncEngine]:
        return self._engine

    def _require_engine(self) -> AsyncEngine:
        if self._engine is None:
            raise NetworkUnavailable("No relational store configured")
        return self._engine

    async def _run(self, stmt, fetch: str = "first"):
        engine = self._require_engine()
        try:
            async with engine.begin() as conn:
                result = await conn.execute(stmt)
                if fetch == "first":
                    row = result.mappings().first()
                    return dict(row) if row is not None else None
                if fetch == "all":
                    return [dict(r) for r in result.mappings().all()]
                return result.rowcount
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
            raise classify_db_error(e) from e

    async def insert_row(self, table_name: str, values: Dict[str, Any]) -> Dict[str, Any]:
        """Insert one row and return the stored row as the store reports it."""
        bound = {k: _bind_value(v) for k, v in values.items()}
        t = _adhoc_table(table_name, bound)
        stmt = insert(t).values(**bound).returning(literal_column("*"))
        row = await self._run(stmt)
        return row or dict(bound)

    async def update_rows(
        self,
        table_name: str,
        key_columns: Iterable[str],
        key_value: Any,
        values: Dict[str, Any],
    ) -> Optional[Dict[str, Any]]:
        """
        Update the row whose key (any of key_columns) equals key_value. Returns the updated row or None.
        Key columns missing from the schema, and mistyped candidates, are skipped.
        """
        bound = {k: _bind_value(v) for k, v in values.items()}
        rejection: Optional[SchemaRejection] = None
        clean_miss = False
        for key in key_columns:
            for candidate in _candidates(key_value):
                t = _adhoc_table(table_name, bound, extra=[key])
                stmt = (
                    update(t)
                    .where(t.c[key] == candidate)
                    .values(**bound)
                    .returning(literal_column("*"))
                )
                try:
                    row = await self._run(stmt)
                except SchemaRejection as e:
                    rejection = e
                    continue
                except ValidationFailure:
                    continue
                if row is not None:
                    return row
                clean_miss = True
        # every attempt rejected: a value column is unknown, let the caller narrow the payload
        if rejection is not None and not clean_miss:
            raise rejection
        return None

    async def fetch_rows(
        self,
        table_name: str,
        where: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = True,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        t = _adhoc_table(table_name, {}, extra=list(where or {}) + ([order_by] if order_by else []))
        stmt = select(literal_column("*")).select_from(t)
        for key, value in (where or {}).items():
            stmt = stmt.where(t.c[key] == value)
        if order_by:
            stmt = stmt.order_by(t.c[order_by].desc() if descending else t.c[order_by])
        if limit:
            stmt = stmt.limit(limit)
        return await self._run(stmt, fetch="all")

    async def fetch_one(self, table_name: str, key_columns: Iterable[str], key_value: Any) -> Optional[Dict[str, Any]]:
        for key in key_columns:
            for candidate in _candidates(key_value):
                try:
                    rows = await self.fetch_rows(table_name, where={key: candidate}, limit=1)
                except (SchemaRejection, ValidationFailure):
                    continue
                if rows:
                    return rows[0]
        return None

    async def delete_rows(self, table_name: str, key_columns: Iterable[str], key_value: Any) -> int:
        deleted = 0
        for key in key_columns:
            for candidate in _candidates(key_value):
                t = _adhoc_table(table_name, {}, extra=[key])
                try:
                    count = await self._run(delete(t).where(t.c[key] == candidate), fetch="count")
                except (SchemaRejection, ValidationFailure):
                    continue
                deleted += count or 0
                if deleted:
                    return deleted
        return deleted

    async def dispose(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()

