"""Translate database constraint violations into engine errors."""

from __future__ import annotations

from typing import TYPE_CHECKING, NoReturn

from sqlalchemy.exc import DBAPIError, IntegrityError

from workforge.errors import BadRequest, Conflict

if TYPE_CHECKING:
    from workforge.metadata.loader import EntityMetadata

# PostgreSQL SQLSTATE codes
_UNIQUE_VIOLATION = "23505"
_FOREIGN_KEY_VIOLATION = "23503"
_NOT_NULL_VIOLATION = "23502"


def _sqlstate(exc: DBAPIError) -> str | None:
    orig = exc.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def translate_db_error(exc: Exception, metadata: EntityMetadata | None = None) -> NoReturn:
    """Re-raise a database error as an engine error where one applies.

    Unique violations become Conflict; foreign-key and not-null violations
    become BadRequest. Anything else is re-raised unchanged.
    """
    if not isinstance(exc, IntegrityError):
        raise exc

    entity = metadata.key if metadata else "record"
    state = _sqlstate(exc)
    message = str(exc.orig).lower()

    if state == _UNIQUE_VIOLATION or "unique constraint" in message:
        raise Conflict(
            f"A {entity} with this {_identity(metadata)} already exists"
        ) from exc
    if state == _FOREIGN_KEY_VIOLATION or "foreign key constraint" in message:
        raise BadRequest(f"Referenced record does not exist for {entity}") from exc
    if state == _NOT_NULL_VIOLATION or "not null constraint" in message:
        raise BadRequest(f"Missing required value for {entity}") from exc
    raise exc


def _identity(metadata: EntityMetadata | None) -> str:
    return metadata.identity_field if metadata else "value"
