"""Atomic multi-operation batches over one entity.

A batch is validated as a whole before any statement runs, then executed in
list order inside one transaction. Each operation runs in its own SAVEPOINT:

* ``continue_on_error=False`` - the first failure rolls back the whole
  transaction and the batch returns at once.
* ``continue_on_error=True`` - a failure rolls back only that operation's
  savepoint; the remaining operations run and the rest commits.

Errors that are not about one operation (lost connection, statement timeout)
roll back everything and propagate.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, ConfigDict, ValidationError, model_validator
from sqlalchemy.exc import DataError, IntegrityError

from workforge.core.coercion import to_safe_integer
from workforge.errors import BadRequest, NotFound, WorkforgeError

if TYPE_CHECKING:
    from workforge.audit.service import AuditContext
    from workforge.metadata.loader import EntityMetadata
    from workforge.services.entity_service import EntityService

logger = logging.getLogger(__name__)

# Failures scoped to a single operation
OPERATION_ERRORS = (WorkforgeError, IntegrityError, DataError)


class BatchOperation(BaseModel):
    """One step of a batch.

    Only the shape is checked here. The id is coerced when the operation
    runs, so a bad id fails that operation rather than the whole batch.
    """

    model_config = ConfigDict(extra="forbid")

    operation: Literal["create", "update", "delete"]
    id: Any = None
    data: dict[str, Any] | None = None

    @model_validator(mode="after")
    def check_shape(self) -> BatchOperation:
        if self.operation in ("update", "delete") and (self.id is None or self.id in (0, "")):
            raise ValueError(f"Operation '{self.operation}' requires an id")
        if self.operation in ("create", "update") and self.data is None:
            raise ValueError(f"Operation '{self.operation}' requires data")
        return self


def parse_operations(operations: Any) -> list[BatchOperation]:
    """Validate the whole batch up front.

    Raises:
        BadRequest: If the batch is not a non-empty list of valid operations.
    """
    if not isinstance(operations, list) or not operations:
        raise BadRequest("Operations must be a non-empty array")

    parsed: list[BatchOperation] = []
    for index, raw in enumerate(operations):
        try:
            parsed.append(BatchOperation.model_validate(raw))
        except ValidationError as exc:
            first = exc.errors()[0]
            raise BadRequest(
                f"Invalid operation at index {index}: {first['msg']}",
                details={
                    "index": index,
                    "errors": exc.errors(include_url=False, include_context=False),
                },
            ) from None
    return parsed


class BatchExecutor:
    """Runs a validated batch through the entity service's write paths."""

    def __init__(self, service: EntityService):
        self.service = service

    def run(
        self,
        metadata: EntityMetadata,
        operations: Any,
        continue_on_error: bool = False,
        audit_context: AuditContext | None = None,
    ) -> dict[str, Any]:
        parsed = parse_operations(operations)

        results: list[dict[str, Any]] = []
        errors: list[dict[str, Any]] = []
        stats = {"created": 0, "updated": 0, "deleted": 0, "failed": 0}

        with self.service.engine.connect() as conn:
            transaction = conn.begin()
            try:
                for index, op in enumerate(parsed):
                    savepoint = conn.begin_nested()
                    try:
                        record = self._execute(conn, metadata, op, audit_context)
                    except OPERATION_ERRORS as exc:
                        savepoint.rollback()
                        stats["failed"] += 1
                        entry = {
                            "index": index,
                            "operation": op.operation,
                            "success": False,
                            "error": _error_message(exc),
                        }
                        if op.id is not None:
                            entry["id"] = op.id
                        errors.append(entry)
                        results.append(entry)

                        if not continue_on_error:
                            transaction.rollback()
                            logger.warning(
                                "Batch %s aborted at operation %d (%s): %s",
                                metadata.key, index, op.operation, entry["error"],
                            )
                            return {
                                "success": False,
                                "results": results,
                                "errors": errors,
                                "stats": stats,
                                "message": f"Batch aborted at operation {index}: {entry['error']}",
                            }
                        continue

                    savepoint.commit()
                    stats[_STAT_KEYS[op.operation]] += 1
                    results.append({
                        "index": index,
                        "operation": op.operation,
                        "success": True,
                        "record": record,
                    })

                transaction.commit()
            except Exception:
                if transaction.is_active:
                    transaction.rollback()
                logger.error("Batch %s transaction failed, rolled back: %s", metadata.key, stats)
                raise

        success = not errors
        summary = (
            f"{stats['created']} created, {stats['updated']} updated, "
            f"{stats['deleted']} deleted"
        )
        logger.info("Batch %s completed: %s, %d failed", metadata.key, summary, stats["failed"])
        return {
            "success": success,
            "results": results,
            "errors": errors,
            "stats": stats,
            "message": (
                f"Batch completed: {summary}"
                if success
                else f"Batch completed with {len(errors)} error(s): {summary}"
            ),
        }

    def _execute(
        self,
        conn,
        metadata: EntityMetadata,
        op: BatchOperation,
        audit_context: AuditContext | None,
    ) -> dict[str, Any]:
        service = self.service
        if op.operation == "create":
            return service._create(conn, metadata, op.data, audit_context)

        record_id = to_safe_integer(op.id, "id")
        if op.operation == "update":
            record = service._update(conn, metadata, record_id, op.data, audit_context)
        else:
            record = service._delete(conn, metadata, record_id, audit_context)
        if record is None:
            raise NotFound(f"Record not found: {record_id}")
        return record


_STAT_KEYS = {"create": "created", "update": "updated", "delete": "deleted"}


def _error_message(exc: Exception) -> str:
    if isinstance(exc, WorkforgeError):
        return exc.message
    orig = getattr(exc, "orig", None)
    return str(orig or exc)
