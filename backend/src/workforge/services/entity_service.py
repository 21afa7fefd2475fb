"""Generic, metadata-driven CRUD over any registered entity.

One service instance serves every entity: the entity key selects metadata
from the registry, and all SQL is composed from that metadata. Caller values
only ever travel as bound parameters.

Reads borrow a pooled connection. Every mutation runs inside one
``engine.begin()`` transaction together with its protection checks, cascades
and audit row.
"""

from __future__ import annotations

import copy
import json
import logging
from typing import TYPE_CHECKING, Any, Mapping

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from workforge.audit.service import (
    AuditContext,
    AuditService,
    build_audit_entry,
    is_audit_enabled,
)
from workforge.core.coercion import to_safe_integer
from workforge.errors import BadRequest, Forbidden, NotFound
from workforge.metadata.loader import (
    SYSTEM_MANAGED_ON_CREATE,
    UNIVERSAL_IMMUTABLES,
    EntityMetadata,
)
from workforge.metadata.registry import MetadataRegistry
from workforge.persistence.cascade import cascade_delete_dependents
from workforge.persistence.config import create_db_engine
from workforge.persistence.errors import translate_db_error
from workforge.persistence.sequences import IdentifierSequence
from workforge.query.builder import (
    QueryFragment,
    bind_params,
    build_filter,
    build_search,
    build_sort,
    combine,
    placeholder,
    qualify,
    resolve_sort,
    where,
)
from workforge.security.output_filter import filter_output, filter_output_array
from workforge.security.rls import (
    RLSContext,
    RLSFilter,
    build_rls_filter,
    build_rls_filter_for_find_by_id,
)
from workforge.services.batch import BatchExecutor
from workforge.services.pagination import PaginationService
from workforge.services.sanitize import TRUE_STRINGS, sanitize_data, sanitize_filters

if TYPE_CHECKING:
    from workforge.settings import WorkforgeSettings

logger = logging.getLogger(__name__)


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in TRUE_STRINGS


def _role_for(rls: RLSContext | None, role: str | None) -> str | None:
    if role is not None:
        return role
    return rls.role if rls else None


class EntityService:
    """Find, create, update, delete and batch over registered entities."""

    def __init__(
        self,
        registry: MetadataRegistry,
        engine: Engine,
        audit_service: AuditService | None = None,
        pagination: PaginationService | None = None,
    ):
        self.registry = registry
        self.engine = engine
        self.audit_service = audit_service or AuditService(engine)
        self.pagination = pagination or PaginationService()

    @classmethod
    def from_settings(
        cls,
        settings: WorkforgeSettings,
        engine: Engine | None = None,
        registry: MetadataRegistry | None = None,
    ) -> EntityService:
        """Build a service from process settings.

        Metadata is loaded from ``settings.metadata_path`` and an engine is
        created from ``settings.database`` unless one is given.
        """
        return cls(
            registry or MetadataRegistry.load(settings.metadata_path),
            engine or create_db_engine(settings.database),
            pagination=settings.pagination(),
        )

    # ------------------------------------------------------------------
    # Query composition
    # ------------------------------------------------------------------

    def _join_parts(self, metadata: EntityMetadata) -> tuple[list[str], list[str]]:
        """SELECT columns and LEFT JOINs for the entity's default includes.

        The related identity field is selected under the relation name; other
        related fields as ``<relation>_<field>``.
        """
        columns: list[str] = []
        joins: list[str] = []
        for name in metadata.default_includes:
            rel = metadata.relationships.get(name)
            if rel is None or rel.type != "belongsTo":
                continue
            related = self.registry.by_table(rel.table)
            related_pk = related.primary_key if related else "id"
            display = "name"
            if related and related.identity_field:
                display = related.identity_field

            alias = f"j_{rel.name}"
            columns.append(f"{alias}.{display} AS {rel.name}")
            for related_field in rel.fields:
                if related_field in (display, "id"):
                    continue
                columns.append(f"{alias}.{related_field} AS {rel.name}_{related_field}")
            joins.append(
                f"LEFT JOIN {rel.table} {alias} "
                f"ON {alias}.{related_pk} = {metadata.table_name}.{rel.foreign_key}"
            )
        return columns, joins

    def _select_sql(self, metadata: EntityMetadata) -> str:
        table = metadata.table_name
        columns, joins = self._join_parts(metadata)
        select_list = ", ".join([f"{table}.*", *columns])
        return " ".join([f"SELECT {select_list} FROM {table}", *joins])

    def _compose_where(
        self,
        metadata: EntityMetadata,
        search: str | None,
        filters: Mapping[str, Any] | None,
        include_inactive: bool,
        rls: RLSContext | None,
    ) -> tuple[QueryFragment, RLSFilter, dict[str, Any]]:
        table = metadata.table_name
        filters = sanitize_filters(filters or {}, metadata)
        applied = {k: v for k, v in filters.items() if k in metadata.filterable_fields}

        search_fragment = build_search(search, metadata.searchable_fields, table, 0)
        filter_fragment = build_filter(
            filters, metadata.filterable_fields, search_fragment.param_offset, table
        )
        fragments = [search_fragment, filter_fragment]
        offset = filter_fragment.param_offset

        # An explicit is_active filter replaces the active-only default
        if (
            not include_inactive
            and "is_active" in metadata.fields
            and "is_active" not in applied
        ):
            offset += 1
            fragments.append(QueryFragment(
                clause=f"{qualify('is_active', table)} = {placeholder(offset)}",
                params=(True,),
                param_offset=offset,
            ))

        rls_filter = build_rls_filter(rls, metadata, offset, table)
        fragments.append(rls_filter)
        return combine(fragments), rls_filter, applied

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_by_id(
        self,
        entity: str,
        id: Any,
        rls: RLSContext | None = None,
        role: str | None = None,
    ) -> dict[str, Any] | None:
        """Fetch one record by primary key.

        Returns None when the record does not exist or RLS excludes it.

        Raises:
            BadRequest: If the id is not a positive integer.
        """
        metadata = self.registry.get_metadata(entity)
        safe_id = to_safe_integer(id, "id")
        return self.find_by_field(entity, metadata.primary_key, safe_id, rls, role)

    def find_by_field(
        self,
        entity: str,
        field: str,
        value: Any,
        rls: RLSContext | None = None,
        role: str | None = None,
    ) -> dict[str, Any] | None:
        """Fetch the first record whose field equals a value.

        Raises:
            BadRequest: If the field is neither the primary key nor filterable.
        """
        metadata = self.registry.get_metadata(entity)
        if field != metadata.primary_key and field not in metadata.filterable_fields:
            raise BadRequest(
                f"Field '{field}' is not filterable for {metadata.key}",
                details={"filterable": list(metadata.filterable_fields)},
            )
        with self.engine.connect() as conn:
            return self._find_by_field(conn, metadata, field, value, rls, role)

    def _find_by_field(
        self,
        conn: Connection,
        metadata: EntityMetadata,
        field: str,
        value: Any,
        rls: RLSContext | None = None,
        role: str | None = None,
    ) -> dict[str, Any] | None:
        key_fragment = QueryFragment(
            clause=f"{qualify(field, metadata.table_name)} = {placeholder(1)}",
            params=(value,),
            param_offset=1,
        )
        rls_filter = build_rls_filter_for_find_by_id(rls, metadata, 1, metadata.table_name)
        condition = combine([key_fragment, rls_filter])

        sql = f"{self._select_sql(metadata)} {where(condition)} LIMIT 1"
        logger.debug("find_by_field %s: %s", metadata.key, sql)
        row = conn.execute(text(sql), bind_params(condition.params)).mappings().first()
        if row is None:
            return None
        return filter_output(dict(row), metadata, _role_for(rls, role))

    def find_all(
        self,
        entity: str,
        options: Mapping[str, Any] | None = None,
        rls: RLSContext | None = None,
        role: str | None = None,
    ) -> dict[str, Any]:
        """Search, filter, sort and paginate an entity's records.

        Options (all optional): ``page``, ``limit``, ``include_inactive``,
        ``search``, ``filters``, ``sort_by``, ``sort_order``.

        The COUNT and the page SELECT are separate statements, so a total
        can drift from the page under concurrent writes.
        """
        metadata = self.registry.get_metadata(entity)
        options = options or {}
        table = metadata.table_name

        page_params = self.pagination.validate_params(options)
        search = options.get("search")
        condition, rls_filter, applied_filters = self._compose_where(
            metadata,
            search,
            options.get("filters"),
            _flag(options.get("include_inactive")),
            rls,
        )

        sort_field, sort_order = resolve_sort(
            options.get("sort_by"), options.get("sort_order"),
            metadata.sortable_fields, metadata.default_sort,
        )
        order_by = build_sort(
            sort_field, sort_order, metadata.sortable_fields, metadata.default_sort, table
        )

        limit_pos = condition.param_offset + 1
        count_sql = f"SELECT COUNT(*) FROM {table} {where(condition)}"
        select_sql = (
            f"{self._select_sql(metadata)} {where(condition)} {order_by} "
            f"LIMIT {placeholder(limit_pos)} OFFSET {placeholder(limit_pos + 1)}"
        )
        params = bind_params(condition.params)
        logger.debug("find_all %s: %s", metadata.key, select_sql)

        with self.engine.connect() as conn:
            total = conn.execute(text(count_sql), params).scalar() or 0
            rows = conn.execute(
                text(select_sql),
                {
                    **params,
                    f"p{limit_pos}": page_params.limit,
                    f"p{limit_pos + 1}": page_params.offset,
                },
            ).mappings().all()

        data = filter_output_array(
            [dict(row) for row in rows], metadata, _role_for(rls, role)
        )
        sanitized_search = str(search).strip() if search is not None else ""
        return {
            "data": data,
            "pagination": self.pagination.generate_metadata(
                page_params.page, page_params.limit, total
            ),
            "appliedFilters": {
                "search": sanitized_search or None,
                "filters": applied_filters,
                "sortBy": sort_field,
                "sortOrder": sort_order,
            },
            "rlsApplied": rls_filter.applied,
        }

    def count(
        self,
        entity: str,
        filters: Mapping[str, Any] | None = None,
        rls: RLSContext | None = None,
        search: str | None = None,
        include_inactive: bool = False,
    ) -> int:
        """Count records matching the same conditions ``find_all`` applies."""
        metadata = self.registry.get_metadata(entity)
        condition, _, _ = self._compose_where(metadata, search, filters, include_inactive, rls)
        sql = f"SELECT COUNT(*) FROM {metadata.table_name} {where(condition)}"
        with self.engine.connect() as conn:
            return conn.execute(text(sql), bind_params(condition.params)).scalar() or 0

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(
        self,
        entity: str,
        data: Any,
        audit_context: AuditContext | None = None,
    ) -> dict[str, Any]:
        """Insert a record and return it.

        Raises:
            BadRequest: For missing required fields or no insertable fields.
            Conflict: If a unique value is already taken.
        """
        metadata = self.registry.get_metadata(entity)
        with self.engine.begin() as conn:
            return self._create(conn, metadata, data, audit_context)

    def update(
        self,
        entity: str,
        id: Any,
        data: Any,
        audit_context: AuditContext | None = None,
    ) -> dict[str, Any] | None:
        """Update a record and return it re-read with its joins.

        Returns None if no record has the id.

        Raises:
            BadRequest: If nothing updatable was supplied.
            Forbidden: If a protected field of a system record would change.
            NotFound: If the protection check needs a record that is missing.
        """
        metadata = self.registry.get_metadata(entity)
        safe_id = to_safe_integer(id, "id")
        with self.engine.begin() as conn:
            return self._update(conn, metadata, safe_id, data, audit_context)

    def delete(
        self,
        entity: str,
        id: Any,
        audit_context: AuditContext | None = None,
    ) -> dict[str, Any] | None:
        """Delete a record and its dependents; return the deleted record.

        Returns None if no record has the id.

        Raises:
            Forbidden: If the record is system-protected against deletion.
            NotFound: If the protection check needs a record that is missing.
        """
        metadata = self.registry.get_metadata(entity)
        safe_id = to_safe_integer(id, "id")
        try:
            with self.engine.begin() as conn:
                return self._delete(conn, metadata, safe_id, audit_context)
        except SQLAlchemyError:
            logger.error("Error deleting %s %s, transaction rolled back", metadata.key, safe_id)
            raise

    def batch(
        self,
        entity: str,
        operations: Any,
        continue_on_error: bool = False,
        audit_context: AuditContext | None = None,
    ) -> dict[str, Any]:
        """Run create/update/delete operations in order in one transaction.

        See :class:`workforge.services.batch.BatchExecutor`.
        """
        metadata = self.registry.get_metadata(entity)
        return BatchExecutor(self).run(metadata, operations, continue_on_error, audit_context)

    # ------------------------------------------------------------------
    # Mutation internals (run on the caller's connection / transaction)
    # ------------------------------------------------------------------

    def _create(
        self,
        conn: Connection,
        metadata: EntityMetadata,
        data: Any,
        audit_context: AuditContext | None,
    ) -> dict[str, Any]:
        if not isinstance(data, Mapping):
            raise BadRequest(f"Data is required and must be an object for {metadata.key}")

        clean = sanitize_data(dict(data), metadata)

        for name, definition in metadata.fields.items():
            if definition.default is not None and clean.get(name) is None:
                if name not in SYSTEM_MANAGED_ON_CREATE:
                    clean[name] = copy.deepcopy(definition.default)

        missing = [
            f for f in metadata.required_fields if clean.get(f) is None or clean.get(f) == ""
        ]
        if missing:
            raise BadRequest(
                f"Missing required fields for {metadata.key}: {', '.join(missing)}",
                details={"fields": missing},
            )

        if metadata.is_computed and not clean.get(metadata.identity_field):
            clean[metadata.identity_field] = IdentifierSequence(conn).next_identifier(
                metadata.identifier_prefix
            )
            logger.debug(
                "Generated %s %s", metadata.identity_field, clean[metadata.identity_field]
            )

        values: dict[str, Any] = {}
        for name, value in clean.items():
            if name in SYSTEM_MANAGED_ON_CREATE:
                if not (name == metadata.primary_key and metadata.shared_primary_key):
                    continue
                value = to_safe_integer(value, name)
            if name not in metadata.fields:
                logger.debug("Ignoring unknown field %s on %s create", name, metadata.key)
                continue
            values[name] = value

        if not values:
            raise BadRequest(f"No valid fields provided for {metadata.key}")

        columns = list(values)
        serialized = self._serialize(metadata, values)
        names = [placeholder(i + 1) for i in range(len(columns))]
        sql = (
            f"INSERT INTO {metadata.table_name} ({', '.join(columns)}) "
            f"VALUES ({', '.join(names)}) RETURNING *"
        )
        logger.debug("create %s: %s", metadata.key, sql)
        row = self._execute_write(
            conn, metadata, sql, bind_params([serialized[c] for c in columns])
        ).mappings().first()

        record = filter_output(dict(row), metadata)
        logger.info(
            "%s created: %s=%s", metadata.key, metadata.primary_key, record.get(metadata.primary_key)
        )

        if audit_context and is_audit_enabled(metadata):
            self.audit_service.log(
                build_audit_entry(
                    metadata, "create", record.get(metadata.primary_key),
                    None, record, audit_context,
                ),
                conn=conn,
            )
        return record

    def _update(
        self,
        conn: Connection,
        metadata: EntityMetadata,
        record_id: int,
        data: Any,
        audit_context: AuditContext | None,
    ) -> dict[str, Any] | None:
        if not isinstance(data, Mapping):
            raise BadRequest(f"Data is required and must be an object for {metadata.key}")

        clean = sanitize_data(dict(data), metadata)
        known = {k: v for k, v in clean.items() if k in metadata.fields}

        protection = metadata.system_protected
        if protection:
            attempted = [f for f in protection.immutable_fields if f in known]
            if attempted:
                existing = self._fetch_raw(conn, metadata, record_id)
                if existing is None:
                    raise NotFound(f"{metadata.key} not found: {record_id}")
                protected_value = existing.get(metadata.protection_field)
                if protected_value in protection.protected_values:
                    raise Forbidden(
                        f"Cannot modify {', '.join(attempted)} on system "
                        f"{metadata.key}: {protected_value}"
                    )

        excluded = {
            *UNIVERSAL_IMMUTABLES,
            *metadata.immutable_fields,
            metadata.primary_key,
            "updated_at",
        }
        updates = {k: v for k, v in known.items() if k not in excluded}
        if not updates:
            raise BadRequest(f"No valid updateable fields provided for {metadata.key}")

        auditing = audit_context is not None and is_audit_enabled(metadata)
        old_values = None
        if auditing:
            old_values = self._find_by_field(conn, metadata, metadata.primary_key, record_id)

        columns = list(updates)
        serialized = self._serialize(metadata, updates)
        assignments = [f"{c} = {placeholder(i + 1)}" for i, c in enumerate(columns)]
        assignments.append("updated_at = CURRENT_TIMESTAMP")
        id_pos = len(columns) + 1
        sql = (
            f"UPDATE {metadata.table_name} SET {', '.join(assignments)} "
            f"WHERE {metadata.primary_key} = {placeholder(id_pos)} "
            f"RETURNING {metadata.primary_key}"
        )
        logger.debug("update %s: %s", metadata.key, sql)
        row = self._execute_write(
            conn, metadata, sql, bind_params([*(serialized[c] for c in columns), record_id])
        ).first()
        if row is None:
            return None

        logger.info("%s updated: %s=%s (%d fields)",
                    metadata.key, metadata.primary_key, record_id, len(columns))
        updated = self._find_by_field(conn, metadata, metadata.primary_key, record_id)

        if auditing:
            self.audit_service.log(
                build_audit_entry(metadata, "update", record_id, old_values, updated, audit_context),
                conn=conn,
            )
        return updated

    def _delete(
        self,
        conn: Connection,
        metadata: EntityMetadata,
        record_id: int,
        audit_context: AuditContext | None,
    ) -> dict[str, Any] | None:
        protection = metadata.system_protected
        existing = self._fetch_raw(conn, metadata, record_id)

        if protection and protection.prevent_delete:
            if existing is None:
                raise NotFound(f"{metadata.key} not found: {record_id}")
            protected_value = existing.get(metadata.protection_field)
            if protected_value in protection.protected_values:
                raise Forbidden(f"Cannot delete system {metadata.key}: {protected_value}")

        if existing is None:
            return None

        cascade = cascade_delete_dependents(conn, metadata, record_id)
        row = conn.execute(
            text(
                f"DELETE FROM {metadata.table_name} "
                f"WHERE {metadata.primary_key} = {placeholder(1)} RETURNING *"
            ),
            bind_params([record_id]),
        ).mappings().first()
        if row is None:
            return None

        logger.info("%s deleted: %s=%s (cascaded %d)",
                    metadata.key, metadata.primary_key, record_id, cascade.total_deleted)
        deleted = filter_output(dict(row), metadata)

        if audit_context and is_audit_enabled(metadata):
            self.audit_service.log(
                build_audit_entry(
                    metadata, "delete", record_id,
                    filter_output(existing, metadata), None, audit_context,
                ),
                conn=conn,
            )
        return deleted

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _fetch_raw(
        self,
        conn: Connection,
        metadata: EntityMetadata,
        record_id: int,
    ) -> dict[str, Any] | None:
        """The stored row, without joins, RLS or output filtering."""
        row = conn.execute(
            text(
                f"SELECT * FROM {metadata.table_name} "
                f"WHERE {metadata.primary_key} = {placeholder(1)}"
            ),
            bind_params([record_id]),
        ).mappings().first()
        return dict(row) if row is not None else None

    def _execute_write(
        self,
        conn: Connection,
        metadata: EntityMetadata,
        sql: str,
        params: dict[str, Any],
    ):
        try:
            return conn.execute(text(sql), params)
        except IntegrityError as exc:
            translate_db_error(exc, metadata)

    @staticmethod
    def _serialize(metadata: EntityMetadata, values: Mapping[str, Any]) -> dict[str, Any]:
        """Encode structured values as JSON text for storage."""
        serialized = {}
        for name, value in values.items():
            definition = metadata.fields.get(name)
            if definition is not None and definition.structured and value is not None:
                if not isinstance(value, str):
                    value = json.dumps(value)
            serialized[name] = value
        return serialized
