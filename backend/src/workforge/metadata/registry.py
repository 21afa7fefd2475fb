"""Process-lifetime registry of resolved entity metadata."""

from __future__ import annotations

import logging
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterator, Mapping

from workforge.errors import BadRequest, UnknownEntity
from workforge.metadata.loader import EntityMetadata, MetadataLoader

logger = logging.getLogger(__name__)


class MetadataRegistry:
    """Read-only lookup of entity metadata by key or table name.

    The registry is the only way a caller-supplied entity key reaches storage:
    unknown keys are rejected here, before any SQL is built.
    """

    def __init__(self, entities: Mapping[str, EntityMetadata]):
        self._entities = MappingProxyType(dict(entities))
        self._by_table = MappingProxyType(
            {entity.table_name: entity for entity in self._entities.values()}
        )

    @classmethod
    def load(cls, metadata_path: Path | None = None) -> MetadataRegistry:
        """Load and validate YAML metadata into a new registry."""
        loader = MetadataLoader(metadata_path)
        return cls(loader.load_all())

    def get_metadata(self, entity_key: Any) -> EntityMetadata:
        """Return metadata for an entity key.

        Raises:
            BadRequest: If the key is not a non-blank string.
            UnknownEntity: If no entity is registered under the key.
        """
        if not isinstance(entity_key, str) or not entity_key.strip():
            raise BadRequest("Entity name is required")
        key = entity_key.strip()
        entity = self._entities.get(key)
        if entity is None:
            logger.warning("Unknown entity requested: %s", key)
            raise UnknownEntity(
                f"Unknown entity: {key}",
                details={"available": self.list_entities()},
            )
        return entity

    def list_entities(self) -> list[str]:
        return sorted(self._entities)

    def by_table(self, table_name: str) -> EntityMetadata | None:
        """Look up an entity by its table name."""
        return self._by_table.get(table_name)

    def resource_type_for(self, entity_key: str) -> str:
        """Audit resource type for an entity key (its table name)."""
        return self.get_metadata(entity_key).resource_type

    def __contains__(self, entity_key: object) -> bool:
        return isinstance(entity_key, str) and entity_key.strip() in self._entities

    def __iter__(self) -> Iterator[EntityMetadata]:
        return iter(self._entities.values())

    def __len__(self) -> int:
        return len(self._entities)
