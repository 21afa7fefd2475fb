"""Entity services - generic CRUD, batches and their supporting helpers."""

from workforge.services.batch import BatchExecutor, BatchOperation
from workforge.services.entity_service import EntityService
from workforge.services.pagination import PaginationService

__all__ = ["BatchExecutor", "BatchOperation", "EntityService", "PaginationService"]
