"""
docrepo: generic repository over a partitioned document store.

Provides audit stamping, soft-delete filtering, optimistic concurrency via
version tokens and single-partition atomic batch writes.
"""

from docrepo.core.exceptions import (
    BatchError,
    ConcurrencyConflictError,
    ConflictError,
    NotFoundError,
    PartitionKeyMismatchError,
    PreconditionFailedError,
    RepositoryError,
    StoreError,
)
from docrepo.models.entity import AuditedEntity, Entity
from docrepo.repositories.document import DocumentRepository, partition_key_from_id
from docrepo.repositories.filters import Condition, field
from docrepo.repositories.results import OperationStatus, WriteResult

__version__ = "0.1.0"

__all__ = [
    "AuditedEntity",
    "BatchError",
    "ConcurrencyConflictError",
    "Condition",
    "ConflictError",
    "DocumentRepository",
    "Entity",
    "NotFoundError",
    "OperationStatus",
    "PartitionKeyMismatchError",
    "PreconditionFailedError",
    "RepositoryError",
    "StoreError",
    "WriteResult",
    "field",
    "partition_key_from_id",
]
