"""
Exception taxonomy for the document repository layer.

Store-level failures (raised by container implementations) derive from
StoreError and carry the store status code. Repository-level outcomes
(concurrency conflicts, rejected batches, misrouted bulk input) have their
own types so callers can tell them apart without inspecting status codes.
"""

from http import HTTPStatus
from typing import Any, List, Optional, Sequence


class RepositoryError(Exception):
    """Base class for every error raised by docrepo."""


class StoreError(RepositoryError):
    """
    Catch-all failure reported by the document store.

    Attributes:
        status_code: Store status code (HTTP semantics)
        message: Human readable description
    """

    default_status = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = int(status_code if status_code is not None else self.default_status)
        self.message = message
        super().__init__(f"[{self.status_code}] {message}")


class NotFoundError(StoreError):
    """The addressed document does not exist in the partition."""

    default_status = HTTPStatus.NOT_FOUND


class ConflictError(StoreError):
    """A document with the same id already exists in the partition."""

    default_status = HTTPStatus.CONFLICT


class PreconditionFailedError(StoreError):
    """The If-Match version token did not match the stored document."""

    default_status = HTTPStatus.PRECONDITION_FAILED


class ConcurrencyConflictError(RepositoryError):
    """
    The entity was modified by another writer since it was read.

    Never retried by the repository: the caller must re-read the entity,
    re-apply its change and try again.
    """

    def __init__(self, entity_id: Any, etag: Optional[str] = None, message: Optional[str] = None):
        self.entity_id = entity_id
        self.etag = etag
        super().__init__(
            message
            or f"Concurrency conflict: entity {entity_id} was modified by another process."
        )


class BatchError(RepositoryError):
    """
    An atomic batch was rejected as a whole.

    None of the batch's operations were applied.

    Attributes:
        status_code: Aggregate status reported for the batch
        operation_results: Per-operation results, in submission order (may be empty
            when the batch was refused before reaching the store)
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        operation_results: Optional[Sequence[Any]] = None,
    ):
        self.status_code = int(status_code)
        self.operation_results: List[Any] = list(operation_results or [])
        super().__init__(f"{message}: {self.status_code}")

    @property
    def failed_operation_index(self) -> Optional[int]:
        """Index of the operation that caused the rollback, if the store reported one."""
        for index, result in enumerate(self.operation_results):
            status = getattr(result, "status_code", None)
            if status is not None and status >= 400 and status != HTTPStatus.FAILED_DEPENDENCY:
                return index
        return None


class PartitionKeyMismatchError(RepositoryError, ValueError):
    """Bulk input resolved to more than one partition key."""

    def __init__(self, expected: str, actual: str, entity_id: Any):
        self.expected = expected
        self.actual = actual
        self.entity_id = entity_id
        super().__init__(
            f"Entity {entity_id} resolves to partition key '{actual}' but the batch "
            f"is scoped to '{expected}'; atomic batches cannot span partitions"
        )
