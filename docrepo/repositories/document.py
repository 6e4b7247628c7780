"""
Generic document repository.

Provides a typed CRUD and query façade for one entity type over one
partitioned document container. The repository:

- stamps audit fields (created/updated/deleted actor and timestamp)
- hides soft-deleted documents from every read
- gates updates on the entity's version token (optimistic concurrency)
- groups bulk writes into single-partition atomic batches

No retries happen here; conflicts and store failures are surfaced to the
caller as typed errors (or typed results, for the try_* variants).
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Awaitable, Callable, Generic, List, Optional, Sequence, Type, TypeVar
from uuid import UUID

from docrepo.core.config import settings
from docrepo.core.exceptions import (
    BatchError,
    ConcurrencyConflictError,
    NotFoundError,
    PartitionKeyMismatchError,
    PreconditionFailedError,
)
from docrepo.core.logging_config import log_with_context
from docrepo.models.entity import Entity
from docrepo.repositories.filters import Comparison, Condition, not_deleted
from docrepo.repositories.results import OperationStatus, WriteResult
from docrepo.services.interfaces.audit import IActorResolver, IClock
from docrepo.services.interfaces.container import (
    BatchOperation,
    BatchOperationKind,
    IDocumentContainer,
)

logger = logging.getLogger(__name__)

TEntity = TypeVar("TEntity", bound=Entity)
R = TypeVar("R")

PartitionKeyStrategy = Callable[[TEntity], str]

# Fields owned by the repository; copied onto the caller's entity once a write succeeds
REPOSITORY_FIELDS = (
    "created_at",
    "updated_at",
    "created_by",
    "updated_by",
    "deleted_at",
    "deleted_by",
    "is_deleted",
    "etag",
)


def partition_key_from_id(entity: Entity) -> str:
    """Default strategy: every entity lives alone in a partition named after its id."""
    return str(entity.id)


class DocumentRepository(Generic[TEntity]):
    """
    Repository for one entity type stored in one document container.

    Attributes:
        container: Shared container handle (never closed by the repository)
        entity_type: Entity subclass documents are mapped onto

    Example:
        >>> repo = DocumentRepository(
        ...     container, Note, SystemClock(), ContextActorResolver(),
        ...     partition_key=lambda note: note.notebook_id,
        ... )
        >>> note = await repo.create(Note(id=uuid4(), notebook_id="nb-1", title="x"))
        >>> note.title = "y"
        >>> await repo.update(note)
    """

    def __init__(
        self,
        container: IDocumentContainer,
        entity_type: Type[TEntity],
        clock: IClock,
        actor_resolver: IActorResolver,
        partition_key: Optional[PartitionKeyStrategy] = None,
        max_batch_operations: Optional[int] = None,
        max_batch_payload_bytes: Optional[int] = None,
    ):
        """
        Initialize repository.

        Args:
            container: Document container to read and write
            entity_type: Entity subclass managed by this repository
            clock: Time source for audit stamps
            actor_resolver: Principal source for audit stamps
            partition_key: Partition key strategy (defaults to the entity id)
            max_batch_operations: Largest batch accepted by create_many/update_many
            max_batch_payload_bytes: Largest serialized batch accepted
        """
        self.container = container
        self.entity_type = entity_type
        self._clock = clock
        self._actor_resolver = actor_resolver
        self._partition_key = partition_key or partition_key_from_id

        if max_batch_operations is None:
            max_batch_operations = settings.max_batch_operations
        if max_batch_payload_bytes is None:
            max_batch_payload_bytes = settings.max_batch_payload_bytes
        if max_batch_operations < 1:
            raise ValueError("max_batch_operations must be at least 1")
        if max_batch_payload_bytes < 1:
            raise ValueError("max_batch_payload_bytes must be at least 1")
        self._max_batch_operations = max_batch_operations
        self._max_batch_payload_bytes = max_batch_payload_bytes

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def partition_key_for(self, entity: TEntity) -> str:
        """Partition key the entity is stored under."""
        return str(self._partition_key(entity))

    def _now(self) -> datetime:
        now = self._clock.now()
        if now.tzinfo is None:
            return now.replace(tzinfo=timezone.utc)
        return now.astimezone(timezone.utc)

    def _stamp_created(self, entity: TEntity, now: datetime, actor: Optional[UUID]) -> None:
        entity.created_at = now
        entity.updated_at = now
        entity.created_by = actor
        entity.updated_by = actor
        entity.is_deleted = False
        entity.deleted_at = None
        entity.deleted_by = None

    def _stamp_updated(self, entity: TEntity, now: datetime, actor: Optional[UUID]) -> None:
        entity.updated_at = now
        entity.updated_by = actor

    @staticmethod
    def _commit(entity: TEntity, written: TEntity) -> TEntity:
        """Copy the stamped fields and new etag of a successful write onto entity."""
        for name in REPOSITORY_FIELDS:
            setattr(entity, name, getattr(written, name))
        return entity

    def _require_version(self, operation: str, entity: TEntity) -> None:
        if entity.etag:
            return
        self._log(
            "warning", "Write rejected: entity carries no version token", operation,
            partition_key=self.partition_key_for(entity), entity_id=entity.id,
        )
        raise ConcurrencyConflictError(
            entity.id,
            message=(
                f"Entity {entity.id} has no version token; "
                "read it through the repository before updating"
            ),
        )

    def _to_entity(self, document: dict, etag: Optional[str]) -> TEntity:
        return self.entity_type.from_document(document, etag)

    def _storage_path(self, path: str) -> str:
        return self.entity_type.storage_path(path)

    def _visible(self, predicate: Optional[Condition]) -> Condition:
        condition = not_deleted()
        if predicate is not None:
            condition = condition & predicate.map_paths(self._storage_path)
        return condition

    def _log(self, level: str, message: str, operation: str, **context) -> None:
        log_with_context(
            logger,
            level,
            message,
            container=self.container.name,
            operation=operation,
            **context,
        )

    async def _call(self, operation: str, entity_id, awaitable: Awaitable[R]) -> R:
        """Await a store call, flagging cancellations as unknown outcomes."""
        try:
            return await awaitable
        except asyncio.CancelledError:
            self._log(
                "warning",
                f"{operation} cancelled; the store may or may not have applied it",
                operation,
                entity_id=entity_id,
            )
            raise

    # ------------------------------------------------------------------
    # ADD
    # ------------------------------------------------------------------

    async def create(self, entity: TEntity) -> TEntity:
        """
        Insert a new document.

        Args:
            entity: Entity with a caller-assigned id

        Returns:
            The same entity, stamped and carrying the new etag

        Raises:
            ConflictError: If the id already exists in the partition
            StoreError: On any other store failure
        """
        pending = entity.model_copy()
        self._stamp_created(pending, self._now(), self._actor_resolver.current_actor())
        partition_key = self.partition_key_for(pending)

        response = await self._call(
            "create",
            entity.id,
            self.container.create_item(pending.to_document(), partition_key),
        )
        pending.etag = response.etag
        self._commit(entity, pending)

        self._log(
            "debug", "Created document", "create",
            partition_key=partition_key, entity_id=entity.id, etag=response.etag,
        )
        return entity

    async def create_many(self, entities: Sequence[TEntity]) -> None:
        """
        Insert entities sharing one partition key as one atomic batch.

        An empty sequence returns immediately without contacting the store.

        Raises:
            PartitionKeyMismatchError: If the entities span partitions
            BatchError: If the batch is too large or any member fails
        """
        if not entities:
            return

        now = self._now()
        actor = self._actor_resolver.current_actor()
        partition_key = self._resolve_batch_partition(entities)

        pending = [entity.model_copy() for entity in entities]
        for stamped in pending:
            self._stamp_created(stamped, now, actor)

        operations = [
            BatchOperation(
                kind=BatchOperationKind.CREATE,
                item_id=str(stamped.id),
                document=stamped.to_document(),
            )
            for stamped in pending
        ]
        await self._submit_batch("create_many", partition_key, pending, operations)

        for entity, stamped in zip(entities, pending):
            self._commit(entity, stamped)

    # ------------------------------------------------------------------
    # QUERY
    # ------------------------------------------------------------------

    async def get(self, entity_id: UUID) -> Optional[TEntity]:
        """
        Retrieve a non-deleted entity by id.

        Returns:
            The entity, or None if it does not exist or is soft-deleted
        """
        condition = not_deleted() & Comparison("id", "eq", str(entity_id))
        pages = self.container.query_items(condition, max_item_count=1)
        async for page in pages:
            if page.items:
                item = page.items[0]
                return self._to_entity(item.document, item.etag)
        return None

    async def get_all(
        self,
        predicate: Optional[Condition] = None,
        page_size: Optional[int] = None,
    ) -> List[TEntity]:
        """
        Retrieve every non-deleted entity, optionally filtered.

        Args:
            predicate: Extra filter built with docrepo.repositories.filters.field
            page_size: Documents fetched per round trip

        Returns:
            All matching entities; each call re-runs the query
        """
        results: List[TEntity] = []
        async for page in self.container.query_items(
            self._visible(predicate),
            max_item_count=page_size or settings.default_page_size,
        ):
            results.extend(self._to_entity(item.document, item.etag) for item in page.items)

        self._log("debug", "Query completed", "get_all", item_count=len(results))
        return results

    async def count(self, predicate: Optional[Condition] = None) -> int:
        """Number of non-deleted entities matching predicate."""
        total = 0
        async for page in self.container.query_items(self._visible(predicate)):
            total += len(page.items)
        return total

    # ------------------------------------------------------------------
    # UPDATE
    # ------------------------------------------------------------------

    async def update(self, entity: TEntity) -> TEntity:
        """
        Replace the stored document if it still carries entity.etag.

        Returns:
            The same entity with refreshed audit fields and etag

        Raises:
            ConcurrencyConflictError: If the etag is missing or stale
            NotFoundError: If the document no longer exists
            StoreError: On any other store failure
        """
        self._require_version("update", entity)

        pending = entity.model_copy()
        self._stamp_updated(pending, self._now(), self._actor_resolver.current_actor())
        return await self._replace("update", entity, pending)

    async def try_update(self, entity: TEntity) -> WriteResult[TEntity]:
        """
        update() returning conflicts and missing documents as typed results.

        Store failures other than those two still raise.
        """
        try:
            await self.update(entity)
        except ConcurrencyConflictError:
            return WriteResult(OperationStatus.CONFLICT, entity)
        except NotFoundError:
            return WriteResult(OperationStatus.NOT_FOUND, entity)
        return WriteResult(OperationStatus.SUCCESS, entity, entity.etag)

    async def update_many(self, entities: Sequence[TEntity]) -> None:
        """
        Conditionally replace entities sharing one partition key as one atomic batch.

        Every member must carry the etag it was last read with.

        Raises:
            PartitionKeyMismatchError: If the entities span partitions
            ConcurrencyConflictError: If a member carries no version token
            BatchError: If the batch is too large or any member fails
                (a stale etag reports status 412)
        """
        if not entities:
            return

        now = self._now()
        actor = self._actor_resolver.current_actor()
        partition_key = self._resolve_batch_partition(entities)

        for entity in entities:
            self._require_version("update_many", entity)

        pending = [entity.model_copy() for entity in entities]
        for stamped in pending:
            self._stamp_updated(stamped, now, actor)

        operations = [
            BatchOperation(
                kind=BatchOperationKind.REPLACE,
                item_id=str(stamped.id),
                document=stamped.to_document(),
                if_match=stamped.etag,
            )
            for stamped in pending
        ]
        await self._submit_batch("update_many", partition_key, pending, operations)

        for entity, stamped in zip(entities, pending):
            self._commit(entity, stamped)

    async def soft_delete(self, entity: TEntity) -> TEntity:
        """
        Hide the entity from reads while keeping the document.

        Same concurrency contract as update().
        """
        self._require_version("soft_delete", entity)

        now = self._now()
        actor = self._actor_resolver.current_actor()
        pending = entity.model_copy()
        self._stamp_updated(pending, now, actor)
        pending.is_deleted = True
        pending.deleted_at = now
        pending.deleted_by = actor
        return await self._replace("soft_delete", entity, pending)

    async def _replace(self, operation: str, entity: TEntity, pending: TEntity) -> TEntity:
        """Conditionally write pending; entity only changes once the store accepts it."""
        partition_key = self.partition_key_for(entity)

        try:
            response = await self._call(
                operation,
                entity.id,
                self.container.replace_item(
                    str(entity.id),
                    pending.to_document(),
                    partition_key,
                    if_match=entity.etag,
                ),
            )
        except PreconditionFailedError as e:
            self._log(
                "warning", "Concurrency conflict", operation,
                partition_key=partition_key, entity_id=entity.id,
                etag=entity.etag, status_code=e.status_code,
            )
            raise ConcurrencyConflictError(entity.id, entity.etag) from e

        pending.etag = response.etag
        self._commit(entity, pending)
        self._log(
            "debug", "Replaced document", operation,
            partition_key=partition_key, entity_id=entity.id, etag=response.etag,
        )
        return entity

    # ------------------------------------------------------------------
    # DELETE
    # ------------------------------------------------------------------

    async def delete(self, entity: TEntity, check_version: bool = False) -> bool:
        """
        Physically remove the document.

        Args:
            entity: Entity to remove (id and partition key are used)
            check_version: Only delete if the stored etag matches entity.etag

        Returns:
            True once the document is gone

        Raises:
            NotFoundError: If the document does not exist
            ConcurrencyConflictError: If check_version is set and the etag is stale
        """
        partition_key = self.partition_key_for(entity)
        if_match = entity.etag if check_version else None

        try:
            await self._call(
                "delete",
                entity.id,
                self.container.delete_item(str(entity.id), partition_key, if_match=if_match),
            )
        except PreconditionFailedError as e:
            self._log(
                "warning", "Concurrency conflict", "delete",
                partition_key=partition_key, entity_id=entity.id,
                etag=entity.etag, status_code=e.status_code,
            )
            raise ConcurrencyConflictError(entity.id, entity.etag) from e

        self._log(
            "debug", "Deleted document", "delete",
            partition_key=partition_key, entity_id=entity.id,
        )
        return True

    async def try_delete(self, entity: TEntity, check_version: bool = False) -> WriteResult[TEntity]:
        """delete() returning conflicts and missing documents as typed results."""
        try:
            await self.delete(entity, check_version=check_version)
        except ConcurrencyConflictError:
            return WriteResult(OperationStatus.CONFLICT, entity)
        except NotFoundError:
            return WriteResult(OperationStatus.NOT_FOUND, entity)
        return WriteResult(OperationStatus.SUCCESS, entity)

    # ------------------------------------------------------------------
    # Batch coordination
    # ------------------------------------------------------------------

    def _resolve_batch_partition(self, entities: Sequence[TEntity]) -> str:
        """Partition key of the first entity, checked against every other member."""
        partition_key = self.partition_key_for(entities[0])
        for entity in entities[1:]:
            other = self.partition_key_for(entity)
            if other != partition_key:
                raise PartitionKeyMismatchError(partition_key, other, entity.id)
        return partition_key

    def _check_batch_limits(self, operation: str, operations: List[BatchOperation]) -> None:
        if len(operations) > self._max_batch_operations:
            raise BatchError(
                f"{operation} refused: {len(operations)} operations exceed the limit "
                f"of {self._max_batch_operations}; split the input into smaller batches",
                HTTPStatus.REQUEST_ENTITY_TOO_LARGE,
            )

        payload = sum(
            len(json.dumps(op.document, separators=(",", ":")).encode("utf-8"))
            for op in operations
            if op.document is not None
        )
        if payload > self._max_batch_payload_bytes:
            raise BatchError(
                f"{operation} refused: payload of {payload} bytes exceeds the limit "
                f"of {self._max_batch_payload_bytes}; split the input into smaller batches",
                HTTPStatus.REQUEST_ENTITY_TOO_LARGE,
            )

    async def _submit_batch(
        self,
        operation: str,
        partition_key: str,
        entities: Sequence[TEntity],
        operations: List[BatchOperation],
    ) -> None:
        self._check_batch_limits(operation, operations)

        response = await self._call(
            operation,
            None,
            self.container.execute_batch(partition_key, operations),
        )

        if not response.is_success:
            self._log(
                "warning", "Batch rejected", operation,
                partition_key=partition_key,
                status_code=int(response.status_code),
                item_count=len(operations),
            )
            label = "Batch insert failed" if operation == "create_many" else "Batch update failed"
            raise BatchError(label, response.status_code, response.results)

        for entity, result in zip(entities, response.results):
            if result.etag is not None:
                entity.etag = result.etag

        self._log(
            "debug", "Batch committed", operation,
            partition_key=partition_key, item_count=len(operations),
        )
