"""
SQL-backed document container.

Implements IDocumentContainer on top of the SQLAlchemy async session
factory: documents are JSON bodies in the shared `documents` table,
addressed by (container, partition_key, id). Each single-item call runs in
its own transaction; a batch runs in one transaction that is rolled back as
soon as one of its operations fails.

Predicates are compiled to SQLAlchemy JSON path comparisons, which render
as JSON_EXTRACT on SQLite and ->> / #>> on PostgreSQL.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from http import HTTPStatus
from typing import Any, AsyncIterator, Dict, List, Optional

from sqlalchemy import and_, delete, insert, not_, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docrepo.core.config import settings
from docrepo.core.exceptions import (
    ConflictError,
    NotFoundError,
    PreconditionFailedError,
    StoreError,
)
from docrepo.models.base import utc_now_iso
from docrepo.models.document import DocumentRecord
from docrepo.repositories.filters import All, AnyOf, Comparison, Condition, Not
from docrepo.services.interfaces.container import (
    BatchOperation,
    BatchOperationKind,
    BatchOperationResult,
    BatchResponse,
    FeedPage,
    IDocumentContainer,
    ItemResponse,
    StoredDocument,
)

logger = logging.getLogger(__name__)


def new_etag() -> str:
    """Opaque version token, quoted like an HTTP entity tag."""
    return f'"{uuid.uuid4()}"'


class _BatchAborted(Exception):
    """Internal signal used to roll back a batch transaction."""

    def __init__(self, index: int, status_code: int):
        self.index = index
        self.status_code = status_code
        super().__init__(f"batch operation {index} failed with {status_code}")


class SqlDocumentContainer(IDocumentContainer):
    """
    Partitioned document container stored in a SQL database.

    The session factory is shared with the rest of the application and is
    never closed here.

    Attributes:
        name: Logical container name (rows are scoped by it)
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        name: Optional[str] = None,
        max_batch_operations: Optional[int] = None,
    ):
        """
        Initialize container over a session factory.

        Args:
            session_maker: Async session factory (see docrepo.core.database)
            name: Container name (defaults to settings.container_name)
            max_batch_operations: Store-side batch size limit
                (defaults to settings.max_batch_operations)
        """
        self._session_maker = session_maker
        self._name = name or settings.container_name
        if max_batch_operations is None:
            max_batch_operations = settings.max_batch_operations
        if max_batch_operations < 1:
            raise ValueError("max_batch_operations must be at least 1")
        self._max_batch_operations = max_batch_operations

    @property
    def name(self) -> str:
        return self._name

    @asynccontextmanager
    async def _transaction(self, description: str) -> AsyncIterator[AsyncSession]:
        async with self._session_maker() as session:
            try:
                async with session.begin():
                    yield session
            except StoreError:
                raise
            except SQLAlchemyError as e:
                logger.error(
                    f"Store failure during {description}: {e}",
                    extra={"container": self._name, "operation": description},
                )
                raise StoreError(f"{description} failed: {e}") from e

    def _address(self, item_id: str, partition_key: str):
        return and_(
            DocumentRecord.container == self._name,
            DocumentRecord.partition_key == partition_key,
            DocumentRecord.id == item_id,
        )

    async def _exists(self, session: AsyncSession, item_id: str, partition_key: str) -> bool:
        stmt = select(DocumentRecord.id).where(self._address(item_id, partition_key))
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    def _document_id(document: Dict[str, Any]) -> str:
        item_id = document.get("id")
        if item_id is None or str(item_id) == "":
            raise StoreError("Document must contain a non-empty 'id'", HTTPStatus.BAD_REQUEST)
        return str(item_id)

    # ------------------------------------------------------------------
    # Operations shared by single-item calls and batches
    # ------------------------------------------------------------------

    async def _insert(
        self,
        session: AsyncSession,
        document: Dict[str, Any],
        partition_key: str,
    ) -> str:
        item_id = self._document_id(document)
        etag = new_etag()
        stmt = insert(DocumentRecord).values(
            container=self._name,
            partition_key=partition_key,
            id=item_id,
            body=document,
            etag=etag,
            ts=utc_now_iso(),
        )
        try:
            await session.execute(stmt)
        except IntegrityError as e:
            raise ConflictError(
                f"Document '{item_id}' already exists in partition '{partition_key}'"
            ) from e
        return etag

    async def _replace(
        self,
        session: AsyncSession,
        item_id: str,
        document: Dict[str, Any],
        partition_key: str,
        if_match: Optional[str],
    ) -> str:
        if self._document_id(document) != item_id:
            raise StoreError(
                f"Document id '{document.get('id')}' does not match '{item_id}'",
                HTTPStatus.BAD_REQUEST,
            )

        etag = new_etag()
        stmt = (
            update(DocumentRecord)
            .where(self._address(item_id, partition_key))
            .values(body=document, etag=etag, ts=utc_now_iso())
            .execution_options(synchronize_session=False)
        )
        if if_match is not None:
            stmt = stmt.where(DocumentRecord.etag == if_match)

        result = await session.execute(stmt)
        if result.rowcount == 0:
            await self._raise_missing_or_stale(session, item_id, partition_key)
        return etag

    async def _remove(
        self,
        session: AsyncSession,
        item_id: str,
        partition_key: str,
        if_match: Optional[str],
    ) -> None:
        stmt = (
            delete(DocumentRecord)
            .where(self._address(item_id, partition_key))
            .execution_options(synchronize_session=False)
        )
        if if_match is not None:
            stmt = stmt.where(DocumentRecord.etag == if_match)

        result = await session.execute(stmt)
        if result.rowcount == 0:
            await self._raise_missing_or_stale(session, item_id, partition_key)

    async def _raise_missing_or_stale(
        self,
        session: AsyncSession,
        item_id: str,
        partition_key: str,
    ) -> None:
        if await self._exists(session, item_id, partition_key):
            raise PreconditionFailedError(
                f"Document '{item_id}' has a different version token"
            )
        raise NotFoundError(
            f"Document '{item_id}' not found in partition '{partition_key}'"
        )

    # ------------------------------------------------------------------
    # IDocumentContainer
    # ------------------------------------------------------------------

    async def create_item(
        self,
        document: Dict[str, Any],
        partition_key: str
    ) -> ItemResponse:
        async with self._transaction("create_item") as session:
            etag = await self._insert(session, document, partition_key)
        return ItemResponse(document=document, etag=etag, status_code=HTTPStatus.CREATED)

    async def read_item(
        self,
        item_id: str,
        partition_key: str
    ) -> ItemResponse:
        async with self._transaction("read_item") as session:
            stmt = select(DocumentRecord).where(self._address(item_id, partition_key))
            record = (await session.execute(stmt)).scalar_one_or_none()
            if record is None:
                raise NotFoundError(
                    f"Document '{item_id}' not found in partition '{partition_key}'"
                )
            response = ItemResponse(document=dict(record.body), etag=record.etag)
        return response

    async def replace_item(
        self,
        item_id: str,
        document: Dict[str, Any],
        partition_key: str,
        if_match: Optional[str] = None
    ) -> ItemResponse:
        async with self._transaction("replace_item") as session:
            etag = await self._replace(session, item_id, document, partition_key, if_match)
        return ItemResponse(document=document, etag=etag)

    async def delete_item(
        self,
        item_id: str,
        partition_key: str,
        if_match: Optional[str] = None
    ) -> None:
        async with self._transaction("delete_item") as session:
            await self._remove(session, item_id, partition_key, if_match)

    async def query_items(
        self,
        condition: Optional[Condition] = None,
        max_item_count: Optional[int] = None,
        partition_key: Optional[str] = None
    ) -> AsyncIterator[FeedPage]:
        page_size = max_item_count or settings.default_page_size
        if page_size < 1:
            raise ValueError("max_item_count must be at least 1")

        base = select(DocumentRecord).where(DocumentRecord.container == self._name)
        if partition_key is not None:
            base = base.where(DocumentRecord.partition_key == partition_key)
        if condition is not None:
            base = base.where(compile_condition(condition))
        base = base.order_by(DocumentRecord.partition_key, DocumentRecord.id)

        offset = 0
        while True:
            # Fetch one extra row to learn whether another page exists
            async with self._transaction("query_items") as session:
                stmt = base.offset(offset).limit(page_size + 1)
                records = (await session.execute(stmt)).scalars().all()
                items = [
                    StoredDocument(
                        document=dict(record.body),
                        etag=record.etag,
                        partition_key=record.partition_key,
                    )
                    for record in records[:page_size]
                ]

            offset += len(items)
            continuation = str(offset) if len(records) > page_size else None
            yield FeedPage(items=items, continuation=continuation)

            if continuation is None:
                return

    async def execute_batch(
        self,
        partition_key: str,
        operations: List[BatchOperation]
    ) -> BatchResponse:
        if not operations:
            return BatchResponse(status_code=HTTPStatus.OK, results=[])

        if len(operations) > self._max_batch_operations:
            logger.warning(
                f"Rejected batch of {len(operations)} operations "
                f"(limit {self._max_batch_operations})",
                extra={"container": self._name, "partition_key": partition_key},
            )
            return BatchResponse(
                status_code=HTTPStatus.BAD_REQUEST,
                results=[BatchOperationResult(HTTPStatus.BAD_REQUEST) for _ in operations],
            )

        results: List[BatchOperationResult] = []
        try:
            async with self._transaction("execute_batch") as session:
                for index, operation in enumerate(operations):
                    try:
                        results.append(
                            await self._apply(session, partition_key, operation)
                        )
                    except StoreError as e:
                        raise _BatchAborted(index, e.status_code) from e
        except _BatchAborted as aborted:
            failed = [
                BatchOperationResult(HTTPStatus.FAILED_DEPENDENCY) for _ in operations
            ]
            failed[aborted.index] = BatchOperationResult(aborted.status_code)
            logger.info(
                f"Batch rolled back at operation {aborted.index}",
                extra={
                    "container": self._name,
                    "partition_key": partition_key,
                    "status_code": aborted.status_code,
                    "item_count": len(operations),
                },
            )
            return BatchResponse(status_code=aborted.status_code, results=failed)

        return BatchResponse(status_code=HTTPStatus.OK, results=results)

    async def _apply(
        self,
        session: AsyncSession,
        partition_key: str,
        operation: BatchOperation,
    ) -> BatchOperationResult:
        if operation.kind is BatchOperationKind.CREATE:
            etag = await self._insert(session, operation.document or {}, partition_key)
            return BatchOperationResult(HTTPStatus.CREATED, etag, operation.document)

        if operation.kind is BatchOperationKind.REPLACE:
            etag = await self._replace(
                session,
                operation.item_id,
                operation.document or {},
                partition_key,
                operation.if_match,
            )
            return BatchOperationResult(HTTPStatus.OK, etag, operation.document)

        if operation.kind is BatchOperationKind.DELETE:
            await self._remove(session, operation.item_id, partition_key, operation.if_match)
            return BatchOperationResult(HTTPStatus.NO_CONTENT)

        raise StoreError(f"Unsupported batch operation {operation.kind}", HTTPStatus.BAD_REQUEST)


def _json_accessor(path: str, sample: Any):
    """Typed JSON element for path, chosen from the literal it is compared with."""
    segments = tuple(path.split("."))
    element = DocumentRecord.body[segments if len(segments) > 1 else segments[0]]

    # bool is checked before int because bool is an int subclass
    if isinstance(sample, bool):
        return element.as_boolean()
    if isinstance(sample, int):
        return element.as_integer()
    if isinstance(sample, float):
        return element.as_float()
    if sample is None or isinstance(sample, str):
        return element.as_string()
    raise ValueError(
        f"Cannot compare field '{path}' with {type(sample).__name__}; "
        "only scalar values are supported"
    )


def _compile_comparison(comparison: Comparison):
    op, value = comparison.op, comparison.value

    if op == "in":
        sample = next((v for v in value if v is not None), None)
    else:
        sample = value

    if comparison.path == "id":
        column = DocumentRecord.id
        if op == "in":
            value = tuple(str(v) for v in value)
        elif value is not None:
            value = str(value)
    else:
        column = _json_accessor(comparison.path, sample)

    if value is None:
        if op == "eq":
            return column.is_(None)
        if op == "ne":
            return column.is_not(None)
        raise ValueError(f"Operator '{op}' cannot be used with None")

    if op == "eq":
        return column == value
    if op == "ne":
        return column != value
    if op == "lt":
        return column < value
    if op == "le":
        return column <= value
    if op == "gt":
        return column > value
    if op == "ge":
        return column >= value
    return column.in_(value)


def compile_condition(condition: Condition):
    """Translate a predicate tree into a SQLAlchemy boolean expression."""
    if isinstance(condition, Comparison):
        return _compile_comparison(condition)
    if isinstance(condition, All):
        return and_(*(compile_condition(c) for c in condition.conditions))
    if isinstance(condition, AnyOf):
        return or_(*(compile_condition(c) for c in condition.conditions))
    if isinstance(condition, Not):
        return not_(compile_condition(condition.condition))
    raise TypeError(f"Unsupported condition type {type(condition).__name__}")
