"""
Document Container Interface (IDocumentContainer)

Abstract base class defining the contract of a partitioned document
collection. The repository layer consumes this contract; adapters for a
concrete store implement it.

Implementation guide:
- All methods must be async
- Ids are unique within a partition, not across partitions
- Every successful write assigns a fresh opaque etag
- Conditional writes (if_match) must raise PreconditionFailedError on mismatch
- execute_batch must be all-or-nothing within one partition
- Failures are reported with docrepo.core.exceptions.StoreError subclasses
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from http import HTTPStatus
from typing import Any, AsyncIterator, Dict, List, Optional

from docrepo.repositories.filters import Condition


@dataclass
class ItemResponse:
    """
    Result of a single-item operation.

    Attributes:
        document: Stored JSON body
        etag: Version token after the operation
        status_code: Store status code
    """

    document: Dict[str, Any]
    etag: str
    status_code: int = HTTPStatus.OK


@dataclass
class StoredDocument:
    """A document read from a query, with its partition and version token."""

    document: Dict[str, Any]
    etag: str
    partition_key: str


@dataclass
class FeedPage:
    """
    One page of query results.

    Attributes:
        items: Documents on this page
        continuation: Opaque token for the next page, None when exhausted
    """

    items: List[StoredDocument]
    continuation: Optional[str] = None


class BatchOperationKind(str, Enum):
    CREATE = "create"
    REPLACE = "replace"
    DELETE = "delete"


@dataclass
class BatchOperation:
    """
    One operation inside an atomic batch.

    Attributes:
        kind: create, replace or delete
        item_id: Document id
        document: Body for create/replace
        if_match: Version token the stored document must carry (replace/delete)
    """

    kind: BatchOperationKind
    item_id: str
    document: Optional[Dict[str, Any]] = None
    if_match: Optional[str] = None


@dataclass
class BatchOperationResult:
    """Outcome of one operation of a batch, in submission order."""

    status_code: int
    etag: Optional[str] = None
    document: Optional[Dict[str, Any]] = None

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300


@dataclass
class BatchResponse:
    """
    Aggregate outcome of an atomic batch.

    Attributes:
        status_code: Aggregate status (the failing operation's status on failure)
        results: Per-operation results in submission order
    """

    status_code: int
    results: List[BatchOperationResult] = field(default_factory=list)

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300


class IDocumentContainer(ABC):
    """
    Abstract interface for a partitioned document collection.

    The container handle is long-lived and shared; consumers must not close it.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Logical container name."""
        pass

    @abstractmethod
    async def create_item(
        self,
        document: Dict[str, Any],
        partition_key: str
    ) -> ItemResponse:
        """
        Insert a new document.

        Args:
            document: JSON body; must contain "id"
            partition_key: Partition to insert into

        Returns:
            ItemResponse with the new etag (status 201)

        Raises:
            ConflictError: If the id already exists in the partition
            StoreError: On any other store failure
        """
        pass

    @abstractmethod
    async def read_item(
        self,
        item_id: str,
        partition_key: str
    ) -> ItemResponse:
        """
        Point read by id and partition key.

        Raises:
            NotFoundError: If no such document exists
        """
        pass

    @abstractmethod
    async def replace_item(
        self,
        item_id: str,
        document: Dict[str, Any],
        partition_key: str,
        if_match: Optional[str] = None
    ) -> ItemResponse:
        """
        Replace an existing document, optionally gated on its etag.

        Raises:
            NotFoundError: If no such document exists
            PreconditionFailedError: If if_match is given and does not match
        """
        pass

    @abstractmethod
    async def delete_item(
        self,
        item_id: str,
        partition_key: str,
        if_match: Optional[str] = None
    ) -> None:
        """
        Physically remove a document, optionally gated on its etag.

        Raises:
            NotFoundError: If no such document exists
            PreconditionFailedError: If if_match is given and does not match
        """
        pass

    @abstractmethod
    def query_items(
        self,
        condition: Optional[Condition] = None,
        max_item_count: Optional[int] = None,
        partition_key: Optional[str] = None
    ) -> AsyncIterator[FeedPage]:
        """
        Query documents page by page.

        Args:
            condition: Predicate over stored keys ("id" addresses the document id)
            max_item_count: Page size
            partition_key: Restrict to one partition (cross-partition when None)

        Yields:
            FeedPage objects until the result set is exhausted
        """
        pass

    @abstractmethod
    async def execute_batch(
        self,
        partition_key: str,
        operations: List[BatchOperation]
    ) -> BatchResponse:
        """
        Apply operations atomically within one partition.

        Failures of individual operations are reported in the response, not
        raised; either every operation is applied or none is.
        """
        pass
