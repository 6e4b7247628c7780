"""Typed outcomes for writes whose failure modes are expected."""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar


T = TypeVar("T")


class OperationStatus(str, Enum):
    SUCCESS = "success"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"


@dataclass
class WriteResult(Generic[T]):
    """
    Outcome of a try_* write.

    Attributes:
        status: What happened
        entity: The caller's entity (stamped and carrying the new etag on success)
        etag: Version token after the write, if it succeeded
    """

    status: OperationStatus
    entity: T
    etag: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status is OperationStatus.SUCCESS

    @property
    def conflicted(self) -> bool:
        return self.status is OperationStatus.CONFLICT

    @property
    def not_found(self) -> bool:
        return self.status is OperationStatus.NOT_FOUND
