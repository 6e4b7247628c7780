"""
Entity base shape for documents managed by the repository.

Concrete document types subclass Entity and add their own fields. Stored
documents use camelCase keys; the version token travels as "_etag" and is
never written into the stored body because the store assigns it.
"""

from datetime import datetime
from typing import (
    Any,
    Dict,
    Optional,
    Protocol,
    Tuple,
    Type,
    get_args,
    get_origin,
    runtime_checkable,
)
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel

from docrepo.models.base import to_storage_datetime, utc_now


ETAG_KEY = "_etag"


@runtime_checkable
class AuditedEntity(Protocol):
    """
    Capability the repository relies on.

    Anything exposing an id, the audit fields, the soft-delete flag and a
    version token can be managed by a DocumentRepository.
    """

    id: UUID
    created_at: datetime
    updated_at: Optional[datetime]
    created_by: Optional[UUID]
    updated_by: Optional[UUID]
    deleted_by: Optional[UUID]
    deleted_at: Optional[datetime]
    is_deleted: bool
    etag: Optional[str]


class Entity(BaseModel):
    """
    Default AuditedEntity implementation.

    Attributes:
        id: Caller-supplied identifier; primary key and default partition key
        created_at: When the document was created (UTC)
        updated_at: When the document was last written (UTC)
        created_by: Principal that created the document
        updated_by: Principal that last wrote the document
        deleted_by: Principal that soft-deleted the document
        deleted_at: When the document was soft-deleted (UTC)
        is_deleted: Soft-delete visibility flag
        etag: Version token from the last write seen by this instance
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=False,
    )

    id: UUID
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: Optional[datetime] = None
    created_by: Optional[UUID] = None
    updated_by: Optional[UUID] = None
    deleted_by: Optional[UUID] = None
    deleted_at: Optional[datetime] = None
    is_deleted: bool = False
    etag: Optional[str] = Field(default=None, alias=ETAG_KEY)

    @field_serializer("*", mode="wrap", when_used="json")
    def serialize_datetimes(self, value: Any, handler):
        # Subclass datetime fields included, so stored text sorts by instant
        if isinstance(value, datetime):
            return to_storage_datetime(value)
        return handler(value)

    def to_document(self) -> Dict[str, Any]:
        """Serialize to the stored JSON body (camelCase keys, no version token)."""
        return self.model_dump(mode="json", by_alias=True, exclude={"etag"})

    @classmethod
    def from_document(cls, document: Dict[str, Any], etag: Optional[str] = None):
        """Build an instance from a stored body and the store's version token."""
        data = dict(document)
        if etag is not None:
            data[ETAG_KEY] = etag
        return cls.model_validate(data)

    @classmethod
    def storage_path(cls, path: str) -> str:
        """
        Map a dotted path of Python names to stored keys.

        Each segment is resolved against the model it addresses, so nested
        models with their own aliases map correctly ("address.postal_code"
        becomes "address.postalCode" when the nested model uses camelCase).
        Segments already given as stored keys are kept; once a segment is not
        a known model field the rest of the path passes through unchanged.
        """
        model: Optional[Type[BaseModel]] = cls
        keys = []
        for segment in path.split("."):
            if model is None:
                keys.append(segment)
                continue
            key, model = _resolve_segment(model, segment)
            keys.append(key)
        return ".".join(keys)


def _nested_model(annotation: Any) -> Optional[Type[BaseModel]]:
    """The BaseModel an annotation refers to, looking inside Optional/Union."""
    for candidate in (annotation, *get_args(annotation)):
        if (
            isinstance(candidate, type)
            and get_origin(candidate) is None
            and issubclass(candidate, BaseModel)
        ):
            return candidate
    return None


def _resolve_segment(
    model: Type[BaseModel],
    segment: str,
) -> Tuple[str, Optional[Type[BaseModel]]]:
    for name, field_info in model.model_fields.items():
        key = field_info.alias or name
        if segment in (name, key):
            return key, _nested_model(field_info.annotation)
    return segment, None
