"""
Storage table for partitioned JSON documents.

Every logical container shares one table; rows are addressed by
(container, partition_key, id), which mirrors how a partitioned document
store scopes ids: unique within a partition, not globally.
"""

from sqlalchemy import JSON, Column, Index, String

from docrepo.models.base import Base, utc_now_iso


class DocumentRecord(Base):
    """
    One stored document.

    Attributes:
        container: Logical container (collection) name
        partition_key: Partition the document lives in
        id: Document id, unique within (container, partition_key)
        body: Schema-less JSON body
        etag: Version token replaced on every write
        ts: UTC ISO timestamp of the last write
    """

    __tablename__ = "documents"

    container = Column(
        String(255),
        primary_key=True,
        doc="Logical container name"
    )

    partition_key = Column(
        String(255),
        primary_key=True,
        doc="Partition key value"
    )

    id = Column(
        String(255),
        primary_key=True,
        doc="Document id (unique per partition)"
    )

    body = Column(
        JSON,
        nullable=False,
        doc="Document body"
    )

    etag = Column(
        String(64),
        nullable=False,
        doc="Opaque version token"
    )

    ts = Column(
        String,
        nullable=False,
        default=utc_now_iso,
        doc="UTC timestamp of the last write"
    )

    __table_args__ = (
        Index("idx_documents_container_id", "container", "id"),
    )

    def __repr__(self) -> str:
        return (
            f"DocumentRecord(container='{self.container}', "
            f"partition_key='{self.partition_key}', id='{self.id}', etag='{self.etag}')"
        )
