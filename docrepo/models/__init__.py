"""
Data models for docrepo.

Exports the entity base shape used by repositories and the SQLAlchemy
table that stores documents. Import from this module to ensure the table
is registered with SQLAlchemy metadata.
"""

from docrepo.models.base import Base, to_storage_datetime, utc_now, utc_now_iso
from docrepo.models.document import DocumentRecord
from docrepo.models.entity import ETAG_KEY, AuditedEntity, Entity

__all__ = [
    # Storage
    "Base",
    "DocumentRecord",
    "to_storage_datetime",
    "utc_now",
    "utc_now_iso",
    # Entities
    "AuditedEntity",
    "Entity",
    "ETAG_KEY",
]
