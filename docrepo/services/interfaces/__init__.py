"""Collaborator interface contracts (ABCs)"""

from docrepo.services.interfaces.audit import IActorResolver, IClock
from docrepo.services.interfaces.container import IDocumentContainer

__all__ = [
    'IActorResolver',
    'IClock',
    'IDocumentContainer',
]
