"""
Clock and Actor Resolver Interfaces

Collaborators the repository consults when stamping audit fields. They are
passed in at construction so tests can substitute deterministic fakes.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional
from uuid import UUID


class IClock(ABC):
    """Source of the current time used for audit stamping."""

    @abstractmethod
    def now(self) -> datetime:
        """
        Current time.

        Returns:
            Timezone-aware datetime. The repository converts it to UTC;
            naive values are taken to already be UTC.
        """
        pass


class IActorResolver(ABC):
    """Source of the acting principal used for audit stamping."""

    @abstractmethod
    def current_actor(self) -> Optional[UUID]:
        """
        Identifier of the principal performing the current operation.

        Returns:
            Principal id, or None for unauthenticated/system contexts
        """
        pass
