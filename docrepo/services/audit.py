"""
Clock and actor resolver implementations.

SystemClock and ContextActorResolver are the production choices;
FixedClock and StaticActorResolver give tests and scripts deterministic
audit stamps.
"""

from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timedelta, timezone
from typing import Iterator, Optional
from uuid import UUID

from docrepo.services.interfaces.audit import IActorResolver, IClock


class SystemClock(IClock):
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(IClock):
    """
    Clock frozen at a given instant until moved explicitly.

    Example:
        clock = FixedClock(datetime(2026, 1, 1, tzinfo=timezone.utc))
        clock.advance(seconds=30)
    """

    def __init__(self, instant: datetime):
        self._instant = instant

    def now(self) -> datetime:
        return self._instant

    def set(self, instant: datetime) -> None:
        self._instant = instant

    def advance(self, **delta) -> datetime:
        """Move the clock forward by timedelta(**delta) and return the new time."""
        self._instant = self._instant + timedelta(**delta)
        return self._instant


class StaticActorResolver(IActorResolver):
    """Always reports the same principal (or None for system jobs)."""

    def __init__(self, actor_id: Optional[UUID] = None):
        self._actor_id = actor_id

    def current_actor(self) -> Optional[UUID]:
        return self._actor_id


_current_actor: ContextVar[Optional[UUID]] = ContextVar("docrepo_current_actor", default=None)


class ContextActorResolver(IActorResolver):
    """
    Reads the principal bound to the current execution context.

    Each asyncio task sees the value bound in its own context, so concurrent
    requests do not leak actors into each other.

    Example:
        resolver = ContextActorResolver()
        with resolver.acting_as(user_id):
            await repo.create(note)
    """

    def current_actor(self) -> Optional[UUID]:
        return _current_actor.get()

    @contextmanager
    def acting_as(self, actor_id: Optional[UUID]) -> Iterator[None]:
        token = _current_actor.set(actor_id)
        try:
            yield
        finally:
            _current_actor.reset(token)
