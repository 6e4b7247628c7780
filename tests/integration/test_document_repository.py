"""
Integration tests for DocumentRepository single-item operations and queries.

Runs against SqlDocumentContainer on in-memory SQLite.
Tests follow AAA (Arrange, Act, Assert) pattern.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from docrepo.core.exceptions import (
    ConcurrencyConflictError,
    ConflictError,
    NotFoundError,
    StoreError,
)
from docrepo.repositories.document import DocumentRepository, partition_key_from_id
from docrepo.repositories.filters import field
from docrepo.repositories.results import OperationStatus
from docrepo.services.audit import ContextActorResolver, StaticActorResolver
from tests.sample_entities import ACTOR_ID, OTHER_ACTOR_ID, T0, Note, Place


class TestCreate:
    """Test suite for create()."""

    async def test_create_stamps_audit_fields_and_etag(self, repo, make_note):
        # Arrange
        note = make_note(title="Groceries")

        # Act
        result = await repo.create(note)

        # Assert
        assert result is note
        assert note.created_at == T0
        assert note.updated_at == T0
        assert note.created_by == ACTOR_ID
        assert note.updated_by == ACTOR_ID
        assert note.etag

    async def test_create_overrides_caller_supplied_audit_values(self, repo, make_note):
        """
        Test audit fields are owned by the repository.

        Arrange: Note carrying forged audit values and deletion markers
        Act: Create it
        Assert: Repository values win and deletion markers are cleared
        """
        # Arrange
        note = make_note(
            created_by=OTHER_ACTOR_ID,
            updated_by=OTHER_ACTOR_ID,
            is_deleted=True,
            deleted_by=OTHER_ACTOR_ID,
            deleted_at=T0,
        )

        # Act
        await repo.create(note)

        # Assert
        assert note.created_by == ACTOR_ID
        assert note.is_deleted is False
        assert note.deleted_by is None
        assert note.deleted_at is None
        assert await repo.get(note.id) is not None

    async def test_create_then_get_round_trips(self, repo, make_note):
        # Arrange
        note = make_note(title="Plan", body="Write tests", priority=2, tags=["work"])

        # Act
        await repo.create(note)
        loaded = await repo.get(note.id)

        # Assert
        assert loaded == note
        assert loaded is not note

    async def test_create_duplicate_raises_conflict(self, repo, make_note):
        note = make_note()
        await repo.create(note)

        duplicate = make_note(id=note.id, title="Other", is_deleted=True)
        original_created_at = duplicate.created_at

        with pytest.raises(ConflictError):
            await repo.create(duplicate)

        assert duplicate.etag is None
        assert duplicate.created_by is None
        assert duplicate.created_at == original_created_at
        assert duplicate.is_deleted is True

    async def test_naive_clock_values_are_treated_as_utc(self, container, actor, make_note):
        # Arrange
        naive_clock = MagicMock()
        naive_clock.now.return_value = T0.replace(tzinfo=None)
        repo = DocumentRepository(container, Note, naive_clock, actor)

        # Act
        note = await repo.create(make_note())

        # Assert
        assert note.created_at == T0
        assert note.created_at.tzinfo is not None

    async def test_system_context_stamps_no_actor(self, container, clock, make_note):
        repo = DocumentRepository(container, Note, clock, StaticActorResolver(None))

        note = await repo.create(make_note())

        assert note.created_by is None
        assert note.updated_by is None

    async def test_context_actor_is_used(self, container, clock, make_note):
        resolver = ContextActorResolver()
        repo = DocumentRepository(container, Note, clock, resolver)

        with resolver.acting_as(OTHER_ACTOR_ID):
            note = await repo.create(make_note())

        assert note.created_by == OTHER_ACTOR_ID


class TestGet:
    """Test suite for get()."""

    async def test_get_missing_returns_none(self, repo):
        assert await repo.get(uuid4()) is None

    async def test_get_skips_soft_deleted(self, repo, make_note):
        note = await repo.create(make_note())
        await repo.soft_delete(note)

        assert await repo.get(note.id) is None

    async def test_get_finds_entity_in_custom_partition(self, notebook_repo, make_note):
        note = await notebook_repo.create(make_note(notebook_id="work"))

        loaded = await notebook_repo.get(note.id)

        assert loaded is not None
        assert loaded.notebook_id == "work"


class TestGetAll:
    """Test suite for get_all() and count()."""

    @pytest.fixture
    async def notes(self, repo, make_note):
        created = []
        for index in range(6):
            created.append(await repo.create(make_note(title=f"n{index}", priority=index)))
        await repo.soft_delete(created[5])
        return created

    async def test_returns_only_visible_entities(self, repo, notes):
        # Act
        result = await repo.get_all()

        # Assert
        assert {n.title for n in result} == {"n0", "n1", "n2", "n3", "n4"}
        assert all(not n.is_deleted for n in result)

    async def test_pages_are_collected(self, repo, notes):
        result = await repo.get_all(page_size=2)

        assert len(result) == 5

    async def test_predicate_by_python_field_name(self, repo, notes):
        result = await repo.get_all(field("priority") >= 3)

        assert {n.title for n in result} == {"n3", "n4"}

    async def test_predicate_cannot_reveal_deleted(self, repo, notes):
        """
        Test soft-delete filtering wins over caller predicates.

        Arrange: n5 is soft-deleted
        Act: Ask explicitly for deleted entities
        Assert: Nothing comes back
        """
        # Act
        explicit = await repo.get_all(field("is_deleted") == True)  # noqa: E712
        broad = await repo.get_all((field("priority") == 5) | (field("priority") >= 0))

        # Assert
        assert explicit == []
        assert "n5" not in {n.title for n in broad}

    async def test_predicate_on_audit_field(self, repo, notes):
        result = await repo.get_all(field("created_by") == ACTOR_ID)

        assert len(result) == 5

    async def test_each_call_reexecutes(self, repo, notes, make_note):
        first = await repo.get_all()
        await repo.create(make_note(title="late"))

        second = await repo.get_all()

        assert len(second) == len(first) + 1

    async def test_count(self, repo, notes):
        assert await repo.count() == 5
        assert await repo.count(field("priority") < 2) == 2

    async def test_datetime_cutoff_without_fractional_seconds(self, repo, make_note, clock):
        """
        Test range filters on audit timestamps follow time order.

        Arrange: One note stamped at T0, one half a second later
        Act: Filter on created_at against the whole-second T0
        Assert: Each side of the cutoff holds the right note
        """
        # Arrange
        early = await repo.create(make_note(title="early"))
        clock.set(T0 + timedelta(milliseconds=500))
        late = await repo.create(make_note(title="late"))

        # Act
        after = await repo.get_all(field("created_at") > T0)
        from_cutoff = await repo.get_all(field("created_at") >= T0)
        before = await repo.get_all(field("created_at") < late.created_at)

        # Assert
        assert [n.id for n in after] == [late.id]
        assert {n.id for n in from_cutoff} == {early.id, late.id}
        assert [n.id for n in before] == [early.id]

    async def test_datetime_filter_with_non_utc_offset(self, repo, make_note):
        # Arrange
        plus_one = timezone(timedelta(hours=1))
        note = await repo.create(make_note(title="stamped"))

        # Act
        matched = await repo.get_all(field("created_at") == T0.astimezone(plus_one))

        # Assert
        assert [n.id for n in matched] == [note.id]

    async def test_caller_datetimes_with_mixed_offsets_sort_by_instant(self, repo, make_note):
        # Arrange
        plus_five = timezone(timedelta(hours=5))
        minus_five = timezone(timedelta(hours=-5))
        # 07:00 UTC and 11:00 UTC; the text of the first would sort after the second
        sooner = await repo.create(
            make_note(title="sooner", due_at=datetime(2026, 3, 1, 12, 0, tzinfo=plus_five))
        )
        later = await repo.create(
            make_note(title="later", due_at=datetime(2026, 3, 1, 6, 0, tzinfo=minus_five))
        )
        cutoff = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

        # Act
        due_first = await repo.get_all(field("due_at") < cutoff)
        due_last = await repo.get_all(field("due_at") > cutoff)

        # Assert
        assert [n.id for n in due_first] == [sooner.id]
        assert [n.id for n in due_last] == [later.id]
        assert (await repo.get(later.id)).due_at == later.due_at

    async def test_nested_model_path_uses_stored_keys(self, repo, make_note):
        # Arrange
        lyon = await repo.create(
            make_note(title="lyon", place=Place(city="Lyon", postal_code="69001"))
        )
        await repo.create(make_note(title="nice", place=Place(city="Nice", postal_code="06000")))
        await repo.create(make_note(title="nowhere"))

        # Act
        by_python_name = await repo.get_all(field("place.postal_code") == "69001")
        by_stored_key = await repo.get_all(field("place.postalCode") == "69001")

        # Assert
        assert [n.id for n in by_python_name] == [lyon.id]
        assert [n.id for n in by_stored_key] == [lyon.id]
        assert by_python_name[0].place == Place(city="Lyon", postal_code="69001")


class TestUpdate:
    """Test suite for update() and try_update()."""

    async def test_update_refreshes_audit_fields_and_etag(self, repo, make_note, clock, container):
        # Arrange
        note = await repo.create(make_note(title="v1"))
        first_etag = note.etag
        later = clock.advance(minutes=10)
        editor_repo = DocumentRepository(container, Note, clock, StaticActorResolver(OTHER_ACTOR_ID))

        # Act
        note.title = "v2"
        await editor_repo.update(note)

        # Assert
        assert note.etag != first_etag
        assert note.updated_at == later
        assert note.updated_by == OTHER_ACTOR_ID
        assert note.created_at == T0
        assert note.created_by == ACTOR_ID
        loaded = await repo.get(note.id)
        assert loaded.title == "v2"
        assert loaded.etag == note.etag

    async def test_stale_etag_raises_concurrency_conflict(self, repo, make_note):
        # Arrange
        note = await repo.create(make_note(title="v1"))
        stale = note.model_copy()
        note.title = "v2"
        await repo.update(note)

        # Act & Assert
        stale.title = "lost update"
        with pytest.raises(ConcurrencyConflictError) as exc_info:
            await repo.update(stale)

        assert exc_info.value.entity_id == note.id
        assert (await repo.get(note.id)).title == "v2"

    async def test_missing_etag_is_rejected_without_store_call(self, make_note, clock, actor):
        # Arrange
        container = MagicMock()
        container.name = "notes"
        container.replace_item = AsyncMock()
        repo = DocumentRepository(container, Note, clock, actor)

        # Act & Assert
        with pytest.raises(ConcurrencyConflictError):
            await repo.update(make_note())

        container.replace_item.assert_not_awaited()

    async def test_update_of_hard_deleted_entity_raises_not_found(self, repo, make_note):
        note = await repo.create(make_note())
        stale = note.model_copy()
        await repo.delete(note)

        with pytest.raises(NotFoundError):
            await repo.update(stale)

    async def test_conflict_is_logged(self, repo, make_note, caplog):
        note = await repo.create(make_note())
        stale = note.model_copy()
        await repo.update(note)

        with caplog.at_level(logging.WARNING, logger="docrepo.repositories.document"):
            with pytest.raises(ConcurrencyConflictError):
                await repo.update(stale)

        record = next(r for r in caplog.records if r.getMessage() == "Concurrency conflict")
        assert record.status_code == 412
        assert record.entity_id == str(note.id)

    async def test_rejected_update_keeps_previous_stamps(self, repo, make_note, clock, container):
        # Arrange
        note = await repo.create(make_note(title="v1"))
        stale = note.model_copy()
        await repo.update(note)
        editor_repo = DocumentRepository(container, Note, clock, StaticActorResolver(OTHER_ACTOR_ID))
        clock.advance(minutes=5)
        stale.title = "lost update"

        # Act
        with pytest.raises(ConcurrencyConflictError):
            await editor_repo.update(stale)

        # Assert
        assert stale.updated_at == T0
        assert stale.updated_by == ACTOR_ID
        assert stale.etag != note.etag
        assert stale.title == "lost update"

    async def test_try_update_outcomes(self, repo, make_note):
        """
        Test typed outcomes for expected update failures.

        Arrange: One live note with a stale copy, one deleted note
        Act: try_update each
        Assert: SUCCESS, CONFLICT and NOT_FOUND respectively
        """
        # Arrange
        note = await repo.create(make_note())
        stale = note.model_copy()
        gone = await repo.create(make_note())
        gone_copy = gone.model_copy()
        await repo.delete(gone)

        # Act
        success = await repo.try_update(note)
        conflict = await repo.try_update(stale)
        missing = await repo.try_update(gone_copy)

        # Assert
        assert success.status is OperationStatus.SUCCESS
        assert success.succeeded and success.etag == note.etag
        assert conflict.status is OperationStatus.CONFLICT and conflict.conflicted
        assert missing.status is OperationStatus.NOT_FOUND and missing.not_found

    async def test_try_update_propagates_store_failures(self, make_note, clock, actor):
        container = MagicMock()
        container.name = "notes"
        container.replace_item = AsyncMock(side_effect=StoreError("throttled", 429))
        repo = DocumentRepository(container, Note, clock, actor)

        with pytest.raises(StoreError):
            await repo.try_update(make_note(etag='"v1"'))


class TestSoftDelete:
    """Test suite for soft_delete()."""

    async def test_soft_delete_keeps_document(self, repo, make_note, clock, container):
        # Arrange
        note = await repo.create(make_note())
        deleted_at = clock.advance(hours=1)

        # Act
        await repo.soft_delete(note)

        # Assert
        assert note.is_deleted is True
        assert note.deleted_at == deleted_at
        assert note.deleted_by == ACTOR_ID
        assert note.updated_at == deleted_at
        stored = await container.read_item(str(note.id), partition_key_from_id(note))
        assert stored.document["isDeleted"] is True
        assert stored.etag == note.etag

    async def test_soft_delete_with_stale_etag_conflicts(self, repo, make_note):
        note = await repo.create(make_note())
        stale = note.model_copy()
        await repo.update(note)

        with pytest.raises(ConcurrencyConflictError):
            await repo.soft_delete(stale)

        assert await repo.get(note.id) is not None

    async def test_rejected_soft_delete_leaves_entity_unchanged(self, repo, make_note, clock):
        """
        Test a failed soft delete does not mark the caller's entity deleted.

        Arrange: A stale copy of a note that was updated since
        Act: Soft-delete the stale copy an hour later
        Assert: Conflict raised and the copy still matches what was read
        """
        # Arrange
        note = await repo.create(make_note())
        stale = note.model_copy()
        await repo.update(note)
        before = stale.model_copy()
        clock.advance(hours=1)

        # Act
        with pytest.raises(ConcurrencyConflictError):
            await repo.soft_delete(stale)

        # Assert
        assert stale == before
        assert stale.is_deleted is False
        assert stale.deleted_at is None
        assert stale.deleted_by is None
        assert stale.updated_at == T0

    async def test_soft_delete_without_token_touches_nothing(self, repo, make_note):
        note = make_note()

        with pytest.raises(ConcurrencyConflictError):
            await repo.soft_delete(note)

        assert note.is_deleted is False
        assert note.deleted_at is None
        assert note.updated_at is None


class TestDelete:
    """Test suite for delete() and try_delete()."""

    async def test_delete_then_get_returns_none(self, repo, make_note):
        note = await repo.create(make_note())

        assert await repo.delete(note) is True
        assert await repo.get(note.id) is None

    async def test_delete_twice_raises_not_found(self, repo, make_note):
        note = await repo.create(make_note())
        await repo.delete(note)

        with pytest.raises(NotFoundError):
            await repo.delete(note)

    async def test_delete_ignores_stale_etag_by_default(self, repo, make_note):
        note = await repo.create(make_note())
        stale = note.model_copy()
        await repo.update(note)

        await repo.delete(stale)

        assert await repo.get(note.id) is None

    async def test_checked_delete_with_stale_etag_conflicts(self, repo, make_note):
        note = await repo.create(make_note())
        stale = note.model_copy()
        await repo.update(note)

        with pytest.raises(ConcurrencyConflictError):
            await repo.delete(stale, check_version=True)

        assert await repo.delete(note, check_version=True) is True

    async def test_delete_removes_soft_deleted_documents_too(self, repo, make_note, container):
        note = await repo.create(make_note())
        await repo.soft_delete(note)

        await repo.delete(note)

        with pytest.raises(NotFoundError):
            await container.read_item(str(note.id), str(note.id))

    async def test_try_delete_outcomes(self, repo, make_note):
        note = await repo.create(make_note())

        first = await repo.try_delete(note)
        second = await repo.try_delete(note)

        assert first.status is OperationStatus.SUCCESS
        assert second.status is OperationStatus.NOT_FOUND


class TestCancellation:
    """Tests for cancelled store calls."""

    async def test_cancelled_write_propagates_and_is_logged(self, make_note, clock, actor, caplog):
        """
        Test cancellation surfaces as CancelledError with an unknown-outcome warning.

        Arrange: Container whose replace never completes
        Act: Start an update and cancel it
        Assert: CancelledError raised, warning logged
        """
        # Arrange
        started = asyncio.Event()

        async def hang(*args, **kwargs):
            started.set()
            await asyncio.Event().wait()

        container = MagicMock()
        container.name = "notes"
        container.replace_item = hang
        repo = DocumentRepository(container, Note, clock, actor)
        note = make_note(etag='"v1"')

        # Act
        with caplog.at_level(logging.WARNING, logger="docrepo.repositories.document"):
            task = asyncio.create_task(repo.update(note))
            await started.wait()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        # Assert
        assert any("may or may not have applied" in r.getMessage() for r in caplog.records)


class TestScenario:
    """End-to-end lifecycle from the concurrency contract."""

    async def test_create_read_update_conflict_delete(self, repo, make_note):
        # create A (id X) and read it back
        a = await repo.create(make_note(title="A"))
        read = await repo.get(a.id)
        assert read.created_at and read.created_by == ACTOR_ID
        t1 = read.etag
        assert t1

        # update using t1 succeeds with t2
        read.title = "A'"
        await repo.update(read)
        t2 = read.etag
        assert t2 and t2 != t1

        # update using t1 again fails
        reused = read.model_copy(update={"etag": t1})
        with pytest.raises(ConcurrencyConflictError):
            await repo.update(reused)

        # delete succeeds and the entity is gone
        assert await repo.delete(read) is True
        assert await repo.get(a.id) is None

    async def test_concurrent_updates_one_wins(self, tmp_path, clock, actor, make_note):
        """
        Test two writers racing with the same token.

        Arrange: File-backed database shared by two repositories
        Act: Both update the same entity concurrently
        Assert: Exactly one succeeds, the other conflicts
        """
        from docrepo.core.database import close_db, create_session_maker, get_async_engine, init_db
        from docrepo.services.sql_container import SqlDocumentContainer

        # Arrange
        engine = get_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'race.db'}")
        await init_db(engine)
        try:
            container = SqlDocumentContainer(create_session_maker(engine), name="notes")
            repo = DocumentRepository(container, Note, clock, actor)
            note = await repo.create(make_note(title="base"))
            first = note.model_copy(update={"title": "first"})
            second = note.model_copy(update={"title": "second"})

            # Act
            results = await asyncio.gather(
                repo.try_update(first),
                repo.try_update(second),
            )

            # Assert
            statuses = sorted(r.status.value for r in results)
            assert statuses == ["conflict", "success"]
            winner = next(r.entity for r in results if r.succeeded)
            assert (await repo.get(note.id)).title == winner.title
        finally:
            await close_db(engine)
