"""Tests for soft delete functionality."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from pivotorm import AsyncSession, Base, Mapped, NotFound, SoftDeleteMixin, create_all, mapped_column


class Note(Base, SoftDeleteMixin):
    """Soft-deletable model."""

    __tablename__ = "notes"

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(max_length=200)


class Memo(Base):
    """Model without soft delete."""

    __tablename__ = "memos"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str]


@pytest.fixture
async def notes(session) -> AsyncSession:
    await create_all(session.pool, Note, Memo)
    return session


class TestSoftDeleteMixinDefinition:
    def test_adds_deleted_at_column(self) -> None:
        assert "deleted_at" in Note.__columns__
        assert Note.__columns__["deleted_at"].nullable is True

    def test_soft_delete_marker(self) -> None:
        assert Note.__soft_delete__ is True
        assert getattr(Memo, "__soft_delete__", False) is False

    def test_is_deleted_property(self) -> None:
        note = Note(title="Test")
        assert note.is_deleted is False

        note.mark_deleted()
        assert note.is_deleted is True

        note.mark_restored()
        assert note.is_deleted is False


class TestSoftDeleteQueries:
    async def test_query_excludes_deleted_by_default(self, notes) -> None:
        await notes.insert(Note(title="Visible"))
        hidden = await notes.insert(Note(title="Deleted"))
        await notes.soft_delete(hidden)

        assert [n.title for n in await notes.query(Note).all()] == ["Visible"]

    async def test_with_deleted_includes_all(self, notes) -> None:
        await notes.insert(Note(title="Visible"))
        await notes.soft_delete(await notes.insert(Note(title="Deleted")))

        assert len(await notes.query(Note).with_deleted().all()) == 2

    async def test_only_deleted(self, notes) -> None:
        await notes.insert(Note(title="Visible"))
        await notes.soft_delete(await notes.insert(Note(title="Deleted")))

        assert [n.title for n in await notes.query(Note).only_deleted().all()] == ["Deleted"]

    async def test_filter_with_soft_delete(self, notes) -> None:
        await notes.insert(Note(title="Python"))
        await notes.insert(Note(title="Rust"))
        await notes.soft_delete(await notes.insert(Note(title="Python Deleted")))

        assert [n.title for n in await notes.query(Note).filter(title__like="Python%").all()] == ["Python"]

    async def test_get_excludes_deleted(self, notes) -> None:
        note = await notes.insert(Note(title="Deleted"))
        await notes.soft_delete(note)

        assert await notes.get(Note, note.id) is None
        assert await notes.get(Note, note.id, include_deleted=True) is not None
        with pytest.raises(NotFound):
            await notes.get_or_raise(Note, note.id)

    async def test_count_and_exists(self, notes) -> None:
        note = await notes.insert(Note(title="Only"))
        await notes.soft_delete(note)

        assert await notes.query(Note).count() == 0
        assert not await notes.query(Note).exists()
        assert await notes.query(Note).with_deleted().exists()

    async def test_refresh_finds_deleted_row(self, notes) -> None:
        """refresh() still reloads a soft-deleted row."""
        note = await notes.insert(Note(title="Deleted"))
        await notes.soft_delete(note)
        note.title = "local"

        await notes.refresh(note)
        assert note.title == "Deleted"
        assert note.is_deleted


class TestSoftDeleteOperations:
    async def test_soft_delete_sets_deleted_at(self, notes) -> None:
        note = await notes.insert(Note(title="Test"))
        before = datetime.now(UTC)

        await notes.soft_delete(note)

        assert note.is_deleted
        assert note.deleted_at - before < timedelta(seconds=5)
        assert not note.is_dirty()

        reloaded = await notes.get_or_raise(Note, note.id, include_deleted=True)
        assert reloaded.deleted_at == note.deleted_at

    async def test_restore_clears_deleted_at(self, notes) -> None:
        note = await notes.insert(Note(title="Test"))
        await notes.soft_delete(note)
        await notes.restore(note)

        assert not note.is_deleted
        assert await notes.get(Note, note.id) is not None

    async def test_force_delete_removes_permanently(self, notes) -> None:
        note = await notes.insert(Note(title="Test"))
        await notes.force_delete(note)

        assert await notes.query(Note).with_deleted().count() == 0

    async def test_soft_delete_on_non_mixin_raises(self, notes) -> None:
        memo = await notes.insert(Memo(name="x"))
        with pytest.raises(TypeError, match="doesn't support soft delete"):
            await notes.soft_delete(memo)
        with pytest.raises(TypeError):
            await notes.restore(memo)

    async def test_soft_delete_missing_row(self, notes) -> None:
        note = await notes.insert(Note(title="Test"))
        await notes.force_delete(note)

        with pytest.raises(NotFound):
            await notes.soft_delete(note)
