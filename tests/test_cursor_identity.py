"""Related records keep their own identity when primary keys collide.

The pivot rows here deliberately reuse ids that belong to other things:
pivot 2000 links the user to thing 3000 (while thing 2000 is unrelated),
and pivot 5000 links the user to thing 4000 (no thing 5000 exists).
"""

from __future__ import annotations

import pytest

from pivotorm import (
    AsyncSession,
    Base,
    ColumnMap,
    Mapped,
    NoSuchColumnError,
    NotFound,
    PivotSelect,
    SoftDeleteMixin,
    TimestampMixin,
    create_all,
    hydrate,
    insert,
    mapped_column,
    relationship,
    selectinload,
)

USER_ID = 1000
UNRELATED_THING_ID = 2000
RELATED_THING_ID = 3000
SECOND_RELATED_THING_ID = 4000
MISMATCHING_ID = 5000


def expected_title(thing_id: int) -> str:
    return f"Thing {thing_id}"


class User(Base, SoftDeleteMixin, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    things: Mapped[list["Thing"]] = relationship(
        secondary="user_things",
        foreign_pivot_key="userId",
        related_pivot_key="thingId",
    )


class Thing(Base, SoftDeleteMixin, TimestampMixin):
    __tablename__ = "things"

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(max_length=255)


@pytest.fixture
async def scenario(session) -> AsyncSession:
    """Seed rows with ids chosen up front, as in a long-lived database."""
    await create_all(session.pool, User, Thing)

    await session.execute(insert("users").values(id=USER_ID))
    for thing_id in (UNRELATED_THING_ID, RELATED_THING_ID, SECOND_RELATED_THING_ID):
        await session.execute(insert("things").values(id=thing_id, title=expected_title(thing_id)))

    await session.execute(
        insert("user_things").values(id=UNRELATED_THING_ID, userId=USER_ID, thingId=RELATED_THING_ID)
    )
    await session.execute(
        insert("user_things").values(id=MISMATCHING_ID, userId=USER_ID, thingId=SECOND_RELATED_THING_ID)
    )
    return session


def pivot_select() -> PivotSelect:
    User._resolve_relationships()
    return PivotSelect.build(User.__relationships__["things"].descriptor, [USER_ID])


async def _titles(session: AsyncSession) -> dict[int, str]:
    things = await session.query(Thing).order_by("id").all()
    return {thing.id: thing.title for thing in things}


class TestEagerLoading:
    """Loading the whole relationship in one round trip."""

    async def test_yields_related_identities(self, scenario) -> None:
        """Each record carries the related row's id, not the pivot's."""
        user = await scenario.get_or_raise(User, USER_ID)
        things = await scenario.related(user, "things").all()

        assert [thing.id for thing in things] == [RELATED_THING_ID, SECOND_RELATED_THING_ID]
        assert [thing.title for thing in things] == [
            expected_title(RELATED_THING_ID),
            expected_title(SECOND_RELATED_THING_ID),
        ]

    async def test_retitling_with_own_title_stays_clean(self, scenario) -> None:
        """Assigning the title a record already has does not dirty it."""
        user = await scenario.get_or_raise(User, USER_ID)
        for thing in await scenario.related(user, "things").all():
            thing.title = expected_title(thing.id)
            assert not thing.is_dirty()

    async def test_pivot_row_is_exposed_separately(self, scenario) -> None:
        """The pivot id is available, but only on ``record.pivot``."""
        user = await scenario.get_or_raise(User, USER_ID)
        things = await scenario.related(user, "things").all()

        assert [thing.pivot.id for thing in things] == [UNRELATED_THING_ID, MISMATCHING_ID]
        for thing in things:
            assert thing.pivot.table == "user_things"
            assert thing.pivot.owner_key == USER_ID
            assert thing.pivot.related_key == thing.id

    async def test_selectinload_uses_same_identities(self, scenario) -> None:
        """Eager loading through query options hydrates the same ids."""
        user = await scenario.query(User).options(selectinload("things")).filter(id=USER_ID).one()
        assert {thing.id for thing in user.things} == {RELATED_THING_ID, SECOND_RELATED_THING_ID}

    async def test_load_onto_owner(self, scenario) -> None:
        """session.load() attaches the relationship to the owner."""
        user = await scenario.get_or_raise(User, USER_ID)
        await scenario.load(user, "things")
        assert [thing.id for thing in user.things] == [RELATED_THING_ID, SECOND_RELATED_THING_ID]


class TestCursorIteration:
    """Streaming the relationship from a database cursor."""

    async def test_yields_related_identities(self, scenario) -> None:
        """The cursor path hydrates the related ids and titles."""
        user = await scenario.get_or_raise(User, USER_ID)

        seen_ids = set()
        seen_titles = set()
        async with scenario.related(user, "things").cursor() as cursor:
            async for thing in cursor:
                seen_ids.add(thing.id)
                seen_titles.add(thing.title)

        assert seen_ids == {RELATED_THING_ID, SECOND_RELATED_THING_ID}
        assert seen_titles == {expected_title(RELATED_THING_ID), expected_title(SECOND_RELATED_THING_ID)}
        assert MISMATCHING_ID not in seen_ids
        assert UNRELATED_THING_ID not in seen_ids

    async def test_title_matches_identity(self, scenario) -> None:
        """A streamed record's title is the one its id implies."""
        user = await scenario.get_or_raise(User, USER_ID)
        async with scenario.related(user, "things").cursor() as cursor:
            async for thing in cursor:
                assert thing.title == expected_title(thing.id)
                thing.title = expected_title(thing.id)
                assert not thing.is_dirty()

    async def test_matches_eager_path(self, scenario) -> None:
        """Cursor and eager loading agree record for record."""
        user = await scenario.get_or_raise(User, USER_ID)
        eager = await scenario.related(user, "things").all()
        streamed = [thing async for thing in scenario.related(user, "things").cursor(batch_size=1)]

        assert [t.to_dict() for t in streamed] == [t.to_dict() for t in eager]
        assert [t.pivot for t in streamed] == [t.pivot for t in eager]

    async def test_saving_streamed_record_touches_only_its_row(self, scenario) -> None:
        """Mutating and saving during iteration updates the related rows only."""
        user = await scenario.get_or_raise(User, USER_ID)
        unrelated = await scenario.get_or_raise(Thing, UNRELATED_THING_ID)

        async with scenario.related(user, "things").cursor() as cursor:
            async for thing in cursor:
                thing.title = "Mutated"
                assert thing.is_dirty()
                assert thing.is_dirty("title")
                assert not thing.is_dirty("id")

                await scenario.save(thing)
                assert not thing.is_dirty()

        assert await _titles(scenario) == {
            UNRELATED_THING_ID: expected_title(UNRELATED_THING_ID),
            RELATED_THING_ID: "Mutated",
            SECOND_RELATED_THING_ID: "Mutated",
        }

        await scenario.refresh(unrelated)
        assert unrelated.id == UNRELATED_THING_ID
        assert unrelated.title == expected_title(UNRELATED_THING_ID)

    async def test_refresh_streamed_record(self, scenario) -> None:
        """A streamed record refreshes from its own row."""
        user = await scenario.get_or_raise(User, USER_ID)
        async with scenario.related(user, "things").cursor() as cursor:
            async for thing in cursor:
                thing.title = "Unsaved"
                await scenario.refresh(thing)
                assert thing.title == expected_title(thing.id)
                assert not thing.is_dirty()


class TestMisboundIdentity:
    """What goes wrong if a record's identity comes from the pivot's id."""

    async def test_unaliased_join_collapses_id_onto_pivot(self, scenario) -> None:
        """``SELECT *`` over the join reports the pivot id under ``id``."""
        result = await scenario.execute_raw(
            "SELECT * FROM things INNER JOIN user_things ON things.id = user_things.thingId "
            "WHERE user_things.userId = ? ORDER BY things.id",
            [USER_ID],
        )
        rows = result.all()
        assert [row["id"] for row in rows] == [UNRELATED_THING_ID, MISMATCHING_ID]

    async def test_hydrating_unaliased_row_is_rejected(self, scenario) -> None:
        """The hydrator refuses rows lacking the designated aliases."""
        statement = pivot_select()
        result = await scenario.execute_raw(
            "SELECT * FROM things INNER JOIN user_things ON things.id = user_things.thingId",
        )

        with pytest.raises(NoSuchColumnError, match="related__id"):
            hydrate(result.all()[0], statement.related_columns)

    async def test_refresh_of_missing_identity_raises_not_found(self, scenario) -> None:
        """A record bound to pivot id 5000 cannot be refreshed."""
        statement = pivot_select()
        misbound = ColumnMap(
            table="things",
            aliases={**statement.related_columns.aliases, "id": "pivot__id"},
            identity_field="id",
            model=Thing,
        )
        result = await scenario.execute_raw(*statement.to_sql())
        ghost = next(
            record
            for record in (hydrate(row, misbound) for row in result.all())
            if record.id == MISMATCHING_ID
        )

        with pytest.raises(NotFound) as excinfo:
            await scenario.refresh(ghost)
        assert excinfo.value.model is Thing
        assert excinfo.value.key == MISMATCHING_ID

    async def test_save_of_missing_identity_raises_not_found(self, scenario) -> None:
        """Saving a record whose row does not exist fails instead of silently passing."""
        statement = pivot_select()
        misbound = ColumnMap(
            table="things",
            aliases={**statement.related_columns.aliases, "id": "pivot__id"},
            identity_field="id",
            model=Thing,
        )
        result = await scenario.execute_raw(*statement.to_sql())
        ghost = next(
            record
            for record in (hydrate(row, misbound) for row in result.all())
            if record.id == MISMATCHING_ID
        )

        ghost.title = "Mutated"
        with pytest.raises(NotFound):
            await scenario.save(ghost)
        assert ghost.is_dirty("title")
        assert (await _titles(scenario))[SECOND_RELATED_THING_ID] == expected_title(SECOND_RELATED_THING_ID)

    async def test_column_contract(self, scenario) -> None:
        """Identity aliases name the related and pivot ids separately."""
        statement = pivot_select()
        sql, params = statement.to_sql()

        assert statement.related_columns.identity_alias == "related__id"
        assert statement.pivot_columns.identity_alias == "pivot__id"
        assert "things.id AS related__id" in sql
        assert "user_things.id AS pivot__id" in sql
        assert params == [USER_ID]
