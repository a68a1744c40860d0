"""
Tests for SoftDeleteRepository: deleted-row exclusion, soft/hard deletes and audit stamping.
"""

from types import SimpleNamespace

import pytest

from softmeta.repositories import SoftDeleteRepository
from softmeta.utils.exceptions import InvalidFilterError, NotFoundError
from tests.models import Widget


FROZEN_NOW = 1_700_000_000


@pytest.fixture
def frozen_clock(monkeypatch):
    monkeypatch.setattr("softmeta.repositories.soft_delete.epoch_now", lambda: FROZEN_NOW)
    return FROZEN_NOW


class TestCreate:
    """create() / create_all() stamping."""

    @pytest.mark.asyncio
    async def test_create_stamps_audit_fields(self, widget_repo):
        widget = await widget_repo.create({"name": "r1"})

        assert widget.deleted is False
        assert isinstance(widget.created_at, int)
        assert isinstance(widget.updated_at, int)
        assert widget.created_at == widget.updated_at
        assert widget.created_by == "42"
        assert widget.updated_by == "42"
        assert widget.deleted_at is None
        assert widget.deleted_by is None

    @pytest.mark.asyncio
    async def test_create_discards_client_deletion_fields(self, widget_repo):
        data = {
            "name": "sneaky",
            "deleted": True,
            "deleted_at": 123,
            "deleted_by": "someone",
            "created_by": "someone",
        }
        widget = await widget_repo.create(data)

        assert widget.deleted is False
        assert widget.deleted_at is None
        assert widget.deleted_by is None
        assert widget.created_by == "42"
        # The caller's mapping is copied, not modified
        assert data["deleted"] is True

    @pytest.mark.asyncio
    async def test_create_instance_discards_deletion_fields(self, widget_repo):
        widget = await widget_repo.create(Widget(name="sneaky", deleted=True, deleted_at=5, deleted_by="x"))

        assert widget.deleted is False
        assert widget.deleted_at is None
        assert widget.deleted_by is None

    @pytest.mark.asyncio
    async def test_create_keeps_supplied_created_at(self, widget_repo, frozen_clock):
        widget = await widget_repo.create({"name": "imported", "created_at": 1000})

        assert widget.created_at == 1000
        assert widget.updated_at == frozen_clock

    @pytest.mark.asyncio
    async def test_create_without_accessor_leaves_actor_unset(self, db_session):
        repo = SoftDeleteRepository.for_model(Widget, db_session)
        widget = await repo.create({"name": "anon"})

        assert widget.created_by is None
        assert widget.updated_by is None

    @pytest.mark.asyncio
    async def test_create_all_resolves_principal_once(self, db_session, current_user):
        calls = []

        async def accessor():
            calls.append(True)
            return current_user

        repo = SoftDeleteRepository.for_model(Widget, db_session, accessor)
        created = await repo.create_all([{"name": "a"}, {"name": "b"}, {"name": "c", "deleted": True}])

        assert len(calls) == 1
        assert [w.created_by for w in created] == ["42", "42", "42"]
        assert [w.deleted for w in created] == [False, False, False]
        assert all(w.created_at == w.updated_at for w in created)


class TestActorResolution:
    """How the acting principal's id is found."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "principal, expected",
        [
            (SimpleNamespace(id=7), "7"),
            ({"id": "u-1"}, "u-1"),
            (SimpleNamespace(name="no id"), None),
            (SimpleNamespace(id=None), None),
            (SimpleNamespace(id=""), None),
        ],
    )
    async def test_principal_shapes(self, db_session, principal, expected):
        async def accessor():
            return principal

        repo = SoftDeleteRepository.for_model(Widget, db_session, accessor)
        widget = await repo.create({"name": "w"})

        assert widget.created_by == expected

    @pytest.mark.asyncio
    async def test_options_current_user_fallback(self, db_session):
        async def accessor():
            return None

        repo = SoftDeleteRepository.for_model(Widget, db_session, accessor)
        widget = await repo.create({"name": "w"}, {"current_user": SimpleNamespace(id=9)})

        assert widget.created_by == "9"

    @pytest.mark.asyncio
    async def test_options_ignored_without_accessor(self, db_session):
        repo = SoftDeleteRepository.for_model(Widget, db_session)
        widget = await repo.create({"name": "w"}, {"current_user": SimpleNamespace(id=9)})

        assert widget.created_by is None


class TestFind:
    """Reads exclude soft-deleted rows unless asked otherwise."""

    @pytest.mark.asyncio
    async def test_soft_deleted_row_hidden_from_find(self, widget_repo):
        r1 = await widget_repo.create({"name": "r1"})
        await widget_repo.delete(r1)

        assert await widget_repo.find({}) == []
        assert await widget_repo.find() == []

        everything = await widget_repo.find_including_deleted({})
        assert everything == [r1]
        assert everything[0].deleted is True

    @pytest.mark.asyncio
    async def test_or_filter_after_soft_delete(self, widget_repo):
        r2 = await widget_repo.create({"name": "r2"})
        r3 = await widget_repo.create({"name": "r3"})
        await widget_repo.delete(r3)

        found = await widget_repo.find({"where": {"or": [{"id": r2.id}, {"id": r3.id}]}})

        assert found == [r2]

    @pytest.mark.asyncio
    async def test_and_filter(self, widget_repo, seed_widgets):
        bolt, nut, gear = seed_widgets
        await widget_repo.delete(nut)

        found = await widget_repo.find({"where": {"and": [{"type": "a"}, {"price": {"gte": 0}}]}})

        assert found == [bolt]

    @pytest.mark.asyncio
    async def test_nested_filter(self, widget_repo, seed_widgets):
        bolt, nut, gear = seed_widgets
        await widget_repo.delete(bolt)

        where = {"or": [{"and": [{"type": "a"}, {"price": {"lt": 25}}]}, {"type": "b"}]}
        found = await widget_repo.find({"where": where, "order": "price"})

        assert found == [nut, gear]

    @pytest.mark.asyncio
    async def test_explicit_deleted_key_is_overridden(self, widget_repo, seed_widgets):
        await widget_repo.delete(seed_widgets[0])

        assert await widget_repo.find({"where": {"deleted": True}, "order": "id"}) == seed_widgets[1:]
        assert await widget_repo.find_including_deleted({"where": {"deleted": True}}) == [seed_widgets[0]]

    @pytest.mark.asyncio
    async def test_caller_filter_not_mutated(self, widget_repo, seed_widgets):
        where = {"or": [{"type": "a"}, {"type": "b"}]}
        filter = {"where": where, "order": ["name"]}

        first = await widget_repo.find(filter)
        second = await widget_repo.find(filter)

        assert first == second
        assert filter == {"where": {"or": [{"type": "a"}, {"type": "b"}]}, "order": ["name"]}

    @pytest.mark.asyncio
    async def test_find_one(self, widget_repo, seed_widgets):
        bolt = seed_widgets[0]
        await widget_repo.delete(bolt)

        assert await widget_repo.find_one({"where": {"name": "bolt"}}) is None
        assert await widget_repo.find_one_including_deleted({"where": {"name": "bolt"}}) is bolt

    @pytest.mark.asyncio
    async def test_include_relation(self, part_repo, seed_widgets, db_session):
        await part_repo.create({"name": "thread", "widget_id": seed_widgets[0].id})
        washer = await part_repo.create({"name": "washer", "widget_id": seed_widgets[1].id})
        await part_repo.delete(washer)
        db_session.expunge_all()

        found = await part_repo.find({"include": "widget"})

        assert [(p.name, p.widget.name) for p in found] == [("thread", "bolt")]

    @pytest.mark.asyncio
    async def test_count(self, widget_repo, seed_widgets):
        await widget_repo.delete(seed_widgets[0])

        assert await widget_repo.count() == 2
        assert await widget_repo.count({"type": "a"}) == 1
        assert await widget_repo.count({"or": [{"type": "a"}, {"type": "b"}]}) == 2
        assert await widget_repo.crud.count() == 3


class TestFindById:
    """Id lookups with the existence pre-check."""

    @pytest.mark.asyncio
    async def test_active_row(self, widget_repo, seed_widgets):
        assert await widget_repo.find_by_id(seed_widgets[1].id) is seed_widgets[1]

    @pytest.mark.asyncio
    async def test_soft_deleted_row_not_found(self, widget_repo, seed_widgets):
        nut = seed_widgets[1]
        await widget_repo.delete(nut)

        with pytest.raises(NotFoundError):
            await widget_repo.find_by_id(nut.id)

        found = await widget_repo.find_by_id_including_deleted(nut.id)
        assert found is nut
        assert found.deleted is True

    @pytest.mark.asyncio
    async def test_missing_and_deleted_look_the_same(self, widget_repo, seed_widgets):
        await widget_repo.delete(seed_widgets[0])

        with pytest.raises(NotFoundError) as deleted_exc:
            await widget_repo.find_by_id(seed_widgets[0].id)
        with pytest.raises(NotFoundError) as missing_exc:
            await widget_repo.find_by_id(999)

        assert deleted_exc.value.status_code == missing_exc.value.status_code == 404
        assert deleted_exc.value.code == missing_exc.value.code
        assert deleted_exc.value.detail == f"Widget with ID {seed_widgets[0].id} not found"
        assert missing_exc.value.detail == "Widget with ID 999 not found"

    @pytest.mark.asyncio
    async def test_including_deleted_missing_row(self, widget_repo):
        with pytest.raises(NotFoundError):
            await widget_repo.find_by_id_including_deleted(999)

    @pytest.mark.asyncio
    async def test_including_deleted_is_scoped_to_id(self, widget_repo, seed_widgets):
        found = await widget_repo.find_by_id_including_deleted(seed_widgets[2].id, {"where": {"type": "b"}})
        assert found is seed_widgets[2]

        with pytest.raises(NotFoundError):
            await widget_repo.find_by_id_including_deleted(seed_widgets[0].id, {"where": {"type": "b"}})

    @pytest.mark.asyncio
    async def test_filter_where_is_combined(self, widget_repo, seed_widgets):
        bolt = seed_widgets[0]

        assert await widget_repo.find_by_id(bolt.id, {"where": {"or": [{"type": "a"}, {"type": "z"}]}}) is bolt
        with pytest.raises(NotFoundError):
            await widget_repo.find_by_id(bolt.id, {"where": {"and": [{"type": "b"}]}})

    @pytest.mark.asyncio
    async def test_fetch_reapplies_exclusion(self, widget_repo, seed_widgets, monkeypatch):
        """A row deleted after the existence check is not returned by the fetch."""
        nut = seed_widgets[1]
        await widget_repo.delete(nut)

        async def stale_find_one(filter=None, options=None):
            return nut

        monkeypatch.setattr(widget_repo.crud, "find_one", stale_find_one)

        with pytest.raises(NotFoundError):
            await widget_repo.find_by_id(nut.id)


class TestUpdate:
    """update_all() / update_by_id()."""

    @pytest.mark.asyncio
    async def test_update_all_skips_soft_deleted_rows(self, widget_repo, frozen_clock, db_session):
        a1, a2, a3 = await widget_repo.create_all([
            {"name": "a1", "type": "a", "created_at": 1},
            {"name": "a2", "type": "a", "created_at": 1},
            {"name": "a3", "type": "a", "created_at": 1},
        ])
        await widget_repo.delete(a3)
        await widget_repo.crud.update_all({"updated_at": 1, "updated_by": None}, {"id": a3.id})

        count = await widget_repo.update_all({"name": "x"}, {"and": [{"type": "a"}]})

        assert count == 2
        for widget in (a1, a2):
            assert widget.name == "x"
            assert widget.updated_at == frozen_clock
            assert widget.updated_by == "42"

        db_session.expunge_all()
        untouched = await widget_repo.find_by_id_including_deleted(a3.id)
        assert untouched.name == "a3"
        assert untouched.updated_at == 1
        assert untouched.updated_by is None

    @pytest.mark.asyncio
    async def test_update_all_overrides_caller_audit_values(self, widget_repo, seed_widgets, frozen_clock):
        data = {"price": 1, "updated_by": "forged", "updated_at": 5}
        await widget_repo.update_all(data, {"name": "bolt"})

        assert seed_widgets[0].updated_by == "42"
        assert seed_widgets[0].updated_at == frozen_clock
        assert data == {"price": 1, "updated_by": "forged", "updated_at": 5}

    @pytest.mark.asyncio
    async def test_update_by_id(self, widget_repo, seed_widgets, frozen_clock):
        await widget_repo.update_by_id(seed_widgets[0].id, {"price": 77})

        assert seed_widgets[0].price == 77
        assert seed_widgets[0].updated_at == frozen_clock

    @pytest.mark.asyncio
    async def test_update_by_id_refuses_soft_deleted(self, widget_repo, seed_widgets):
        await widget_repo.delete(seed_widgets[0])

        with pytest.raises(NotFoundError):
            await widget_repo.update_by_id(seed_widgets[0].id, {"price": 77})


class TestSoftDelete:
    """delete() / delete_all() / delete_by_id() keep rows."""

    @pytest.mark.asyncio
    async def test_delete_stamps_and_keeps_row(self, widget_repo, seed_widgets, frozen_clock):
        bolt = seed_widgets[0]
        await widget_repo.delete(bolt)

        found = await widget_repo.find_by_id_including_deleted(bolt.id)
        assert found.deleted is True
        assert found.deleted_at == frozen_clock
        assert found.deleted_by == "42"
        assert await widget_repo.find({"order": "id"}) == seed_widgets[1:]

    @pytest.mark.asyncio
    async def test_delete_all(self, widget_repo, seed_widgets, frozen_clock):
        count = await widget_repo.delete_all({"type": "a"})

        assert count == 2
        assert await widget_repo.find() == [seed_widgets[2]]
        for widget in seed_widgets[:2]:
            assert widget.deleted is True
            assert widget.deleted_at == frozen_clock
            assert widget.deleted_by == "42"
        assert len(await widget_repo.find_including_deleted()) == 3

    @pytest.mark.asyncio
    async def test_delete_all_skips_already_deleted(self, widget_repo, seed_widgets):
        await widget_repo.delete(seed_widgets[0])

        assert await widget_repo.delete_all({"type": "a"}) == 1

    @pytest.mark.asyncio
    async def test_delete_by_id(self, widget_repo, seed_widgets, frozen_clock):
        nut = seed_widgets[1]
        await widget_repo.delete_by_id(nut.id)

        with pytest.raises(NotFoundError):
            await widget_repo.find_by_id(nut.id)
        found = await widget_repo.find_by_id_including_deleted(nut.id)
        assert (found.deleted, found.deleted_at, found.deleted_by) == (True, frozen_clock, "42")

    @pytest.mark.asyncio
    async def test_delete_by_id_missing(self, widget_repo):
        with pytest.raises(NotFoundError):
            await widget_repo.delete_by_id(999)

    @pytest.mark.asyncio
    async def test_restore_by_id(self, widget_repo, seed_widgets):
        nut = seed_widgets[1]
        await widget_repo.delete_by_id(nut.id)
        await widget_repo.restore_by_id(nut.id)

        found = await widget_repo.find_by_id(nut.id)
        assert (found.deleted, found.deleted_at, found.deleted_by) == (False, None, None)
        assert found.updated_by == "42"


class TestHardDelete:
    """*_hard methods remove rows for good."""

    @pytest.mark.asyncio
    async def test_delete_hard(self, widget_repo, seed_widgets):
        bolt_id = seed_widgets[0].id
        await widget_repo.delete_hard(seed_widgets[0])

        with pytest.raises(NotFoundError):
            await widget_repo.find_by_id_including_deleted(bolt_id)

    @pytest.mark.asyncio
    async def test_delete_by_id_hard_on_soft_deleted_row(self, widget_repo, seed_widgets):
        nut_id = seed_widgets[1].id
        await widget_repo.delete_by_id(nut_id)
        await widget_repo.delete_by_id_hard(nut_id)

        with pytest.raises(NotFoundError):
            await widget_repo.find_by_id_including_deleted(nut_id)

    @pytest.mark.asyncio
    async def test_delete_by_id_hard_missing(self, widget_repo):
        with pytest.raises(NotFoundError):
            await widget_repo.delete_by_id_hard(999)

    @pytest.mark.asyncio
    async def test_delete_all_hard_removes_active_and_deleted(self, widget_repo, seed_widgets):
        bolt, nut, gear = seed_widgets
        await widget_repo.delete(nut)

        count = await widget_repo.delete_all_hard({"type": "a"})

        assert count == 2
        remaining = await widget_repo.find_including_deleted()
        assert [w.name for w in remaining] == ["gear"]
        for widget_id in (bolt.id, nut.id):
            with pytest.raises(NotFoundError):
                await widget_repo.find_by_id_including_deleted(widget_id)


class TestFilterStrictness:
    """Unrecognised where shapes: rejected by default, ignored when lenient."""

    @pytest.mark.asyncio
    async def test_strict_by_default(self, widget_repo):
        with pytest.raises(InvalidFilterError):
            await widget_repo.find({"where": {"or": {"id": 1}}})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("where", [{"or": {"id": 1}}, {"and": "x"}])
    async def test_strict_rejects_malformed_clause(self, widget_repo, seed_widgets, where):
        with pytest.raises(InvalidFilterError):
            await widget_repo.count(where)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("where", [{"or": {"id": 1}}, {"and": "x"}])
    async def test_lenient_ignores_malformed_clause(self, db_session, seed_widgets, where):
        repo = SoftDeleteRepository.for_model(Widget, db_session, strict_filters=False)
        await repo.delete(seed_widgets[2])

        assert await repo.count(where) == 2

    @pytest.mark.asyncio
    async def test_lenient_keeps_plain_fields(self, db_session, seed_widgets):
        repo = SoftDeleteRepository.for_model(Widget, db_session, strict_filters=False)

        found = await repo.find({"where": {"or": "name = bolt", "type": "a"}, "order": "id"})

        assert found == seed_widgets[:2]
