"""Tests for CollectionManager: an actor's named collections."""

import threading
import uuid

import pytest
from engagement import repo
from engagement.collection_manager import CURATED_DESCRIPTION, CURATED_NAME, CollectionManager
from engagement.errors import NotFound, ValidationError
from engagement.locks import KeyedLocks
from engagement.models import Resolved, Unresolved
from sqlalchemy import exc as sa_exc


class TestCreate:
    def test_creates_with_members_in_order(self, collections, reader, make_content):
        p1, p2 = make_content("First"), make_content("Second")
        cid = collections.create(reader.id, "Favourites", "Night reading", [p2.id, p1.id])

        got = collections.get(reader.id, cid)
        assert got.name == "Favourites"
        assert got.description == "Night reading"
        assert got.content_ids == (p2.id, p1.id)
        assert got.is_system is False

    def test_unresolved_members_dropped(self, collections, reader, poem):
        cid = collections.create(reader.id, "Mixed", content_ids=[poem.id, str(uuid.uuid4()), "garbage", poem.id])
        assert collections.get(reader.id, cid).content_ids == (poem.id,)

    @pytest.mark.parametrize("name", ["", "   ", "x" * 101])
    def test_bad_names(self, collections, reader, name):
        with pytest.raises(ValidationError):
            collections.create(reader.id, name)

    def test_long_description(self, collections, reader):
        with pytest.raises(ValidationError):
            collections.create(reader.id, "Ok", "d" * 501)

    def test_reserved_name(self, collections, reader):
        with pytest.raises(ValidationError):
            collections.create(reader.id, CURATED_NAME)

    def test_unknown_actor(self, collections):
        with pytest.raises(NotFound):
            collections.create(str(uuid.uuid4()), "Orphan")


class TestEdit:
    def test_omitted_fields_unchanged(self, collections, reader, poem):
        cid = collections.create(reader.id, "Before", "Keep me", [poem.id])
        collections.edit(reader.id, cid, name="After")

        got = collections.get(reader.id, cid)
        assert got.name == "After"
        assert got.description == "Keep me"
        assert got.content_ids == (poem.id,)

    def test_replace_members(self, collections, reader, make_content):
        p1, p2 = make_content("First"), make_content("Second")
        cid = collections.create(reader.id, "List", content_ids=[p1.id])
        collections.edit(reader.id, cid, content_ids=[p2.id, str(uuid.uuid4())])
        assert collections.get(reader.id, cid).content_ids == (p2.id,)

    def test_bumps_updated_at(self, collections, reader):
        cid = collections.create(reader.id, "List")
        before = collections.get(reader.id, cid).updated_at
        collections.edit(reader.id, cid, description="new")
        assert collections.get(reader.id, cid).updated_at >= before

    def test_other_actors_collection(self, collections, make_actor):
        owner, other = make_actor("Owner"), make_actor("Other")
        cid = collections.create(owner.id, "Mine")
        with pytest.raises(NotFound):
            collections.edit(other.id, cid, name="Stolen")
        assert collections.get(owner.id, cid).name == "Mine"

    def test_invalid_patch_leaves_state(self, collections, reader):
        cid = collections.create(reader.id, "Mine")
        with pytest.raises(ValidationError):
            collections.edit(reader.id, cid, name="")
        assert collections.get(reader.id, cid).name == "Mine"


class TestDelete:
    def test_delete_is_idempotent(self, collections, reader):
        cid = collections.create(reader.id, "Temp")
        collections.delete(reader.id, cid)
        collections.delete(reader.id, cid)
        collections.delete(reader.id, str(uuid.uuid4()))
        with pytest.raises(NotFound):
            collections.get(reader.id, cid)


class TestSystemCollection:
    def test_upsert_creates_then_replaces(self, collections, reader, make_content):
        p1, p2 = make_content("First"), make_content("Second")
        first = collections.upsert_system_collection(reader.id, CURATED_NAME, [p1.id], CURATED_DESCRIPTION)
        second = collections.upsert_system_collection(reader.id, CURATED_NAME, [p2.id], "Fresh picks")

        assert first == second
        named = [c for c in collections.list(reader.id) if c.name == CURATED_NAME]
        assert len(named) == 1
        assert named[0].content_ids == (p2.id,)
        assert named[0].description == "Fresh picks"
        assert named[0].is_system is True

    def test_concurrent_upserts_make_one_collection(self, collections, reader, poem):
        ids = []

        def refresh():
            ids.append(collections.upsert_system_collection(reader.id, CURATED_NAME, [poem.id], CURATED_DESCRIPTION))

        threads = [threading.Thread(target=refresh) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(set(ids)) == 1
        assert [c.name for c in collections.list(reader.id)] == [CURATED_NAME]

    def test_managers_without_shared_locks_make_one_collection(self, engine, reader, poem, monkeypatch):
        # Two managers stand in for two worker processes: nothing in-process
        # serializes them, and both see "no collection yet" before inserting.
        managers = [CollectionManager(engine, locks=KeyedLocks()) for _ in range(2)]
        both_looked = threading.Barrier(2, timeout=10)
        waited = set()
        find = repo.find_collection_by_name

        def find_then_wait(conn, actor_id, name):
            row = find(conn, actor_id, name)
            if threading.get_ident() not in waited:
                waited.add(threading.get_ident())
                both_looked.wait()
            return row

        monkeypatch.setattr(repo, "find_collection_by_name", find_then_wait)

        ids, errors = [], []

        def refresh(manager):
            try:
                ids.append(manager.upsert_system_collection(reader.id, CURATED_NAME, [poem.id], CURATED_DESCRIPTION))
            except Exception as e:  # surfaced by the assertion below
                errors.append(e)

        threads = [threading.Thread(target=refresh, args=(m,)) for m in managers]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(ids) == 2 and ids[0] == ids[1]
        monkeypatch.undo()
        named = [c for c in managers[0].list(reader.id) if c.name == CURATED_NAME]
        assert len(named) == 1
        assert named[0].content_ids == (poem.id,)

    def test_system_name_unique_per_actor_in_storage(self, engine, reader):
        now = repo.utcnow()
        with engine.begin() as conn:
            repo.insert_collection(
                conn, collection_id=repo.new_id(), actor_id=reader.id, name=CURATED_NAME,
                description="", is_system=True, now=now, curated_at=now,
            )
        with pytest.raises(sa_exc.IntegrityError):
            with engine.begin() as conn:
                repo.insert_collection(
                    conn, collection_id=repo.new_id(), actor_id=reader.id, name=CURATED_NAME,
                    description="", is_system=True, now=now, curated_at=now,
                )


class TestReads:
    def test_list_in_creation_order(self, collections, reader):
        a = collections.create(reader.id, "A")
        b = collections.create(reader.id, "B")
        assert [c.id for c in collections.list(reader.id)] == [a, b]

    def test_find_by_name(self, collections, reader):
        cid = collections.create(reader.id, "Evening")
        assert collections.find_by_name(reader.id, "Evening").id == cid
        assert collections.find_by_name(reader.id, "Morning") is None

    def test_members_resolve_to_content(self, engine, collections, reader, make_content):
        p1, p2 = make_content("First"), make_content("Second")
        cid = collections.create(reader.id, "Refs", content_ids=[p1.id, p2.id])
        with engine.begin() as conn:
            repo.delete_content_rows(conn, p2.id)

        refs = collections.members(reader.id, cid)
        assert isinstance(refs[0], Resolved)
        assert refs[0].value.slugs["en"] == "first"
        assert refs[1] == Unresolved(p2.id)

    def test_purge_content_drops_membership(self, collections, reader, poem):
        cid = collections.create(reader.id, "Refs", content_ids=[poem.id])
        assert collections.purge_content(poem.id) == 1
        assert collections.get(reader.id, cid).content_ids == ()

    def test_purge_actor_drops_collections(self, collections, reader):
        collections.create(reader.id, "A")
        collections.create(reader.id, "B")
        assert collections.purge_actor(reader.id) == 2
        assert collections.list(reader.id) == []
