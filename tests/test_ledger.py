"""Tests for EngagementLedger: both sides of likes and bookmarks."""

import threading
import uuid

import pytest
from engagement import repo
from engagement.errors import NotFound, Timeout, ValidationError
from engagement.models import EngagementAction, EngagementEvent, EngagementKind
from engagement.tables import actor_bookmarks, actor_likes, content_bookmarks, content_likes


def _bookmarked_by(ledger, content_id):
    return [e.actor_id for e in ledger.content_engagement(content_id).bookmarks]


def _actor_bookmarks(engine, actor_id):
    with engine.begin() as conn:
        return [e.content_id for e in repo.load_actor(conn, actor_id).bookmarks]


def _content_row(engine, content_id):
    with engine.begin() as conn:
        return repo.get_content_row(conn, content_id)


class TestBookmarkScenario:
    def test_add_add_remove_remove(self, engine, ledger, reader, poem):
        assert ledger.add_bookmark(reader.id, poem.id) == {"added": True}
        assert ledger.add_bookmark(reader.id, poem.id) == {"added": False}
        assert ledger.remove_bookmark(reader.id, poem.id) == {"removed": True}
        assert ledger.remove_bookmark(reader.id, poem.id) == {"removed": False}

        item = ledger.content_engagement(poem.id)
        assert item.bookmark_count == 0
        assert item.bookmarks == ()
        assert _actor_bookmarks(engine, reader.id) == []

    def test_add_twice_is_idempotent(self, engine, ledger, reader, poem):
        ledger.add_bookmark(reader.id, poem.id)
        ledger.add_bookmark(reader.id, poem.id)

        item = ledger.content_engagement(poem.id)
        assert [e.actor_id for e in item.bookmarks] == [reader.id]
        assert item.bookmark_count == 1
        assert _actor_bookmarks(engine, reader.id) == [poem.id]

    def test_both_sides_share_timestamp(self, engine, ledger, reader, poem):
        ledger.add_bookmark(reader.id, poem.id)
        item = ledger.content_engagement(poem.id)
        actor = ledger.actor_engagement(reader.id)
        assert item.bookmarks[0].at == actor.bookmarks[0].at

    def test_counter_tracks_list_across_actors(self, ledger, make_actor, poem):
        actors = [make_actor(f"Reader {i}") for i in range(3)]
        for a in actors:
            ledger.add_bookmark(a.id, poem.id)
        ledger.remove_bookmark(actors[1].id, poem.id)

        item = ledger.content_engagement(poem.id)
        assert item.bookmark_count == len(item.bookmarks) == 2
        assert [e.actor_id for e in item.bookmarks] == [actors[0].id, actors[2].id]


class TestLikes:
    def test_like_roundtrip(self, ledger, reader, poem):
        assert ledger.add_like(reader.id, poem.id) == {"added": True}
        assert ledger.add_like(reader.id, poem.id) == {"added": False}

        item = ledger.content_engagement(poem.id)
        assert item.like_count == 1
        assert item.bookmark_count == 0
        assert [e.content_id for e in ledger.actor_engagement(reader.id).liked_content] == [poem.id]

        assert ledger.remove_like(reader.id, poem.id) == {"removed": True}
        assert ledger.content_engagement(poem.id).like_count == 0

    def test_likes_and_bookmarks_are_independent(self, ledger, reader, poem):
        ledger.add_like(reader.id, poem.id)
        assert ledger.add_bookmark(reader.id, poem.id) == {"added": True}
        ledger.remove_like(reader.id, poem.id)
        assert ledger.content_engagement(poem.id).bookmark_count == 1


class TestToggle:
    def test_toggle_by_name(self, ledger, reader, poem):
        assert ledger.toggle(reader.id, poem.id, "bookmark", "add") == {"added": True}
        assert ledger.toggle(reader.id, poem.id, "bookmark", "remove") == {"removed": True}

    def test_apply_event(self, ledger, reader, poem):
        event = EngagementEvent(reader.id, poem.id, EngagementKind.LIKE, EngagementAction.ADD)
        assert ledger.apply(event) == {"added": True}

    def test_unknown_kind(self, ledger, reader, poem):
        with pytest.raises(ValidationError):
            ledger.toggle(reader.id, poem.id, "follow", "add")


class TestFailures:
    def test_unknown_content(self, ledger, reader):
        with pytest.raises(NotFound):
            ledger.add_bookmark(reader.id, str(uuid.uuid4()))

    def test_unknown_actor_leaves_state_untouched(self, engine, ledger, poem):
        with pytest.raises(NotFound):
            ledger.add_bookmark(str(uuid.uuid4()), poem.id)
        assert _content_row(engine, poem.id)["bookmark_count"] == 0

    def test_malformed_id(self, ledger, poem):
        with pytest.raises(ValidationError):
            ledger.add_like("not-an-id", poem.id)

    def test_remove_on_unknown_content(self, ledger, reader):
        with pytest.raises(NotFound):
            ledger.remove_bookmark(reader.id, str(uuid.uuid4()))

    def test_lock_timeout(self, ledger, locks, reader, poem):
        with locks.hold((reader.id, poem.id)):
            with pytest.raises(Timeout):
                ledger.add_bookmark(reader.id, poem.id, timeout=0.01)
        assert ledger.add_bookmark(reader.id, poem.id) == {"added": True}
        assert len(locks) == 0


class TestDriftReconciliation:
    def test_actor_side_only_is_healed_on_add(self, engine, ledger, reader, poem):
        with engine.begin() as conn:
            repo.insert_relation(conn, actor_bookmarks, "bookmarked_at", reader.id, poem.id, repo.utcnow())

        assert ledger.add_bookmark(reader.id, poem.id) == {"added": False}
        assert _bookmarked_by(ledger, poem.id) == [reader.id]
        assert _content_row(engine, poem.id)["bookmark_count"] == 1

    def test_content_side_only_is_healed_on_add(self, engine, ledger, reader, poem):
        with engine.begin() as conn:
            repo.insert_relation(conn, content_likes, "liked_at", reader.id, poem.id, repo.utcnow())

        assert ledger.add_like(reader.id, poem.id) == {"added": False}
        liked = ledger.actor_engagement(reader.id).liked_content
        assert [e.content_id for e in liked] == [poem.id]

    def test_one_sided_remove_clears_both(self, engine, ledger, reader, poem):
        with engine.begin() as conn:
            repo.insert_relation(conn, content_bookmarks, "bookmarked_at", reader.id, poem.id, repo.utcnow())

        assert ledger.remove_bookmark(reader.id, poem.id) == {"removed": True}
        assert ledger.content_engagement(poem.id).bookmark_count == 0
        assert _actor_bookmarks(engine, reader.id) == []

    def test_read_repair_on_content_read(self, engine, ledger, reader, poem):
        with engine.begin() as conn:
            repo.insert_relation(conn, content_bookmarks, "bookmarked_at", reader.id, poem.id, repo.utcnow())

        item = ledger.content_engagement(poem.id)
        assert item.bookmark_count == 1
        assert _actor_bookmarks(engine, reader.id) == [poem.id]

    def test_read_repair_on_actor_read(self, engine, ledger, reader, poem):
        with engine.begin() as conn:
            repo.insert_relation(conn, actor_likes, "liked_at", reader.id, poem.id, repo.utcnow())

        ledger.actor_engagement(reader.id)
        assert [e.actor_id for e in ledger.content_engagement(poem.id).likes] == [reader.id]

    def test_counter_drift_is_recounted(self, engine, ledger, reader, poem):
        ledger.add_bookmark(reader.id, poem.id)
        with engine.begin() as conn:
            repo.update_content(conn, poem.id, bookmark_count=7)

        assert ledger.content_engagement(poem.id).bookmark_count == 1

    def test_dangling_row_is_dropped(self, engine, ledger, reader, poem):
        ghost = str(uuid.uuid4())
        with engine.begin() as conn:
            repo.insert_relation(conn, actor_bookmarks, "bookmarked_at", reader.id, ghost, repo.utcnow())

        assert ledger.repair(actor_id=reader.id) == 1
        assert _actor_bookmarks(engine, reader.id) == []

    def test_repair_needs_a_target(self, ledger):
        with pytest.raises(ValidationError):
            ledger.repair()


class TestPurge:
    def test_purge_content_clears_every_actor(self, engine, ledger, make_actor, poem):
        a1, a2 = make_actor("Reader One"), make_actor("Reader Two")
        ledger.add_bookmark(a1.id, poem.id)
        ledger.add_bookmark(a2.id, poem.id)
        ledger.add_like(a1.id, poem.id)

        assert ledger.purge_content(poem.id) == 3
        assert _actor_bookmarks(engine, a1.id) == []
        assert _actor_bookmarks(engine, a2.id) == []
        assert ledger.actor_engagement(a1.id).liked_content == ()

    def test_purge_actor_recounts(self, engine, ledger, make_actor, make_content):
        a1, a2 = make_actor("Reader One"), make_actor("Reader Two")
        p1, p2 = make_content("First"), make_content("Second")
        for p in (p1, p2):
            ledger.add_bookmark(a1.id, p.id)
            ledger.add_bookmark(a2.id, p.id)

        assert ledger.purge_actor(a1.id) == 2
        for p in (p1, p2):
            item = ledger.content_engagement(p.id)
            assert item.bookmark_count == 1
            assert [e.actor_id for e in item.bookmarks] == [a2.id]
        assert _actor_bookmarks(engine, a1.id) == []


class TestConcurrency:
    def test_same_pair_stays_symmetric(self, engine, ledger, reader, poem):
        errors = []

        def worker(n: int):
            try:
                for i in range(10):
                    if (n + i) % 2:
                        ledger.add_bookmark(reader.id, poem.id, timeout=10)
                    else:
                        ledger.remove_bookmark(reader.id, poem.id, timeout=10)
            except Exception as e:  # surfaced below
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        item = ledger.content_engagement(poem.id)
        on_content = {e.actor_id for e in item.bookmarks}
        on_actor = set(_actor_bookmarks(engine, reader.id))
        assert (reader.id in on_content) == (poem.id in on_actor)
        assert item.bookmark_count == len(item.bookmarks)
