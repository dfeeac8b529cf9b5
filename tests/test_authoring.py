"""Tests for content and actor authoring: slug assignment and cascades."""

import uuid

import pytest
from engagement import authoring, repo
from engagement.errors import Conflict, NotFound, ValidationError
from engagement.workflow import WorkflowError


def _titles(en: str) -> dict:
    return {"en": en, "hi": f"{en} (hi)", "ur": f"{en} (ur)"}


class TestContentSlugs:
    def test_same_title_three_times(self, make_content):
        items = [make_content("Midnight") for _ in range(3)]
        assert [i.slugs["en"] for i in items] == ["midnight", "midnight-1", "midnight-2"]
        assert [i.slugs["hi"] for i in items] == ["midnight-hi", "midnight-hi-1", "midnight-hi-2"]
        assert [i.slugs["ur"] for i in items] == ["midnight-ur", "midnight-ur-1", "midnight-ur-2"]

    def test_variants_derive_from_english_title(self, engine):
        item = authoring.create_content(engine, titles={"en": "Moonlight", "hi": "चाँदनी", "ur": "چاندنی"})
        assert item.slugs == {"en": "moonlight", "hi": "moonlight-hi", "ur": "moonlight-ur"}
        assert item.titles["hi"] == "चाँदनी"

    def test_edit_without_title_change_keeps_slugs(self, engine, make_content):
        make_content("Midnight")
        second = make_content("Midnight")
        edited = authoring.edit_content(engine, second.id, topics=["nature"], titles={"hi": "Aadhi Raat"})
        assert edited.slugs == second.slugs
        assert edited.topics == ("nature",)
        assert edited.titles["hi"] == "Aadhi Raat"

    def test_case_only_title_change_keeps_own_suffix(self, engine, make_content):
        make_content("Midnight")
        second = make_content("Midnight")
        edited = authoring.edit_content(engine, second.id, titles={"en": "MIDNIGHT"})
        assert edited.slugs["en"] == "midnight-1"

    def test_title_change_reslugs_every_language(self, engine, poem):
        edited = authoring.edit_content(engine, poem.id, titles={"en": "Dawn Chorus"})
        assert edited.slugs == {"en": "dawn-chorus", "hi": "dawn-chorus-hi", "ur": "dawn-chorus-ur"}
        assert edited.titles["hi"] == poem.titles["hi"]

    def test_freed_slug_is_reusable(self, engine, poem, make_content):
        authoring.edit_content(engine, poem.id, titles={"en": "Dawn"})
        assert make_content("Midnight").slugs["en"] == "midnight"

    def test_lookup_by_slug_ignores_case(self, engine, poem):
        assert authoring.find_content_by_slug(engine, "MIDNIGHT-HI").id == poem.id

    def test_lookup_missing_slug(self, engine):
        with pytest.raises(NotFound):
            authoring.find_content_by_slug(engine, "nowhere")

    def test_resolve_preview(self, engine, poem):
        assert authoring.resolve_slug(engine, "Midnight", "en") == "midnight-1"
        assert authoring.resolve_slug(engine, "Midnight", "en", scope_id=poem.id) == "midnight"


class TestContentValidation:
    def test_every_language_needs_a_title(self, engine):
        with pytest.raises(ValidationError):
            authoring.create_content(engine, titles={"en": "Only English"})

    def test_unknown_language(self, engine):
        with pytest.raises(ValidationError):
            authoring.create_content(engine, titles={**_titles("Midnight"), "fr": "Minuit"})

    def test_title_too_long(self, engine):
        with pytest.raises(ValidationError):
            authoring.create_content(engine, titles=_titles("x" * 501))

    def test_unknown_topic(self, engine):
        with pytest.raises(ValidationError):
            authoring.create_content(engine, titles=_titles("Midnight"), topics=["sports"])

    def test_too_many_topics(self, engine):
        with pytest.raises(ValidationError):
            authoring.create_content(engine, titles=_titles("Midnight"), topics=[f"t{i}" for i in range(11)])

    def test_unknown_category(self, engine):
        with pytest.raises(ValidationError):
            authoring.create_content(engine, titles=_titles("Midnight"), category="limerick")

    def test_unknown_author(self, engine):
        with pytest.raises(NotFound):
            authoring.create_content(engine, titles=_titles("Midnight"), author_id=str(uuid.uuid4()))

    def test_edit_missing_content(self, engine):
        with pytest.raises(NotFound):
            authoring.edit_content(engine, str(uuid.uuid4()), topics=["love"])


class TestWorkflow:
    def test_unpublish_and_publish(self, engine, poem):
        assert authoring.transition_content(engine, poem.id, "draft").status == "draft"
        assert authoring.transition_content(engine, poem.id, "Published").status == "published"

    def test_same_state_rejected(self, engine, poem):
        with pytest.raises(WorkflowError):
            authoring.transition_content(engine, poem.id, "published")

    def test_unknown_state_rejected(self, engine, poem):
        with pytest.raises(WorkflowError):
            authoring.transition_content(engine, poem.id, "archived")


class TestDeleteContent:
    def test_cascades_to_actors_and_collections(self, engine, ledger, collections, reader, poem):
        ledger.add_bookmark(reader.id, poem.id)
        ledger.add_like(reader.id, poem.id)
        cid = collections.create(reader.id, "Keep", content_ids=[poem.id])

        authoring.delete_content(engine, poem.id, ledger=ledger, collections=collections)

        actor = authoring.get_actor(engine, reader.id)
        assert actor.bookmarks == () and actor.liked_content == ()
        assert collections.get(reader.id, cid).content_ids == ()
        with pytest.raises(NotFound):
            authoring.get_content(engine, poem.id)

    def test_delete_missing(self, engine):
        with pytest.raises(NotFound):
            authoring.delete_content(engine, str(uuid.uuid4()))


class TestActors:
    def test_slug_collisions(self, make_actor):
        first, second = make_actor("Mirza Ghalib"), make_actor("Mirza Ghalib")
        assert (first.slug, second.slug) == ("mirza-ghalib", "mirza-ghalib-1")

    def test_rename_to_same_name_keeps_slug(self, engine, make_actor):
        make_actor("Mirza Ghalib")
        second = make_actor("Mirza Ghalib")
        renamed = authoring.rename_actor(engine, second.id, "Mirza Ghalib")
        assert renamed.slug == "mirza-ghalib-1"

    def test_rename_reslugs(self, engine, reader):
        renamed = authoring.rename_actor(engine, reader.id, "Faiz Ahmad Faiz")
        assert renamed.name == "Faiz Ahmad Faiz"
        assert renamed.slug == "faiz-ahmad-faiz"
        assert renamed.updated_at >= reader.updated_at

    def test_requested_slug_taken(self, engine, make_actor):
        make_actor("Mir Taqi Mir")
        other = make_actor("Someone Else")
        assert authoring.set_actor_slug(engine, other.id, "mir-taqi-mir").slug == "mir-taqi-mir-1"

    def test_duplicate_email(self, make_actor):
        make_actor("One", email="poet@example.com")
        with pytest.raises(Conflict):
            make_actor("Two", email="Poet@Example.com")

    def test_unknown_role(self, make_actor):
        with pytest.raises(ValidationError):
            make_actor("Someone", role="superuser")

    def test_blank_name(self, make_actor):
        with pytest.raises(ValidationError):
            make_actor("   ")

    def test_delete_cascades(self, engine, ledger, collections, reader, poem):
        ledger.add_bookmark(reader.id, poem.id)
        collections.create(reader.id, "Mine", content_ids=[poem.id])

        authoring.delete_actor(engine, reader.id, ledger=ledger, collections=collections)

        item = authoring.get_content(engine, poem.id)
        assert item.bookmarks == ()
        assert item.bookmark_count == 0
        with engine.begin() as conn:
            assert repo.list_collection_rows(conn, reader.id) == []
        with pytest.raises(NotFound):
            authoring.get_actor(engine, reader.id)


class TestAuthorWorks:
    def test_work_count_follows_create_and_delete(self, engine, make_actor, make_content):
        author = make_actor("Poet", role="author")
        assert author.work_count == 0

        first = make_content("First", author_id=author.id)
        make_content("Second", author_id=author.id, status="draft")
        assert authoring.get_actor(engine, author.id).work_count == 2

        authoring.delete_content(engine, first.id)
        assert authoring.get_actor(engine, author.id).work_count == 1

    def test_drafts_listed_only_on_request(self, engine, make_actor, make_content):
        author = make_actor("Poet", role="author")
        old = make_content("Old", author_id=author.id)
        draft = make_content("Draft", author_id=author.id, status="draft")
        new = make_content("New", author_id=author.id)
        make_content("Someone Else's")

        public = authoring.author_works(engine, author.id)
        assert [w.id for w in public.works] == [new.id, old.id]
        assert public.author.work_count == 3

        own = authoring.author_works(engine, author.id, include_drafts=True)
        assert [w.id for w in own.works] == [new.id, draft.id, old.id]

    def test_drifted_count_corrected_on_read(self, engine, make_actor, make_content):
        author = make_actor("Poet", role="author")
        make_content("Only", author_id=author.id)
        with engine.begin() as conn:
            repo.update_actor(conn, author.id, work_count=42)
        assert authoring.author_works(engine, author.id).author.work_count == 1

    def test_unknown_author(self, engine):
        with pytest.raises(NotFound):
            authoring.author_works(engine, str(uuid.uuid4()))


class TestPublishedListing:
    def test_pages_newest_first(self, engine, make_content):
        items = [make_content(f"Poem {i}") for i in range(5)]
        make_content("Hidden", status="draft")

        first = authoring.list_published(engine, page=1, limit=2)
        assert [i.id for i in first.items] == [items[4].id, items[3].id]
        assert (first.total, first.pages) == (5, 3)

        last = authoring.list_published(engine, page=3, limit=2)
        assert [i.id for i in last.items] == [items[0].id]

    def test_page_past_the_end_is_empty(self, engine, poem):
        page = authoring.list_published(engine, page=4, limit=10)
        assert page.items == ()
        assert page.total == 1

    @pytest.mark.parametrize("page, limit", [(0, 10), (1, 0), (1, 101)])
    def test_bad_paging(self, engine, page, limit):
        with pytest.raises(ValidationError):
            authoring.list_published(engine, page=page, limit=limit)
