"""
Thin authoring and account flows.

These are the collaborators that create, edit and delete content and
actors. They exist here so slugs are assigned at creation time and so
deletions cascade through the ledger and the collections.
"""
from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional

from sqlalchemy import exc as sa_exc
from sqlalchemy.engine import Connection, Engine

from engagement import repo
from engagement.collection_manager import CollectionManager
from engagement.db import storage_errors
from engagement.errors import Conflict, NotFound, ValidationError
from engagement.ledger import EngagementLedger
from engagement.models import (
    CATEGORIES,
    LANGUAGES,
    ROLES,
    TOPICS,
    Actor,
    AuthorWorks,
    ContentItem,
    PublishedPage,
)
from engagement.slugs import SlugIdentityResolver, normalize
from engagement.workflow import STATES, validate_transition

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 500
MAX_SUMMARY_LENGTH = 500
MAX_TOPICS = 10
MAX_ACTOR_NAME_LENGTH = 100
DEFAULT_PAGE_LIMIT = 10
MAX_PAGE_LIMIT = 100

# Concurrent writers may grab the same slug between lookup and insert.
_SLUG_RACE_RETRIES = 3


# ----------------------------
# Validation
# ----------------------------

def _check_langs(values: Dict[str, str], what: str) -> None:
    unknown = sorted(set(values) - set(LANGUAGES))
    if unknown:
        raise ValidationError(f"Unknown language tag(s) in {what}: {unknown}")


def _clean_titles(titles: Dict[str, str], *, partial: bool) -> Dict[str, str]:
    _check_langs(titles, "title")
    out: Dict[str, str] = {}
    for lang in LANGUAGES:
        value = (titles.get(lang) or "").strip()
        if not value:
            if partial and lang not in titles:
                continue
            raise ValidationError(f"Title is required for language '{lang}'")
        if len(value) > MAX_TITLE_LENGTH:
            raise ValidationError(f"Title ({lang}) cannot exceed {MAX_TITLE_LENGTH} characters")
        out[lang] = value
    return out


def _clean_text(values: Optional[Dict[str, str]], what: str, limit: Optional[int]) -> Dict[str, str]:
    values = values or {}
    _check_langs(values, what)
    out = {}
    for lang, value in values.items():
        value = (value or "").strip()
        if limit is not None and len(value) > limit:
            raise ValidationError(f"{what.capitalize()} ({lang}) cannot exceed {limit} characters")
        out[lang] = value
    return out


def _clean_topics(topics: Iterable[str]) -> list[str]:
    topics = list(dict.fromkeys(t.strip().lower() for t in topics))
    if len(topics) > MAX_TOPICS:
        raise ValidationError(f"Cannot have more than {MAX_TOPICS} topics")
    unknown = [t for t in topics if t not in TOPICS]
    if unknown:
        raise ValidationError(f"Unknown topic(s): {unknown}. Allowed: {list(TOPICS)}")
    return topics


def _clean_category(category: str) -> str:
    category = (category or "").strip().lower()
    if category not in CATEGORIES:
        raise ValidationError(f"Unknown category: {category!r}. Allowed: {list(CATEGORIES)}")
    return category


def _clean_actor_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Name is required")
    if len(name) > MAX_ACTOR_NAME_LENGTH:
        raise ValidationError(f"Name cannot exceed {MAX_ACTOR_NAME_LENGTH} characters")
    return name


def _with_slug_retries(fn):
    last: Optional[sa_exc.IntegrityError] = None
    for _ in range(_SLUG_RACE_RETRIES):
        try:
            return fn()
        except sa_exc.IntegrityError as e:
            last = e
            logger.info("Slug taken concurrently, re-resolving: %s", e.orig)
    raise Conflict(f"Could not claim a unique slug: {last}")


# ----------------------------
# Slugs
# ----------------------------

def _content_slugs(
    conn: Connection,
    resolver: SlugIdentityResolver,
    source: str,
    exclude: Iterable[str] = (),
) -> Dict[str, str]:
    exclude = list(exclude)
    out = {}
    for lang in LANGUAGES:
        base = normalize(source, lang)
        out[lang] = resolver.probe(base, repo.content_slugs_like(conn, base), exclude)
    return out


def _actor_slug(
    conn: Connection,
    resolver: SlugIdentityResolver,
    base: str,
    exclude: Iterable[str] = (),
) -> str:
    return resolver.probe(base, repo.actor_slugs_like(conn, base), exclude)


def resolve_slug(
    engine: Engine,
    text: str,
    lang: Optional[str] = None,
    scope_id: Optional[str] = None,
    resolver: Optional[SlugIdentityResolver] = None,
) -> str:
    """
    Preview the slug `text` would get. With a language tag the content
    slug space is searched, otherwise the actor slug space. `scope_id` names
    the record being edited, whose own slugs do not count as collisions.
    """
    resolver = resolver or SlugIdentityResolver()
    base = normalize(text, lang)
    with storage_errors(), engine.begin() as conn:
        if lang is None:
            exclude = []
            if scope_id is not None:
                row = repo.get_actor_row(conn, repo.parse_id(scope_id, "actor id"))
                exclude = [row["slug"]] if row else []
            return _actor_slug(conn, resolver, base, exclude)

        exclude = []
        if scope_id is not None:
            variants = repo.get_variants(conn, repo.parse_id(scope_id, "content id"))
            exclude = [v["slug"] for v in variants.values()]
        return resolver.probe(base, repo.content_slugs_like(conn, base), exclude)


# ----------------------------
# Content
# ----------------------------

def create_content(
    engine: Engine,
    *,
    titles: Dict[str, str],
    author_id: Optional[str] = None,
    bodies: Optional[Dict[str, str]] = None,
    summaries: Optional[Dict[str, str]] = None,
    topics: Iterable[str] = (),
    category: str = "poem",
    status: str = "published",
    resolver: Optional[SlugIdentityResolver] = None,
) -> ContentItem:
    resolver = resolver or SlugIdentityResolver()
    titles = _clean_titles(titles, partial=False)
    bodies = _clean_text(bodies, "body", None)
    summaries = _clean_text(summaries, "summary", MAX_SUMMARY_LENGTH)
    topics = _clean_topics(topics)
    category = _clean_category(category)
    status = (status or "").strip().lower()
    if status not in STATES:
        raise ValidationError(f"Unknown status: {status!r}. Allowed: {STATES}")
    if author_id is not None:
        author_id = repo.parse_id(author_id, "author id")

    def _create() -> ContentItem:
        with storage_errors(), engine.begin() as conn:
            if author_id is not None and not repo.actor_exists(conn, author_id):
                raise NotFound(f"Author not found: {author_id}")

            content_id = repo.new_id()
            # Every language variant is derived from the English title.
            slugs = _content_slugs(conn, resolver, titles["en"])
            repo.insert_content(
                conn,
                content_id=content_id,
                author_id=author_id,
                category=category,
                status=status,
                now=repo.utcnow(),
            )
            for lang in LANGUAGES:
                repo.upsert_variant(
                    conn,
                    content_id,
                    lang,
                    slug=slugs[lang],
                    title=titles[lang],
                    body=bodies.get(lang, ""),
                    summary=summaries.get(lang, ""),
                )
            repo.set_topics(conn, content_id, topics)
            if author_id is not None:
                repo.recount_works(conn, author_id)
            item = repo.load_content(conn, content_id)
        assert item is not None
        return item

    item = _with_slug_retries(_create)
    logger.info("Created content %s with slugs %s", item.id, item.slugs)
    return item


def edit_content(
    engine: Engine,
    content_id: str,
    *,
    titles: Optional[Dict[str, str]] = None,
    bodies: Optional[Dict[str, str]] = None,
    summaries: Optional[Dict[str, str]] = None,
    topics: Optional[Iterable[str]] = None,
    category: Optional[str] = None,
    resolver: Optional[SlugIdentityResolver] = None,
) -> ContentItem:
    """
    Patch a content item. Slugs are re-resolved only when the English title
    actually changes; the item's current slugs never count as collisions.
    """
    resolver = resolver or SlugIdentityResolver()
    content_id = repo.parse_id(content_id, "content id")
    titles = _clean_titles(titles, partial=True) if titles else {}
    bodies = _clean_text(bodies, "body", None)
    summaries = _clean_text(summaries, "summary", MAX_SUMMARY_LENGTH)
    clean_topics = _clean_topics(topics) if topics is not None else None
    clean_category = _clean_category(category) if category is not None else None

    def _edit() -> ContentItem:
        with storage_errors(), engine.begin() as conn:
            variants = repo.get_variants(conn, content_id)
            if not variants or not repo.content_exists(conn, content_id):
                raise NotFound(f"Content not found: {content_id}")

            slugs = {lang: v["slug"] for lang, v in variants.items()}
            new_en = titles.get("en")
            if new_en is not None and new_en != variants["en"]["title"]:
                slugs = _content_slugs(conn, resolver, new_en, exclude=slugs.values())
                logger.info("Title changed for %s, slugs now %s", content_id, slugs)

            for lang, v in variants.items():
                repo.upsert_variant(
                    conn,
                    content_id,
                    lang,
                    slug=slugs[lang],
                    title=titles.get(lang, v["title"]),
                    body=bodies.get(lang, v["body"]),
                    summary=summaries.get(lang, v["summary"]),
                )
            if clean_topics is not None:
                repo.set_topics(conn, content_id, clean_topics)

            values = {"updated_at": repo.utcnow()}
            if clean_category is not None:
                values["category"] = clean_category
            repo.update_content(conn, content_id, **values)
            item = repo.load_content(conn, content_id)
        assert item is not None
        return item

    return _with_slug_retries(_edit)


def transition_content(engine: Engine, content_id: str, to_status: str) -> ContentItem:
    content_id = repo.parse_id(content_id, "content id")
    with storage_errors(), engine.begin() as conn:
        row = repo.get_content_row(conn, content_id)
        if row is None:
            raise NotFound(f"Content not found: {content_id}")
        target = validate_transition(row["status"], to_status)
        repo.update_content(conn, content_id, status=target, updated_at=repo.utcnow())
        item = repo.load_content(conn, content_id)

    logger.info("Content %s: %s -> %s", content_id, row["status"], target)
    assert item is not None
    return item


def get_content(engine: Engine, content_id: str) -> ContentItem:
    content_id = repo.parse_id(content_id, "content id")
    with storage_errors(), engine.begin() as conn:
        item = repo.load_content(conn, content_id)
    if item is None:
        raise NotFound(f"Content not found: {content_id}")
    return item


def find_content_by_slug(engine: Engine, slug: str) -> ContentItem:
    """Look a content item up by its slug in any language, ignoring case."""
    with storage_errors(), engine.begin() as conn:
        content_id = repo.find_content_id_by_slug(conn, slug.strip())
        item = repo.load_content(conn, content_id) if content_id else None
    if item is None:
        raise NotFound(f"Content not found for slug: {slug}")
    return item


def list_published(engine: Engine, page: int = 1, limit: int = DEFAULT_PAGE_LIMIT) -> PublishedPage:
    """One page of published content, newest first."""
    if page < 1:
        raise ValidationError("page must be >= 1")
    if not 1 <= limit <= MAX_PAGE_LIMIT:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_LIMIT}")

    with storage_errors(), engine.begin() as conn:
        total = repo.count_published(conn)
        ids = repo.recent_published(conn, limit, offset=(page - 1) * limit)
        found = repo.load_contents(conn, ids)
    return PublishedPage(items=tuple(found[cid] for cid in ids if cid in found), page=page, limit=limit, total=total)


def delete_content(
    engine: Engine,
    content_id: str,
    *,
    ledger: Optional[EngagementLedger] = None,
    collections: Optional[CollectionManager] = None,
) -> None:
    """
    Cascade a deletion: actors' likes and bookmarks first, then collection
    memberships, then the content rows. Each step is idempotent, so a
    failed deletion can simply be retried.
    """
    content_id = repo.parse_id(content_id, "content id")
    with storage_errors(), engine.begin() as conn:
        row = repo.get_content_row(conn, content_id)
    if row is None:
        raise NotFound(f"Content not found: {content_id}")

    (ledger or EngagementLedger(engine)).purge_content(content_id)
    (collections or CollectionManager(engine)).purge_content(content_id)
    with storage_errors(), engine.begin() as conn:
        repo.delete_content_rows(conn, content_id)
        if row["author_id"] is not None:
            repo.recount_works(conn, row["author_id"])

    logger.info("Deleted content %s", content_id)


# ----------------------------
# Actors
# ----------------------------

def create_actor(
    engine: Engine,
    *,
    name: str,
    email: Optional[str] = None,
    role: str = "reader",
    resolver: Optional[SlugIdentityResolver] = None,
) -> Actor:
    resolver = resolver or SlugIdentityResolver()
    name = _clean_actor_name(name)
    role = (role or "").strip().lower()
    if role not in ROLES:
        raise ValidationError(f"Unknown role: {role!r}. Allowed: {list(ROLES)}")
    email = email.strip().lower() if email else None

    def _create() -> Actor:
        with storage_errors(), engine.begin() as conn:
            if email is not None and repo.email_taken(conn, email):
                raise Conflict(f"Email already registered: {email}")
            actor_id = repo.new_id()
            slug = _actor_slug(conn, resolver, normalize(name))
            repo.insert_actor(
                conn, actor_id=actor_id, name=name, email=email, role=role, slug=slug, now=repo.utcnow()
            )
            actor = repo.load_actor(conn, actor_id)
        assert actor is not None
        return actor

    actor = _with_slug_retries(_create)
    logger.info("Created actor %s (%s) with slug %s", actor.id, actor.role, actor.slug)
    return actor


def _reslug_actor(
    engine: Engine,
    actor_id: str,
    base: str,
    resolver: SlugIdentityResolver,
    **values,
) -> Actor:
    def _update() -> Actor:
        with storage_errors(), engine.begin() as conn:
            row = repo.get_actor_row(conn, actor_id)
            if row is None:
                raise NotFound(f"Actor not found: {actor_id}")
            slug = _actor_slug(conn, resolver, base, exclude=[row["slug"]])
            repo.update_actor(conn, actor_id, slug=slug, updated_at=repo.utcnow(), **values)
            actor = repo.load_actor(conn, actor_id)
        assert actor is not None
        return actor

    return _with_slug_retries(_update)


def rename_actor(
    engine: Engine,
    actor_id: str,
    name: str,
    resolver: Optional[SlugIdentityResolver] = None,
) -> Actor:
    """Change the display name and re-derive the slug, excluding the actor's own."""
    actor_id = repo.parse_id(actor_id, "actor id")
    name = _clean_actor_name(name)
    actor = _reslug_actor(engine, actor_id, normalize(name), resolver or SlugIdentityResolver(), name=name)
    logger.info("Renamed actor %s; slug now %s", actor_id, actor.slug)
    return actor


def set_actor_slug(
    engine: Engine,
    actor_id: str,
    requested: str,
    resolver: Optional[SlugIdentityResolver] = None,
) -> Actor:
    """Claim a requested slug, suffixed if another actor already holds it."""
    actor_id = repo.parse_id(actor_id, "actor id")
    actor = _reslug_actor(engine, actor_id, normalize(requested), resolver or SlugIdentityResolver())
    logger.info("Actor %s slug set to %s", actor_id, actor.slug)
    return actor


def get_actor(engine: Engine, actor_id: str) -> Actor:
    actor_id = repo.parse_id(actor_id, "actor id")
    with storage_errors(), engine.begin() as conn:
        actor = repo.load_actor(conn, actor_id)
    if actor is None:
        raise NotFound(f"Actor not found: {actor_id}")
    return actor


def author_works(engine: Engine, author_id: str, *, include_drafts: bool = False) -> AuthorWorks:
    """
    An author's works, newest first. work_count counts every work the actor
    authored, drafts included, and is recounted here so a drifted counter is
    corrected on read.
    """
    author_id = repo.parse_id(author_id, "author id")
    with storage_errors(), engine.begin() as conn:
        if not repo.actor_exists(conn, author_id):
            raise NotFound(f"Author not found: {author_id}")
        repo.recount_works(conn, author_id)
        ids = repo.author_content_ids(conn, author_id, include_drafts=include_drafts)
        found = repo.load_contents(conn, ids)
        author = repo.load_actor(conn, author_id)
    assert author is not None
    return AuthorWorks(author=author, works=tuple(found[cid] for cid in ids if cid in found))


def delete_actor(
    engine: Engine,
    actor_id: str,
    *,
    ledger: Optional[EngagementLedger] = None,
    collections: Optional[CollectionManager] = None,
) -> None:
    actor_id = repo.parse_id(actor_id, "actor id")
    with storage_errors(), engine.begin() as conn:
        if not repo.actor_exists(conn, actor_id):
            raise NotFound(f"Actor not found: {actor_id}")

    (ledger or EngagementLedger(engine)).purge_actor(actor_id)
    (collections or CollectionManager(engine)).purge_actor(actor_id)
    with storage_errors(), engine.begin() as conn:
        repo.delete_actor_row(conn, actor_id)

    logger.info("Deleted actor %s", actor_id)
