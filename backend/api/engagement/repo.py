from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set
from uuid import UUID, uuid4

from sqlalchemy import Table, delete, func, insert, or_, select, update
from sqlalchemy.engine import Connection

from engagement.errors import ValidationError
from engagement.models import (
    Actor,
    ActorEngagement,
    Collection,
    ContentItem,
    Engagement,
)
from engagement.tables import (
    actor_bookmarks,
    actor_likes,
    actors,
    collection_items,
    collections,
    content_bookmarks,
    content_likes,
    content_topics,
    content_variants,
    contents,
)


# ----------------------------
# Helpers (safe + deterministic)
# ----------------------------

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """
    SQLite hands timestamps back without tzinfo even for timezone=True
    columns. Everything written here is UTC, so naive means UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def new_id() -> str:
    return str(uuid4())


def parse_id(value: Any, what: str = "id") -> str:
    try:
        return str(UUID(str(value)))
    except (TypeError, ValueError):
        raise ValidationError(f"Malformed {what}: {value!r}")


def _slug_family(column, base: str):
    # base itself plus base-<n>; base never contains LIKE wildcards.
    return or_(column == base, column.like(f"{base}-%"))


# ----------------------------
# Actors
# ----------------------------

def insert_actor(
    conn: Connection,
    *,
    actor_id: str,
    name: str,
    email: Optional[str],
    role: str,
    slug: str,
    now: datetime,
) -> None:
    conn.execute(
        insert(actors).values(
            id=actor_id,
            name=name,
            email=email,
            role=role,
            slug=slug,
            created_at=now,
            updated_at=now,
        )
    )


def get_actor_row(conn: Connection, actor_id: str) -> Optional[Dict[str, Any]]:
    row = conn.execute(select(actors).where(actors.c.id == actor_id)).mappings().first()
    return dict(row) if row else None


def actor_exists(conn: Connection, actor_id: str) -> bool:
    return conn.execute(select(actors.c.id).where(actors.c.id == actor_id)).first() is not None


def email_taken(conn: Connection, email: str) -> bool:
    return conn.execute(select(actors.c.id).where(actors.c.email == email)).first() is not None


def update_actor(conn: Connection, actor_id: str, **values: Any) -> None:
    conn.execute(update(actors).where(actors.c.id == actor_id).values(**values))


def delete_actor_row(conn: Connection, actor_id: str) -> int:
    return conn.execute(delete(actors).where(actors.c.id == actor_id)).rowcount


def actor_slugs_like(conn: Connection, base: str) -> Set[str]:
    rows = conn.execute(select(actors.c.slug).where(_slug_family(actors.c.slug, base)))
    return set(rows.scalars().all())


def list_actor_ids(conn: Connection) -> List[str]:
    return list(conn.execute(select(actors.c.id).order_by(actors.c.id)).scalars().all())


def load_actor(conn: Connection, actor_id: str) -> Optional[Actor]:
    row = get_actor_row(conn, actor_id)
    if row is None:
        return None

    liked = conn.execute(
        select(actor_likes.c.content_id, actor_likes.c.liked_at)
        .where(actor_likes.c.actor_id == actor_id)
        .order_by(actor_likes.c.seq)
    ).all()
    bookmarked = conn.execute(
        select(actor_bookmarks.c.content_id, actor_bookmarks.c.bookmarked_at)
        .where(actor_bookmarks.c.actor_id == actor_id)
        .order_by(actor_bookmarks.c.seq)
    ).all()

    return Actor(
        id=row["id"],
        name=row["name"],
        email=row["email"],
        role=row["role"],
        slug=row["slug"],
        work_count=int(row["work_count"] or 0),
        liked_content=tuple(ActorEngagement(cid, as_utc(at)) for cid, at in liked),
        bookmarks=tuple(ActorEngagement(cid, as_utc(at)) for cid, at in bookmarked),
        created_at=as_utc(row["created_at"]),
        updated_at=as_utc(row["updated_at"]),
    )


def latest_engagement_at(conn: Connection, actor_id: str) -> Optional[datetime]:
    liked = conn.execute(
        select(func.max(actor_likes.c.liked_at)).where(actor_likes.c.actor_id == actor_id)
    ).scalar()
    bookmarked = conn.execute(
        select(func.max(actor_bookmarks.c.bookmarked_at)).where(actor_bookmarks.c.actor_id == actor_id)
    ).scalar()
    stamps = [as_utc(s) for s in (liked, bookmarked) if s is not None]
    return max(stamps) if stamps else None


# ----------------------------
# Content
# ----------------------------

def insert_content(
    conn: Connection,
    *,
    content_id: str,
    author_id: Optional[str],
    category: str,
    status: str,
    now: datetime,
) -> None:
    conn.execute(
        insert(contents).values(
            id=content_id,
            author_id=author_id,
            category=category,
            status=status,
            bookmark_count=0,
            created_at=now,
            updated_at=now,
        )
    )


def upsert_variant(
    conn: Connection,
    content_id: str,
    lang: str,
    *,
    slug: str,
    title: str,
    body: str,
    summary: str,
) -> None:
    values = {"slug": slug, "title": title, "body": body, "summary": summary}
    updated = conn.execute(
        update(content_variants)
        .where(content_variants.c.content_id == content_id, content_variants.c.lang == lang)
        .values(**values)
    ).rowcount
    if not updated:
        conn.execute(insert(content_variants).values(content_id=content_id, lang=lang, **values))


def get_variants(conn: Connection, content_id: str) -> Dict[str, Dict[str, Any]]:
    rows = conn.execute(
        select(content_variants).where(content_variants.c.content_id == content_id)
    ).mappings().all()
    return {r["lang"]: dict(r) for r in rows}


def set_topics(conn: Connection, content_id: str, topics: Iterable[str]) -> None:
    conn.execute(delete(content_topics).where(content_topics.c.content_id == content_id))
    rows = [
        {"content_id": content_id, "topic": t, "position": i}
        for i, t in enumerate(dict.fromkeys(topics))
    ]
    if rows:
        conn.execute(insert(content_topics), rows)


def get_content_row(conn: Connection, content_id: str) -> Optional[Dict[str, Any]]:
    row = conn.execute(select(contents).where(contents.c.id == content_id)).mappings().first()
    return dict(row) if row else None


def content_exists(conn: Connection, content_id: str) -> bool:
    return conn.execute(select(contents.c.id).where(contents.c.id == content_id)).first() is not None


def existing_content_ids(conn: Connection, ids: Iterable[str]) -> Set[str]:
    ids = list(ids)
    if not ids:
        return set()
    rows = conn.execute(select(contents.c.id).where(contents.c.id.in_(ids)))
    return set(rows.scalars().all())


def update_content(conn: Connection, content_id: str, **values: Any) -> None:
    conn.execute(update(contents).where(contents.c.id == content_id).values(**values))


def content_slugs_like(conn: Connection, base: str) -> Set[str]:
    rows = conn.execute(
        select(content_variants.c.slug).where(_slug_family(content_variants.c.slug, base))
    )
    return set(rows.scalars().all())


def find_content_id_by_slug(conn: Connection, slug: str) -> Optional[str]:
    return conn.execute(
        select(content_variants.c.content_id).where(func.lower(content_variants.c.slug) == slug.lower())
    ).scalar()


def delete_content_rows(conn: Connection, content_id: str) -> int:
    for table in (content_variants, content_topics, content_likes, content_bookmarks):
        conn.execute(delete(table).where(table.c.content_id == content_id))
    return conn.execute(delete(contents).where(contents.c.id == content_id)).rowcount


def _topics_by_content(conn: Connection, ids: List[str]) -> Dict[str, List[str]]:
    out: Dict[str, List[str]] = {cid: [] for cid in ids}
    rows = conn.execute(
        select(content_topics.c.content_id, content_topics.c.topic)
        .where(content_topics.c.content_id.in_(ids))
        .order_by(content_topics.c.content_id, content_topics.c.position)
    ).all()
    for cid, topic in rows:
        out[cid].append(topic)
    return out


def load_contents(conn: Connection, ids: Iterable[str]) -> Dict[str, ContentItem]:
    ids = list(dict.fromkeys(ids))
    if not ids:
        return {}

    rows = conn.execute(select(contents).where(contents.c.id.in_(ids))).mappings().all()
    if not rows:
        return {}
    found = [r["id"] for r in rows]

    variants: Dict[str, Dict[str, Dict[str, Any]]] = {cid: {} for cid in found}
    for v in conn.execute(
        select(content_variants).where(content_variants.c.content_id.in_(found))
    ).mappings():
        variants[v["content_id"]][v["lang"]] = dict(v)

    topics = _topics_by_content(conn, found)

    likes: Dict[str, List[Engagement]] = {cid: [] for cid in found}
    for cid, aid, at in conn.execute(
        select(content_likes.c.content_id, content_likes.c.actor_id, content_likes.c.liked_at)
        .where(content_likes.c.content_id.in_(found))
        .order_by(content_likes.c.seq)
    ):
        likes[cid].append(Engagement(aid, as_utc(at)))

    bookmarks: Dict[str, List[Engagement]] = {cid: [] for cid in found}
    for cid, aid, at in conn.execute(
        select(content_bookmarks.c.content_id, content_bookmarks.c.actor_id, content_bookmarks.c.bookmarked_at)
        .where(content_bookmarks.c.content_id.in_(found))
        .order_by(content_bookmarks.c.seq)
    ):
        bookmarks[cid].append(Engagement(aid, as_utc(at)))

    out: Dict[str, ContentItem] = {}
    for r in rows:
        cid = r["id"]
        v = variants[cid]
        out[cid] = ContentItem(
            id=cid,
            author_id=r["author_id"],
            category=r["category"],
            status=r["status"],
            slugs={lang: x["slug"] for lang, x in v.items()},
            titles={lang: x["title"] for lang, x in v.items()},
            summaries={lang: x["summary"] for lang, x in v.items()},
            topics=tuple(topics[cid]),
            likes=tuple(likes[cid]),
            bookmarks=tuple(bookmarks[cid]),
            bookmark_count=int(r["bookmark_count"]),
            created_at=as_utc(r["created_at"]),
            updated_at=as_utc(r["updated_at"]),
        )
    return out


def load_content(conn: Connection, content_id: str) -> Optional[ContentItem]:
    return load_contents(conn, [content_id]).get(content_id)


def topic_signals(conn: Connection, ids: Iterable[str]) -> Dict[str, List[str]]:
    """
    Topics per content id, falling back to the category when an item has none.
    Ids that no longer exist are absent from the result.
    """
    ids = list(dict.fromkeys(ids))
    if not ids:
        return {}
    rows = conn.execute(
        select(contents.c.id, contents.c.category).where(contents.c.id.in_(ids))
    ).all()
    topics = _topics_by_content(conn, [cid for cid, _ in rows])
    out: Dict[str, List[str]] = {}
    for cid, category in rows:
        out[cid] = topics[cid] or ([category] if category else [])
    return out


def published_matching_topics(
    conn: Connection,
    topics: List[str],
    exclude: Iterable[str],
    limit: int,
) -> List[str]:
    """Published content whose topics or category intersect `topics`, ordered by id."""
    if not topics or limit <= 0:
        return []
    exclude = list(exclude)
    tagged = select(content_topics.c.content_id).where(content_topics.c.topic.in_(topics))
    stmt = (
        select(contents.c.id)
        .where(contents.c.status == "published")
        .where(or_(contents.c.id.in_(tagged), contents.c.category.in_(topics)))
    )
    if exclude:
        stmt = stmt.where(contents.c.id.not_in(exclude))
    stmt = stmt.order_by(contents.c.id).limit(int(limit))
    return list(conn.execute(stmt).scalars().all())


def recent_published(conn: Connection, limit: int, offset: int = 0) -> List[str]:
    stmt = (
        select(contents.c.id)
        .where(contents.c.status == "published")
        .order_by(contents.c.created_at.desc(), contents.c.id.asc())
        .offset(int(offset))
        .limit(int(limit))
    )
    return list(conn.execute(stmt).scalars().all())


def count_published(conn: Connection) -> int:
    return int(
        conn.execute(
            select(func.count()).select_from(contents).where(contents.c.status == "published")
        ).scalar_one()
    )


def author_content_ids(conn: Connection, author_id: str, include_drafts: bool = False) -> List[str]:
    stmt = select(contents.c.id).where(contents.c.author_id == author_id)
    if not include_drafts:
        stmt = stmt.where(contents.c.status == "published")
    stmt = stmt.order_by(contents.c.created_at.desc(), contents.c.id.asc())
    return list(conn.execute(stmt).scalars().all())


def recount_works(conn: Connection, author_id: str) -> int:
    """Re-derive actors.work_count from the content rows the actor authored."""
    count = conn.execute(
        select(func.count()).select_from(contents).where(contents.c.author_id == author_id)
    ).scalar_one()
    conn.execute(update(actors).where(actors.c.id == author_id).values(work_count=int(count)))
    return int(count)


# ----------------------------
# Relationship rows (either side)
# ----------------------------

def relation_stamp(
    conn: Connection, table: Table, stamp: str, actor_id: str, content_id: str
) -> Optional[datetime]:
    at = conn.execute(
        select(table.c[stamp]).where(table.c.actor_id == actor_id, table.c.content_id == content_id)
    ).scalar()
    return as_utc(at) if at is not None else None


def insert_relation(
    conn: Connection, table: Table, stamp: str, actor_id: str, content_id: str, at: datetime
) -> None:
    conn.execute(insert(table).values(actor_id=actor_id, content_id=content_id, **{stamp: at}))


def delete_relation(conn: Connection, table: Table, actor_id: str, content_id: str) -> int:
    return conn.execute(
        delete(table).where(table.c.actor_id == actor_id, table.c.content_id == content_id)
    ).rowcount


def relation_rows(
    conn: Connection, table: Table, stamp: str, *, actor_id: Optional[str] = None, content_id: Optional[str] = None
) -> Dict[tuple, datetime]:
    """(actor_id, content_id) -> timestamp for every row matching the filters."""
    stmt = select(table.c.actor_id, table.c.content_id, table.c[stamp]).order_by(table.c.seq)
    if actor_id is not None:
        stmt = stmt.where(table.c.actor_id == actor_id)
    if content_id is not None:
        stmt = stmt.where(table.c.content_id == content_id)
    return {(a, c): as_utc(at) for a, c, at in conn.execute(stmt)}


def delete_relations_for(
    conn: Connection, table: Table, *, actor_id: Optional[str] = None, content_id: Optional[str] = None
) -> List[tuple]:
    """Delete matching rows and return the (actor_id, content_id) pairs removed."""
    pairs = list(relation_rows(conn, table, _stamp_of(table), actor_id=actor_id, content_id=content_id))
    if not pairs:
        return []
    stmt = delete(table)
    if actor_id is not None:
        stmt = stmt.where(table.c.actor_id == actor_id)
    if content_id is not None:
        stmt = stmt.where(table.c.content_id == content_id)
    conn.execute(stmt)
    return pairs


def _stamp_of(table: Table) -> str:
    return "liked_at" if "liked_at" in table.c else "bookmarked_at"


def recount_bookmarks(conn: Connection, content_id: str) -> int:
    """Re-derive contents.bookmark_count from the bookmark list; returns the new count."""
    count = conn.execute(
        select(func.count()).select_from(content_bookmarks).where(content_bookmarks.c.content_id == content_id)
    ).scalar_one()
    conn.execute(update(contents).where(contents.c.id == content_id).values(bookmark_count=int(count)))
    return int(count)


# ----------------------------
# Collections
# ----------------------------

def insert_collection(
    conn: Connection,
    *,
    collection_id: str,
    actor_id: str,
    name: str,
    description: str,
    is_system: bool,
    now: datetime,
    curated_at: Optional[datetime] = None,
) -> None:
    conn.execute(
        insert(collections).values(
            id=collection_id,
            actor_id=actor_id,
            name=name,
            description=description,
            is_system=is_system,
            created_at=now,
            updated_at=now,
            curated_at=curated_at,
        )
    )


def get_collection_row(conn: Connection, actor_id: str, collection_id: str) -> Optional[Dict[str, Any]]:
    row = conn.execute(
        select(collections).where(collections.c.id == collection_id, collections.c.actor_id == actor_id)
    ).mappings().first()
    return dict(row) if row else None


def find_collection_by_name(conn: Connection, actor_id: str, name: str) -> Optional[Dict[str, Any]]:
    row = conn.execute(
        select(collections)
        .where(collections.c.actor_id == actor_id, collections.c.name == name)
        .order_by(collections.c.created_at, collections.c.id)
    ).mappings().first()
    return dict(row) if row else None


def update_collection(conn: Connection, collection_id: str, **values: Any) -> None:
    conn.execute(update(collections).where(collections.c.id == collection_id).values(**values))


def delete_collection_row(conn: Connection, collection_id: str) -> int:
    conn.execute(delete(collection_items).where(collection_items.c.collection_id == collection_id))
    return conn.execute(delete(collections).where(collections.c.id == collection_id)).rowcount


def set_collection_items(conn: Connection, collection_id: str, content_ids: Iterable[str]) -> None:
    conn.execute(delete(collection_items).where(collection_items.c.collection_id == collection_id))
    rows = [
        {"collection_id": collection_id, "content_id": cid, "position": i}
        for i, cid in enumerate(dict.fromkeys(content_ids))
    ]
    if rows:
        conn.execute(insert(collection_items), rows)


def collection_item_ids(conn: Connection, collection_id: str) -> List[str]:
    return list(
        conn.execute(
            select(collection_items.c.content_id)
            .where(collection_items.c.collection_id == collection_id)
            .order_by(collection_items.c.position)
        ).scalars().all()
    )


def to_collection(conn: Connection, row: Dict[str, Any]) -> Collection:
    return Collection(
        id=row["id"],
        actor_id=row["actor_id"],
        name=row["name"],
        description=row["description"] or "",
        content_ids=tuple(collection_item_ids(conn, row["id"])),
        is_system=bool(row["is_system"]),
        created_at=as_utc(row["created_at"]),
        updated_at=as_utc(row["updated_at"]),
    )


def list_collection_rows(conn: Connection, actor_id: str) -> List[Dict[str, Any]]:
    rows = conn.execute(
        select(collections)
        .where(collections.c.actor_id == actor_id)
        .order_by(collections.c.created_at, collections.c.id)
    ).mappings().all()
    return [dict(r) for r in rows]


def delete_items_for_content(conn: Connection, content_id: str) -> int:
    return conn.execute(
        delete(collection_items).where(collection_items.c.content_id == content_id)
    ).rowcount


def delete_collections_for_actor(conn: Connection, actor_id: str) -> int:
    ids = list(
        conn.execute(select(collections.c.id).where(collections.c.actor_id == actor_id)).scalars().all()
    )
    for cid in ids:
        delete_collection_row(conn, cid)
    return len(ids)
