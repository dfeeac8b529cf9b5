from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    true,
)

metadata = MetaData()

# ----------------------------
# Actor aggregate
# ----------------------------

actors = Table(
    "actors",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(100), nullable=False),
    Column("email", String(320), nullable=True, unique=True),
    Column("role", String(16), nullable=False, default="reader"),
    Column("slug", String(200), nullable=False, unique=True),
    # Derived: recounted from contents.author_id whenever a work is added or removed.
    Column("work_count", Integer, nullable=False, default=0),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

# Mirror side of the engagement relationships.
actor_likes = Table(
    "actor_likes",
    metadata,
    Column("seq", Integer, primary_key=True, autoincrement=True),
    Column("actor_id", String(36), nullable=False),
    Column("content_id", String(36), nullable=False),
    Column("liked_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint("actor_id", "content_id", name="uq_actor_likes_pair"),
    Index("ix_actor_likes_content", "content_id"),
)

actor_bookmarks = Table(
    "actor_bookmarks",
    metadata,
    Column("seq", Integer, primary_key=True, autoincrement=True),
    Column("actor_id", String(36), nullable=False),
    Column("content_id", String(36), nullable=False),
    Column("bookmarked_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint("actor_id", "content_id", name="uq_actor_bookmarks_pair"),
    Index("ix_actor_bookmarks_content", "content_id"),
)

# ----------------------------
# Content aggregate
# ----------------------------

contents = Table(
    "contents",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("author_id", String(36), nullable=True),
    Column("category", String(32), nullable=False, default="poem"),
    Column("status", String(16), nullable=False, default="published"),
    # Derived: always recomputed from content_bookmarks inside the writing transaction.
    Column("bookmark_count", Integer, nullable=False, default=0),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Index("ix_contents_status_created", "status", "created_at"),
)

# One row per language; slug is unique across every language of every item.
content_variants = Table(
    "content_variants",
    metadata,
    Column("content_id", String(36), primary_key=True),
    Column("lang", String(8), primary_key=True),
    Column("slug", String(200), nullable=False, unique=True),
    Column("title", String(500), nullable=False),
    Column("body", Text, nullable=False, default=""),
    Column("summary", String(500), nullable=False, default=""),
)

content_topics = Table(
    "content_topics",
    metadata,
    Column("content_id", String(36), primary_key=True),
    Column("topic", String(64), primary_key=True),
    Column("position", Integer, nullable=False),
    Index("ix_content_topics_topic", "topic"),
)

content_likes = Table(
    "content_likes",
    metadata,
    Column("seq", Integer, primary_key=True, autoincrement=True),
    Column("content_id", String(36), nullable=False),
    Column("actor_id", String(36), nullable=False),
    Column("liked_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint("content_id", "actor_id", name="uq_content_likes_pair"),
    Index("ix_content_likes_actor", "actor_id"),
)

content_bookmarks = Table(
    "content_bookmarks",
    metadata,
    Column("seq", Integer, primary_key=True, autoincrement=True),
    Column("content_id", String(36), nullable=False),
    Column("actor_id", String(36), nullable=False),
    Column("bookmarked_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint("content_id", "actor_id", name="uq_content_bookmarks_pair"),
    Index("ix_content_bookmarks_actor", "actor_id"),
)

# ----------------------------
# Collections (owned by an actor)
# ----------------------------

collections = Table(
    "collections",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("actor_id", String(36), nullable=False),
    Column("name", String(100), nullable=False),
    Column("description", String(500), nullable=False, default=""),
    Column("is_system", Boolean, nullable=False, default=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    # Last time curation wrote the members; user edits only move updated_at.
    Column("curated_at", DateTime(timezone=True), nullable=True),
    Index("ix_collections_actor_name", "actor_id", "name"),
)

# At most one system collection per (actor, name), across processes.
Index(
    "uq_collections_system_name",
    collections.c.actor_id,
    collections.c.name,
    unique=True,
    postgresql_where=collections.c.is_system == true(),
    sqlite_where=collections.c.is_system == true(),
)

collection_items = Table(
    "collection_items",
    metadata,
    Column("collection_id", String(36), primary_key=True),
    Column("content_id", String(36), primary_key=True),
    Column("position", Integer, nullable=False),
    Index("ix_collection_items_content", "content_id"),
)
