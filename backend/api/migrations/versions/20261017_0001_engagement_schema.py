"""Engagement schema: actors, content variants, both sides of likes and
bookmarks, collections.

- actors.work_count and contents.bookmark_count are derived counters
- collections.curated_at tracks the last curation write
- uq_collections_system_name keeps one system collection per (actor, name)
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20261017_0001_engagement_schema"
down_revision = None
branch_labels = None
depends_on = None


def _stamped(name: str) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=False)


def _relation(table: str, left: str, right: str, stamp: str, index_on: str) -> None:
    op.create_table(
        table,
        sa.Column("seq", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(left, sa.String(36), nullable=False),
        sa.Column(right, sa.String(36), nullable=False),
        _stamped(stamp),
        sa.UniqueConstraint(left, right, name=f"uq_{table}_pair"),
    )
    op.create_index(f"ix_{table}_{index_on.split('_')[0]}", table, [index_on])


def upgrade() -> None:
    op.create_table(
        "actors",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(320), nullable=True, unique=True),
        sa.Column("role", sa.String(16), nullable=False, server_default="reader"),
        sa.Column("slug", sa.String(200), nullable=False, unique=True),
        sa.Column("work_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _stamped("created_at"),
        _stamped("updated_at"),
    )
    _relation("actor_likes", "actor_id", "content_id", "liked_at", "content_id")
    _relation("actor_bookmarks", "actor_id", "content_id", "bookmarked_at", "content_id")

    op.create_table(
        "contents",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("author_id", sa.String(36), nullable=True),
        sa.Column("category", sa.String(32), nullable=False, server_default="poem"),
        sa.Column("status", sa.String(16), nullable=False, server_default="published"),
        sa.Column("bookmark_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _stamped("created_at"),
        _stamped("updated_at"),
    )
    op.create_index("ix_contents_status_created", "contents", ["status", "created_at"])

    op.create_table(
        "content_variants",
        sa.Column("content_id", sa.String(36), primary_key=True),
        sa.Column("lang", sa.String(8), primary_key=True),
        sa.Column("slug", sa.String(200), nullable=False, unique=True),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("body", sa.Text(), nullable=False, server_default=""),
        sa.Column("summary", sa.String(500), nullable=False, server_default=""),
    )

    op.create_table(
        "content_topics",
        sa.Column("content_id", sa.String(36), primary_key=True),
        sa.Column("topic", sa.String(64), primary_key=True),
        sa.Column("position", sa.Integer(), nullable=False),
    )
    op.create_index("ix_content_topics_topic", "content_topics", ["topic"])

    _relation("content_likes", "content_id", "actor_id", "liked_at", "actor_id")
    _relation("content_bookmarks", "content_id", "actor_id", "bookmarked_at", "actor_id")

    op.create_table(
        "collections",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("actor_id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.String(500), nullable=False, server_default=""),
        sa.Column("is_system", sa.Boolean(), nullable=False, server_default=sa.false()),
        _stamped("created_at"),
        _stamped("updated_at"),
        sa.Column("curated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_collections_actor_name", "collections", ["actor_id", "name"])
    op.create_index(
        "uq_collections_system_name",
        "collections",
        ["actor_id", "name"],
        unique=True,
        postgresql_where=sa.text("is_system"),
        sqlite_where=sa.text("is_system = 1"),
    )

    op.create_table(
        "collection_items",
        sa.Column("collection_id", sa.String(36), primary_key=True),
        sa.Column("content_id", sa.String(36), primary_key=True),
        sa.Column("position", sa.Integer(), nullable=False),
    )
    op.create_index("ix_collection_items_content", "collection_items", ["content_id"])


def downgrade() -> None:
    # Indexes go with their tables.
    for table in (
        "collection_items",
        "collections",
        "content_bookmarks",
        "content_likes",
        "content_topics",
        "content_variants",
        "contents",
        "actor_bookmarks",
        "actor_likes",
        "actors",
    ):
        op.drop_table(table)
