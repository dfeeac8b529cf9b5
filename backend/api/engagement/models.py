from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Generic, Optional, TypeVar, Union

LANGUAGES: tuple[str, ...] = ("en", "hi", "ur")

CATEGORIES: tuple[str, ...] = (
    "poem",
    "ghazal",
    "sher",
    "nazm",
    "rubai",
    "marsiya",
    "qataa",
    "other",
)

TOPICS: tuple[str, ...] = (
    "love",
    "nature",
    "history",
    "philosophy",
    "spirituality",
    "life",
    "society",
    "culture",
)

ROLES: tuple[str, ...] = ("reader", "author", "admin")


class EngagementKind(str, Enum):
    LIKE = "like"
    BOOKMARK = "bookmark"


class EngagementAction(str, Enum):
    ADD = "add"
    REMOVE = "remove"


@dataclass(frozen=True)
class EngagementEvent:
    actor_id: str
    content_id: str
    kind: EngagementKind
    action: EngagementAction


@dataclass(frozen=True)
class Engagement:
    """One entry of a content item's likes or bookmarks list."""

    actor_id: str
    at: datetime


@dataclass(frozen=True)
class ActorEngagement:
    """One entry of an actor's likedContent or bookmarks list."""

    content_id: str
    at: datetime


@dataclass(frozen=True)
class ContentItem:
    id: str
    author_id: Optional[str]
    category: str
    status: str
    slugs: dict[str, str]
    titles: dict[str, str]
    summaries: dict[str, str]
    topics: tuple[str, ...]
    likes: tuple[Engagement, ...]
    bookmarks: tuple[Engagement, ...]
    bookmark_count: int
    created_at: datetime
    updated_at: datetime

    @property
    def like_count(self) -> int:
        return len(self.likes)


@dataclass(frozen=True)
class Actor:
    id: str
    name: str
    email: Optional[str]
    role: str
    slug: str
    work_count: int
    liked_content: tuple[ActorEngagement, ...]
    bookmarks: tuple[ActorEngagement, ...]
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class AuthorWorks:
    author: Actor
    works: tuple[ContentItem, ...]


@dataclass(frozen=True)
class PublishedPage:
    items: tuple[ContentItem, ...]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return -(-self.total // self.limit) if self.limit else 0


@dataclass(frozen=True)
class Collection:
    id: str
    actor_id: str
    name: str
    description: str
    content_ids: tuple[str, ...]
    is_system: bool
    created_at: datetime
    updated_at: datetime


# ----------------------------
# Lazily resolved references
# ----------------------------

T = TypeVar("T")


@dataclass(frozen=True)
class Unresolved:
    id: str


@dataclass(frozen=True)
class Resolved(Generic[T]):
    id: str
    value: T = field(compare=False)


Reference = Union[Unresolved, Resolved]


def resolve_references(
    refs: list[Unresolved],
    loader: Callable[[list[str]], dict[str, T]],
) -> list[Reference]:
    """
    Resolve references in one batch. Ids the loader cannot find stay Unresolved.
    """
    found = loader([r.id for r in refs])
    out: list[Reference] = []
    for ref in refs:
        value = found.get(ref.id)
        out.append(Resolved(ref.id, value) if value is not None else ref)
    return out
