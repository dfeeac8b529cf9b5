from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


ContentStatus = Literal["draft", "published"]
Category = Literal["poem", "ghazal", "sher", "nazm", "rubai", "marsiya", "qataa", "other"]
Topic = Literal["love", "nature", "history", "philosophy", "spirituality", "life", "society", "culture"]
Role = Literal["reader", "author", "admin"]
Lang = Literal["en", "hi", "ur"]


class MultilingualIn(BaseModel):
    en: str = Field(..., min_length=1, max_length=500)
    hi: str = Field(..., min_length=1, max_length=500)
    ur: str = Field(..., min_length=1, max_length=500)


class MultilingualOptionalIn(BaseModel):
    en: Optional[str] = Field(None, max_length=500)
    hi: Optional[str] = Field(None, max_length=500)
    ur: Optional[str] = Field(None, max_length=500)


class MultilingualTextIn(BaseModel):
    en: Optional[str] = None
    hi: Optional[str] = None
    ur: Optional[str] = None


# -----------------------------
# Content
# -----------------------------

class ContentCreateIn(BaseModel):
    title: MultilingualIn
    body: Optional[MultilingualTextIn] = None
    summary: Optional[MultilingualOptionalIn] = None
    topics: List[Topic] = Field(default_factory=list, max_length=10)
    category: Category = "poem"
    status: ContentStatus = "published"


class ContentPatchIn(BaseModel):
    title: Optional[MultilingualOptionalIn] = None
    body: Optional[MultilingualTextIn] = None
    summary: Optional[MultilingualOptionalIn] = None
    topics: Optional[List[Topic]] = Field(None, max_length=10)
    category: Optional[Category] = None


class TransitionIn(BaseModel):
    to_status: ContentStatus


class EngagementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    actor_id: str
    at: datetime


class ContentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    author_id: Optional[str] = None
    category: str
    status: ContentStatus
    slugs: Dict[str, str]
    titles: Dict[str, str]
    summaries: Dict[str, str]
    topics: List[str]
    likes: List[EngagementOut]
    bookmarks: List[EngagementOut]
    like_count: int
    bookmark_count: int
    created_at: datetime
    updated_at: datetime


class PublishedPageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    items: List[ContentOut]
    page: int
    limit: int
    total: int
    pages: int


# -----------------------------
# Actors
# -----------------------------

class ActorCreateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: Optional[str] = Field(None, max_length=320)
    role: Role = "reader"


class ActorRenameIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class ActorSlugIn(BaseModel):
    slug: str = Field(..., min_length=1, max_length=180)


class ActorEngagementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    content_id: str
    at: datetime


class ActorOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: Optional[str] = None
    role: Role
    slug: str
    work_count: int
    liked_content: List[ActorEngagementOut]
    bookmarks: List[ActorEngagementOut]
    created_at: datetime
    updated_at: datetime


class AuthorWorksOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    author: ActorOut
    works: List[ContentOut]


# -----------------------------
# Engagement
# -----------------------------

class ToggleIn(BaseModel):
    action: Literal["add", "remove"]


class ToggleOut(BaseModel):
    added: Optional[bool] = None
    removed: Optional[bool] = None


# -----------------------------
# Collections
# -----------------------------

class CollectionCreateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    content_ids: List[str] = Field(default_factory=list)


class CollectionPatchIn(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    content_ids: Optional[List[str]] = None


class CollectionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    actor_id: str
    name: str
    description: str
    content_ids: List[str]
    is_system: bool
    created_at: datetime
    updated_at: datetime


class CollectionIdOut(BaseModel):
    id: str


class CuratedOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    collection_id: str
    topics: List[str]
    content_ids: List[str]
    cold_start: bool


# -----------------------------
# Slugs / maintenance
# -----------------------------

class SlugOut(BaseModel):
    slug: str


class PurgeOut(BaseModel):
    removed: int
