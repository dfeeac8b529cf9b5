from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

# -------------------------------------------------------------------
# ENV LOADING (must run before importing anything that reads env)
# Always load backend/api/.env no matter where uvicorn is launched from.
# backend/api/engagement/main.py -> parents[1] == backend/api
# -------------------------------------------------------------------
ENV_PATH = Path(__file__).resolve().parents[1] / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=False)
logging.basicConfig(level=(os.getenv("LOG_LEVEL") or "INFO").upper())

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request  # noqa: E402
from fastapi.responses import JSONResponse  # noqa: E402
from sqlalchemy.engine import Engine  # noqa: E402

from engagement import authoring  # noqa: E402
from engagement.collection_manager import CollectionManager  # noqa: E402
from engagement.config import Settings, get_settings  # noqa: E402
from engagement.curation import CurationEngine  # noqa: E402
from engagement.current_actor import CurrentActor, Forbidden, Unauthenticated, require_actor  # noqa: E402
from engagement.db import db_ping, get_engine  # noqa: E402
from engagement.errors import (  # noqa: E402
    Conflict,
    CoreError,
    NotFound,
    Timeout,
    Unavailable,
    ValidationError,
)
from engagement.ledger import EngagementLedger  # noqa: E402
from engagement.models import EngagementKind  # noqa: E402
from engagement.schemas import (  # noqa: E402
    ActorCreateIn,
    ActorOut,
    ActorRenameIn,
    ActorSlugIn,
    AuthorWorksOut,
    CollectionCreateIn,
    CollectionIdOut,
    CollectionOut,
    CollectionPatchIn,
    ContentCreateIn,
    ContentOut,
    ContentPatchIn,
    CuratedOut,
    PurgeOut,
    PublishedPageOut,
    SlugOut,
    ToggleIn,
    ToggleOut,
    TransitionIn,
)
from engagement.slugs import SlugIdentityResolver  # noqa: E402
from engagement.workflow import WorkflowError, list_states, transition_map  # noqa: E402

logger = logging.getLogger(__name__)

app = FastAPI(title="Verse Engagement API", version="0.5.0")


# -----------------------------
# Error mapping
# -----------------------------
_STATUS_BY_ERROR: list[tuple[type[CoreError], int]] = [
    (ValidationError, 400),
    (NotFound, 404),
    (Conflict, 409),
    (Timeout, 504),
    (Unavailable, 503),
]


@app.exception_handler(CoreError)
def core_error_handler(_request: Request, exc: CoreError) -> JSONResponse:
    for cls, status in _STATUS_BY_ERROR:
        if isinstance(exc, cls):
            return JSONResponse(status_code=status, content={"detail": str(exc)})
    logger.exception("Unmapped core error", exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": str(exc)})


@app.exception_handler(Unauthenticated)
def unauthenticated_handler(_request: Request, exc: Unauthenticated) -> JSONResponse:
    return JSONResponse(status_code=401, content={"detail": str(exc)})


@app.exception_handler(Forbidden)
def forbidden_handler(_request: Request, exc: Forbidden) -> JSONResponse:
    return JSONResponse(status_code=403, content={"detail": str(exc)})


# -----------------------------
# Dependencies
# -----------------------------
def get_db() -> Engine:
    return get_engine()


def current_actor(
    engine: Engine = Depends(get_db),
    x_actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
) -> CurrentActor:
    return require_actor(engine, x_actor_id)


def get_resolver(settings: Settings = Depends(get_settings)) -> SlugIdentityResolver:
    return SlugIdentityResolver(settings.slug_suffix_ceiling)


def get_ledger(engine: Engine = Depends(get_db), settings: Settings = Depends(get_settings)) -> EngagementLedger:
    return EngagementLedger(engine, default_timeout=settings.lock_timeout)


def get_collections(engine: Engine = Depends(get_db)) -> CollectionManager:
    return CollectionManager(engine)


def get_curation(
    engine: Engine = Depends(get_db),
    collections: CollectionManager = Depends(get_collections),
    settings: Settings = Depends(get_settings),
) -> CurationEngine:
    return CurationEngine(
        engine, collections, limit=settings.curated_limit, top_topics=settings.curated_top_topics
    )


# -----------------------------
# Health checks
# -----------------------------
@app.get("/healthz")
def healthz():
    return {"status": "ok"}


@app.get("/readyz")
def readyz(engine: Engine = Depends(get_db)):
    db_ping(engine)
    return {"status": "ready", "db": "ok"}


@app.get("/workflow/states")
def workflow_states():
    return {"states": list_states(), "transitions": transition_map()}


# -----------------------------
# Slugs
# -----------------------------
@app.get("/slugs/resolve", response_model=SlugOut)
def resolve_slug(
    text: str = Query(..., min_length=1),
    lang: str | None = None,
    scope_id: str | None = None,
    engine: Engine = Depends(get_db),
    resolver: SlugIdentityResolver = Depends(get_resolver),
):
    return {"slug": authoring.resolve_slug(engine, text, lang, scope_id, resolver)}


# -----------------------------
# Actors
# -----------------------------
@app.post("/actors", response_model=ActorOut)
def create_actor(
    body: ActorCreateIn,
    engine: Engine = Depends(get_db),
    resolver: SlugIdentityResolver = Depends(get_resolver),
):
    return authoring.create_actor(engine, name=body.name, email=body.email, role=body.role, resolver=resolver)


@app.get("/actors/me", response_model=ActorOut)
def get_me(
    actor: CurrentActor = Depends(current_actor),
    ledger: EngagementLedger = Depends(get_ledger),
):
    return ledger.actor_engagement(actor.id)


@app.get("/actors/me/works", response_model=AuthorWorksOut)
def my_works(actor: CurrentActor = Depends(current_actor), engine: Engine = Depends(get_db)):
    # Authors see their own drafts; everyone else sees published works only.
    return AuthorWorksOut.model_validate(authoring.author_works(engine, actor.id, include_drafts=True))


@app.get("/actors/{actor_id}/works", response_model=AuthorWorksOut)
def author_works(actor_id: str, engine: Engine = Depends(get_db)):
    return AuthorWorksOut.model_validate(authoring.author_works(engine, actor_id))


@app.put("/actors/me/name", response_model=ActorOut)
def rename_me(
    body: ActorRenameIn,
    actor: CurrentActor = Depends(current_actor),
    engine: Engine = Depends(get_db),
    resolver: SlugIdentityResolver = Depends(get_resolver),
):
    return authoring.rename_actor(engine, actor.id, body.name, resolver)


@app.put("/actors/me/slug", response_model=ActorOut)
def set_my_slug(
    body: ActorSlugIn,
    actor: CurrentActor = Depends(current_actor),
    engine: Engine = Depends(get_db),
    resolver: SlugIdentityResolver = Depends(get_resolver),
):
    return authoring.set_actor_slug(engine, actor.id, body.slug, resolver)


# -----------------------------
# Content endpoints
# -----------------------------
def _content_out(item) -> ContentOut:
    # like_count is a property, so validate from attributes rather than asdict().
    return ContentOut.model_validate(item)


def _multilingual(value) -> dict[str, str]:
    if value is None:
        return {}
    return {k: v for k, v in value.model_dump().items() if v is not None}


@app.post("/content", response_model=ContentOut)
def create_content(
    body: ContentCreateIn,
    actor: CurrentActor = Depends(current_actor),
    engine: Engine = Depends(get_db),
    resolver: SlugIdentityResolver = Depends(get_resolver),
):
    actor.require_role("author", "admin")
    item = authoring.create_content(
        engine,
        titles=_multilingual(body.title),
        author_id=actor.id,
        bodies=_multilingual(body.body),
        summaries=_multilingual(body.summary),
        topics=body.topics,
        category=body.category,
        status=body.status,
        resolver=resolver,
    )
    return _content_out(item)


@app.get("/content", response_model=PublishedPageOut)
def list_published(page: int = 1, limit: int = authoring.DEFAULT_PAGE_LIMIT, engine: Engine = Depends(get_db)):
    return PublishedPageOut.model_validate(authoring.list_published(engine, page, limit))


@app.get("/content/by-slug/{slug}", response_model=ContentOut)
def get_content_by_slug(slug: str, engine: Engine = Depends(get_db)):
    return _content_out(authoring.find_content_by_slug(engine, slug))


@app.get("/content/{content_id}", response_model=ContentOut)
def get_content(content_id: str, ledger: EngagementLedger = Depends(get_ledger)):
    return _content_out(ledger.content_engagement(content_id))


def _require_owner(engine: Engine, actor: CurrentActor, content_id: str) -> None:
    item = authoring.get_content(engine, content_id)
    if actor.role != "admin" and item.author_id != actor.id:
        raise Forbidden("You can only change your own works")


@app.patch("/content/{content_id}", response_model=ContentOut)
def edit_content(
    content_id: str,
    body: ContentPatchIn,
    actor: CurrentActor = Depends(current_actor),
    engine: Engine = Depends(get_db),
    resolver: SlugIdentityResolver = Depends(get_resolver),
):
    _require_owner(engine, actor, content_id)
    item = authoring.edit_content(
        engine,
        content_id,
        titles=_multilingual(body.title) or None,
        bodies=_multilingual(body.body),
        summaries=_multilingual(body.summary),
        topics=body.topics,
        category=body.category,
        resolver=resolver,
    )
    return _content_out(item)


@app.post("/content/{content_id}/transition", response_model=ContentOut)
def transition(
    content_id: str,
    body: TransitionIn,
    actor: CurrentActor = Depends(current_actor),
    engine: Engine = Depends(get_db),
):
    _require_owner(engine, actor, content_id)
    try:
        return _content_out(authoring.transition_content(engine, content_id, body.to_status))
    except WorkflowError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.delete("/content/{content_id}")
def delete_content(
    content_id: str,
    actor: CurrentActor = Depends(current_actor),
    engine: Engine = Depends(get_db),
    ledger: EngagementLedger = Depends(get_ledger),
    collections: CollectionManager = Depends(get_collections),
):
    _require_owner(engine, actor, content_id)
    authoring.delete_content(engine, content_id, ledger=ledger, collections=collections)
    return {"status": "deleted"}


# -----------------------------
# Engagement
# -----------------------------
@app.post("/content/{content_id}/bookmark", response_model=ToggleOut, response_model_exclude_none=True)
def toggle_bookmark(
    content_id: str,
    body: ToggleIn,
    actor: CurrentActor = Depends(current_actor),
    ledger: EngagementLedger = Depends(get_ledger),
):
    return ledger.toggle(actor.id, content_id, EngagementKind.BOOKMARK, body.action)


@app.post("/content/{content_id}/like", response_model=ToggleOut, response_model_exclude_none=True)
def toggle_like(
    content_id: str,
    body: ToggleIn,
    actor: CurrentActor = Depends(current_actor),
    ledger: EngagementLedger = Depends(get_ledger),
):
    return ledger.toggle(actor.id, content_id, EngagementKind.LIKE, body.action)


# -----------------------------
# Collections
# -----------------------------
@app.get("/collections", response_model=list[CollectionOut])
def list_collections(
    actor: CurrentActor = Depends(current_actor),
    collections: CollectionManager = Depends(get_collections),
):
    return collections.list(actor.id)


@app.post("/collections", response_model=CollectionIdOut)
def create_collection(
    body: CollectionCreateIn,
    actor: CurrentActor = Depends(current_actor),
    collections: CollectionManager = Depends(get_collections),
):
    collection_id = collections.create(actor.id, body.name, body.description, body.content_ids)
    return {"id": collection_id}


@app.post("/collections/curated/refresh", response_model=CuratedOut)
def refresh_curated_collection(
    actor: CurrentActor = Depends(current_actor),
    curation: CurationEngine = Depends(get_curation),
):
    return curation.refresh(actor.id)


@app.get("/collections/{collection_id}", response_model=CollectionOut)
def get_collection(
    collection_id: str,
    actor: CurrentActor = Depends(current_actor),
    collections: CollectionManager = Depends(get_collections),
):
    return collections.get(actor.id, collection_id)


@app.patch("/collections/{collection_id}")
def edit_collection(
    collection_id: str,
    body: CollectionPatchIn,
    actor: CurrentActor = Depends(current_actor),
    collections: CollectionManager = Depends(get_collections),
):
    collections.edit(
        actor.id,
        collection_id,
        name=body.name,
        description=body.description,
        content_ids=body.content_ids,
    )
    return {"status": "ok"}


@app.delete("/collections/{collection_id}")
def delete_collection(
    collection_id: str,
    actor: CurrentActor = Depends(current_actor),
    collections: CollectionManager = Depends(get_collections),
):
    collections.delete(actor.id, collection_id)
    return {"status": "ok"}


# -----------------------------
# Maintenance (account deletion / authoring flows)
# -----------------------------
@app.post("/maintenance/purge/content/{content_id}", response_model=PurgeOut)
def purge_content(
    content_id: str,
    actor: CurrentActor = Depends(current_actor),
    ledger: EngagementLedger = Depends(get_ledger),
    collections: CollectionManager = Depends(get_collections),
):
    actor.require_role("admin")
    removed = ledger.purge_content(content_id)
    collections.purge_content(content_id)
    return {"removed": removed}


@app.post("/maintenance/purge/actor/{actor_id}", response_model=PurgeOut)
def purge_actor(
    actor_id: str,
    actor: CurrentActor = Depends(current_actor),
    ledger: EngagementLedger = Depends(get_ledger),
    collections: CollectionManager = Depends(get_collections),
):
    actor.require_role("admin")
    removed = ledger.purge_actor(actor_id)
    collections.purge_actor(actor_id)
    return {"removed": removed}
