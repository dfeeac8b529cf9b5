from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import exc as sa_exc
from sqlalchemy.engine import Connection, Engine

from engagement import repo
from engagement.db import storage_errors
from engagement.errors import NotFound, ValidationError
from engagement.locks import KeyedLocks
from engagement.models import Collection, Reference, Unresolved, resolve_references

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 500

CURATED_NAME = "Curated for You"
CURATED_DESCRIPTION = "A collection tailored to your interests"

# Names only upsert_system_collection may create.
SYSTEM_NAMES = frozenset({CURATED_NAME})

_PROCESS_LOCKS = KeyedLocks()

_UNSET: Any = object()


def _clean_name(name: Optional[str]) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Collection name is required")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"Collection name cannot exceed {MAX_NAME_LENGTH} characters")
    return name


def _clean_description(description: Optional[str]) -> str:
    description = (description or "").strip()
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(f"Collection description cannot exceed {MAX_DESCRIPTION_LENGTH} characters")
    return description


def _user_name(name: Optional[str]) -> str:
    name = _clean_name(name)
    if name in SYSTEM_NAMES:
        raise ValidationError(f"'{name}' is reserved for system collections")
    return name


class CollectionManager:
    def __init__(self, engine: Engine, *, locks: Optional[KeyedLocks] = None) -> None:
        self._engine = engine
        self._locks = locks if locks is not None else _PROCESS_LOCKS

    # ----------------------------
    # Helpers
    # ----------------------------

    def _require_actor(self, conn: Connection, actor_id: str) -> None:
        if not repo.actor_exists(conn, actor_id):
            raise NotFound(f"Actor not found: {actor_id}")

    def _resolvable(self, conn: Connection, content_ids: Iterable[str]) -> List[str]:
        """
        Keep ids that parse and exist, in first-seen order. Anything else is
        dropped rather than failing the whole request.
        """
        parsed: List[str] = []
        for raw in content_ids:
            try:
                parsed.append(repo.parse_id(raw, "content id"))
            except ValidationError:
                logger.info("Dropping malformed collection member %r", raw)
        parsed = list(dict.fromkeys(parsed))
        existing = repo.existing_content_ids(conn, parsed)
        dropped = [cid for cid in parsed if cid not in existing]
        if dropped:
            logger.info("Dropping %d unresolved collection members: %s", len(dropped), dropped)
        return [cid for cid in parsed if cid in existing]

    # ----------------------------
    # CRUD
    # ----------------------------

    def create(
        self,
        actor_id: str,
        name: str,
        description: Optional[str] = None,
        content_ids: Optional[Iterable[str]] = None,
    ) -> str:
        actor_id = repo.parse_id(actor_id, "actor id")
        name = _user_name(name)
        description = _clean_description(description)

        with storage_errors(), self._engine.begin() as conn:
            self._require_actor(conn, actor_id)
            members = self._resolvable(conn, content_ids or [])
            collection_id = repo.new_id()
            repo.insert_collection(
                conn,
                collection_id=collection_id,
                actor_id=actor_id,
                name=name,
                description=description,
                is_system=False,
                now=repo.utcnow(),
            )
            repo.set_collection_items(conn, collection_id, members)

        logger.info("Created collection %s for actor %s (%d items)", collection_id, actor_id, len(members))
        return collection_id

    def edit(
        self,
        actor_id: str,
        collection_id: str,
        *,
        name: Optional[str] = _UNSET,
        description: Optional[str] = _UNSET,
        content_ids: Optional[Iterable[str]] = _UNSET,
    ) -> None:
        """Patch a collection; omitted (or None) fields are left unchanged."""
        actor_id = repo.parse_id(actor_id, "actor id")
        collection_id = repo.parse_id(collection_id, "collection id")

        values: Dict[str, Any] = {}
        if name is not _UNSET and name is not None:
            values["name"] = _clean_name(name)
        if description is not _UNSET and description is not None:
            values["description"] = _clean_description(description)

        with storage_errors(), self._engine.begin() as conn:
            row = repo.get_collection_row(conn, actor_id, collection_id)
            if row is None:
                raise NotFound(f"Collection {collection_id} not found for actor {actor_id}")
            if "name" in values and values["name"] != row["name"] and values["name"] in SYSTEM_NAMES:
                raise ValidationError(f"'{values['name']}' is reserved for system collections")

            if content_ids is not _UNSET and content_ids is not None:
                repo.set_collection_items(conn, collection_id, self._resolvable(conn, content_ids))
            values["updated_at"] = repo.utcnow()
            repo.update_collection(conn, collection_id, **values)

        logger.info("Edited collection %s for actor %s", collection_id, actor_id)

    def delete(self, actor_id: str, collection_id: str) -> None:
        actor_id = repo.parse_id(actor_id, "actor id")
        collection_id = repo.parse_id(collection_id, "collection id")

        with storage_errors(), self._engine.begin() as conn:
            if repo.get_collection_row(conn, actor_id, collection_id) is None:
                logger.debug("Collection %s already gone for actor %s", collection_id, actor_id)
                return
            repo.delete_collection_row(conn, collection_id)

        logger.info("Deleted collection %s for actor %s", collection_id, actor_id)

    def upsert_system_collection(
        self,
        actor_id: str,
        name: str,
        content_ids: Iterable[str],
        description: str,
    ) -> str:
        """
        Replace the members and description of the actor's collection called
        `name`, creating it first if needed. Refreshes are serialized per
        (actor, name) inside a process; across processes the unique index on
        system names rejects a second insert, which is retried as an update.
        """
        actor_id = repo.parse_id(actor_id, "actor id")
        name = _clean_name(name)
        description = _clean_description(description)
        content_ids = list(content_ids)

        with self._locks.hold(("system-collection", actor_id, name)):
            try:
                collection_id, created, members = self._upsert_system_once(
                    actor_id, name, content_ids, description
                )
            except sa_exc.IntegrityError:
                # Another process inserted the row first; the unique index keeps it single.
                logger.info("System collection %r for actor %s created concurrently, updating it", name, actor_id)
                collection_id, created, members = self._upsert_system_once(
                    actor_id, name, content_ids, description
                )

        logger.info(
            "%s system collection %r (%s) for actor %s with %d items",
            "Created" if created else "Refreshed", name, collection_id, actor_id, len(members),
        )
        return collection_id

    def _upsert_system_once(
        self,
        actor_id: str,
        name: str,
        content_ids: List[str],
        description: str,
    ) -> Tuple[str, bool, List[str]]:
        with storage_errors(), self._engine.begin() as conn:
            self._require_actor(conn, actor_id)
            members = self._resolvable(conn, content_ids)
            now = repo.utcnow()
            row = repo.find_collection_by_name(conn, actor_id, name)
            if row is None:
                collection_id = repo.new_id()
                repo.insert_collection(
                    conn,
                    collection_id=collection_id,
                    actor_id=actor_id,
                    name=name,
                    description=description,
                    is_system=True,
                    now=now,
                    curated_at=now,
                )
                created = True
            else:
                collection_id = row["id"]
                repo.update_collection(
                    conn,
                    collection_id,
                    description=description,
                    is_system=True,
                    updated_at=now,
                    curated_at=now,
                )
                created = False
            repo.set_collection_items(conn, collection_id, members)
        return collection_id, created, members

    # ----------------------------
    # Reads
    # ----------------------------

    def get(self, actor_id: str, collection_id: str) -> Collection:
        actor_id = repo.parse_id(actor_id, "actor id")
        collection_id = repo.parse_id(collection_id, "collection id")
        with storage_errors(), self._engine.begin() as conn:
            row = repo.get_collection_row(conn, actor_id, collection_id)
            if row is None:
                raise NotFound(f"Collection {collection_id} not found for actor {actor_id}")
            return repo.to_collection(conn, row)

    def find_by_name(self, actor_id: str, name: str) -> Optional[Collection]:
        actor_id = repo.parse_id(actor_id, "actor id")
        with storage_errors(), self._engine.begin() as conn:
            row = repo.find_collection_by_name(conn, actor_id, name)
            return repo.to_collection(conn, row) if row else None

    def list(self, actor_id: str) -> List[Collection]:
        actor_id = repo.parse_id(actor_id, "actor id")
        with storage_errors(), self._engine.begin() as conn:
            self._require_actor(conn, actor_id)
            return [repo.to_collection(conn, row) for row in repo.list_collection_rows(conn, actor_id)]

    def members(self, actor_id: str, collection_id: str) -> List[Reference]:
        """Collection members as references, resolved against the content store in one batch."""
        collection = self.get(actor_id, collection_id)

        def _load(ids: List[str]):
            with storage_errors(), self._engine.begin() as conn:
                return repo.load_contents(conn, ids)

        return resolve_references([Unresolved(cid) for cid in collection.content_ids], _load)

    # ----------------------------
    # Maintenance
    # ----------------------------

    def purge_content(self, content_id: str) -> int:
        """Remove a content item from every collection. Returns memberships removed."""
        content_id = repo.parse_id(content_id, "content id")
        with storage_errors(), self._engine.begin() as conn:
            removed = repo.delete_items_for_content(conn, content_id)
        if removed:
            logger.info("Removed content %s from %d collections", content_id, removed)
        return removed

    def purge_actor(self, actor_id: str) -> int:
        """Delete every collection an actor owns. Returns collections removed."""
        actor_id = repo.parse_id(actor_id, "actor id")
        with storage_errors(), self._engine.begin() as conn:
            removed = repo.delete_collections_for_actor(conn, actor_id)
        if removed:
            logger.info("Deleted %d collections owned by actor %s", removed, actor_id)
        return removed
