"""
Like and bookmark relationships between actors and content.

Each relationship is stored twice: on the content side (content_likes,
content_bookmarks) and on the actor side (actor_likes, actor_bookmarks).
Consistency model:

  * every mutation writes both sides inside one database transaction, and
    runs under a per-(actor, content) lock so add/remove on one pair are
    serialized within the process;
  * duplicate checks look at both sides; a one-sided relationship found
    during a write or a read is healed by re-applying the missing side
    (read-repair) and logged;
  * contents.bookmark_count is never incremented or decremented, it is
    recounted from the bookmark list in the same transaction.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from sqlalchemy import Table
from sqlalchemy import exc as sa_exc
from sqlalchemy.engine import Connection, Engine

from engagement import repo
from engagement.db import storage_errors
from engagement.errors import Inconsistent, NotFound, ValidationError
from engagement.locks import KeyedLocks
from engagement.models import (
    Actor,
    ContentItem,
    EngagementAction,
    EngagementEvent,
    EngagementKind,
)
from engagement.tables import actor_bookmarks, actor_likes, content_bookmarks, content_likes

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Relation:
    kind: EngagementKind
    content_side: Table
    actor_side: Table
    stamp: str
    counted: bool


_RELATIONS: Dict[EngagementKind, _Relation] = {
    EngagementKind.LIKE: _Relation(EngagementKind.LIKE, content_likes, actor_likes, "liked_at", False),
    EngagementKind.BOOKMARK: _Relation(
        EngagementKind.BOOKMARK, content_bookmarks, actor_bookmarks, "bookmarked_at", True
    ),
}

# Shared by every ledger in the process so that per-request instances serialize.
_PROCESS_LOCKS = KeyedLocks()


class EngagementLedger:
    def __init__(
        self,
        engine: Engine,
        *,
        locks: Optional[KeyedLocks] = None,
        default_timeout: Optional[float] = None,
    ) -> None:
        self._engine = engine
        self._locks = locks if locks is not None else _PROCESS_LOCKS
        self._default_timeout = default_timeout

    # ----------------------------
    # Public mutations
    # ----------------------------

    def add_bookmark(self, actor_id: str, content_id: str, timeout: Optional[float] = None) -> dict:
        return {"added": self._add(_RELATIONS[EngagementKind.BOOKMARK], actor_id, content_id, timeout)}

    def remove_bookmark(self, actor_id: str, content_id: str, timeout: Optional[float] = None) -> dict:
        return {"removed": self._remove(_RELATIONS[EngagementKind.BOOKMARK], actor_id, content_id, timeout)}

    def add_like(self, actor_id: str, content_id: str, timeout: Optional[float] = None) -> dict:
        return {"added": self._add(_RELATIONS[EngagementKind.LIKE], actor_id, content_id, timeout)}

    def remove_like(self, actor_id: str, content_id: str, timeout: Optional[float] = None) -> dict:
        return {"removed": self._remove(_RELATIONS[EngagementKind.LIKE], actor_id, content_id, timeout)}

    def toggle(
        self,
        actor_id: str,
        content_id: str,
        kind: EngagementKind | str,
        action: EngagementAction | str,
        timeout: Optional[float] = None,
    ) -> dict:
        try:
            event = EngagementEvent(
                actor_id=actor_id,
                content_id=content_id,
                kind=EngagementKind(kind),
                action=EngagementAction(action),
            )
        except ValueError as e:
            raise ValidationError(str(e))
        return self.apply(event, timeout=timeout)

    def apply(self, event: EngagementEvent, timeout: Optional[float] = None) -> dict:
        rel = _RELATIONS[event.kind]
        if event.action is EngagementAction.ADD:
            return {"added": self._add(rel, event.actor_id, event.content_id, timeout)}
        return {"removed": self._remove(rel, event.actor_id, event.content_id, timeout)}

    # ----------------------------
    # Maintenance (cascades)
    # ----------------------------

    def purge_content(self, content_id: str) -> int:
        """
        Drop a content item from every actor's liked/bookmarked lists, plus its
        own relationship rows. Returns the number of actor-side rows removed.
        """
        content_id = repo.parse_id(content_id, "content id")
        with storage_errors(), self._engine.begin() as conn:
            removed = 0
            for rel in _RELATIONS.values():
                removed += len(repo.delete_relations_for(conn, rel.actor_side, content_id=content_id))
                repo.delete_relations_for(conn, rel.content_side, content_id=content_id)
            if repo.content_exists(conn, content_id):
                repo.recount_bookmarks(conn, content_id)

        logger.info("Purged content %s from %d actor engagement entries", content_id, removed)
        return removed

    def purge_actor(self, actor_id: str) -> int:
        """
        Drop an actor from every content item's likes/bookmarks, plus the
        actor's own relationship rows, and recount affected bookmark counters.
        Returns the number of content-side rows removed.
        """
        actor_id = repo.parse_id(actor_id, "actor id")
        with storage_errors(), self._engine.begin() as conn:
            removed = 0
            touched = set()
            for rel in _RELATIONS.values():
                pairs = repo.delete_relations_for(conn, rel.content_side, actor_id=actor_id)
                removed += len(pairs)
                if rel.counted:
                    touched.update(cid for _, cid in pairs)
                repo.delete_relations_for(conn, rel.actor_side, actor_id=actor_id)
            for cid in sorted(touched):
                repo.recount_bookmarks(conn, cid)

        logger.info("Purged actor %s from %d content engagement entries", actor_id, removed)
        return removed

    # ----------------------------
    # Reads with read-repair
    # ----------------------------

    def content_engagement(self, content_id: str) -> ContentItem:
        content_id = repo.parse_id(content_id, "content id")
        with storage_errors(), self._engine.begin() as conn:
            if not repo.content_exists(conn, content_id):
                raise NotFound(f"Content not found: {content_id}")
            self._repair(conn, content_id=content_id)
            item = repo.load_content(conn, content_id)
        assert item is not None
        return item

    def actor_engagement(self, actor_id: str) -> Actor:
        actor_id = repo.parse_id(actor_id, "actor id")
        with storage_errors(), self._engine.begin() as conn:
            if not repo.actor_exists(conn, actor_id):
                raise NotFound(f"Actor not found: {actor_id}")
            self._repair(conn, actor_id=actor_id)
            actor = repo.load_actor(conn, actor_id)
        assert actor is not None
        return actor

    def repair(self, *, actor_id: Optional[str] = None, content_id: Optional[str] = None) -> int:
        """Heal one-sided relationships for an actor and/or content item. Returns rows healed."""
        if actor_id is None and content_id is None:
            raise ValidationError("repair needs an actor id or a content id")
        if actor_id is not None:
            actor_id = repo.parse_id(actor_id, "actor id")
        if content_id is not None:
            content_id = repo.parse_id(content_id, "content id")
        with storage_errors(), self._engine.begin() as conn:
            return self._repair(conn, actor_id=actor_id, content_id=content_id)

    # ----------------------------
    # Internals
    # ----------------------------

    def _timeout(self, timeout: Optional[float]) -> Optional[float]:
        return timeout if timeout is not None else self._default_timeout

    def _require_pair(self, conn: Connection, actor_id: str, content_id: str) -> None:
        if not repo.actor_exists(conn, actor_id):
            raise NotFound(f"Actor not found: {actor_id}")
        if not repo.content_exists(conn, content_id):
            raise NotFound(f"Content not found: {content_id}")

    def _add(self, rel: _Relation, actor_id: str, content_id: str, timeout: Optional[float]) -> bool:
        actor_id = repo.parse_id(actor_id, "actor id")
        content_id = repo.parse_id(content_id, "content id")

        with self._locks.hold((actor_id, content_id), self._timeout(timeout)):
            try:
                added = self._add_once(rel, actor_id, content_id)
            except sa_exc.IntegrityError:
                # Another process wrote the same pair first; re-read and reconcile.
                logger.debug("Concurrent %s insert for %s/%s, retrying", rel.kind.value, actor_id, content_id)
                added = self._add_once(rel, actor_id, content_id)

        if added:
            logger.info("Added %s: actor=%s content=%s", rel.kind.value, actor_id, content_id)
        else:
            logger.debug("%s already present: actor=%s content=%s", rel.kind.value, actor_id, content_id)
        return added

    def _add_once(self, rel: _Relation, actor_id: str, content_id: str) -> bool:
        with storage_errors(), self._engine.begin() as conn:
            self._require_pair(conn, actor_id, content_id)

            on_content = repo.relation_stamp(conn, rel.content_side, rel.stamp, actor_id, content_id)
            on_actor = repo.relation_stamp(conn, rel.actor_side, rel.stamp, actor_id, content_id)

            if on_content is not None and on_actor is not None:
                return False

            if on_content is not None or on_actor is not None:
                self._heal_pair(conn, rel, actor_id, content_id, on_content, on_actor)
                return False

            now = repo.utcnow()
            repo.insert_relation(conn, rel.content_side, rel.stamp, actor_id, content_id, now)
            repo.insert_relation(conn, rel.actor_side, rel.stamp, actor_id, content_id, now)
            if rel.counted:
                repo.recount_bookmarks(conn, content_id)
            return True

    def _remove(self, rel: _Relation, actor_id: str, content_id: str, timeout: Optional[float]) -> bool:
        actor_id = repo.parse_id(actor_id, "actor id")
        content_id = repo.parse_id(content_id, "content id")

        with self._locks.hold((actor_id, content_id), self._timeout(timeout)):
            with storage_errors(), self._engine.begin() as conn:
                self._require_pair(conn, actor_id, content_id)

                from_content = repo.delete_relation(conn, rel.content_side, actor_id, content_id)
                from_actor = repo.delete_relation(conn, rel.actor_side, actor_id, content_id)
                if rel.counted:
                    repo.recount_bookmarks(conn, content_id)

        if bool(from_content) != bool(from_actor):
            side = "actor" if from_content else "content"
            logger.warning(
                "Removed one-sided %s (missing on %s side): actor=%s content=%s",
                rel.kind.value, side, actor_id, content_id,
            )

        removed = bool(from_content or from_actor)
        if removed:
            logger.info("Removed %s: actor=%s content=%s", rel.kind.value, actor_id, content_id)
        else:
            logger.debug("No %s to remove: actor=%s content=%s", rel.kind.value, actor_id, content_id)
        return removed

    def _heal_pair(
        self,
        conn: Connection,
        rel: _Relation,
        actor_id: str,
        content_id: str,
        on_content,
        on_actor,
    ) -> None:
        if on_content is None:
            repo.insert_relation(conn, rel.content_side, rel.stamp, actor_id, content_id, on_actor)
            missing = "content"
        else:
            repo.insert_relation(conn, rel.actor_side, rel.stamp, actor_id, content_id, on_content)
            missing = "actor"
        if rel.counted:
            repo.recount_bookmarks(conn, content_id)

        err = Inconsistent(f"{rel.kind.value} for actor={actor_id} content={content_id} missing on {missing} side")
        logger.warning("Read-repair: %s; healed", err)

    def _repair(
        self,
        conn: Connection,
        *,
        actor_id: Optional[str] = None,
        content_id: Optional[str] = None,
    ) -> int:
        healed = 0
        recount = set()
        for rel in _RELATIONS.values():
            content_rows = repo.relation_rows(
                conn, rel.content_side, rel.stamp, actor_id=actor_id, content_id=content_id
            )
            actor_rows = repo.relation_rows(
                conn, rel.actor_side, rel.stamp, actor_id=actor_id, content_id=content_id
            )
            for pair in list(content_rows) + [p for p in actor_rows if p not in content_rows]:
                on_content = content_rows.get(pair)
                on_actor = actor_rows.get(pair)
                if on_content is not None and on_actor is not None:
                    continue

                a_id, c_id = pair
                if not self._endpoints_exist(conn, a_id, c_id):
                    # The other aggregate is gone; the leftover row is dangling.
                    table = rel.content_side if on_content is not None else rel.actor_side
                    repo.delete_relation(conn, table, a_id, c_id)
                    logger.warning(
                        "Read-repair: dropped dangling %s actor=%s content=%s", rel.kind.value, a_id, c_id
                    )
                else:
                    self._heal_pair(conn, rel, a_id, c_id, on_content, on_actor)
                if rel.counted:
                    recount.add(c_id)
                healed += 1

        for cid in sorted(recount):
            if repo.content_exists(conn, cid):
                repo.recount_bookmarks(conn, cid)

        # Counter drift with symmetric lists (e.g. rows written by external tools).
        if content_id is not None and not recount:
            row = repo.get_content_row(conn, content_id)
            if row is not None:
                actual = repo.recount_bookmarks(conn, content_id)
                if actual != int(row["bookmark_count"]):
                    logger.warning(
                        "Read-repair: bookmark_count for %s was %s, recounted to %s",
                        content_id, row["bookmark_count"], actual,
                    )
                    healed += 1
        return healed

    def _endpoints_exist(self, conn: Connection, actor_id: str, content_id: str) -> bool:
        return repo.actor_exists(conn, actor_id) and repo.content_exists(conn, content_id)
