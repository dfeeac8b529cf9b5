"""
Personalised "Curated for You" collections.

The actor's liked and bookmarked content is reduced to a topic profile
(the most frequent topics, ties going to the topic seen first), then
published content matching that profile, which the actor has not engaged
with yet, is written into the actor's system collection. Actors with no
engagement get the most recent published content instead.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Iterable, List, Optional

from sqlalchemy.engine import Engine

from engagement import repo
from engagement.collection_manager import CURATED_DESCRIPTION, CURATED_NAME, CollectionManager
from engagement.db import storage_errors
from engagement.errors import NotFound

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10
DEFAULT_TOP_TOPICS = 3


def rank_topics(topic_lists: Iterable[Iterable[str]], top: int = DEFAULT_TOP_TOPICS) -> List[str]:
    """
    Most frequent topics first; equal counts keep first-seen order.

    >>> rank_topics([["love", "life"], ["love"]])
    ['love', 'life']
    """
    counts: Counter = Counter()
    for topics in topic_lists:
        counts.update(topics)
    # Counter preserves insertion order and sorted() is stable.
    ranked = sorted(counts, key=lambda t: counts[t], reverse=True)
    return ranked[:top]


@dataclass(frozen=True)
class CurationResult:
    collection_id: str
    topics: List[str]
    content_ids: List[str]
    cold_start: bool


class CurationEngine:
    def __init__(
        self,
        engine: Engine,
        collections: Optional[CollectionManager] = None,
        *,
        limit: int = DEFAULT_LIMIT,
        top_topics: int = DEFAULT_TOP_TOPICS,
    ) -> None:
        self._engine = engine
        self._collections = collections if collections is not None else CollectionManager(engine)
        self.limit = limit
        self.top_topics = top_topics

    def engaged_content(self, actor_id: str) -> List[str]:
        """Union of liked then bookmarked content ids, deduplicated, in engagement order."""
        actor_id = repo.parse_id(actor_id, "actor id")
        with storage_errors(), self._engine.begin() as conn:
            actor = repo.load_actor(conn, actor_id)
        if actor is None:
            raise NotFound(f"Actor not found: {actor_id}")
        ids = [e.content_id for e in actor.liked_content] + [e.content_id for e in actor.bookmarks]
        return list(dict.fromkeys(ids))

    def topic_profile(self, actor_id: str) -> List[str]:
        return self._topics_for(self.engaged_content(actor_id))

    def _topics_for(self, engaged: List[str]) -> List[str]:
        if not engaged:
            return []
        with storage_errors(), self._engine.begin() as conn:
            signals = repo.topic_signals(conn, engaged)
        # Walk in engagement order so first-seen is well defined.
        return rank_topics((signals[cid] for cid in engaged if cid in signals), self.top_topics)

    def recommend(self, actor_id: str) -> CurationResult:
        """Compute recommendations without writing them. collection_id is empty."""
        engaged = self.engaged_content(actor_id)

        if not engaged:
            with storage_errors(), self._engine.begin() as conn:
                ids = repo.recent_published(conn, self.limit)
            return CurationResult(collection_id="", topics=[], content_ids=ids, cold_start=True)

        topics = self._topics_for(engaged)
        with storage_errors(), self._engine.begin() as conn:
            ids = repo.published_matching_topics(conn, topics, exclude=engaged, limit=self.limit)
        return CurationResult(collection_id="", topics=topics, content_ids=ids, cold_start=False)

    def refresh(self, actor_id: str) -> CurationResult:
        """Recompute and store the actor's curated collection."""
        result = self.recommend(actor_id)
        collection_id = self._collections.upsert_system_collection(
            actor_id, CURATED_NAME, result.content_ids, CURATED_DESCRIPTION
        )
        logger.info(
            "Curated %d items for actor %s (topics=%s, cold_start=%s)",
            len(result.content_ids), actor_id, result.topics, result.cold_start,
        )
        return CurationResult(
            collection_id=collection_id,
            topics=result.topics,
            content_ids=result.content_ids,
            cold_start=result.cold_start,
        )

    def refresh_curated_collection(self, actor_id: str) -> str:
        return self.refresh(actor_id).collection_id

    def stale_actors(self) -> List[str]:
        """
        Actors with no curated collection yet, or whose latest like or
        bookmark is newer than the last curation run. Edits the actor makes
        to the collection itself do not count as a run.
        """
        stale = []
        with storage_errors(), self._engine.begin() as conn:
            for actor_id in repo.list_actor_ids(conn):
                curated = repo.find_collection_by_name(conn, actor_id, CURATED_NAME)
                if curated is None or curated["curated_at"] is None:
                    stale.append(actor_id)
                    continue
                latest = repo.latest_engagement_at(conn, actor_id)
                if latest is not None and latest > repo.as_utc(curated["curated_at"]):
                    stale.append(actor_id)
        return stale
