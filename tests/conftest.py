"""Shared fixtures: a fresh SQLite database per test, plus builders."""

from pathlib import Path
from typing import Iterable, Optional

import pytest
from engagement import authoring
from engagement.collection_manager import CollectionManager
from engagement.db import init_schema, make_engine
from engagement.ledger import EngagementLedger
from engagement.locks import KeyedLocks
from engagement.models import Actor, ContentItem


@pytest.fixture
def engine(tmp_path: Path):
    eng = make_engine(f"sqlite:///{tmp_path / 'engagement.db'}")
    init_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def locks() -> KeyedLocks:
    return KeyedLocks()


@pytest.fixture
def ledger(engine, locks) -> EngagementLedger:
    return EngagementLedger(engine, locks=locks)


@pytest.fixture
def collections(engine) -> CollectionManager:
    return CollectionManager(engine, locks=KeyedLocks())


@pytest.fixture
def make_actor(engine):
    def _make(name: str = "Amina Reader", role: str = "reader", email: Optional[str] = None) -> Actor:
        return authoring.create_actor(engine, name=name, role=role, email=email)

    return _make


@pytest.fixture
def make_content(engine):
    def _make(
        title: str = "Midnight",
        topics: Iterable[str] = (),
        category: str = "poem",
        status: str = "published",
        author_id: Optional[str] = None,
    ) -> ContentItem:
        return authoring.create_content(
            engine,
            titles={"en": title, "hi": f"{title} (hi)", "ur": f"{title} (ur)"},
            topics=topics,
            category=category,
            status=status,
            author_id=author_id,
        )

    return _make


@pytest.fixture
def reader(make_actor) -> Actor:
    return make_actor("Amina Reader")


@pytest.fixture
def poem(make_content) -> ContentItem:
    return make_content("Midnight", topics=["love"])
