from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.engine import Engine

from engagement import repo
from engagement.db import storage_errors
from engagement.errors import NotFound


class Unauthenticated(Exception):
    """No actor identity accompanied the request."""


class Forbidden(Exception):
    """The current actor's role does not allow the operation."""


@dataclass(frozen=True)
class CurrentActor:
    id: str
    role: str

    def require_role(self, *roles: str) -> None:
        if self.role not in roles:
            raise Forbidden(f"Role '{self.role}' cannot do this; needs one of {list(roles)}")


def require_actor(engine: Engine, x_actor_id: str | None) -> CurrentActor:
    """
    Resolve the current actor from the "X-Actor-Id" request header.

    The header is set by the identity layer in front of this service; it is
    trusted as-is and only checked for existence. The `current_actor`
    dependency in main reads the header and passes its raw value here,
    so this works without a request.
    """
    raw = (x_actor_id or "").strip()
    if not raw:
        raise Unauthenticated("X-Actor-Id header is required")

    actor_id = repo.parse_id(raw, "actor id")
    with storage_errors(), engine.begin() as conn:
        row = repo.get_actor_row(conn, actor_id)

    if not row:
        raise NotFound(f"Actor not found: {actor_id}")

    return CurrentActor(id=row["id"], role=row["role"])
