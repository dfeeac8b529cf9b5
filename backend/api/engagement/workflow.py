"""Publication status of a content item. Only published works are curated."""
from __future__ import annotations

STATES: list[str] = ["draft", "published"]


class WorkflowError(Exception):
    """Raised when a status transition is invalid."""


def list_states() -> list[str]:
    return list(STATES)


# Unpublishing returns a work to draft; nothing else is allowed.
_TRANSITIONS: dict[str, list[str]] = {
    "draft": ["published"],
    "published": ["draft"],
}


def transition_map() -> dict[str, list[str]]:
    return {state: list(targets) for state, targets in _TRANSITIONS.items()}


def _normalize_status(status: str) -> str:
    return (status or "").strip().lower()


def allowed_transitions(from_status: str) -> list[str]:
    # A status written by older code is treated as terminal.
    return list(_TRANSITIONS.get(_normalize_status(from_status), []))


def validate_transition(from_status: str, to_status: str) -> str:
    """
    Raises WorkflowError if the transition is not permitted; returns the normalized target.
    """
    current = _normalize_status(from_status)
    target = _normalize_status(to_status)

    if current not in STATES:
        raise WorkflowError(f"Unknown current status: {from_status}")
    if target not in STATES:
        raise WorkflowError(f"Unknown status: {to_status}. Allowed: {STATES}")

    allowed = allowed_transitions(current)
    if target not in allowed:
        raise WorkflowError(f"Cannot move a {current} work to {target}. Allowed: {allowed}")
    return target
