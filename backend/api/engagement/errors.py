from __future__ import annotations


class CoreError(Exception):
    """Base class for every error the engagement core raises."""


class ValidationError(CoreError):
    """Malformed input: oversized text, unknown language tag, bad id."""


class NotFound(CoreError):
    """A referenced actor, content item or collection does not exist."""


class Conflict(CoreError):
    """A uniqueness invariant cannot be satisfied automatically."""


class ResolutionExhausted(Conflict):
    """Every slug candidate up to the configured suffix ceiling is taken."""

    def __init__(self, base: str, ceiling: int) -> None:
        super().__init__(f"No free slug for {base!r} within {ceiling} suffixes")
        self.base = base
        self.ceiling = ceiling


class Inconsistent(CoreError):
    """
    A relationship is present on one side only.

    Raised internally by read-repair bookkeeping and logged; never
    surfaced to callers.
    """


class Timeout(CoreError):
    """Storage or a relationship lock did not respond in time."""


class Unavailable(CoreError):
    """Storage rejected or dropped the request."""
