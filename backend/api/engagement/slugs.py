"""
Human-readable, URL-safe identifiers for content and actors.

Content carries one slug per language, actors carry one global slug.
Collisions are resolved by probing `base`, `base-1`, `base-2`, ... so the
first writer of a title always gets the bare slug.
"""
from __future__ import annotations

import re
import unicodedata
from typing import Container, Iterable, Optional

from engagement.errors import ResolutionExhausted, ValidationError
from engagement.models import LANGUAGES

DEFAULT_SUFFIX_CEILING = 10_000

# Leaves room for "-<lang>" and "-<suffix>" inside a 200 char column.
MAX_BASE_LENGTH = 180

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_HYPHENS = re.compile(r"-{2,}")


def _ascii_token(text: str) -> str:
    folded = unicodedata.normalize("NFKD", text)
    folded = "".join(ch for ch in folded if not unicodedata.combining(ch))
    folded = folded.encode("ascii", "ignore").decode("ascii").lower()
    return _NON_ALNUM.sub("-", folded).strip("-")


def _unicode_token(text: str) -> str:
    # Scripts with no ASCII folding (Devanagari, Nastaliq) keep their own
    # letters and combining marks (matras, nuqta).
    folded = unicodedata.normalize("NFKC", text).lower()
    kept = "".join(
        ch if ch.isalnum() or unicodedata.category(ch).startswith("M") else "-"
        for ch in folded
    )
    return _HYPHENS.sub("-", kept).strip("-")


def _trim(token: str) -> str:
    if len(token) <= MAX_BASE_LENGTH:
        return token
    return token[:MAX_BASE_LENGTH].rstrip("-")


def normalize(text: str, lang: Optional[str] = None) -> str:
    """
    Turn display text into a lowercase, hyphen-delimited base token.

    With a language tag the token is scoped to that language, so the three
    variants of one title never share a slug: "Midnight" gives "midnight"
    for en, "midnight-hi" for hi and "midnight-ur" for ur. Without a tag
    (actors) no scope is added.
    """
    if lang is not None and lang not in LANGUAGES:
        raise ValidationError(f"Unknown language tag: {lang!r}. Expected one of {list(LANGUAGES)}")

    token = _ascii_token(text or "") or _unicode_token(text or "")
    if not token:
        raise ValidationError(f"Cannot derive a slug from {text!r}")

    token = _trim(token)
    if lang is None or lang == "en":
        return token
    return f"{token}-{lang}"


class SlugIdentityResolver:
    def __init__(self, suffix_ceiling: int = DEFAULT_SUFFIX_CEILING) -> None:
        if suffix_ceiling < 1:
            raise ValueError("suffix_ceiling must be >= 1")
        self.suffix_ceiling = suffix_ceiling

    def candidates(self, base: str) -> Iterable[str]:
        yield base
        for n in range(1, self.suffix_ceiling + 1):
            yield f"{base}-{n}"

    def probe(
        self,
        base: str,
        taken: Container[str],
        exclude: Iterable[str] = (),
    ) -> str:
        """Return the first candidate for `base` absent from `taken` (ignoring `exclude`)."""
        own = set(exclude)
        for candidate in self.candidates(base):
            if candidate in own or candidate not in taken:
                return candidate
        raise ResolutionExhausted(base, self.suffix_ceiling)

    def resolve(
        self,
        text: str,
        lang: Optional[str],
        taken: Container[str],
        exclude: Iterable[str] = (),
    ) -> str:
        return self.probe(normalize(text, lang), taken, exclude)
