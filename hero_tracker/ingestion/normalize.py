"""
Normalizer — raw provider rows → canonical, validated, digested hero table.

Steps (``normalize()``):
  1. Canonicalize each hero identifier (``canonicalize_hero_id``).
  2. Coerce rates: ``None`` stays ``None`` ("insufficient sample"), numbers
     and numeric strings (optionally suffixed ``%``) become floats, ``-0.0``
     becomes ``0.0``.
  3. Validate: non-empty table, non-empty unique ids, finite rates within
     ``[0, 100]``.
  4. Stable sort ascending by canonical id.
  5. Digest: SHA-256 hex over the compact JSON array
     ``[[hero_id, pick_rate, win_rate], ...]`` of the sorted table.

The digest depends only on the sorted content, so reordering the provider
response never changes it, and ``None`` (JSON ``null``) never collides with
``0.0``.
"""

from __future__ import annotations

import hashlib
import json
import logging
import math
import re
from typing import Any, Iterable, Optional

from hero_tracker.ingestion.rates_client import MalformedResponseError
from hero_tracker.models.snapshot import HeroRate, NormalizedTable, RawHeroRate

logger = logging.getLogger(__name__)

RATE_MIN = 0.0
RATE_MAX = 100.0

_WHITESPACE_RE = re.compile(r"\s+")
_INVALID_CHARS_RE = re.compile(r"[^a-z0-9-]")
_DASH_RUN_RE = re.compile(r"-+")


class EmptyTableError(MalformedResponseError):
    """The provider returned no hero rows."""


class MalformedTableError(MalformedResponseError):
    """The hero table has invalid ids, duplicate ids, or invalid rates."""


def canonicalize_hero_id(raw: Any) -> str:
    """Canonical hero id: lowercase, hyphen-separated, ``[a-z0-9-]`` only.

    ``"Soldier: 76"`` → ``"soldier-76"``; ``"D.Va"`` → ``"dva"``;
    ``"Junker Queen"`` → ``"junker-queen"``.

    Non-ASCII letters are dropped, not transliterated (``"Lúcio"`` →
    ``"lcio"``), matching the provider's own ids.

    Raises:
        MalformedTableError: If ``raw`` is not a string or canonicalizes to
            the empty string.
    """
    if not isinstance(raw, str):
        raise MalformedTableError(f"Hero identifier must be a string, got {raw!r}.")
    value = raw.lower()
    value = _WHITESPACE_RE.sub("-", value)
    value = _INVALID_CHARS_RE.sub("", value)
    value = _DASH_RUN_RE.sub("-", value)
    value = value.strip("-")
    if not value:
        raise MalformedTableError(f"Hero identifier {raw!r} is empty after canonicalization.")
    return value


def _coerce_rate(value: Any, hero_id: str, field: str) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise MalformedTableError(f"{field} for {hero_id!r} is a boolean.")
    if isinstance(value, str):
        text = value.strip().rstrip("%").strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            raise MalformedTableError(
                f"{field} for {hero_id!r} is not numeric: {value!r}."
            ) from None
    elif isinstance(value, (int, float)):
        number = float(value)
    else:
        raise MalformedTableError(
            f"{field} for {hero_id!r} has unsupported type {type(value).__name__}."
        )

    if not math.isfinite(number):
        raise MalformedTableError(f"{field} for {hero_id!r} is not finite: {value!r}.")
    if number < RATE_MIN or number > RATE_MAX:
        raise MalformedTableError(
            f"{field} for {hero_id!r} out of range [{RATE_MIN:g}, {RATE_MAX:g}]: {number}."
        )
    # -0.0 and 0.0 must digest identically
    return number + 0.0


def compute_digest(hero_rates: Iterable[HeroRate]) -> str:
    """SHA-256 hex of the compact JSON encoding of an already sorted table."""
    payload = [[r.hero_id, r.pick_rate, r.win_rate] for r in hero_rates]
    serialized = json.dumps(payload, separators=(",", ":"), allow_nan=False)
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def normalize(raw_rates: Iterable[RawHeroRate]) -> NormalizedTable:
    """Canonicalize, validate, sort and digest a raw hero table.

    Raises:
        EmptyTableError: If ``raw_rates`` is empty.
        MalformedTableError: On invalid or duplicate ids, or invalid rates.
    """
    rows = list(raw_rates)
    if not rows:
        raise EmptyTableError("Provider returned an empty hero table.")

    seen: dict[str, Any] = {}
    hero_rates: list[HeroRate] = []
    for raw in rows:
        hero_id = canonicalize_hero_id(raw.hero)
        if hero_id in seen:
            raise MalformedTableError(
                f"Duplicate hero id {hero_id!r} (from {seen[hero_id]!r} and {raw.hero!r})."
            )
        seen[hero_id] = raw.hero
        hero_rates.append(
            HeroRate(
                hero_id=hero_id,
                pick_rate=_coerce_rate(raw.pick_rate, hero_id, "pick_rate"),
                win_rate=_coerce_rate(raw.win_rate, hero_id, "win_rate"),
            )
        )

    hero_rates.sort(key=lambda r: r.hero_id)
    return NormalizedTable(hero_rates=tuple(hero_rates), digest=compute_digest(hero_rates))


def is_partial(table: NormalizedTable, min_heroes: int) -> bool:
    """True when the table has fewer than ``min_heroes`` rows (a warning only)."""
    return len(table) < min_heroes
