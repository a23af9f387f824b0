"""
Combination taxonomy — the addressable axis of measurement.

A ``Combination`` pins down one statistics series on the rate provider:
game mode × input device × region × skill tier × map. It is immutable and
hashable so it can be used as a dict key and embedded in snapshots; it is
never persisted as an entity of its own.

``SnapshotFilter`` is the *partial* counterpart used by list queries: every
axis is optional, so "all filters required" (``Combination``) and "optional
filter" (``SnapshotFilter``) are distinct types.

Usage example::

    from hero_tracker.models.combination import Combination, GameMode, Tier

    combo = Combination(
        mode=GameMode.COMPETITIVE, input="PC", region="Europe", tier=Tier.GOLD,
    )
    combo.label   # "competitive/PC/Europe/Gold/all-maps"
"""

from __future__ import annotations

import itertools
import re
from enum import StrEnum
from typing import Any, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_MAP = "all-maps"

_MAP_SLUG_RE = re.compile(r"^[a-z0-9]+(-[a-z0-9]+)*$")


class GameMode(StrEnum):
    """Queue type the statistics were collected from."""

    QUICK_PLAY = "quick-play"
    COMPETITIVE = "competitive"

    @property
    def rq(self) -> int:
        """Provider query flag: 0 for quick play, 1 for competitive."""
        return 1 if self is GameMode.COMPETITIVE else 0


class InputDevice(StrEnum):
    PC = "PC"
    CONSOLE = "Console"


class Region(StrEnum):
    AMERICAS = "Americas"
    EUROPE = "Europe"
    ASIA = "Asia"


class Tier(StrEnum):
    """Skill tier. ``ALL`` aggregates every tier."""

    ALL = "All"
    BRONZE = "Bronze"
    SILVER = "Silver"
    GOLD = "Gold"
    PLATINUM = "Platinum"
    DIAMOND = "Diamond"
    MASTER = "Master"
    GRANDMASTER = "Grandmaster"


# Known maps by map type. "all-maps" aggregates every map.
MAPS_BY_TYPE: dict[str, list[str]] = {
    "all": [DEFAULT_MAP],
    "control": [
        "busan", "ilios", "lijiang-tower", "nepal", "oasis",
        "antarctic-peninsula", "samoa",
    ],
    "escort": [
        "dorado", "havana", "junkertown", "rialto", "route-66",
        "shambali-monastery", "circuit-royal",
    ],
    "hybrid": [
        "blizzard-world", "eichenwalde", "hollywood", "kings-row",
        "midtown", "numbani", "paraiso",
    ],
    "push": ["colosseo", "esperanca", "new-queen-street", "runasapi"],
    "flashpoint": ["new-junk-city", "suravasa"],
}

ALL_MAPS: list[str] = [m for maps in MAPS_BY_TYPE.values() for m in maps]


def validate_map_slug(value: str) -> str:
    """Return ``value`` if it is a well-formed map slug, else raise ``ValueError``."""
    if not isinstance(value, str) or not _MAP_SLUG_RE.match(value):
        raise ValueError(
            f"Invalid map slug {value!r}. Expected lowercase words joined by "
            "single hyphens, e.g. 'kings-row'."
        )
    return value


class Combination(BaseModel):
    """One fully-specified statistics series.

    Attributes:
        mode: Quick play or competitive.
        input: PC or console.
        region: Server region.
        tier: Skill tier (``All`` for the aggregate).
        map: Map slug; ``"all-maps"`` for the all-map aggregate.
    """

    model_config = ConfigDict(frozen=True)

    mode: GameMode
    input: InputDevice
    region: Region
    tier: Tier
    map: str = DEFAULT_MAP

    @field_validator("map")
    @classmethod
    def validate_map(cls, v: str) -> str:
        return validate_map_slug(v)

    @property
    def label(self) -> str:
        """Stable human-readable key, e.g. ``competitive/PC/Europe/Gold/all-maps``."""
        return f"{self.mode}/{self.input}/{self.region}/{self.tier}/{self.map}"

    def as_params(self) -> dict[str, str]:
        """Column-name → value mapping used by SQL repositories."""
        return {
            "mode": self.mode.value,
            "input": self.input.value,
            "region": self.region.value,
            "tier": self.tier.value,
            "map": self.map,
        }

    @classmethod
    def from_label(cls, label: str) -> "Combination":
        """Parse a ``mode/input/region/tier[/map]`` label back into a Combination."""
        parts = label.split("/")
        if len(parts) not in (4, 5):
            raise ValueError(
                f"Cannot parse combination label {label!r}; "
                "expected mode/input/region/tier[/map]."
            )
        mode, input_, region, tier = parts[:4]
        map_ = parts[4] if len(parts) == 5 else DEFAULT_MAP
        return cls(mode=mode, input=input_, region=region, tier=tier, map=map_)

    def __str__(self) -> str:
        return self.label


class SnapshotFilter(BaseModel):
    """Optional-field filter for listing snapshots, newest first.

    Only the recognised axes below can be filtered on; each one renders to a
    ``column = ?`` clause with a bound parameter.
    """

    model_config = ConfigDict(frozen=True)

    mode: Optional[GameMode] = None
    input: Optional[InputDevice] = None
    region: Optional[Region] = None
    tier: Optional[Tier] = None
    map: Optional[str] = None
    limit: int = Field(default=30, ge=1, le=500)

    @field_validator("map")
    @classmethod
    def validate_map(cls, v: Optional[str]) -> Optional[str]:
        return validate_map_slug(v) if v is not None else None

    def where_clause(self) -> tuple[str, list[Any]]:
        """Render ``(sql_fragment, params)`` for the active filters.

        Returns ``("", [])`` when no filter is set.
        """
        clauses: list[str] = []
        params: list[Any] = []
        for column in ("mode", "input", "region", "tier", "map"):
            value = getattr(self, column)
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(str(value))
        if not clauses:
            return "", []
        return "WHERE " + " AND ".join(clauses), params


def build_combinations(
    modes: Iterable[GameMode],
    inputs: Iterable[InputDevice],
    regions: Iterable[Region],
    tiers: Iterable[Tier],
    maps: Iterable[str] = (DEFAULT_MAP,),
) -> list[Combination]:
    """Return the cartesian product of the given axes.

    Order is deterministic: mode → input → region → tier → map, each axis in
    the order given.
    """
    return [
        Combination(mode=m, input=i, region=r, tier=t, map=mp)
        for m, i, r, t, mp in itertools.product(
            list(modes), list(inputs), list(regions), list(tiers), list(maps)
        )
    ]
