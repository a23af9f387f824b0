"""
Rate provider client — fetch the raw hero table for one combination.

Endpoint:  https://overwatch.blizzard.com/en-us/rates/data/
Query:     ?input=PC&map=all-maps&region=Europe&role=All&rq=1&tier=Gold

Response shape (fields not listed are ignored)::

    {
      "rates": [
        {"id": "ana", "cells": {"pickrate": 5.1, "winrate": 49.8}},
        ...
      ]
    }

Error classification:
  - ``TransientProviderError``  — timeouts, connection failures, HTTP 429,
    HTTP 5xx. Retryable by ``ingestion.retry.with_retry``.
  - ``MalformedResponseError``  — other HTTP 4xx, non-JSON bodies, missing
    or invalid ``rates`` array. Terminal for the combination.

An empty ``rates`` array is *not* an error here; the normalizer rejects it
with ``EmptyTableError`` so the classification lives in one place.

Two implementations share the ``RatesClient`` protocol:
  - ``BlizzardRatesClient`` — live httpx client.
  - ``FixtureRatesClient``  — deterministic synthetic tables, no network.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Any, ClassVar, Optional, Protocol, runtime_checkable

import httpx

from hero_tracker.models.combination import Combination
from hero_tracker.models.snapshot import RawHeroRate

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://overwatch.blizzard.com/en-us/rates/data/"
DEFAULT_USER_AGENT = "hero-tracker/0.1"


# ── Errors ────────────────────────────────────────────────────────────────────

class ProviderError(Exception):
    """Base class for rate provider failures."""


class TransientProviderError(ProviderError):
    """Failure expected to clear on retry (timeout, throttling, server error).

    Attributes:
        status_code: HTTP status when the failure came from a response.
    """

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MalformedResponseError(ProviderError):
    """The provider answered, but the answer cannot be used. Not retryable."""


# ── Protocol ──────────────────────────────────────────────────────────────────

@runtime_checkable
class RatesClient(Protocol):
    """Anything that can fetch a raw hero table for a combination."""

    def fetch_rates(self, combination: Combination) -> list[RawHeroRate]:
        ...

    def close(self) -> None:
        ...


# ── Live client ───────────────────────────────────────────────────────────────

class BlizzardRatesClient:
    """httpx client for the public hero rates endpoint.

    Usage::

        with BlizzardRatesClient() as client:
            rows = client.fetch_rates(combo)

    Args:
        base_url: Rates endpoint URL.
        timeout_s: Per-request timeout (connect + read).
        user_agent: ``User-Agent`` header value.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout_s: float = 30.0,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.base_url = base_url
        self._client = httpx.Client(
            timeout=timeout_s,
            headers={"User-Agent": user_agent, "Accept": "application/json"},
            transport=transport,
            follow_redirects=True,
        )

    @classmethod
    def from_config(cls, provider_config) -> "BlizzardRatesClient":
        return cls(
            base_url=provider_config.base_url,
            timeout_s=provider_config.timeout_s,
            user_agent=provider_config.user_agent,
        )

    def __enter__(self) -> "BlizzardRatesClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    @staticmethod
    def build_params(combination: Combination) -> dict[str, str]:
        """Query parameters the endpoint expects for ``combination``."""
        return {
            "input": str(combination.input),
            "map": combination.map,
            "region": str(combination.region),
            "role": "All",
            "rq": str(combination.mode.rq),
            "tier": str(combination.tier),
        }

    def fetch_rates(self, combination: Combination) -> list[RawHeroRate]:
        """Fetch the raw hero table for ``combination``.

        Returns:
            Raw rows in provider order; may be empty.

        Raises:
            TransientProviderError: On timeout, transport failure, 429 or 5xx.
            MalformedResponseError: On other 4xx or an unusable body.
        """
        params = self.build_params(combination)
        logger.debug("GET %s params=%s", self.base_url, params)

        try:
            resp = self._client.get(self.base_url, params=params)
        except httpx.TimeoutException as exc:
            raise TransientProviderError(
                f"Timed out fetching {combination.label}: {exc}"
            ) from exc
        except httpx.TransportError as exc:
            raise TransientProviderError(
                f"Transport error fetching {combination.label}: {exc}"
            ) from exc

        status = resp.status_code
        if status == 429 or status >= 500:
            raise TransientProviderError(
                f"HTTP {status} for {combination.label}", status_code=status
            )
        if status >= 400:
            raise MalformedResponseError(f"HTTP {status} for {combination.label}")

        try:
            body = resp.json()
        except ValueError as exc:
            raise MalformedResponseError(
                f"Non-JSON response for {combination.label}: {exc}"
            ) from exc

        return parse_rates_payload(body, combination.label)


def parse_rates_payload(body: Any, label: str = "") -> list[RawHeroRate]:
    """Convert a decoded JSON body into ``RawHeroRate`` rows.

    Raises:
        MalformedResponseError: If ``rates`` is missing or is not a list of
            objects.
    """
    if not isinstance(body, dict) or "rates" not in body:
        raise MalformedResponseError(f"Response for {label} has no 'rates' array.")
    rates = body["rates"]
    if not isinstance(rates, list):
        raise MalformedResponseError(
            f"'rates' for {label} is {type(rates).__name__}, expected list."
        )

    rows: list[RawHeroRate] = []
    for entry in rates:
        if not isinstance(entry, dict):
            raise MalformedResponseError(f"Non-object entry in 'rates' for {label}.")
        cells = entry.get("cells") or {}
        if not isinstance(cells, dict):
            raise MalformedResponseError(f"Invalid 'cells' in 'rates' for {label}.")
        hero = entry.get("id", entry.get("hero", entry.get("name")))
        rows.append(
            RawHeroRate(
                hero=hero,
                pick_rate=cells.get("pickrate"),
                win_rate=cells.get("winrate"),
            )
        )
    return rows


# ── Fixture client ────────────────────────────────────────────────────────────

class FixtureRatesClient:
    """Deterministic synthetic client — no network, no credentials.

    Each combination maps to a stable table: rates are derived from a hash of
    ``(combination.label, hero)``, so repeated fetches return identical data
    and different combinations return different data.

    Args:
        heroes: Display names to include; defaults to ``HEROES``.
        fail_for: Combination labels for which ``fetch_rates`` raises
            ``TransientProviderError`` (exercises retry/failure paths).
    """

    HEROES: ClassVar[list[str]] = [
        "Ana", "Ashe", "Baptiste", "Bastion", "Brigitte", "Cassidy", "D.Va",
        "Doomfist", "Echo", "Genji", "Hanzo", "Illari", "Junker Queen",
        "Junkrat", "Juno", "Kiriko", "Lifeweaver", "Lúcio", "Mauga", "Mei",
        "Mercy", "Moira", "Orisa", "Pharah", "Ramattra", "Reaper",
        "Reinhardt", "Roadhog", "Sigma", "Sojourn", "Soldier: 76", "Sombra",
        "Symmetra", "Torbjörn", "Tracer", "Venture", "Widowmaker", "Winston",
        "Wrecking Ball", "Zarya", "Zenyatta",
    ]

    def __init__(
        self,
        heroes: Optional[list[str]] = None,
        fail_for: Optional[set[str]] = None,
    ) -> None:
        self.heroes = list(heroes) if heroes is not None else list(self.HEROES)
        self.fail_for = set(fail_for or ())
        self.calls: list[Combination] = []

    def __enter__(self) -> "FixtureRatesClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        return None

    def fetch_rates(self, combination: Combination) -> list[RawHeroRate]:
        self.calls.append(combination)
        if combination.label in self.fail_for:
            raise TransientProviderError(f"Fixture failure for {combination.label}")

        rows = []
        for hero in self.heroes:
            seed = int(
                hashlib.sha256(f"{combination.label}|{hero}".encode("utf-8")).hexdigest()[:8],
                16,
            )
            pick = round((seed % 1500) / 100, 2)            # 0.00 – 14.99
            win = round(40 + (seed // 1500) % 2000 / 100, 2)  # 40.00 – 59.99
            rows.append(RawHeroRate(hero=hero, pick_rate=pick, win_rate=win))
        logger.debug("Fixture table for %s: %d heroes", combination.label, len(rows))
        return rows


def build_client(provider_config) -> RatesClient:
    """Return the live client, or the fixture client when ``use_fixture`` is set."""
    if provider_config.use_fixture:
        logger.info("Using fixture rates client (no network).")
        return FixtureRatesClient()
    return BlizzardRatesClient.from_config(provider_config)
