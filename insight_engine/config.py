"""Runtime configuration for the Insight Engine."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from datetime import timedelta
from pathlib import Path
from typing import Callable, Mapping, Optional, TypeVar

logger = logging.getLogger(__name__)

_ENV_PREFIX = "INSIGHT_ENGINE_"

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Tunables shared by the matcher, suppressor, selector and session."""

    max_matches: int = 3
    cooldown_days: float = 7.0
    not_relevant_window: timedelta = timedelta(hours=24)
    min_refresh_interval: timedelta = timedelta(minutes=5)
    seen_ttl: timedelta = timedelta(hours=24)
    confidence_floor: float = 0.2
    confidence_ceiling: float = 0.9
    catalog_path: Optional[Path] = None

    @property
    def cooldown(self) -> timedelta:
        return timedelta(days=self.cooldown_days)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "EngineConfig":
        """Build a config from ``INSIGHT_ENGINE_*`` variables.

        Unparseable values are logged and the default is kept.
        """

        env = os.environ if environ is None else environ
        defaults = cls()
        catalog_raw = env.get(f"{_ENV_PREFIX}CATALOG")
        return replace(
            defaults,
            max_matches=_read(env, "MAX_MATCHES", int, defaults.max_matches, minimum=1),
            cooldown_days=_read(env, "COOLDOWN_DAYS", float, defaults.cooldown_days, minimum=0),
            not_relevant_window=timedelta(
                hours=_read(
                    env,
                    "NOT_RELEVANT_HOURS",
                    float,
                    defaults.not_relevant_window.total_seconds() / 3600,
                    minimum=0,
                )
            ),
            min_refresh_interval=timedelta(
                seconds=_read(
                    env,
                    "MIN_REFRESH_SECONDS",
                    float,
                    defaults.min_refresh_interval.total_seconds(),
                    minimum=0,
                )
            ),
            seen_ttl=timedelta(
                hours=_read(env, "SEEN_TTL_HOURS", float, defaults.seen_ttl.total_seconds() / 3600, minimum=0)
            ),
            catalog_path=Path(catalog_raw).expanduser() if catalog_raw else None,
        )


def _read(
    env: Mapping[str, str],
    name: str,
    cast: Callable[[str], T],
    default: T,
    *,
    minimum: float | None = None,
) -> T:
    key = f"{_ENV_PREFIX}{name}"
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        value = cast(raw.strip())
    except ValueError:
        logger.warning("Ignoring invalid %s=%r; using %s", key, raw, default)
        return default
    if minimum is not None and value < minimum:  # type: ignore[operator]
        logger.warning("Ignoring out-of-range %s=%r; using %s", key, raw, default)
        return default
    return value
