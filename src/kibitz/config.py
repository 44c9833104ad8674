"""User-tunable settings for the engine client and game review.

Settings are plain dataclasses with sensible defaults.  An optional TOML
file can override any field::

    [engine]
    path = "/usr/bin/stockfish"
    depth = 18

    [review]
    inaccuracy = 100

    [rating]
    ceiling = 3000
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, get_origin, get_type_hints

_LOGGER = logging.getLogger(__name__)

CONFIG_ENV_VAR = "KIBITZ_CONFIG"
ENGINE_PATH_ENV_VAR = "KIBITZ_ENGINE_PATH"


@dataclass(slots=True, frozen=True)
class EngineSettings:
    """How to launch and drive the external analysis engine."""

    path: str = "stockfish"
    args: tuple[str, ...] = ()
    depth: int = 16
    top_moves: int = 4
    options: dict[str, str] = field(default_factory=dict)
    search_timeout_ms: int | None = None


@dataclass(slots=True, frozen=True)
class ReviewThresholds:
    """Upper centipawn-loss bounds for each move judgment.

    A loss of zero (or the engine's own choice) is always *Best*; anything
    above ``mistake`` is a *Blunder*.
    """

    excellent: int = 20
    good: int = 60
    inaccuracy: int = 120
    mistake: int = 250

    def __post_init__(self) -> None:
        bounds = (self.excellent, self.good, self.inaccuracy, self.mistake)
        if bounds[0] < 0:
            raise ValueError("Review thresholds must be non-negative")
        if any(lo > hi for lo, hi in zip(bounds, bounds[1:])):
            raise ValueError(f"Review thresholds must be non-decreasing: {bounds}")


@dataclass(slots=True, frozen=True)
class RatingScale:
    """Linear-in-accuracy-squared mapping to a performance rating."""

    floor: int = 400
    ceiling: int = 3200

    def __post_init__(self) -> None:
        if self.floor >= self.ceiling:
            raise ValueError("Rating floor must be below the ceiling")


@dataclass(slots=True, frozen=True)
class KibitzSettings:
    """All settings grouped together."""

    engine: EngineSettings = field(default_factory=EngineSettings)
    review: ReviewThresholds = field(default_factory=ReviewThresholds)
    rating: RatingScale = field(default_factory=RatingScale)


def _check_type(hint: Any, value: Any) -> bool:
    origin = get_origin(hint)
    if origin is tuple:
        return isinstance(value, list)
    if origin is dict:
        return isinstance(value, dict)
    # TOML booleans are ints to isinstance; no setting takes one.
    return isinstance(value, hint) and not isinstance(value, bool)


def _merge(section: Any, raw: Any, table: str) -> Any:
    if not isinstance(raw, dict):
        raise ValueError(f"Setting [{table}] must be a table, got {raw!r}")
    hints = get_type_hints(type(section))
    known = {f.name for f in fields(section)}
    updates: dict[str, Any] = {}
    for key, value in raw.items():
        if key not in known:
            _LOGGER.warning("Ignoring unknown setting [%s] %s", table, key)
            continue
        if not _check_type(hints[key], value):
            raise ValueError(f"Setting [{table}] {key} has the wrong type: {value!r}")
        if key == "args":
            value = tuple(str(v) for v in value)
        elif key == "options":
            value = {str(k): str(v) for k, v in value.items()}
        updates[key] = value
    return replace(section, **updates)


def load_settings(path: str | Path | None = None) -> KibitzSettings:
    """Load settings from *path* (or ``$KIBITZ_CONFIG``) on top of defaults.

    A missing file is not an error; malformed TOML is.
    """
    settings = KibitzSettings()
    if path is None:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        path = Path(env_path) if env_path else None

    if path is not None:
        config_path = Path(path)
        if config_path.is_file():
            with config_path.open("rb") as fh:
                raw = tomllib.load(fh)
            settings = KibitzSettings(
                engine=_merge(settings.engine, raw.get("engine", {}), "engine"),
                review=_merge(settings.review, raw.get("review", {}), "review"),
                rating=_merge(settings.rating, raw.get("rating", {}), "rating"),
            )
        else:
            _LOGGER.debug("Config file not found, using defaults: %s", config_path)

    engine_path = os.environ.get(ENGINE_PATH_ENV_VAR)
    if engine_path:
        settings = replace(settings, engine=replace(settings.engine, path=engine_path))
    return settings
