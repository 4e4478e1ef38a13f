"""AQI classification table — ordered, disjoint level ranges with a top-level fallback."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, ValidationError

from src.core.config import LevelConfig
from src.core.types import Reading

logger = structlog.get_logger(__name__)


class LevelOverride(BaseModel):
    """Per-level fields a stored ``thresholds`` override may replace.

    Range boundaries are fixed at deploy time; other keys are ignored.
    """

    model_config = ConfigDict(strict=True, extra="ignore")

    notify: bool | None = None
    message: str | None = None
    color: str | None = None


class ClassificationTable:
    """Maps an AQI value to a named severity level.

    Levels are kept in canonical severity order (least to most severe) and must
    form a contiguous, non-overlapping partition of their range; the table
    raises ``ValueError`` on construction otherwise.

    Usage::

        table = ClassificationTable(settings.classification.levels)
        table.level_for(160)        # "unhealthy"
        table.level_for(9999)       # "hazardous"
        table.classify(160, city="Kuala Lumpur").level   # "unhealthy"
    """

    def __init__(self, levels: Iterable[LevelConfig]) -> None:
        self._levels: tuple[LevelConfig, ...] = tuple(levels)
        _validate_levels(self._levels)
        self._by_key: dict[str, LevelConfig] = {lvl.key: lvl for lvl in self._levels}

    @property
    def levels(self) -> tuple[LevelConfig, ...]:
        return self._levels

    @property
    def keys(self) -> list[str]:
        return [lvl.key for lvl in self._levels]

    @property
    def highest(self) -> LevelConfig:
        """The most severe level — used when a value exceeds every range."""
        return self._levels[-1]

    def level_for(self, aqi: int) -> str:
        """Return the key of the first level whose inclusive range contains *aqi*.

        Values that match no range fall back to the highest-severity level.
        """
        for lvl in self._levels:
            if lvl.min <= aqi <= lvl.max:
                return lvl.key
        return self.highest.key

    def config_for(self, key: str) -> LevelConfig | None:
        return self._by_key.get(key)

    def classify(self, aqi: int, **fields: Any) -> Reading:
        """Build a Reading for *aqi* with its level derived from this table."""
        return Reading(aqi=aqi, level=self.level_for(aqi), **fields)

    def with_overrides(
        self, thresholds: Mapping[str, Mapping[str, Any]] | None
    ) -> ClassificationTable:
        """Return a new table with stored per-level overrides applied.

        Only ``notify``, ``message`` and ``color`` are taken from *thresholds*;
        unknown level keys are ignored. A level whose override is not a
        mapping or has mistyped fields keeps its configured values.
        """
        if not thresholds:
            return self

        merged: list[LevelConfig] = []
        for lvl in self._levels:
            override = thresholds.get(lvl.key)
            if override is None:
                merged.append(lvl)
                continue
            try:
                parsed = LevelOverride.model_validate(override)
            except ValidationError as exc:
                logger.warning("threshold_override_invalid", level=lvl.key, error=str(exc))
                merged.append(lvl)
                continue
            merged.append(lvl.model_copy(update=parsed.model_dump(exclude_none=True)))
        return ClassificationTable(merged)

    def validate_overrides(self, thresholds: Any) -> dict[str, dict[str, Any]]:
        """Check a ``thresholds`` setting and return it in normalised form.

        Raises:
            TypeError: If *thresholds* or one of its overrides is not a mapping.
            ValueError: On an unknown level key or a mistyped field.
        """
        if not isinstance(thresholds, Mapping):
            raise TypeError("thresholds must be a mapping of level to overrides")
        unknown = set(thresholds) - set(self._by_key)
        if unknown:
            raise ValueError(f"Unknown levels: {sorted(unknown)}")

        normalised: dict[str, dict[str, Any]] = {}
        for level, override in thresholds.items():
            if not isinstance(override, Mapping):
                raise TypeError(f"Override for '{level}' must be a mapping")
            try:
                parsed = LevelOverride.model_validate(override)
            except ValidationError as exc:
                raise ValueError(f"Invalid override for '{level}': {exc}") from exc
            normalised[level] = parsed.model_dump(exclude_none=True)
        return normalised

    def as_thresholds(self) -> dict[str, dict[str, Any]]:
        """Serialise the table in the shape stored under the ``thresholds`` setting."""
        return {lvl.key: lvl.model_dump(exclude={"key"}) for lvl in self._levels}

    @staticmethod
    def display_name(key: str) -> str:
        """Human label for a level key, e.g. ``unhealthy_sensitive`` → ``Unhealthy sensitive``."""
        label = key.replace("_", " ")
        return label[:1].upper() + label[1:]


def _validate_levels(levels: tuple[LevelConfig, ...]) -> None:
    if not levels:
        raise ValueError("Classification table needs at least one level")

    seen: set[str] = set()
    previous: LevelConfig | None = None
    for lvl in levels:
        if lvl.key in seen:
            raise ValueError(f"Duplicate level key '{lvl.key}'")
        seen.add(lvl.key)
        if lvl.min > lvl.max:
            raise ValueError(
                f"Level '{lvl.key}' has min {lvl.min} greater than max {lvl.max}"
            )
        if previous is not None and lvl.min != previous.max + 1:
            kind = "overlaps" if lvl.min <= previous.max else "leaves a gap after"
            raise ValueError(
                f"Level '{lvl.key}' ({lvl.min}-{lvl.max}) {kind}"
                f" '{previous.key}' ({previous.min}-{previous.max})"
            )
        previous = lvl
