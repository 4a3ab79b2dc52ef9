"""Trigger conditions for automatic achievements.

A trigger is one metric, one comparator and one threshold. The metric is a
closed set of variants so that ``category_count`` and ``investment_count`` +
``category_id`` (two spellings of the same intent in stored configs) resolve
to the same ``Count(CategoryScope(...))``.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from vcoin.metrics import (
    CURRENT_AMOUNT,
    INVESTMENT_COUNT,
    STREAK_DAYS,
    TOTAL_INVESTED,
    category_metric,
)

logger = logging.getLogger(__name__)


class TriggerConfigError(ValueError):
    """Raised when a stored or submitted trigger config cannot be parsed."""


# ---------------------------------------------------------------------------
# Comparators
# ---------------------------------------------------------------------------


class Comparator(StrEnum):
    GTE = ">="
    GT = ">"
    EQ = "="
    LTE = "<="
    LT = "<"

    @classmethod
    def from_symbol(cls, symbol: object) -> Comparator | None:
        """Parse an operator symbol, returning None when it is not recognised."""
        if symbol == "==":
            return cls.EQ
        try:
            return cls(str(symbol))
        except ValueError:
            return None

    def apply(self, current: float, threshold: float) -> bool:
        if self is Comparator.GTE:
            return current >= threshold
        if self is Comparator.GT:
            return current > threshold
        if self is Comparator.EQ:
            return current == threshold
        if self is Comparator.LTE:
            return current <= threshold
        return current < threshold


# ---------------------------------------------------------------------------
# Metric variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TotalScope:
    pass


@dataclass(frozen=True)
class CategoryScope:
    category_id: int


@dataclass(frozen=True)
class Count:
    """Number of investments, overall or within one category."""

    scope: TotalScope | CategoryScope

    @property
    def key(self) -> str:
        if isinstance(self.scope, CategoryScope):
            return category_metric(self.scope.category_id)
        return INVESTMENT_COUNT


@dataclass(frozen=True)
class CurrentBalance:
    """Current balance including accrued interest."""

    @property
    def key(self) -> str:
        return TOTAL_INVESTED


@dataclass(frozen=True)
class StreakDays:
    @property
    def key(self) -> str:
        return STREAK_DAYS


@dataclass(frozen=True)
class NamedMetric:
    """Any other metric from the map, looked up by name."""

    name: str

    @property
    def key(self) -> str:
        return self.name


Metric = Count | CurrentBalance | StreakDays | NamedMetric


@dataclass(frozen=True)
class Trigger:
    metric: Metric
    comparator: Comparator
    threshold: float

    def to_config(self) -> dict[str, Any]:
        """Serialise back to the stored JSON shape."""
        config: dict[str, Any] = {"operator": self.comparator.value, "value": self.threshold}
        metric = self.metric
        if isinstance(metric, Count) and isinstance(metric.scope, CategoryScope):
            config["metric"] = INVESTMENT_COUNT
            config["category_id"] = metric.scope.category_id
        else:
            config["metric"] = metric.key
        return config


@dataclass(frozen=True)
class Evaluation:
    holds: bool
    current_value: float


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _parse_category_id(raw: object) -> int | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        raise TriggerConfigError(f"Invalid category_id: {raw!r}")
    try:
        return int(raw)  # type: ignore[call-overload]
    except (TypeError, ValueError):
        raise TriggerConfigError(f"Invalid category_id: {raw!r}") from None


def parse_metric(config: Mapping[str, Any]) -> Metric:
    """Resolve the metric variant of a trigger config."""
    name = config.get("metric")
    if not isinstance(name, str) or not name:
        raise TriggerConfigError("Trigger config requires a metric name")

    category_id = _parse_category_id(config.get("category_id"))

    if name == "category_count":
        if category_id is None:
            raise TriggerConfigError("category_count requires a category_id")
        return Count(CategoryScope(category_id))
    if name == INVESTMENT_COUNT:
        if category_id is not None:
            return Count(CategoryScope(category_id))
        return Count(TotalScope())
    if name in (TOTAL_INVESTED, CURRENT_AMOUNT):
        return CurrentBalance()
    if name == STREAK_DAYS:
        return StreakDays()
    return NamedMetric(name)


def parse_trigger_config(config: Mapping[str, Any] | None) -> Trigger:
    """Strictly parse a trigger config, raising TriggerConfigError on any defect."""
    if not config:
        raise TriggerConfigError("Automatic achievements require a trigger config")

    metric = parse_metric(config)

    comparator = Comparator.from_symbol(config.get("operator", ">="))
    if comparator is None:
        raise TriggerConfigError(f"Unknown operator: {config.get('operator')!r}")

    value = config.get("value")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TriggerConfigError(f"Trigger value must be a number, got {value!r}")

    return Trigger(metric=metric, comparator=comparator, threshold=float(value))


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def resolve(metric: Metric, metrics: Mapping[str, float]) -> float:
    """Current value of a metric; anything missing from the map counts as 0."""
    return float(metrics.get(metric.key, 0) or 0)


def evaluate(trigger: Trigger, metrics: Mapping[str, float]) -> Evaluation:
    current = resolve(trigger.metric, metrics)
    return Evaluation(
        holds=trigger.comparator.apply(current, trigger.threshold), current_value=current
    )


def evaluate_config(config: Mapping[str, Any] | None, metrics: Mapping[str, float]) -> Evaluation:
    """Evaluate a stored trigger config, failing closed on anything malformed.

    An unknown operator or a bad threshold never unlocks; the current value is
    still resolved when the metric itself is usable so progress stays current.
    """
    if not config:
        return Evaluation(holds=False, current_value=0.0)

    try:
        metric = parse_metric(config)
    except TriggerConfigError as exc:
        logger.warning("Unusable trigger metric %r: %s", dict(config), exc)
        return Evaluation(holds=False, current_value=0.0)

    current = resolve(metric, metrics)
    try:
        trigger = parse_trigger_config(config)
    except TriggerConfigError as exc:
        logger.warning("Trigger evaluates to false: %s", exc)
        return Evaluation(holds=False, current_value=current)

    return evaluate(trigger, metrics)
