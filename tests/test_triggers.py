"""Tests for trigger parsing and evaluation."""

from __future__ import annotations

import pytest

from vcoin.metrics import category_metric
from vcoin.triggers import (
    CategoryScope,
    Comparator,
    Count,
    CurrentBalance,
    NamedMetric,
    StreakDays,
    TotalScope,
    TriggerConfigError,
    evaluate,
    evaluate_config,
    parse_metric,
    parse_trigger_config,
)


def _config(operator: str, value: float = 5, metric: str = "investment_count") -> dict:
    return {"metric": metric, "operator": operator, "value": value}


class TestComparators:
    @pytest.mark.parametrize(
        ("operator", "expected"),
        [(">=", True), (">", False), ("=", True), ("==", True), ("<=", True), ("<", False)],
    )
    def test_equal_current_and_threshold(self, operator: str, expected: bool) -> None:
        result = evaluate_config(_config(operator), {"investment_count": 5})
        assert result.holds is expected
        assert result.current_value == 5

    @pytest.mark.parametrize(
        ("operator", "expected"),
        [(">=", True), (">", True), ("=", False), ("<=", False), ("<", False)],
    )
    def test_current_above_threshold(self, operator: str, expected: bool) -> None:
        result = evaluate_config(_config(operator), {"investment_count": 6})
        assert result.holds is expected

    def test_double_equals_maps_to_eq(self) -> None:
        assert Comparator.from_symbol("==") is Comparator.EQ

    def test_unknown_symbol(self) -> None:
        assert Comparator.from_symbol("!=") is None


class TestParseMetric:
    def test_plain_count(self) -> None:
        assert parse_metric({"metric": "investment_count"}) == Count(TotalScope())

    def test_category_count_spellings_agree(self) -> None:
        a = parse_metric({"metric": "category_count", "category_id": 4})
        b = parse_metric({"metric": "investment_count", "category_id": 4})
        assert a == b == Count(CategoryScope(4))

    def test_category_count_without_category_id(self) -> None:
        with pytest.raises(TriggerConfigError):
            parse_metric({"metric": "category_count"})

    def test_balance_aliases(self) -> None:
        assert parse_metric({"metric": "total_invested"}) == CurrentBalance()
        assert parse_metric({"metric": "current_amount"}) == CurrentBalance()

    def test_streak(self) -> None:
        assert parse_metric({"metric": "streak_days"}) == StreakDays()

    def test_other_names_are_looked_up_directly(self) -> None:
        assert parse_metric({"metric": "original_invested"}) == NamedMetric("original_invested")

    def test_missing_metric(self) -> None:
        with pytest.raises(TriggerConfigError):
            parse_metric({"operator": ">=", "value": 1})


class TestParseTriggerConfig:
    def test_round_trips_category_trigger(self) -> None:
        trigger = parse_trigger_config(
            {"metric": "category_count", "category_id": "2", "operator": ">", "value": 3}
        )
        assert trigger.to_config() == {
            "metric": "investment_count",
            "category_id": 2,
            "operator": ">",
            "value": 3.0,
        }

    def test_operator_defaults_to_gte(self) -> None:
        trigger = parse_trigger_config({"metric": "streak_days", "value": 3})
        assert trigger.comparator is Comparator.GTE

    @pytest.mark.parametrize(
        "config",
        [
            None,
            {},
            {"metric": "investment_count", "operator": "!=", "value": 1},
            {"metric": "investment_count", "operator": ">=", "value": "ten"},
            {"metric": "investment_count", "operator": ">=", "value": True},
            {"metric": "investment_count", "operator": ">="},
            {"metric": "investment_count", "category_id": "abc", "value": 1},
        ],
    )
    def test_rejects_malformed(self, config: dict | None) -> None:
        with pytest.raises(TriggerConfigError):
            parse_trigger_config(config)

    def test_error_is_a_value_error(self) -> None:
        assert issubclass(TriggerConfigError, ValueError)


class TestEvaluateConfig:
    def test_unknown_operator_fails_closed(self) -> None:
        result = evaluate_config(_config("!="), {"investment_count": 100})
        assert result.holds is False
        assert result.current_value == 100

    def test_non_numeric_threshold_fails_closed(self) -> None:
        result = evaluate_config(
            {"metric": "investment_count", "operator": ">=", "value": "1"},
            {"investment_count": 100},
        )
        assert result.holds is False

    def test_missing_metric_resolves_to_zero(self) -> None:
        result = evaluate_config(_config(">=", 0, metric="not_tracked"), {})
        assert result.holds is True
        assert result.current_value == 0.0

    def test_empty_config_is_false(self) -> None:
        result = evaluate_config(None, {"investment_count": 3})
        assert result.holds is False
        assert result.current_value == 0.0

    def test_category_scoped_count(self) -> None:
        metrics = {"investment_count": 10, category_metric(2): 1}
        config = {"metric": "investment_count", "category_id": 2, "operator": ">=", "value": 2}
        result = evaluate_config(config, metrics)
        assert result.holds is False
        assert result.current_value == 1

    def test_category_without_entries_is_zero(self) -> None:
        config = {"metric": "category_count", "category_id": 9, "operator": ">=", "value": 1}
        result = evaluate_config(config, {"investment_count": 4})
        assert result.holds is False
        assert result.current_value == 0

    def test_evaluate_parsed_trigger(self) -> None:
        trigger = parse_trigger_config({"metric": "current_amount", "value": 1000})
        assert evaluate(trigger, {"total_invested": 1000.01}).holds is True
        assert evaluate(trigger, {"total_invested": 999.99}).holds is False
