from __future__ import annotations

import allure
import pytest

from agent_workforce.orchestrator.pricing import (
    PRICING_ENV,
    estimate_cost_usd,
    resolve_cost_usd,
)

pytestmark = [
    allure.epic("Execution"),
    allure.feature("Cost Accounting"),
]


def test_reported_cost_wins_over_estimate(monkeypatch) -> None:
    monkeypatch.setenv(PRICING_ENV, "*:3:15")

    assert (
        resolve_cost_usd(
            reported_cost_usd=0.5,
            model="sonnet",
            input_tokens=1_000_000,
            output_tokens=0,
        )
        == 0.5
    )


def test_estimate_uses_model_entry_then_wildcard(monkeypatch) -> None:
    monkeypatch.setenv(PRICING_ENV, "sonnet:3:15, *:1:2")

    assert estimate_cost_usd(
        model="sonnet",
        input_tokens=1_000_000,
        output_tokens=100_000,
    ) == pytest.approx(4.5)
    assert estimate_cost_usd(
        model="haiku",
        input_tokens=500_000,
        output_tokens=500_000,
    ) == pytest.approx(1.5)


def test_estimate_is_none_without_pricing_or_usage(monkeypatch) -> None:
    monkeypatch.delenv(PRICING_ENV, raising=False)
    assert estimate_cost_usd(model="sonnet", input_tokens=10, output_tokens=10) is None

    monkeypatch.setenv(PRICING_ENV, "*:1:1")
    assert estimate_cost_usd(model="sonnet", input_tokens=None, output_tokens=None) is None
    assert (
        resolve_cost_usd(reported_cost_usd=None, model=None, input_tokens=None, output_tokens=None)
        is None
    )


def test_malformed_pricing_entries_are_ignored(monkeypatch) -> None:
    monkeypatch.setenv(PRICING_ENV, "broken, sonnet:x:1, opus:10:50")

    assert estimate_cost_usd(model="sonnet", input_tokens=1, output_tokens=1) is None
    assert estimate_cost_usd(
        model="opus",
        input_tokens=100_000,
        output_tokens=0,
    ) == pytest.approx(1.0)
