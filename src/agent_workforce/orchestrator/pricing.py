"""Token cost estimation for runtimes that do not report cost themselves."""

from __future__ import annotations

import os
from dataclasses import dataclass

PRICING_ENV = "AGENT_WORKFORCE_LLM_PRICING"


@dataclass(slots=True)
class ModelPricing:
    """Per-model input/output pricing in USD per 1M tokens."""

    input_per_1m: float
    output_per_1m: float


def resolve_cost_usd(
    *,
    reported_cost_usd: float | None,
    model: str | None,
    input_tokens: int | None,
    output_tokens: int | None,
) -> float | None:
    """Runtime-reported cost wins; otherwise estimate from token usage."""

    if reported_cost_usd is not None:
        return reported_cost_usd
    return estimate_cost_usd(
        model=model or "",
        input_tokens=input_tokens,
        output_tokens=output_tokens,
    )


def estimate_cost_usd(
    *,
    model: str,
    input_tokens: int | None,
    output_tokens: int | None,
) -> float | None:
    """Estimate cost in USD from token usage and configured pricing."""

    pricing = _lookup_pricing(model=model)
    if pricing is None or (input_tokens is None and output_tokens is None):
        return None
    return ((input_tokens or 0) / 1_000_000) * pricing.input_per_1m + (
        (output_tokens or 0) / 1_000_000
    ) * pricing.output_per_1m


def _lookup_pricing(*, model: str) -> ModelPricing | None:
    mapping = _parse_pricing_mapping(os.getenv(PRICING_ENV, ""))
    direct = mapping.get(model.strip())
    if direct is not None:
        return direct
    return mapping.get("*")


def _parse_pricing_mapping(raw: str) -> dict[str, ModelPricing]:
    """Parse `AGENT_WORKFORCE_LLM_PRICING`.

    Format:
    - `model:input_per_1m:output_per_1m`
    - multiple entries separated by `,`
    - `*` as model matches anything without its own entry
    """

    parsed: dict[str, ModelPricing] = {}
    if not raw.strip():
        return parsed

    for entry in raw.split(","):
        value = entry.strip()
        if not value:
            continue
        parts = [part.strip() for part in value.rsplit(":", 2)]
        if len(parts) != 3 or not parts[0]:
            continue
        model, input_price, output_price = parts
        try:
            input_per_1m = float(input_price)
            output_per_1m = float(output_price)
        except ValueError:
            continue
        parsed[model] = ModelPricing(input_per_1m=input_per_1m, output_per_1m=output_per_1m)
    return parsed
