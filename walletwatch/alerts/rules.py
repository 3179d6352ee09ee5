"""Alert rule configs and the detectors that compare snapshots against them.

Detectors are pure: given a parsed config and a RuleContext they return a
Detection or None. Rule configs accept the camelCase keys stored by the web
app (``timeWindow``, ``riskLevels``, ``alertOnNewAddress``) as well as
snake_case.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from walletwatch.models.schema import BalanceSnapshot, ChainBalance, Severity


class RuleConfig(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class LargeTransferConfig(RuleConfig):
    threshold: float = Field(ge=0, description="USD")


class BalanceVolatilityConfig(RuleConfig):
    time_window: float = Field(ge=1, description="Minutes")
    percentage: float = Field(ge=0, le=100)


class AssetEmptiedConfig(RuleConfig):
    threshold: float = Field(ge=0, description="USD; at or below counts as emptied")
    percentage: float | None = Field(default=None, ge=0, le=100)


class AddressRiskConfig(RuleConfig):
    risk_levels: list[int] = Field(min_length=1)
    alert_on_new_address: bool = True


RULE_CONFIGS: dict[str, type[RuleConfig]] = {
    "large_outflow": LargeTransferConfig,
    "large_inflow": LargeTransferConfig,
    "balance_volatility": BalanceVolatilityConfig,
    "asset_emptied": AssetEmptiedConfig,
    "address_risk": AddressRiskConfig,
}

RISK_LEVEL_NAMES: dict[int, str] = {
    1: "low risk",
    2: "low-medium risk",
    3: "medium risk",
    4: "medium-high risk",
    5: "high risk",
}


def parse_rule_config(rule_type: str, config: dict[str, Any]) -> RuleConfig:
    """Validate a raw config payload. Raises ValueError (incl. pydantic ValidationError)."""
    model = RULE_CONFIGS.get(rule_type)
    if model is None:
        raise ValueError(f"Unknown rule type {rule_type!r}. Supported: {list(RULE_CONFIGS)}")
    return model.model_validate(config)


@dataclass(frozen=True)
class RuleContext:
    current: ChainBalance
    previous: BalanceSnapshot | None
    # window -> prior snapshots inside it, newest first, current excluded
    snapshots_since: Callable[[timedelta], list[BalanceSnapshot]] = field(default=lambda window: [])


@dataclass(frozen=True)
class Detection:
    title: str
    message: str
    severity: Severity
    details: dict[str, Any]


def _percent(change: float, base: float) -> float | None:
    if base == 0:
        return None
    return change * 100 / base


def _details(
    previous: float | None,
    current: float,
    change: float | None,
    percentage: float | None,
    **extra: Any,
) -> dict[str, Any]:
    details = {
        "previous_value": previous,
        "current_value": current,
        "change_amount": change,
        "change_percentage": percentage,
    }
    details.update({k: v for k, v in extra.items() if v is not None})
    return details


def _pct_text(percentage: float | None) -> str:
    return f"{percentage:.2f}%" if percentage is not None else "n/a"


def detect_large_outflow(config: LargeTransferConfig, ctx: RuleContext) -> Detection | None:
    if ctx.previous is None:
        return None
    prev = ctx.previous.balance_data.total_value
    cur = ctx.current.total_value
    change = prev - cur
    if change <= 0 or change < config.threshold:
        return None
    pct = _percent(change, prev)
    return Detection(
        title="Large outflow",
        message=f"Outflow of ${change:,.2f} detected ({_pct_text(pct)})",
        severity="error",
        details=_details(prev, cur, change, pct, threshold=config.threshold, previous_snapshot_id=ctx.previous.id),
    )


def detect_large_inflow(config: LargeTransferConfig, ctx: RuleContext) -> Detection | None:
    if ctx.previous is None:
        return None
    prev = ctx.previous.balance_data.total_value
    cur = ctx.current.total_value
    change = cur - prev
    if change <= 0 or change < config.threshold:
        return None
    pct = _percent(change, prev)
    return Detection(
        title="Large inflow",
        message=f"Inflow of ${change:,.2f} detected ({_pct_text(pct)})",
        severity="info",
        details=_details(prev, cur, change, pct, threshold=config.threshold, previous_snapshot_id=ctx.previous.id),
    )


def detect_balance_volatility(config: BalanceVolatilityConfig, ctx: RuleContext) -> Detection | None:
    window = ctx.snapshots_since(timedelta(minutes=config.time_window))
    if not window:
        return None

    oldest = window[-1]
    base = oldest.balance_data.total_value
    if base <= 0:
        return None

    cur = ctx.current.total_value
    change = abs(cur - base)
    pct = change * 100 / base
    if pct < config.percentage:
        return None

    direction = "increased" if cur > base else "decreased"
    return Detection(
        title="Balance volatility",
        message=f"Balance {direction} by {pct:.2f}% (${change:,.2f}) within {config.time_window:g} minutes",
        severity="warning",
        details=_details(
            base,
            cur,
            change,
            pct,
            threshold=config.percentage,
            time_window=config.time_window,
            direction=direction,
            previous_snapshot_id=oldest.id,
            previous_snapshot_at=oldest.snapshot_at.isoformat(),
        ),
    )


def detect_asset_emptied(config: AssetEmptiedConfig, ctx: RuleContext) -> Detection | None:
    """Threshold crossing takes precedence over the percentage drop; one alert at most."""
    if ctx.previous is None:
        return None
    prev = ctx.previous.balance_data.total_value
    cur = ctx.current.total_value
    change = prev - cur

    if prev > config.threshold and cur <= config.threshold:
        return Detection(
            title="Assets emptied",
            message=f"Balance fell from ${prev:,.2f} to ${cur:,.2f}",
            severity="error",
            details=_details(
                prev, cur, change, _percent(change, prev),
                threshold=config.threshold,
                condition="threshold",
                previous_snapshot_id=ctx.previous.id,
            ),
        )

    if config.percentage and change > 0 and prev > 0:
        pct = change * 100 / prev
        if pct >= config.percentage:
            return Detection(
                title="Sharp asset decrease",
                message=f"Balance dropped {pct:.2f}% (${change:,.2f}) since the last snapshot",
                severity="error",
                details=_details(
                    prev, cur, change, pct,
                    threshold=config.percentage,
                    condition="percentage",
                    previous_snapshot_id=ctx.previous.id,
                ),
            )
    return None


def detect_address_risk(config: AddressRiskConfig, ctx: RuleContext) -> Detection | None:
    cur = ctx.current.total_value
    prev = ctx.previous.balance_data.total_value if ctx.previous is not None else None
    change = cur - prev if prev is not None else None
    pct = _percent(change, prev) if prev is not None and change is not None else None
    risk = ctx.current.risk_level

    if risk is None:
        if config.alert_on_new_address and ctx.previous is None:
            return Detection(
                title="New address",
                message="New monitored address detected, please verify its safety",
                severity="warning",
                details=_details(prev, cur, change, pct, is_new_address=True),
            )
        return None

    if risk not in config.risk_levels:
        return None

    name = RISK_LEVEL_NAMES.get(risk, f"risk level {risk}")
    return Detection(
        title="Address risk",
        message=f"Address classified as {name} (level {risk})",
        severity="error" if risk >= 4 else "warning",
        details=_details(prev, cur, change, pct, risk_level=risk, risk_name=name, risk_levels=config.risk_levels),
    )


DETECTORS: dict[str, Callable[[Any, RuleContext], Detection | None]] = {
    "large_outflow": detect_large_outflow,
    "large_inflow": detect_large_inflow,
    "balance_volatility": detect_balance_volatility,
    "asset_emptied": detect_asset_emptied,
    "address_risk": detect_address_risk,
}
