"""Pydantic v2 data models for balances, snapshots and alerts."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator

from walletwatch.chain.registry import CHAINS

TOKEN_STANDARDS = ("NATIVE", "ERC20", "TRC20", "TRC10", "OMNI", "UNKNOWN")

AlertRuleType = Literal[
    "large_outflow",
    "large_inflow",
    "balance_volatility",
    "asset_emptied",
    "address_risk",
]
Severity = Literal["info", "warning", "error"]


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in DuckDB TIMESTAMP columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


def coerce_risk_level(value: Any) -> int | None:
    """Provider risk indicator as an int in 1..5, else None."""
    try:
        level = int(value)
    except (TypeError, ValueError):
        return None
    return level if 1 <= level <= 5 else None


# Provider field -> accepted spellings, first non-empty wins
_RAW_TOKEN_ALIASES: dict[str, tuple[str, ...]] = {
    "balance": ("balance", "amount", "rawBalance"),
    "decimals": ("decimals", "decimal"),
    "symbol": ("symbol", "displaySymbol"),
    "name": ("name", "displayName"),
    "address": ("tokenAddress", "address", "token_address", "contractAddress"),
    "token_standard": ("tokenStandard", "token_standard", "standard"),
    "caip2": ("caip2",),
    "risk_level": ("riskLevel", "risk_level", "risk"),
}


class RawToken(BaseModel):
    """One entry of an indexer token list, normalized at the adapter boundary."""

    balance: str = "0"
    decimals: int | None = None
    symbol: str = "UNKNOWN"
    name: str = "Unknown Token"
    address: str = ""
    token_standard: str = "UNKNOWN"
    caip2: str = ""
    risk_level: int | None = None

    @model_validator(mode="before")
    @classmethod
    def _coalesce_aliases(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        out: dict[str, Any] = {}
        for field, keys in _RAW_TOKEN_ALIASES.items():
            for key in keys:
                value = data.get(key)
                if value is not None and value != "":
                    out[field] = value
                    break
        return out

    @field_validator("balance", mode="before")
    @classmethod
    def _balance_str(cls, v: Any) -> str:
        return str(v).strip() if v is not None else "0"

    @field_validator("decimals", mode="before")
    @classmethod
    def _decimals_int(cls, v: Any) -> int | None:
        try:
            return int(v)
        except (TypeError, ValueError):
            return None

    @field_validator("token_standard", mode="before")
    @classmethod
    def _standard(cls, v: Any) -> str:
        v = str(v).upper()
        return v if v in TOKEN_STANDARDS else "UNKNOWN"

    @field_validator("risk_level", mode="before")
    @classmethod
    def _risk(cls, v: Any) -> int | None:
        return coerce_risk_level(v)


class Token(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: str
    name: str
    address: str
    balance: str = Field(description="Raw integer balance as decimal string")
    decimals: int
    price: float = 0.0
    usd_value: float = 0.0
    formatted_balance: str = "0"
    usd_value_formatted: str = "0.00"
    token_standard: str = "UNKNOWN"


class ChainBalance(BaseModel):
    chain: str
    address: str = ""
    tokens: list[Token] = Field(default_factory=list, description="Positive balances, by USD value desc")
    all_tokens: list[Token] = Field(default_factory=list, description="Every queried token, fetch order")
    total_value: float = 0.0
    total_value_formatted: str = "0.00"
    error: str | None = None
    risk_level: int | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class AddressQuery(BaseModel):
    chain: str
    address: str


class MonitoredAddress(BaseModel):
    address_id: str
    chain: str
    address: str


class Portfolio(BaseModel):
    balances: list[ChainBalance] = Field(default_factory=list)
    total_value: float = 0.0
    total_value_formatted: str = "0.00"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def chains(self) -> dict[str, ChainBalance | None]:
        """Per-chain view: first balance for each chain, None when not requested."""
        view: dict[str, ChainBalance | None] = {c.key: None for c in CHAINS.values()}
        for balance in self.balances:
            config = CHAINS.get(balance.chain)
            if config is not None and view[config.key] is None:
                view[config.key] = balance
        return view


class BalanceSnapshot(BaseModel):
    id: str = Field(default_factory=new_id)
    case_id: str
    address_id: str
    balance_data: ChainBalance
    total_value: Decimal
    snapshot_at: datetime = Field(default_factory=utcnow)


class AlertRule(BaseModel):
    id: str = Field(default_factory=new_id)
    case_id: str
    rule_type: str
    name: str
    config: dict[str, Any] = Field(default_factory=dict)
    enabled: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Alert(BaseModel):
    id: str = Field(default_factory=new_id)
    case_id: str
    address_id: str | None = None
    rule_id: str | None = None
    alert_type: str
    title: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    severity: Severity = "warning"
    is_read: bool = False
    triggered_at: datetime = Field(default_factory=utcnow)


class PollResult(BaseModel):
    snapshots_created: int = 0
    alerts_triggered: int = 0
    alerts: list[Alert] = Field(default_factory=list)
    failures: dict[str, str] = Field(default_factory=dict, description="address_id -> reason")


class PriceRequest(BaseModel):
    chain_type: str
    address: str = ""
    caip2: str = ""


class PriceQuote(BaseModel):
    price: float = 0.0
