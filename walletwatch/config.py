"""Centralized configuration via pydantic-settings. Overrides from .env."""

from pathlib import Path
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, model_validator


PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=PROJECT_ROOT / ".env",
        env_file_encoding="utf-8",
        env_prefix="WALLETWATCH_",
        extra="ignore",
    )

    # Token list indexer and market price service (JSON-RPC)
    token_api_url: str = "https://api.token.im"
    market_api_url: str = "https://biz.token.im"

    # Public spot price API used when the market service is down
    coingecko_api_url: str = "https://api.coingecko.com/api/v3"

    # Timeouts in seconds
    chain_timeout: float = 30.0
    price_timeout: float = 15.0
    fallback_price_timeout: float = 8.0
    # Whole per-address resolution (token list + every price tier)
    resolve_timeout: float = 60.0

    # Risk classification requested from the indexer
    risk_level: int = 2

    # Display
    min_display_value: str = "0.01"

    # Data paths
    data_dir: Path = Field(default_factory=lambda: PROJECT_ROOT / "data")
    # defaults to data_dir / walletwatch.duckdb
    duckdb_path: Path | None = None

    alert_list_limit: int = 50
    log_level: str = "INFO"

    @model_validator(mode="after")
    def _default_duckdb_path(self) -> "Settings":
        if self.duckdb_path is None:
            self.duckdb_path = self.data_dir / "walletwatch.duckdb"
        return self

    @property
    def wallet_rpc_url(self) -> str:
        return f"{self.token_api_url}/v4/jsonrpc"

    @property
    def market_rpc_url(self) -> str:
        return f"{self.market_api_url}/v1/market"


@lru_cache
def get_settings() -> Settings:
    return Settings()
