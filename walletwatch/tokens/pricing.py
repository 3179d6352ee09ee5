"""USD spot prices: market service first, CoinGecko by symbol, then a static table.

Every source answers a list of quotes positionally aligned with the
requests. The oracle tries them in order and never raises.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from walletwatch.config import get_settings
from walletwatch.chain.client import JsonRpcClient, JsonRpcError
from walletwatch.models.schema import PriceQuote, PriceRequest
from walletwatch.tokens.constants import COINGECKO_IDS, DEFAULT_PRICES, resolve_symbol

logger = logging.getLogger(__name__)


def _as_price(item: Any) -> float:
    if isinstance(item, dict):
        item = item.get("price")
    try:
        price = float(item or 0)
    except (TypeError, ValueError):
        return 0.0
    return price if price > 0 else 0.0


class PriceSource(Protocol):
    name: str

    async def get_prices(self, requests: list[PriceRequest]) -> list[PriceQuote]: ...


class MarketPriceSource:
    """One batched ``market.getPrices`` JSON-RPC call."""

    name = "market"

    def __init__(self, rpc: JsonRpcClient | None = None, url: str | None = None, timeout: float | None = None):
        settings = get_settings()
        self.timeout = timeout or settings.price_timeout
        self.rpc = rpc or JsonRpcClient(timeout=self.timeout)
        self.url = url or settings.market_rpc_url

    async def get_prices(self, requests: list[PriceRequest]) -> list[PriceQuote]:
        params = [
            {"caip2": r.caip2, "address": r.address, "chainType": r.chain_type}
            for r in requests
        ]
        result = await self.rpc.call(self.url, "market.getPrices", params, timeout=self.timeout)
        if not isinstance(result, list):
            raise JsonRpcError(f"market.getPrices returned {type(result).__name__}, expected list")
        return [PriceQuote(price=_as_price(item)) for item in result]


class CoinGeckoPriceSource:
    """Public spot prices for the well-known symbols in the address table."""

    name = "coingecko"

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.base_url = base_url or settings.coingecko_api_url
        self.timeout = timeout or settings.fallback_price_timeout
        self.transport = transport

    async def get_prices(self, requests: list[PriceRequest]) -> list[PriceQuote]:
        symbols = [resolve_symbol(r.chain_type, r.address) for r in requests]

        # dict keeps first-seen order while deduplicating
        ids = list(dict.fromkeys(COINGECKO_IDS[s] for s in symbols if s in COINGECKO_IDS))
        if not ids:
            return [PriceQuote() for _ in requests]

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            resp = await client.get(
                f"{self.base_url}/simple/price",
                params={"ids": ",".join(ids), "vs_currencies": "usd"},
                headers={"User-Agent": "walletwatch"},
            )
            resp.raise_for_status()
            data = resp.json()

        quotes = []
        for symbol in symbols:
            entry = data.get(COINGECKO_IDS.get(symbol or "", ""), {}) if symbol else {}
            quotes.append(PriceQuote(price=_as_price(entry.get("usd") if isinstance(entry, dict) else None)))
        return quotes


class StaticPriceSource:
    """Hardcoded defaults for BTC/ETH/TRX and stablecoins. Never fails."""

    name = "static"

    def __init__(self, prices: dict[str, float] | None = None):
        self.prices = prices if prices is not None else DEFAULT_PRICES

    async def get_prices(self, requests: list[PriceRequest]) -> list[PriceQuote]:
        return [
            PriceQuote(price=self.prices.get(resolve_symbol(r.chain_type, r.address) or "", 0.0))
            for r in requests
        ]


class PriceOracle:
    """Ordered chain of price sources sharing one contract."""

    def __init__(self, sources: list[PriceSource] | None = None):
        if sources is None:
            sources = [MarketPriceSource(), CoinGeckoPriceSource(), StaticPriceSource()]
        self.sources = sources

    async def get_prices(self, requests: list[PriceRequest]) -> list[PriceQuote]:
        return await self._first_answer(self.sources, requests)

    async def get_fallback_prices(self, requests: list[PriceRequest]) -> list[PriceQuote]:
        """Skip the primary source."""
        return await self._first_answer(self.sources[1:], requests)

    async def _first_answer(self, sources: list[PriceSource], requests: list[PriceRequest]) -> list[PriceQuote]:
        if not requests:
            return []
        for source in sources:
            try:
                quotes = await source.get_prices(requests)
            except Exception as e:
                logger.warning(f"Price source {source.name} failed: {e!r}")
                continue
            if len(quotes) != len(requests):
                logger.warning(
                    f"Price source {source.name} answered {len(quotes)} quotes for {len(requests)} requests"
                )
                continue
            return quotes
        logger.warning(f"No price source answered, pricing {len(requests)} tokens at 0")
        return [PriceQuote() for _ in requests]
