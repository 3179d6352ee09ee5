"""Resolve one address on one chain into a priced, sorted ChainBalance."""

from __future__ import annotations

import logging
from decimal import Decimal

from walletwatch.chain.client import TokenListProvider
from walletwatch.chain.registry import ChainConfig, UnsupportedChainError, resolve_chain
from walletwatch.models.schema import ChainBalance, PriceQuote, PriceRequest, RawToken, Token
from walletwatch.tokens.normalize import MIN_DISPLAY_VALUE, format_with_min_value, is_positive_balance, normalize
from walletwatch.tokens.pricing import PriceOracle

logger = logging.getLogger(__name__)


class ChainPortfolioResolver:
    """Token list -> prices -> normalized tokens -> totals, for a single chain.

    Provider failures never escape ``resolve``: they come back as a
    ChainBalance with ``error`` set and zero totals. Only an unsupported
    chain raises, and it does so before any I/O.
    """

    def __init__(
        self,
        token_clients: dict[str, TokenListProvider],
        oracle: PriceOracle,
        min_display_value: Decimal = MIN_DISPLAY_VALUE,
    ):
        self.token_clients = token_clients
        self.oracle = oracle
        self.min_display_value = min_display_value

    def client_for(self, chain: str) -> tuple[ChainConfig, TokenListProvider]:
        config = resolve_chain(chain)
        client = self.token_clients.get(config.name)
        if client is None:
            raise UnsupportedChainError(f"No token client configured for {config.name}")
        return config, client

    async def resolve(self, address: str, chain: str) -> ChainBalance:
        config, client = self.client_for(chain)

        try:
            raw_tokens = await client.get_token_list(address)
        except Exception as e:
            logger.warning(f"{config.name} token list for {address} failed: {e!r}")
            return self._failed(config, address, e)

        if not raw_tokens:
            return ChainBalance(chain=config.name, address=address)

        try:
            return await self._price_and_total(config, address, raw_tokens)
        except Exception as e:
            logger.warning(f"{config.name} balance for {address} could not be built: {e!r}")
            return self._failed(config, address, e)

    async def _price_and_total(self, config: ChainConfig, address: str, raw_tokens: list[RawToken]) -> ChainBalance:
        requests = [
            PriceRequest(chain_type=config.name, address=raw.address, caip2=raw.caip2 or config.caip2)
            for raw in raw_tokens
        ]
        try:
            quotes = await self.oracle.get_prices(requests)
        except Exception as e:
            logger.warning(f"{config.name} price lookup failed, using zero prices: {e!r}")
            quotes = [PriceQuote() for _ in requests]

        all_tokens = [self._to_token(raw, quote, config) for raw, quote in zip(raw_tokens, quotes)]

        # sorted() is stable: equal values keep fetch order
        held = sorted(
            (t for t in all_tokens if is_positive_balance(t.balance)),
            key=lambda t: t.usd_value,
            reverse=True,
        )
        total = sum(t.usd_value for t in all_tokens)
        risks = [raw.risk_level for raw in raw_tokens if raw.risk_level is not None]

        return ChainBalance(
            chain=config.name,
            address=address,
            tokens=held,
            all_tokens=all_tokens,
            total_value=total,
            total_value_formatted=format_with_min_value(total, self.min_display_value),
            risk_level=max(risks) if risks else None,
        )

    def _to_token(self, raw: RawToken, quote: PriceQuote, config: ChainConfig) -> Token:
        decimals = raw.decimals if raw.decimals is not None else config.decimals
        amount = normalize(raw.balance, decimals, quote.price, self.min_display_value)
        return Token(
            symbol=raw.symbol,
            name=raw.name,
            address=raw.address,
            balance=raw.balance,
            decimals=decimals,
            price=quote.price,
            usd_value=amount.usd_value,
            formatted_balance=amount.formatted_balance,
            usd_value_formatted=amount.usd_value_formatted,
            token_standard=raw.token_standard,
        )

    @staticmethod
    def _failed(config: ChainConfig, address: str, error: BaseException) -> ChainBalance:
        return ChainBalance(chain=config.name, address=address, error=str(error) or type(error).__name__)
