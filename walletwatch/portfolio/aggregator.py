"""Fan out chain resolutions concurrently and sum them into a Portfolio."""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal

from walletwatch.config import Settings, get_settings
from walletwatch.chain.client import JsonRpcClient, default_token_clients
from walletwatch.chain.registry import resolve_chain
from walletwatch.models.schema import AddressQuery, ChainBalance, Portfolio
from walletwatch.portfolio.resolver import ChainPortfolioResolver
from walletwatch.tokens.pricing import PriceOracle

logger = logging.getLogger(__name__)


class EmptyAddressListError(ValueError):
    """Raised when a portfolio query names no addresses."""


def build_portfolio(balances: list[ChainBalance]) -> Portfolio:
    """Total counts only balances that resolved without an error."""
    total = sum(b.total_value for b in balances if b.error is None)
    return Portfolio(
        balances=balances,
        total_value=total,
        total_value_formatted=f"{total:.2f}",
    )


class PortfolioAggregator:
    """One task per (chain, address); a failing or slow task only affects its own entry."""

    def __init__(self, resolver: ChainPortfolioResolver, resolve_timeout: float = 60.0):
        self.resolver = resolver
        self.resolve_timeout = resolve_timeout

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> PortfolioAggregator:
        settings = settings or get_settings()
        rpc = JsonRpcClient(timeout=settings.chain_timeout)
        resolver = ChainPortfolioResolver(
            token_clients=default_token_clients(rpc),
            oracle=PriceOracle(),
            min_display_value=Decimal(settings.min_display_value),
        )
        return cls(resolver, resolve_timeout=settings.resolve_timeout)

    async def aggregate(self, addresses: list[AddressQuery]) -> Portfolio:
        """Resolve every entry, settle all, and total the successful ones.

        Raises EmptyAddressListError / UnsupportedChainError before any I/O.
        Cancelling this call cancels every outstanding resolution.
        """
        if not addresses:
            raise EmptyAddressListError("addresses must be a non-empty list")
        for query in addresses:
            self.resolver.client_for(query.chain)

        results = await asyncio.gather(
            *(self._resolve_bounded(q) for q in addresses),
            return_exceptions=True,
        )

        balances: list[ChainBalance] = []
        for query, result in zip(addresses, results):
            if isinstance(result, BaseException):
                logger.warning(f"{query.chain} resolution for {query.address} raised: {result!r}")
                result = ChainBalance(
                    chain=resolve_chain(query.chain).name,
                    address=query.address,
                    error=str(result) or type(result).__name__,
                )
            balances.append(result)

        portfolio = build_portfolio(balances)
        failed = sum(1 for b in balances if b.error is not None)
        logger.info(
            f"Aggregated {len(balances)} addresses ({failed} failed), total ${portfolio.total_value_formatted}"
        )
        return portfolio

    async def get_multi_chain_portfolio(
        self,
        btc: str | None = None,
        eth: str | None = None,
        tron: str | None = None,
    ) -> Portfolio:
        """At most one address per chain, so at most three concurrent tasks."""
        queries = [
            AddressQuery(chain=chain, address=address)
            for chain, address in (("BITCOIN", btc), ("ETHEREUM", eth), ("TRON", tron))
            if address
        ]
        if not queries:
            raise EmptyAddressListError("At least one address (btc, eth, tron) is required")
        return await self.aggregate(queries)

    async def get_single_chain_portfolio(self, address: str, chain: str) -> ChainBalance:
        self.resolver.client_for(chain)
        return await self._resolve_bounded(AddressQuery(chain=chain, address=address))

    async def _resolve_bounded(self, query: AddressQuery) -> ChainBalance:
        try:
            return await asyncio.wait_for(
                self.resolver.resolve(query.address, query.chain),
                timeout=self.resolve_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"{query.chain} resolution for {query.address} timed out after {self.resolve_timeout}s")
            return ChainBalance(
                chain=resolve_chain(query.chain).name,
                address=query.address,
                error=f"Timed out after {self.resolve_timeout}s",
            )
