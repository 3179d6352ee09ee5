"""Shared fixtures: in-memory DuckDB, fake token clients, fixed price sources."""

import asyncio
from datetime import datetime
from decimal import Decimal

import pytest

from walletwatch.models.schema import BalanceSnapshot, ChainBalance, PriceQuote, RawToken
from walletwatch.portfolio.aggregator import PortfolioAggregator
from walletwatch.portfolio.resolver import ChainPortfolioResolver
from walletwatch.storage.database import (
    AlertRepository,
    AlertRuleRepository,
    SnapshotRepository,
    get_connection,
)
from walletwatch.tokens.pricing import PriceOracle

USDT_ETH = "0xdac17f958d2ee523a2206206994597c13d831ec7"
DAI_ETH = "0x6b175474e89094c44da98b954eedeac495271d0f"


class FakeTokenClient:
    """Stands in for ChainTokenClient; records every address it was asked for."""

    def __init__(self, tokens=None, error=None, delay=0.0):
        self.tokens = tokens or []
        self.error = error
        self.delay = delay
        self.calls = []

    async def get_token_list(self, address):
        self.calls.append(address)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return [RawToken.model_validate(t) for t in self.tokens]


class MappedPriceSource:
    """Prices by token address; unknown addresses price at 0."""

    name = "mapped"

    def __init__(self, prices):
        self.prices = prices

    async def get_prices(self, requests):
        return [PriceQuote(price=self.prices.get(r.address, 0.0)) for r in requests]


def eth_tokens(eth_raw="1500000000000000000", usdt_raw="2500000"):
    return [
        {"symbol": "ETH", "name": "Ether", "tokenAddress": "", "balance": eth_raw, "decimals": 18,
         "tokenStandard": "NATIVE"},
        {"displaySymbol": "USDT", "displayName": "Tether USD", "address": USDT_ETH, "balance": usdt_raw,
         "decimal": 6, "tokenStandard": "ERC20"},
        {"symbol": "DAI", "name": "Dai", "tokenAddress": DAI_ETH, "balance": "0", "decimals": 18,
         "tokenStandard": "ERC20"},
    ]


def btc_tokens(raw="100000000"):
    return [{"symbol": "BTC", "name": "Bitcoin", "tokenAddress": "", "balance": raw, "tokenStandard": "NATIVE"}]


def tron_tokens(raw="1000000000"):
    return [{"symbol": "TRX", "name": "TRON", "tokenAddress": "", "balance": raw, "tokenStandard": "NATIVE"}]


PRICES = {"": 0.0, USDT_ETH: 1.0}


def make_resolver(clients, prices=None):
    return ChainPortfolioResolver(
        token_clients=clients,
        oracle=PriceOracle([MappedPriceSource(prices if prices is not None else {})]),
    )


def make_aggregator(clients, prices=None, resolve_timeout=5.0):
    return PortfolioAggregator(make_resolver(clients, prices), resolve_timeout=resolve_timeout)


def chain_balance(total, risk_level=None, chain="ETHEREUM"):
    return ChainBalance(
        chain=chain,
        address="0xabc",
        total_value=total,
        total_value_formatted=f"{total:.2f}",
        risk_level=risk_level,
    )


def snapshot(total, at=None, risk_level=None, case_id="case-1", address_id="addr-1"):
    return BalanceSnapshot(
        case_id=case_id,
        address_id=address_id,
        balance_data=chain_balance(total, risk_level),
        total_value=Decimal(str(total)),
        snapshot_at=at or datetime(2026, 1, 1, 12, 0, 0),
    )


@pytest.fixture
def conn():
    connection = get_connection(":memory:")
    yield connection
    connection.close()


@pytest.fixture
def snapshots(conn):
    return SnapshotRepository(conn)


@pytest.fixture
def alert_repo(conn):
    return AlertRepository(conn)


@pytest.fixture
def rule_repo(conn):
    return AlertRuleRepository(conn)
