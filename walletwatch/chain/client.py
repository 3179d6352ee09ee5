"""Async JSON-RPC client for the token-list indexer, one ChainTokenClient per chain."""

from __future__ import annotations

import logging
import secrets
from typing import Any, Protocol

import httpx

from walletwatch.config import get_settings
from walletwatch.chain.registry import ChainConfig, resolve_chain
from walletwatch.models.schema import RawToken, coerce_risk_level

logger = logging.getLogger(__name__)

DEFAULT_HEADERS: dict[str, str] = {
    "accept": "application/json, text/plain, */*",
    "content-type": "application/json",
    "x-currency": "USD",
    "x-locale": "en-US",
}


class JsonRpcError(RuntimeError):
    """The service answered with a JSON-RPC error object or an unreadable body."""


class JsonRpcClient:
    """Minimal JSON-RPC 2.0 over HTTPS POST."""

    def __init__(
        self,
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout
        self.headers = {**DEFAULT_HEADERS, **(headers or {})}
        self.transport = transport

    async def call(self, url: str, method: str, params: list[Any], timeout: float | None = None) -> Any:
        """POST one request and return its ``result``. Raises on transport or RPC errors."""
        headers = {
            **self.headers,
            "x-b3-traceid": secrets.token_hex(16),
            "x-b3-spanid": secrets.token_hex(8),
        }
        body = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}

        async with httpx.AsyncClient(timeout=timeout or self.timeout, transport=self.transport) as client:
            resp = await client.post(url, json=body, headers=headers)
            resp.raise_for_status()
            try:
                data = resp.json()
            except ValueError as e:
                raise JsonRpcError(f"Unparseable response from {method}: {resp.text[:200]}") from e

        if not isinstance(data, dict):
            raise JsonRpcError(f"Unexpected response shape from {method}: {type(data).__name__}")
        if data.get("error"):
            raise JsonRpcError(f"JSON-RPC error from {method}: {data['error']}")
        return data.get("result")


class TokenListProvider(Protocol):
    async def get_token_list(self, address: str) -> list[RawToken]: ...


def parse_token_list(result: Any) -> list[RawToken]:
    """Normalize an indexer ``getTokenListByAddress`` result.

    The result is either a bare list of tokens or an object carrying the list
    under ``tokens``/``list`` plus an optional address-level ``riskLevel``,
    which is copied onto tokens that do not carry their own.
    """
    if result is None:
        return []

    address_risk = None
    items: Any = result
    if isinstance(result, dict):
        address_risk = result.get("riskLevel", result.get("risk"))
        items = result.get("tokens") or result.get("list") or []
    if not isinstance(items, list):
        raise JsonRpcError(f"Token list is not a list: {type(items).__name__}")

    tokens = []
    for item in items:
        if not isinstance(item, dict):
            continue
        token = RawToken.model_validate(item)
        if token.risk_level is None and address_risk is not None:
            token = token.model_copy(update={"risk_level": coerce_risk_level(address_risk)})
        tokens.append(token)
    return tokens


class ChainTokenClient:
    """Fetch the token/balance list for an address on one chain."""

    def __init__(self, chain: str, rpc: JsonRpcClient | None = None, url: str | None = None):
        settings = get_settings()
        self.chain_config: ChainConfig = resolve_chain(chain)
        self.rpc = rpc or JsonRpcClient(timeout=settings.chain_timeout)
        self.url = url or settings.wallet_rpc_url
        self.risk_level = settings.risk_level

    @property
    def chain(self) -> str:
        return self.chain_config.name

    async def get_token_list(self, address: str) -> list[RawToken]:
        params = [{
            "accountAddress": address,
            "addressType": None,
            "caip2": self.chain_config.caip2,
            "riskLevel": self.risk_level,
            "tokenStandard": list(self.chain_config.token_standards),
            "position": ["Account"],
        }]
        logger.debug(f"Fetching {self.chain} token list for {address}")
        result = await self.rpc.call(self.url, "wallet.getTokenListByAddress", params)
        return parse_token_list(result)


def default_token_clients(rpc: JsonRpcClient | None = None) -> dict[str, ChainTokenClient]:
    """One client per supported chain, keyed by canonical chain name."""
    return {
        name: ChainTokenClient(name, rpc=rpc)
        for name in ("BITCOIN", "ETHEREUM", "TRON")
    }
