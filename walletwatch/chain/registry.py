"""Chain registry mapping chain names and aliases to configuration."""

from dataclasses import dataclass


class UnsupportedChainError(ValueError):
    """Raised for a chain type outside BTC/ETH/TRON."""


@dataclass(frozen=True)
class ChainConfig:
    key: str
    name: str
    caip2: str
    native_token: str
    decimals: int
    token_standards: tuple[str, ...]


CHAINS: dict[str, ChainConfig] = {
    "BITCOIN": ChainConfig(
        key="btc",
        name="BITCOIN",
        caip2="bip122:000000000019d6689c085ae165831e93",
        native_token="BTC",
        decimals=8,
        token_standards=("NATIVE", "OMNI"),
    ),
    "ETHEREUM": ChainConfig(
        key="eth",
        name="ETHEREUM",
        caip2="eip155:1",
        native_token="ETH",
        decimals=18,
        token_standards=("NATIVE", "ERC20"),
    ),
    "TRON": ChainConfig(
        key="tron",
        name="TRON",
        caip2="tip174:00000000000000001ebf88508a03865c",
        native_token="TRX",
        decimals=6,
        token_standards=("NATIVE", "TRC20", "TRC10"),
    ),
}

CHAIN_ALIASES: dict[str, str] = {
    "BTC": "BITCOIN",
    "BITCOIN": "BITCOIN",
    "ETH": "ETHEREUM",
    "ETHEREUM": "ETHEREUM",
    "TRX": "TRON",
    "TRON": "TRON",
}


def resolve_chain(name: str) -> ChainConfig:
    """Resolve a chain name or alias (btc, ETH, trx, ...) to its config."""
    canonical = CHAIN_ALIASES.get(str(name or "").strip().upper())
    if canonical is None:
        raise UnsupportedChainError(
            f"Unsupported chain type: {name!r}. Supported: {sorted(CHAIN_ALIASES)}"
        )
    return CHAINS[canonical]


def default_decimals(chain: str) -> int:
    return resolve_chain(chain).decimals
