"""Native-coin sentinels, well-known token contracts and fallback price tables."""

# Addresses an indexer uses to mean "the chain's native coin" (compared lowercased)
NATIVE_SENTINELS: frozenset[str] = frozenset({
    "",
    "_",
    "n/a",
    "0x0000000000000000000000000000000000000000",
    "0xeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeee",
})

# Chain name -> native coin symbol
NATIVE_SYMBOLS: dict[str, str] = {
    "BITCOIN": "BTC",
    "ETHEREUM": "ETH",
    "TRON": "TRX",
}

# Lowercased contract address -> symbol (ERC-20 and TRC-20)
TOKEN_SYMBOLS: dict[str, str] = {
    "0xdac17f958d2ee523a2206206994597c13d831ec7": "USDT",
    "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48": "USDC",
    "0x6b175474e89094c44da98b954eedeac495271d0f": "DAI",
    "0x4fabb145d64652a948d72533023f6e7a623c7c53": "BUSD",
    "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2": "WETH",
    "0xf939e0a03fb07f59a73314e73794be0e57ac1b4e": "CRVUSD",
    "tr7nhqjekqxgtci8q8zy4pl8otszgjlj6t": "USDT",
    "tekxitehnzsmse2xqrbj4w32run966rdz8": "USDC",
}

# Symbol -> CoinGecko coin id
COINGECKO_IDS: dict[str, str] = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "TRX": "tron",
    "USDT": "tether",
    "USDC": "usd-coin",
    "DAI": "dai",
    "BUSD": "binance-usd",
    "CRVUSD": "crvusd",
    "WETH": "weth",
}

# Last-resort USD prices when every live source is unreachable
DEFAULT_PRICES: dict[str, float] = {
    "BTC": 95000.0,
    "ETH": 3500.0,
    "TRX": 0.12,
    "WETH": 3500.0,
    "USDT": 1.0,
    "USDC": 1.0,
    "DAI": 1.0,
    "BUSD": 1.0,
    "CRVUSD": 1.0,
}


def is_native_address(address: str | None) -> bool:
    return (address or "").strip().lower() in NATIVE_SENTINELS


def resolve_symbol(chain_type: str, address: str | None) -> str | None:
    """Map (chain, token address) to a well-known symbol, or None."""
    if is_native_address(address):
        return NATIVE_SYMBOLS.get((chain_type or "").upper())
    return TOKEN_SYMBOLS.get(address.strip().lower())
