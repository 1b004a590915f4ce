import os
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from dotenv import load_dotenv

# Native token addresses per chain. None means not listed on that chain yet.
TOKEN_ADDRESSES: Dict[str, Dict[str, Optional[str]]] = {
    "ethereum": {
        "WETH": "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",
        "USDC": "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
        "WBTC": "0x2260FAC5E5542a773Aa44fBCfeDf7C193bc2C599",
    },
    "arbitrum": {
        "WETH": "0x82aF49447D8a07e3bd95BD0d56f35241523fBab1",
        "USDC": "0xaf88d065e77c8cC2239327C5EDb3A432268e5831",
        "WBTC": "0x2f2a2543B76A4166549F7aaB2e75Bef0aefC5B0f",
    },
    "base": {
        "WETH": "0x4200000000000000000000000000000000000006",
        "USDC": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
        "WBTC": None,
    },
}

TOKEN_DECIMALS: Dict[str, int] = {
    "WETH": 18,
    "USDC": 6,
    "WBTC": 8,
}

CHAIN_IDS: Dict[str, int] = {
    "ethereum": 1,
    "arbitrum": 42161,
    "base": 8453,
}

# public JSON-RPC endpoints; RPC_<CHAIN> overrides
DEFAULT_RPCS: Dict[str, str] = {
    "ethereum": "https://eth.llamarpc.com",
    "arbitrum": "https://arb1.arbitrum.io/rpc",
    "base": "https://mainnet.base.org",
}

# pair symbols use ETH/BTC, the registries hold the wrapped tokens
REGISTRY_NAMES: Dict[str, str] = {
    "ETH": "WETH",
    "BTC": "WBTC",
    "WETH": "WETH",
    "WBTC": "WBTC",
    "USDC": "USDC",
}


def registry_name(token: str) -> str:
    return REGISTRY_NAMES.get(token, token)


@dataclass(frozen=True)
class Pair:
    base: str
    quote: str
    symbol: str


def parse_pairs(symbols: Tuple[str, ...]) -> Tuple[Pair, ...]:
    pairs = []
    for s in symbols:
        base, _, quote = s.partition("/")
        pairs.append(Pair(base=base, quote=quote, symbol=s))
    return tuple(pairs)


def _get_csv(value: Optional[str], default: Tuple[str, ...]) -> Tuple[str, ...]:
    if not value:
        return default
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _get_float(value: Optional[str], default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _get_int(value: Optional[str], default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float_csv(value: Optional[str], default: Tuple[float, ...]) -> Tuple[float, ...]:
    items = _get_csv(value, ())
    if not items:
        return default
    try:
        return tuple(float(i) for i in items)
    except ValueError:
        return default


def _get_bool(value: Optional[str], default: bool) -> bool:
    if value is None or value == "":
        return default
    v = value.strip().lower()
    if v in ("1", "true", "yes", "on"):
        return True
    if v in ("0", "false", "no", "off"):
        return False
    return default


def _get_rpc_urls(chains: Tuple[str, ...]) -> Dict[str, str]:
    urls = dict(DEFAULT_RPCS)
    for chain in chains:
        url = os.getenv(f"RPC_{chain.upper()}")
        if url:
            urls[chain] = url
    return urls


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///data/arbwatch.db"
    connector: str = "llama"
    chains: Tuple[str, ...] = ("ethereum", "arbitrum", "base")
    pairs: Tuple[Pair, ...] = parse_pairs(("ETH/USDC", "WBTC/USDC"))
    poll_interval_seconds: float = 15.0
    price_history_days: int = 30
    min_gross_spread_pct: float = 0.05
    min_net_spread_pct: float = 0.02
    reference_trade_size: float = 10000.0
    sim_trade_sizes: Tuple[float, ...] = (5000.0, 10000.0, 20000.0, 50000.0)
    max_price_age_seconds: int = 60
    http_timeout_seconds: float = 10.0
    high_friction_chains: Tuple[str, ...] = ("ethereum",)
    llama_base: str = "https://coins.llama.fi/prices/current"
    paraswap_base: str = "https://api.paraswap.io/prices"
    log_level: str = "INFO"
    log_file: Optional[str] = None
    gas_polling: bool = True
    rpc_urls: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_RPCS))
    swap_gas_units: int = 200_000

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        defaults = cls()
        return cls(
            database_url=os.getenv("DATABASE_URL", defaults.database_url),
            connector=os.getenv("CONNECTOR", defaults.connector).lower(),
            chains=_get_csv(os.getenv("CHAINS"), defaults.chains),
            pairs=parse_pairs(_get_csv(os.getenv("PAIRS"), ("ETH/USDC", "WBTC/USDC"))),
            poll_interval_seconds=_get_float(
                os.getenv("POLL_INTERVAL_SECONDS"), defaults.poll_interval_seconds
            ),
            price_history_days=_get_int(
                os.getenv("PRICE_HISTORY_DAYS"), defaults.price_history_days
            ),
            min_gross_spread_pct=_get_float(
                os.getenv("MIN_GROSS_SPREAD_PCT"), defaults.min_gross_spread_pct
            ),
            min_net_spread_pct=_get_float(
                os.getenv("MIN_NET_SPREAD_PCT"), defaults.min_net_spread_pct
            ),
            reference_trade_size=_get_float(
                os.getenv("REFERENCE_TRADE_SIZE"), defaults.reference_trade_size
            ),
            sim_trade_sizes=_get_float_csv(
                os.getenv("SIM_TRADE_SIZES"), defaults.sim_trade_sizes
            ),
            max_price_age_seconds=_get_int(
                os.getenv("MAX_PRICE_AGE_SECONDS"), defaults.max_price_age_seconds
            ),
            http_timeout_seconds=_get_float(
                os.getenv("HTTP_TIMEOUT_SECONDS"), defaults.http_timeout_seconds
            ),
            high_friction_chains=_get_csv(
                os.getenv("HIGH_FRICTION_CHAINS"), defaults.high_friction_chains
            ),
            llama_base=os.getenv("LLAMA_BASE", defaults.llama_base),
            paraswap_base=os.getenv("PARASWAP_BASE", defaults.paraswap_base),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level),
            log_file=os.getenv("LOG_FILE") or None,
            gas_polling=_get_bool(os.getenv("GAS_POLLING"), defaults.gas_polling),
            rpc_urls=_get_rpc_urls(_get_csv(os.getenv("CHAINS"), defaults.chains)),
            swap_gas_units=_get_int(os.getenv("SWAP_GAS_UNITS"), defaults.swap_gas_units),
        )
