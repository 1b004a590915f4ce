# DeFi Llama "current prices" connector.
#
# One GET per cycle:
#   {LLAMA_BASE}/{chain}:{address},{chain}:{address},...
# Response:
#   {"coins": {"ethereum:0x...": {"price": 2000.1, "timestamp": 1700000000,
#                                 "decimals": 18, "symbol": "WETH", "confidence": 0.99}}}

import logging
import time
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import requests

from ..config import TOKEN_ADDRESSES, Pair, Settings, registry_name
from .base import (
    DEFAULT_TIMEOUT_SECONDS,
    PriceBatch,
    PriceConnector,
    PriceObservation,
    PriceSourceError,
    StaleEntry,
    get_json,
)

log = logging.getLogger(__name__)

BASE = "https://coins.llama.fi/prices/current"
DEFAULT_MAX_AGE_SECONDS = 60

# internal chain name -> DeFi Llama chain prefix
CHAIN_NAME_MAP: Dict[str, str] = {
    "ethereum": "ethereum",
    "arbitrum": "arbitrum",
    "base": "base",
}


def build_coin_keys(
    chains: Iterable[str],
    pairs: Iterable[Pair],
    token_addresses: Mapping[str, Mapping[str, Optional[str]]] = TOKEN_ADDRESSES,
) -> List[str]:
    keys: List[str] = []
    seen = set()
    pairs = list(pairs)
    for chain in chains:
        chain_tokens = token_addresses.get(chain)
        if not chain_tokens:
            continue
        llama_chain = CHAIN_NAME_MAP.get(chain, chain)
        for pair in pairs:
            address = chain_tokens.get(registry_name(pair.base))
            if not address:
                continue
            k = f"{llama_chain}:{address}"
            if k in seen:
                continue
            seen.add(k)
            keys.append(k)
    return keys


def _split_coin_key(coin_key: str) -> Tuple[Optional[str], Optional[str]]:
    chain, sep, address = coin_key.partition(":")
    if not sep or not chain or not address:
        return None, None
    return chain, address


def _reverse_chain_name(llama_chain: str) -> Optional[str]:
    for internal, external in CHAIN_NAME_MAP.items():
        if external == llama_chain:
            return internal
    return None


def _address_to_pair(
    chain: str,
    address: str,
    pairs: Iterable[Pair],
    token_addresses: Mapping[str, Mapping[str, Optional[str]]],
) -> Optional[str]:
    chain_tokens = token_addresses.get(chain)
    if not chain_tokens:
        return None

    addr = address.lower()
    for token_name, token_addr in chain_tokens.items():
        if not token_addr or token_addr.lower() != addr:
            continue
        for pair in pairs:
            if registry_name(pair.base) == token_name:
                return pair.symbol
    return None


def _is_number(x) -> bool:
    return isinstance(x, (int, float)) and not isinstance(x, bool)


def parse_prices(
    data,
    now: Optional[int] = None,
    max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS,
    pairs: Iterable[Pair] = (),
    token_addresses: Mapping[str, Mapping[str, Optional[str]]] = TOKEN_ADDRESSES,
) -> PriceBatch:
    """
    Normalize a response body. Rows that can't be mapped back to a configured
    chain/pair or carry non-numeric fields are skipped, not errors.
    """
    now = int(time.time()) if now is None else now
    pairs = list(pairs)
    batch = PriceBatch()

    if not isinstance(data, dict) or not isinstance(data.get("coins"), dict):
        return batch

    for coin_key, coin in data["coins"].items():
        llama_chain, address = _split_coin_key(str(coin_key))
        if llama_chain is None:
            continue

        chain = _reverse_chain_name(llama_chain)
        if chain is None:
            continue

        pair = _address_to_pair(chain, address, pairs, token_addresses)
        if pair is None:
            continue

        if not isinstance(coin, dict):
            continue
        price = coin.get("price")
        ts = coin.get("timestamp")
        if not _is_number(price) or not _is_number(ts):
            continue

        age = now - int(ts)
        if age > max_age_seconds:
            batch.stale.append(StaleEntry(key=coin_key, age=age))
            continue

        batch.prices.append(PriceObservation(chain=chain, pair=pair, price=float(price), timestamp=int(ts)))

    return batch


class LlamaPriceConnector(PriceConnector):
    def __init__(
        self,
        chains: Iterable[str],
        pairs: Iterable[Pair],
        base: str = BASE,
        max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        token_addresses: Mapping[str, Mapping[str, Optional[str]]] = TOKEN_ADDRESSES,
        session: Optional[requests.Session] = None,
    ):
        self.chains = tuple(chains)
        self.pairs = tuple(pairs)
        self.base = base.rstrip("/")
        self.max_age_seconds = max_age_seconds
        self.timeout = timeout
        self.token_addresses = token_addresses
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Settings, session: Optional[requests.Session] = None):
        return cls(
            chains=settings.chains,
            pairs=settings.pairs,
            base=settings.llama_base,
            max_age_seconds=settings.max_price_age_seconds,
            timeout=settings.http_timeout_seconds,
            session=session,
        )

    def fetch_prices(self) -> PriceBatch:
        keys = build_coin_keys(self.chains, self.pairs, self.token_addresses)
        if not keys:
            return PriceBatch()

        url = f"{self.base}/{','.join(keys)}"
        data = get_json(self.session, url, timeout=self.timeout, error_cls=PriceSourceError)
        batch = parse_prices(
            data,
            max_age_seconds=self.max_age_seconds,
            pairs=self.pairs,
            token_addresses=self.token_addresses,
        )
        log.debug("llama: %d prices, %d stale from %d keys", len(batch.prices), len(batch.stale), len(keys))
        return batch
