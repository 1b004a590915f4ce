# ParaSwap /prices connector: one directional swap quote per call.
#
# GET {PARASWAP_BASE}?srcToken=..&destToken=..&amount=..&srcDecimals=..
#     &destDecimals=..&network=<chain id>&side=SELL
# Response (only the fields used here):
#   {"priceRoute": {"srcAmount": "...", "destAmount": "...", "srcDecimals": 6,
#                   "destDecimals": 18, "gasCostUSD": "0.42", "bestRoute": [...]}}

import logging
import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Mapping, Optional

import requests

from ..config import CHAIN_IDS, TOKEN_ADDRESSES, TOKEN_DECIMALS, Settings, registry_name
from .base import (
    DEFAULT_TIMEOUT_SECONDS,
    ErrorKind,
    Quote,
    QuoteConnector,
    QuoteSourceError,
    get_json,
)

log = logging.getLogger(__name__)

BASE = "https://api.paraswap.io/prices"


def to_smallest_unit(amount: float, decimals: int) -> str:
    scaled = Decimal(str(amount)) * (Decimal(10) ** decimals)
    return str(int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP)))


def build_quote_params(
    src_token: str,
    dest_token: str,
    amount: str,
    src_decimals: int,
    dest_decimals: int,
    network: int,
) -> Dict[str, str]:
    return {
        "srcToken": src_token,
        "destToken": dest_token,
        "amount": amount,
        "srcDecimals": str(src_decimals),
        "destDecimals": str(dest_decimals),
        "network": str(network),
        "side": "SELL",
    }


def _check_finite(route: dict, name: str) -> None:
    value = route.get(name)
    if value is None:
        return
    try:
        ok = math.isfinite(float(value))
    except (TypeError, ValueError):
        ok = False
    if not ok:
        raise QuoteSourceError(f"Non-numeric {name} in priceRoute: {value!r}", ErrorKind.MALFORMED_RESPONSE)


def parse_quote_response(data) -> Quote:
    if not isinstance(data, dict) or not data.get("priceRoute"):
        raise QuoteSourceError("Missing priceRoute in response", ErrorKind.MALFORMED_RESPONSE)

    route = data["priceRoute"]
    if not isinstance(route, dict):
        raise QuoteSourceError("priceRoute is not an object", ErrorKind.MALFORMED_RESPONSE)
    for name in ("srcAmount", "destAmount", "gasCostUSD"):
        _check_finite(route, name)

    try:
        return Quote(
            src_token=route.get("srcToken"),
            dest_token=route.get("destToken"),
            src_amount=route["srcAmount"],
            dest_amount=route["destAmount"],
            src_decimals=int(route["srcDecimals"]),
            dest_decimals=int(route["destDecimals"]),
            gas_cost_usd=route.get("gasCostUSD") if route.get("gasCostUSD") is not None else "0",
            best_route=route.get("bestRoute") or [],
        )
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise QuoteSourceError(f"Incomplete priceRoute: {e}", ErrorKind.MALFORMED_RESPONSE)


def calculate_effective_price(quote: Quote, side: str) -> float:
    """Quote-currency price per token for a 'buy' (USDC->TOKEN) or 'sell' leg."""
    src = quote.src_human
    dest = quote.dest_human
    if side == "buy":
        return src / dest if dest else 0.0
    return dest / src if src else 0.0


@dataclass(frozen=True)
class ArbQuote:
    buy: Quote
    sell: Quote
    buy_price: float
    sell_price: float
    gas_cost_usd: float


class ParaSwapQuoteConnector(QuoteConnector):
    def __init__(
        self,
        base: str = BASE,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        token_addresses: Mapping[str, Mapping[str, Optional[str]]] = TOKEN_ADDRESSES,
        chain_ids: Mapping[str, int] = CHAIN_IDS,
        token_decimals: Mapping[str, int] = TOKEN_DECIMALS,
        session: Optional[requests.Session] = None,
    ):
        self.base = base
        self.timeout = timeout
        self.token_addresses = token_addresses
        self.chain_ids = chain_ids
        self.token_decimals = token_decimals
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Settings, session: Optional[requests.Session] = None):
        return cls(base=settings.paraswap_base, timeout=settings.http_timeout_seconds, session=session)

    def _resolve(self, chain: str, token: str):
        chain_tokens = self.token_addresses.get(chain)
        if not chain_tokens:
            raise QuoteSourceError(f"No token addresses for chain: {chain}", ErrorKind.INVALID_INPUT)

        name = registry_name(token)
        address = chain_tokens.get(name)
        if not address:
            raise QuoteSourceError(f"Token {token} not found on {chain}", ErrorKind.INVALID_INPUT)

        decimals = self.token_decimals.get(name)
        if decimals is None:
            raise QuoteSourceError(f"Unknown decimals for {token}", ErrorKind.INVALID_INPUT)
        return address, decimals

    def fetch_quote(self, chain: str, src_token: str, dest_token: str, amount: float) -> Quote:
        """
        Quote selling `amount` (human units) of src_token for dest_token on
        chain. Unknown chain/token raises INVALID_INPUT before any request.
        """
        network = self.chain_ids.get(chain)
        if not network:
            raise QuoteSourceError(f"Unknown chain: {chain}", ErrorKind.INVALID_INPUT)

        src_address, src_decimals = self._resolve(chain, src_token)
        dest_address, dest_decimals = self._resolve(chain, dest_token)

        params = build_quote_params(
            src_token=src_address,
            dest_token=dest_address,
            amount=to_smallest_unit(amount, src_decimals),
            src_decimals=src_decimals,
            dest_decimals=dest_decimals,
            network=network,
        )
        data = get_json(self.session, self.base, params=params, timeout=self.timeout, error_cls=QuoteSourceError)
        quote = parse_quote_response(data)
        log.debug("paraswap %s %s->%s %s: dest=%s gas=$%s", chain, src_token, dest_token, amount, quote.dest_amount, quote.gas_cost_usd)
        return quote

    def fetch_arb_quote(self, chain: str, pair: str, trade_size: float) -> ArbQuote:
        """Both legs on one chain: quote -> base, then the bought tokens back."""
        base_token, _, quote_token = pair.partition("/")

        buy = self.fetch_quote(chain, quote_token, base_token, trade_size)
        sell = self.fetch_quote(chain, base_token, quote_token, buy.dest_human)

        return ArbQuote(
            buy=buy,
            sell=sell,
            buy_price=calculate_effective_price(buy, "buy"),
            sell_price=calculate_effective_price(sell, "sell"),
            gas_cost_usd=buy.gas_usd + sell.gas_usd,
        )
