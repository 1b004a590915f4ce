import logging
import math
from dataclasses import dataclass
from typing import Iterable, List, Optional

from ..connectors.base import QuoteConnector
from ..models import SimTrade, Spread
from ..storage import SpreadStore
from ..utils import utc_now_ms

log = logging.getLogger(__name__)


@dataclass
class SimResult:
    success: bool
    size: float
    trade: Optional[SimTrade] = None
    error: Optional[str] = None


def simulate_trades(
    store: SpreadStore,
    spread: Spread,
    quote_source: QuoteConnector,
    trade_sizes: Iterable[float],
    now_ms: Optional[int] = None,
) -> List[SimResult]:
    """
    Paper-trade a newly opened spread at each notional size. A failed quote
    or write only fails its own size.
    """
    now_ms = utc_now_ms() if now_ms is None else now_ms
    results: List[SimResult] = []
    # plain values; the row's attributes expire if a write rolls back
    label = f"{spread.pair} {spread.buy_chain}→{spread.sell_chain}"

    for size in trade_sizes:
        try:
            trade = simulate_single_trade(store, spread, quote_source, size, now_ms)
        except Exception as e:
            log.warning("sim %s $%s failed: %s", label, size, e)
            results.append(SimResult(success=False, size=size, error=str(e)))
            continue
        results.append(SimResult(success=True, size=size, trade=trade))

    return results


def simulate_single_trade(
    store: SpreadStore,
    spread: Spread,
    quote_source: QuoteConnector,
    trade_size: float,
    now_ms: int,
) -> SimTrade:
    base_token, _, quote_token = spread.pair.partition("/")

    # buy leg: quote -> base on the cheap chain
    buy = quote_source.fetch_quote(spread.buy_chain, quote_token, base_token, trade_size)
    tokens_bought = buy.dest_human
    gas_cost_buy = buy.gas_usd

    # sell leg needs the bought amount, so it waits on the buy leg
    sell = quote_source.fetch_quote(spread.sell_chain, base_token, quote_token, tokens_bought)
    usd_received = sell.dest_human
    gas_cost_sell = sell.gas_usd

    net_profit = usd_received - trade_size - gas_cost_buy - gas_cost_sell
    if not math.isfinite(net_profit):
        raise ValueError(f"non-finite quote figures for ${trade_size}: net profit {net_profit}")
    profit_pct = net_profit / trade_size * 100.0 if trade_size > 0 else 0.0

    return store.insert_sim_trade(
        spread_id=spread.id,
        timestamp=now_ms,
        pair=spread.pair,
        buy_chain=spread.buy_chain,
        sell_chain=spread.sell_chain,
        trade_size_usd=float(trade_size),
        tokens_bought=tokens_bought,
        usd_received=usd_received,
        gas_cost_buy=gas_cost_buy,
        gas_cost_sell=gas_cost_sell,
        net_profit_usd=net_profit,
        profit_pct=profit_pct,
    )
