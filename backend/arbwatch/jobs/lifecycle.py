import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from ..models import DailyStat, Spread
from ..spreads import SpreadCandidate
from ..storage import SpreadStore
from ..utils import date_str, day_bounds_ms, utc_now_ms

log = logging.getLogger(__name__)


@dataclass
class SpreadChanges:
    new_spreads: List[Spread] = field(default_factory=list)
    closed_spreads: List[Spread] = field(default_factory=list)


def spread_key(spread) -> tuple:
    # directional: a flipped buy/sell is a different spread
    return (spread.pair, spread.buy_chain, spread.sell_chain)


def process_spreads(
    store: SpreadStore,
    detected_spreads: Iterable[SpreadCandidate],
    now_ms: Optional[int] = None,
) -> SpreadChanges:
    """
    Reconcile detected spreads with the open ones in the store.

    Open spreads no longer detected are closed with their duration. Detected
    spreads with no open row are inserted, and the day's stats recomputed for
    each. Spreads that stay open are left as first recorded.
    """
    now_ms = utc_now_ms() if now_ms is None else now_ms
    detected_spreads = list(detected_spreads)
    changes = SpreadChanges()

    open_spreads = store.get_open_spreads()
    open_keys = {spread_key(s) for s in open_spreads}
    detected_keys = {spread_key(s) for s in detected_spreads}

    for s in open_spreads:
        if spread_key(s) in detected_keys:
            continue
        duration = round((now_ms - s.detected_at) / 1000)
        closed = store.close_spread(s.id, closed_at=now_ms, duration_seconds=duration)
        if closed is not None:
            changes.closed_spreads.append(closed)
            log.info(
                "closed spread #%s %s %s→%s after %ss",
                closed.id, closed.pair, closed.buy_chain, closed.sell_chain, duration,
            )

    for d in detected_spreads:
        k = spread_key(d)
        if k in open_keys:
            continue
        # guard against the same key twice in one batch
        open_keys.add(k)

        row = store.insert_spread(
            detected_at=now_ms,
            pair=d.pair,
            buy_chain=d.buy_chain,
            sell_chain=d.sell_chain,
            buy_price=d.buy_price,
            sell_price=d.sell_price,
            gross_spread_pct=d.gross_spread_pct,
            net_spread_pct=d.net_spread_pct,
            high_friction=d.high_friction,
        )
        changes.new_spreads.append(row)
        log.info(
            "opened spread #%s %s %s→%s gross=%.4f%% net=%.4f%%%s",
            row.id, row.pair, row.buy_chain, row.sell_chain,
            row.gross_spread_pct, row.net_spread_pct if row.net_spread_pct is not None else 0.0,
            " [high friction]" if row.high_friction else "",
        )

        update_daily_stats(store, now_ms)

    return changes


def update_daily_stats(store: SpreadStore, now_ms: Optional[int] = None) -> DailyStat:
    """Recompute the UTC day containing now_ms from stored rows and upsert it."""
    now_ms = utc_now_ms() if now_ms is None else now_ms
    start, end = day_bounds_ms(now_ms)
    s = store.day_summary(start, end)

    return store.upsert_daily_stats(
        date_str(now_ms),
        total_spreads=s.total_spreads,
        actionable_spreads=s.actionable_spreads,
        sim_trades=s.sim_trades,
        total_sim_profit=s.total_sim_profit,
        avg_spread_pct=s.avg_spread_pct if s.avg_spread_pct is not None else 0.0,
        best_spread_pct=s.best_spread_pct if s.best_spread_pct is not None else 0.0,
        most_active_pair=s.most_active_pair,
        most_active_route=s.most_active_route,
    )
