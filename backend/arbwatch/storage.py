from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import delete, desc, func, select
from sqlalchemy.orm import Session

from .models import DailyStat, PriceSnapshot, SimTrade, Spread
from .utils import DAY_MS, utc_now_ms

ROUTE_SEP = "→"


@dataclass
class DaySummary:
    total_spreads: int
    actionable_spreads: int
    sim_trades: int
    total_sim_profit: float
    avg_spread_pct: Optional[float]
    best_spread_pct: Optional[float]
    most_active_pair: Optional[str]
    most_active_route: Optional[str]


class SpreadStore:
    """
    Persistence used by the monitor. Wraps one SQLAlchemy session; every
    write commits immediately.
    """

    def __init__(self, db: Session):
        self.db = db

    def _commit(self) -> None:
        # a failed flush leaves the session unusable until it is rolled back
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    # -- writes

    def insert_price(
        self,
        timestamp: int,
        chain: str,
        pair: str,
        price: float,
        source_ts: Optional[int] = None,
        liquidity_usd: Optional[float] = None,
        gas_price_gwei: Optional[float] = None,
    ) -> PriceSnapshot:
        row = PriceSnapshot(
            timestamp=timestamp,
            chain=chain,
            pair=pair,
            price=float(price),
            source_ts=source_ts,
            liquidity_usd=liquidity_usd,
            gas_price_gwei=gas_price_gwei,
        )
        self.db.add(row)
        self._commit()
        return row

    def insert_spread(
        self,
        detected_at: int,
        pair: str,
        buy_chain: str,
        sell_chain: str,
        buy_price: float,
        sell_price: float,
        gross_spread_pct: float,
        net_spread_pct: Optional[float] = None,
        high_friction: bool = False,
    ) -> Spread:
        row = Spread(
            detected_at=detected_at,
            pair=pair,
            buy_chain=buy_chain,
            sell_chain=sell_chain,
            buy_price=float(buy_price),
            sell_price=float(sell_price),
            gross_spread_pct=float(gross_spread_pct),
            net_spread_pct=net_spread_pct,
            high_friction=bool(high_friction),
        )
        self.db.add(row)
        self._commit()
        return row

    def close_spread(self, spread_id: int, closed_at: int, duration_seconds: int) -> Optional[Spread]:
        row = self.db.get(Spread, spread_id)
        if row is None:
            return None
        if row.closed_at is not None:
            # already closed; closing is terminal
            return row
        row.closed_at = closed_at
        row.duration_seconds = duration_seconds
        self._commit()
        return row

    def insert_sim_trade(self, **fields) -> SimTrade:
        row = SimTrade(**fields)
        self.db.add(row)
        self._commit()
        return row

    def upsert_daily_stats(self, date: str, **fields) -> DailyStat:
        row = self.db.get(DailyStat, date)
        if row is None:
            row = DailyStat(date=date)
            self.db.add(row)
        for k, v in fields.items():
            setattr(row, k, v)
        self._commit()
        return row

    def prune_old_prices(self, retention_days: int, now_ms: Optional[int] = None) -> int:
        now_ms = utc_now_ms() if now_ms is None else now_ms
        cutoff = now_ms - retention_days * DAY_MS
        try:
            result = self.db.execute(delete(PriceSnapshot).where(PriceSnapshot.timestamp < cutoff))
        except Exception:
            self.db.rollback()
            raise
        self._commit()
        return result.rowcount or 0

    # -- reads

    def get_open_spreads(self) -> List[Spread]:
        return list(
            self.db.execute(
                select(Spread).where(Spread.closed_at.is_(None)).order_by(desc(Spread.detected_at))
            ).scalars()
        )

    def get_spread(self, spread_id: int) -> Optional[Spread]:
        return self.db.get(Spread, spread_id)

    def latest_price_timestamp(self) -> Optional[int]:
        """Epoch ms of the most recently stored price, the monitor's health signal."""
        return self.db.execute(select(func.max(PriceSnapshot.timestamp))).scalar()

    def get_latest_prices(self, pair: Optional[str] = None) -> List[PriceSnapshot]:
        latest = (
            select(
                PriceSnapshot.chain,
                PriceSnapshot.pair,
                func.max(PriceSnapshot.timestamp).label("max_ts"),
            )
            .group_by(PriceSnapshot.chain, PriceSnapshot.pair)
        )
        if pair:
            latest = latest.where(PriceSnapshot.pair == pair)
        latest = latest.subquery()

        stmt = (
            select(PriceSnapshot)
            .join(
                latest,
                (PriceSnapshot.chain == latest.c.chain)
                & (PriceSnapshot.pair == latest.c.pair)
                & (PriceSnapshot.timestamp == latest.c.max_ts),
            )
            .order_by(PriceSnapshot.pair, PriceSnapshot.chain, desc(PriceSnapshot.id))
        )
        # several rows can share one cycle timestamp; keep the newest id
        out: List[PriceSnapshot] = []
        seen = set()
        for row in self.db.execute(stmt).scalars():
            k = (row.chain, row.pair)
            if k in seen:
                continue
            seen.add(k)
            out.append(row)
        return out

    def get_recent_spreads(
        self,
        pair: Optional[str] = None,
        open_only: bool = False,
        limit: int = 50,
    ) -> List[Spread]:
        stmt = select(Spread)
        if pair:
            stmt = stmt.where(Spread.pair == pair)
        if open_only:
            stmt = stmt.where(Spread.closed_at.is_(None))
        stmt = stmt.order_by(desc(Spread.detected_at), desc(Spread.id)).limit(limit)
        return list(self.db.execute(stmt).scalars())

    def get_trade_history(
        self,
        pair: Optional[str] = None,
        start_ms: Optional[int] = None,
        end_ms: Optional[int] = None,
        limit: int = 100,
    ) -> List[SimTrade]:
        stmt = select(SimTrade)
        if pair:
            stmt = stmt.where(SimTrade.pair == pair)
        if start_ms is not None:
            stmt = stmt.where(SimTrade.timestamp >= start_ms)
        if end_ms is not None:
            stmt = stmt.where(SimTrade.timestamp <= end_ms)
        stmt = stmt.order_by(desc(SimTrade.timestamp), desc(SimTrade.id)).limit(limit)
        return list(self.db.execute(stmt).scalars())

    def get_daily_stats(self, days: int = 30) -> List[DailyStat]:
        return list(
            self.db.execute(select(DailyStat).order_by(desc(DailyStat.date)).limit(days)).scalars()
        )

    def trade_summary(self) -> dict:
        row = self.db.execute(
            select(
                func.count(SimTrade.id),
                func.coalesce(func.sum(SimTrade.net_profit_usd), 0.0),
                func.coalesce(func.avg(SimTrade.profit_pct), 0.0),
            )
        ).one()
        best_pair = self.db.execute(
            select(SimTrade.pair, func.sum(SimTrade.net_profit_usd).label("total"))
            .group_by(SimTrade.pair)
            .order_by(desc("total"))
            .limit(1)
        ).first()
        return {
            "total_trades": int(row[0]),
            "total_profit": float(row[1]),
            "avg_profit_pct": float(row[2]),
            "best_pair": best_pair[0] if best_pair else None,
        }

    def day_summary(self, start_ms: int, end_ms: int) -> DaySummary:
        """Counts and extrema for spreads and sim trades in [start_ms, end_ms)."""
        in_day = (Spread.detected_at >= start_ms) & (Spread.detected_at < end_ms)

        total = self.db.execute(select(func.count(Spread.id)).where(in_day)).scalar() or 0

        actionable, avg_spread, best_spread = self.db.execute(
            select(
                func.count(Spread.id),
                func.avg(Spread.net_spread_pct),
                func.max(Spread.net_spread_pct),
            ).where(in_day, Spread.net_spread_pct.is_not(None))
        ).one()

        sim_count, sim_profit = self.db.execute(
            select(
                func.count(SimTrade.id),
                func.coalesce(func.sum(SimTrade.net_profit_usd), 0.0),
            ).where(SimTrade.timestamp >= start_ms, SimTrade.timestamp < end_ms)
        ).one()

        cnt = func.count(Spread.id).label("cnt")
        active_pair = self.db.execute(
            select(Spread.pair, cnt).where(in_day).group_by(Spread.pair).order_by(desc("cnt")).limit(1)
        ).first()

        route = (Spread.buy_chain + ROUTE_SEP + Spread.sell_chain).label("route")
        active_route = self.db.execute(
            select(route, func.count(Spread.id).label("cnt"))
            .where(in_day)
            .group_by(route)
            .order_by(desc("cnt"))
            .limit(1)
        ).first()

        return DaySummary(
            total_spreads=int(total),
            actionable_spreads=int(actionable or 0),
            sim_trades=int(sim_count or 0),
            total_sim_profit=float(sim_profit or 0.0),
            avg_spread_pct=avg_spread,
            best_spread_pct=best_spread,
            most_active_pair=active_pair[0] if active_pair else None,
            most_active_route=active_route[0] if active_route else None,
        )
