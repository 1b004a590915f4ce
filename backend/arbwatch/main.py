import logging
from typing import Optional

from fastapi import FastAPI

from .config import Settings
from .db import init_db, make_engine, make_session_factory
from .jobs.poller import Monitor, get_connectors, get_gas_source
from .logging_config import setup_logging
from .storage import SpreadStore
from .utils import iso_ts, utc_now_ms

log = logging.getLogger(__name__)

# price age (in poll intervals) after which /api/health reports stale
STALE_AFTER_INTERVALS = 4


def _price_row(p):
    return {
        "chain": p.chain,
        "pair": p.pair,
        "price": p.price,
        "timestamp": p.timestamp,
        "ts": iso_ts(p.timestamp),
    }


def _spread_row(s):
    return {
        "id": s.id,
        "pair": s.pair,
        "buy_chain": s.buy_chain,
        "sell_chain": s.sell_chain,
        "buy_price": s.buy_price,
        "sell_price": s.sell_price,
        "gross_spread_pct": s.gross_spread_pct,
        "net_spread_pct": s.net_spread_pct,
        "high_friction": bool(s.high_friction),
        "detected_at": iso_ts(s.detected_at),
        "closed_at": iso_ts(s.closed_at),
        "duration_seconds": s.duration_seconds,
    }


def _trade_row(t):
    return {
        "id": t.id,
        "spread_id": t.spread_id,
        "ts": iso_ts(t.timestamp),
        "pair": t.pair,
        "buy_chain": t.buy_chain,
        "sell_chain": t.sell_chain,
        "trade_size_usd": t.trade_size_usd,
        "tokens_bought": t.tokens_bought,
        "usd_received": t.usd_received,
        "gas_cost_buy": t.gas_cost_buy,
        "gas_cost_sell": t.gas_cost_sell,
        "net_profit_usd": t.net_profit_usd,
        "profit_pct": t.profit_pct,
    }


def _daily_row(d):
    return {
        "date": d.date,
        "total_spreads": d.total_spreads,
        "actionable_spreads": d.actionable_spreads,
        "sim_trades": d.sim_trades,
        "total_sim_profit": d.total_sim_profit,
        "avg_spread_pct": d.avg_spread_pct,
        "best_spread_pct": d.best_spread_pct,
        "most_active_pair": d.most_active_pair,
        "most_active_route": d.most_active_route,
    }


def create_app(
    settings: Optional[Settings] = None,
    engine=None,
    monitor: Optional[Monitor] = None,
    start_monitor: bool = True,
) -> FastAPI:
    settings = settings or Settings.from_env()
    engine = engine or make_engine(settings.database_url)
    SessionLocal = make_session_factory(engine)

    if monitor is None and start_monitor:
        price_source, quote_source = get_connectors(settings)
        monitor = Monitor(settings, SessionLocal, price_source, quote_source, gas_source=get_gas_source(settings))

    app = FastAPI(title="Cross-chain spread monitor (paper trading)")
    app.state.settings = settings
    app.state.monitor = monitor

    @app.on_event("startup")
    def startup():
        setup_logging(settings.log_level, settings.log_file)
        init_db(engine)

        db = SessionLocal()
        try:
            pruned = SpreadStore(db).prune_old_prices(settings.price_history_days)
            if pruned:
                log.info("pruned %d old price rows", pruned)
        finally:
            db.close()

        if monitor is not None and start_monitor:
            monitor.start()

    @app.on_event("shutdown")
    def shutdown():
        if monitor is not None:
            monitor.shutdown()

    @app.get("/api/health")
    def health():
        db = SessionLocal()
        try:
            last = SpreadStore(db).latest_price_timestamp()
        finally:
            db.close()

        age = None if last is None else (utc_now_ms() - last) / 1000.0
        stale_after = settings.poll_interval_seconds * STALE_AFTER_INTERVALS
        return {
            "status": "ok" if age is not None and age <= stale_after else "stale",
            "monitor_running": bool(monitor and monitor.is_running()),
            "last_price_at": iso_ts(last),
            "last_price_age_seconds": age,
        }

    @app.get("/api/prices/current")
    def current_prices(pair: Optional[str] = None):
        db = SessionLocal()
        try:
            return {"results": [_price_row(p) for p in SpreadStore(db).get_latest_prices(pair)]}
        finally:
            db.close()

    @app.get("/api/spreads")
    def spreads(pair: Optional[str] = None, open: bool = False, limit: int = 50):
        db = SessionLocal()
        try:
            rows = SpreadStore(db).get_recent_spreads(pair=pair, open_only=open, limit=max(limit, 0))
            return {"results": [_spread_row(s) for s in rows]}
        finally:
            db.close()

    @app.get("/api/trades")
    def trades(pair: Optional[str] = None, limit: int = 100):
        db = SessionLocal()
        try:
            rows = SpreadStore(db).get_trade_history(pair=pair, limit=max(limit, 0))
            return {"results": [_trade_row(t) for t in rows]}
        finally:
            db.close()

    @app.get("/api/stats/daily")
    def daily_stats(days: int = 30):
        db = SessionLocal()
        try:
            return {"results": [_daily_row(d) for d in SpreadStore(db).get_daily_stats(max(days, 0))]}
        finally:
            db.close()

    @app.get("/api/stats/summary")
    def summary():
        db = SessionLocal()
        try:
            store = SpreadStore(db)
            out = store.trade_summary()
            out["open_spreads"] = len(store.get_open_spreads())
            return out
        finally:
            db.close()

    return app


# uvicorn arbwatch.main:app
app = create_app()
