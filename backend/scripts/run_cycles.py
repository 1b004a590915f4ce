# backend/scripts/run_cycles.py
#
# Runs a few monitor cycles in the foreground against DATABASE_URL and prints
# what was stored. Handy for checking connectors without starting the API.
#
# Run (from backend/):
#   export CONNECTOR=mock
#   python -m scripts.run_cycles
#
# Useful env vars:
#   RUN_CYCLES=3
#   RUN_SLEEP_SECONDS=POLL_INTERVAL_SECONDS

import os
import time

from arbwatch.config import Settings
from arbwatch.db import init_db, make_engine, make_session_factory
from arbwatch.jobs.poller import Monitor, get_connectors, get_gas_source
from arbwatch.logging_config import setup_logging
from arbwatch.storage import SpreadStore
from arbwatch.utils import iso_ts


def main():
    settings = Settings.from_env()
    setup_logging(settings.log_level, settings.log_file)

    engine = make_engine(settings.database_url)
    init_db(engine)
    SessionLocal = make_session_factory(engine)

    price_source, quote_source = get_connectors(settings)
    monitor = Monitor(settings, SessionLocal, price_source, quote_source, gas_source=get_gas_source(settings))

    n = int(os.getenv("RUN_CYCLES", "3"))
    pause = float(os.getenv("RUN_SLEEP_SECONDS", str(settings.poll_interval_seconds)))

    for i in range(n):
        stats = monitor.run_cycle()
        print(
            f"cycle {i + 1}/{n}: prices={stats.price_count} stale={stats.stale_count} "
            f"new={stats.spreads_detected} closed={stats.spreads_closed} "
            f"sims={stats.simulated} errors={stats.errors}"
        )
        if i + 1 < n:
            time.sleep(pause)

    db = SessionLocal()
    try:
        store = SpreadStore(db)
        open_spreads = store.get_open_spreads()
        print(f"\n{len(open_spreads)} open spread(s):")
        for s in open_spreads:
            net = f"{s.net_spread_pct:.4f}%" if s.net_spread_pct is not None else "-"
            flag = " (high friction)" if s.high_friction else ""
            print(f"  #{s.id} {s.pair} {s.buy_chain}->{s.sell_chain} gross={s.gross_spread_pct:.4f}% net={net} since {iso_ts(s.detected_at)}{flag}")

        summary = store.trade_summary()
        print(f"\nsim trades: {summary['total_trades']} total profit=${summary['total_profit']:.2f}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
