# backend/arbwatch/jobs/poller.py

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler

from ..config import Settings
from ..connectors.base import PriceConnector, QuoteConnector
from ..connectors.gas import GasPriceConnector
from ..connectors.llama import LlamaPriceConnector
from ..connectors.mock import MockPriceConnector, MockQuoteConnector
from ..connectors.paraswap import ParaSwapQuoteConnector
from ..spreads import detect_spreads, involved_chains
from ..storage import SpreadStore
from ..utils import utc_now_ms
from .lifecycle import process_spreads, update_daily_stats
from .simulator import simulate_trades

log = logging.getLogger(__name__)

JOB_ID = "poller"

# base tokens whose price converts gas (paid in ETH) to USD
ETH_SYMBOLS = ("ETH", "WETH")


def get_connectors(settings: Settings) -> Tuple[PriceConnector, QuoteConnector]:
    """
    Build the price and quote sources once so they keep their HTTP sessions
    (and, for mock, their random walk) across cycles.
    """
    if settings.connector == "mock":
        return (
            MockPriceConnector(chains=settings.chains, pairs=settings.pairs),
            MockQuoteConnector(),
        )
    if settings.connector != "llama":
        raise RuntimeError(f"CONNECTOR={settings.connector!r} is not supported (use 'llama' or 'mock')")
    return LlamaPriceConnector.from_settings(settings), ParaSwapQuoteConnector.from_settings(settings)


def get_gas_source(settings: Settings) -> Optional[GasPriceConnector]:
    # mock runs stay offline
    if settings.connector == "mock" or not settings.gas_polling:
        return None
    return GasPriceConnector.from_settings(settings)


@dataclass
class CycleStats:
    price_count: int = 0
    stale_count: int = 0
    spreads_detected: int = 0
    spreads_closed: int = 0
    simulated: int = 0
    errors: List[str] = field(default_factory=list)


class Monitor:
    """
    Polling loop: prices (+ gas) -> store -> detect -> refine gas -> reconcile -> simulate.

    Idle until start(). Each cycle arms the next one poll_interval after it
    finishes, so cycles never overlap. stop() only prevents the next cycle;
    a cycle already running completes.

    stop() then start() while a cycle is in flight: APScheduler skips the
    immediate job (max_instances=1 per job id) and the in-flight cycle re-arms
    the next one instead.
    """

    def __init__(
        self,
        settings: Settings,
        session_factory,
        price_source: PriceConnector,
        quote_source: QuoteConnector,
        scheduler: Optional[BackgroundScheduler] = None,
        simulate_trades_fn: Callable = simulate_trades,
        on_cycle: Optional[Callable[[CycleStats], None]] = None,
        gas_source: Optional[GasPriceConnector] = None,
    ):
        self.settings = settings
        self.session_factory = session_factory
        self.price_source = price_source
        self.quote_source = quote_source
        self.gas_source = gas_source
        self.scheduler = scheduler or BackgroundScheduler(timezone="UTC")
        self.simulate_trades_fn = simulate_trades_fn
        self.on_cycle = on_cycle

        self._running = False
        self._lock = threading.Lock()

    # -- state

    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        with self._lock:
            if self._running:
                log.info("monitor already running; start() ignored")
                return
            self._running = True

        log.info(
            "starting monitor: chains=%s pairs=%s interval=%ss",
            ",".join(self.settings.chains),
            ",".join(p.symbol for p in self.settings.pairs),
            self.settings.poll_interval_seconds,
        )
        if not self.scheduler.running:
            self.scheduler.start()
        # first cycle right away
        self._schedule(datetime.now(timezone.utc))

    def stop(self) -> None:
        with self._lock:
            was_running = self._running
            self._running = False
            try:
                self.scheduler.remove_job(JOB_ID)
            except JobLookupError:
                pass
        if was_running:
            log.info("stopped monitor")

    def shutdown(self) -> None:
        self.stop()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    def _schedule(self, run_date: datetime) -> None:
        with self._lock:
            if not self._running:
                return
            self.scheduler.add_job(
                self._tick,
                "date",
                run_date=run_date,
                id=JOB_ID,
                replace_existing=True,
            )

    def _tick(self) -> None:
        try:
            self.run_cycle()
        finally:
            self._schedule(datetime.now(timezone.utc) + timedelta(seconds=self.settings.poll_interval_seconds))

    # -- one cycle

    def run_cycle(self, now_ms: Optional[int] = None) -> CycleStats:
        """Run one cycle. Never raises; failures land in CycleStats.errors."""
        stats = CycleStats()
        db = None
        try:
            db = self.session_factory()
            self._run_cycle(SpreadStore(db), stats, now_ms)
        except Exception as e:
            log.exception("cycle error")
            stats.errors.append(str(e))
            if db is not None:
                try:
                    db.rollback()
                except Exception:
                    log.exception("rollback after cycle error failed")
        finally:
            if db is not None:
                try:
                    db.close()
                except Exception:
                    log.exception("closing cycle session failed")

        log.info(
            "cycle complete: %d prices, %d new spreads, %d closed, %d simulations%s",
            stats.price_count,
            stats.spreads_detected,
            stats.spreads_closed,
            stats.simulated,
            f", {len(stats.errors)} error(s)" if stats.errors else "",
        )

        if self.on_cycle is not None:
            try:
                self.on_cycle(stats)
            except Exception:
                log.exception("on_cycle callback failed")
        return stats

    def _run_cycle(self, store: SpreadStore, stats: CycleStats, now_ms: Optional[int]) -> None:
        s = self.settings

        try:
            batch = self.price_source.fetch_prices()
        except Exception as e:
            log.error("price fetch failed: %s", e)
            stats.errors.append(f"Price fetch failed: {e}")
            return

        now_ms = utc_now_ms() if now_ms is None else now_ms
        gwei = self._poll_gas_prices(batch.prices)
        for p in batch.prices:
            store.insert_price(
                timestamp=now_ms,
                chain=p.chain,
                pair=p.pair,
                price=p.price,
                source_ts=p.timestamp,
                gas_price_gwei=gwei.get(p.chain),
            )
        stats.price_count = len(batch.prices)

        stats.stale_count = len(batch.stale)
        if batch.stale:
            log.warning("%d stale price(s) discarded", len(batch.stale))

        detect = dict(
            min_gross_spread_pct=s.min_gross_spread_pct,
            min_net_spread_pct=s.min_net_spread_pct,
            reference_trade_size=s.reference_trade_size,
            high_friction_chains=s.high_friction_chains,
        )

        candidates = detect_spreads(batch.prices, gas_costs={}, **detect)
        if not candidates:
            changes = process_spreads(store, [], now_ms)
            stats.spreads_closed = len(changes.closed_spreads)
            return

        gas_costs = self._refine_gas_costs(candidates)
        refined = detect_spreads(batch.prices, gas_costs=gas_costs, **detect)

        changes = process_spreads(store, refined, now_ms)
        stats.spreads_detected = len(changes.new_spreads)
        stats.spreads_closed = len(changes.closed_spreads)

        for spread in changes.new_spreads:
            spread_id, pair = spread.id, spread.pair
            try:
                results = self.simulate_trades_fn(
                    store, spread, self.quote_source, s.sim_trade_sizes, now_ms
                )
            except Exception as e:
                log.error("simulation failed for spread #%s %s: %s", spread_id, pair, e)
                stats.errors.append(f"Simulation error for {pair}: {e}")
                continue
            stats.simulated += sum(1 for r in results if r.success)

        if changes.new_spreads:
            # pick up the sim trades just written
            update_daily_stats(store, now_ms)

    def _refine_gas_costs(self, candidates) -> Dict[str, float]:
        """
        One reference-size buy-leg quote per involved chain. A chain whose
        quote fails keeps gas 0.
        """
        gas_costs: Dict[str, float] = {}
        for chain, pair in involved_chains(candidates).items():
            base_token, _, quote_token = pair.partition("/")
            try:
                q = self.quote_source.fetch_quote(chain, quote_token, base_token, self.settings.reference_trade_size)
                gas_costs[chain] = q.gas_usd
            except Exception as e:
                log.warning("gas refinement failed for %s, using 0: %s", chain, e)
                gas_costs[chain] = 0.0
        return gas_costs

    def _poll_gas_prices(self, prices) -> Dict[str, Optional[float]]:
        """Gwei per chain for the stored rows. Best effort: a missing reading stores NULL."""
        if self.gas_source is None or not prices:
            return {}

        chains = list(dict.fromkeys(p.chain for p in prices))
        eth_price = next((p.price for p in prices if p.pair.partition("/")[0] in ETH_SYMBOLS), None)
        try:
            readings = self.gas_source.fetch_all(chains, eth_price_usd=eth_price)
        except Exception as e:
            log.warning("gas price polling failed: %s", e)
            return {}

        for r in readings.values():
            if r.gas_estimate_usd is not None:
                log.debug("gas %s: %.4f gwei, swap ~$%.4f", r.chain, r.gas_price_gwei, r.gas_estimate_usd)
        return {chain: r.gas_price_gwei for chain, r in readings.items()}
