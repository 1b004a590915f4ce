import pytest

from arbwatch.connectors.base import PriceBatch, PriceConnector, PriceObservation, Quote, QuoteConnector
from arbwatch.db import init_db, make_engine, make_session_factory
from arbwatch.storage import SpreadStore

NOW_MS = 1_700_000_000_000


class FakeResponse:
    def __init__(self, status_code=200, payload=None, reason="OK", bad_json=False):
        self.status_code = status_code
        self.reason = reason
        self._payload = payload
        self._bad_json = bad_json

    @property
    def ok(self):
        return 200 <= self.status_code < 300

    def json(self):
        if self._bad_json:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._payload


class FakeSession:
    """Stands in for requests.Session: returns queued responses or raises queued errors."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": params, "timeout": timeout})
        out = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(out, Exception):
            raise out
        return out


class StaticPriceSource(PriceConnector):
    def __init__(self, prices=(), stale=(), error=None):
        self.prices = list(prices)
        self.stale = list(stale)
        self.error = error
        self.calls = 0

    def fetch_prices(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return PriceBatch(prices=list(self.prices), stale=list(self.stale))


def make_quote(dest_amount, dest_decimals, gas="0", src_amount="0", src_decimals=6):
    return Quote(
        src_token="0xsrc",
        dest_token="0xdest",
        src_amount=src_amount,
        dest_amount=dest_amount,
        src_decimals=src_decimals,
        dest_decimals=dest_decimals,
        gas_cost_usd=gas,
    )


class ScriptedQuoteSource(QuoteConnector):
    """
    Answers fetch_quote from a handler(chain, src, dest, amount) -> Quote.
    Handlers may raise to simulate upstream failures.
    """

    def __init__(self, handler):
        self.handler = handler
        self.calls = []

    def fetch_quote(self, chain, src_token, dest_token, amount):
        self.calls.append((chain, src_token, dest_token, amount))
        return self.handler(chain, src_token, dest_token, amount)


def obs(chain, price, pair="ETH/USDC", ts=1_700_000_000):
    return PriceObservation(chain=chain, pair=pair, price=price, timestamp=ts)


def add_spread(store, pair="ETH/USDC", buy="arbitrum", sell="base", at=NOW_MS, net=0.3):
    return store.insert_spread(
        detected_at=at,
        pair=pair,
        buy_chain=buy,
        sell_chain=sell,
        buy_price=2500.0,
        sell_price=2510.0,
        gross_spread_pct=0.4,
        net_spread_pct=net,
    )


def add_trade(store, spread, profit, size=10000.0, at=NOW_MS):
    return store.insert_sim_trade(
        spread_id=spread.id,
        timestamp=at,
        pair=spread.pair,
        buy_chain=spread.buy_chain,
        sell_chain=spread.sell_chain,
        trade_size_usd=size,
        tokens_bought=4.0,
        usd_received=size + profit,
        gas_cost_buy=0.0,
        gas_cost_sell=0.0,
        net_profit_usd=profit,
        profit_pct=profit / size * 100.0,
    )


@pytest.fixture
def engine():
    eng = make_engine("sqlite:///:memory:")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def store(session_factory):
    db = session_factory()
    try:
        yield SpreadStore(db)
    finally:
        db.close()
