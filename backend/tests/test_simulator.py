import pytest

from arbwatch.connectors.base import ErrorKind, QuoteSourceError
from arbwatch.jobs.simulator import simulate_single_trade, simulate_trades
from arbwatch.models import SimTrade
from conftest import NOW_MS, ScriptedQuoteSource, make_quote


@pytest.fixture
def spread(store):
    return store.insert_spread(
        detected_at=NOW_MS,
        pair="ETH/USDC",
        buy_chain="arbitrum",
        sell_chain="base",
        buy_price=2500.0,
        sell_price=2512.5,
        gross_spread_pct=0.5,
        net_spread_pct=0.494,
    )


def fixed_legs(chain, src, dest, amount):
    if src == "USDC":
        return make_quote(dest_amount="4000000000000000000", dest_decimals=18, gas="0.50")
    return make_quote(dest_amount="10050000000", dest_decimals=6, gas="0.10")


def test_single_trade_profit(store, spread):
    trade = simulate_single_trade(store, spread, ScriptedQuoteSource(fixed_legs), 10000, NOW_MS)

    assert trade.tokens_bought == pytest.approx(4.0)
    assert trade.usd_received == pytest.approx(10050.0)
    assert trade.gas_cost_buy == pytest.approx(0.5)
    assert trade.gas_cost_sell == pytest.approx(0.1)
    assert trade.net_profit_usd == pytest.approx(49.4)
    assert trade.profit_pct == pytest.approx(0.494)
    assert trade.spread_id == spread.id
    assert trade.timestamp == NOW_MS
    assert (trade.buy_chain, trade.sell_chain) == ("arbitrum", "base")


def test_legs_are_quoted_in_order_on_their_chains(store, spread):
    source = ScriptedQuoteSource(fixed_legs)
    simulate_single_trade(store, spread, source, 10000, NOW_MS)

    assert source.calls == [
        ("arbitrum", "USDC", "ETH", 10000),
        ("base", "ETH", "USDC", pytest.approx(4.0)),
    ]


def test_every_size_gets_a_row(store, spread):
    results = simulate_trades(store, spread, ScriptedQuoteSource(fixed_legs), [5000, 10000, 20000], NOW_MS)

    assert [r.size for r in results] == [5000, 10000, 20000]
    assert all(r.success for r in results)
    assert store.db.query(SimTrade).count() == 3


def test_failed_size_does_not_stop_others(store, spread):
    def flaky(chain, src, dest, amount):
        if src == "USDC" and amount == 20000:
            raise QuoteSourceError("Rate limited (429)", ErrorKind.RATE_LIMITED)
        return fixed_legs(chain, src, dest, amount)

    results = simulate_trades(store, spread, ScriptedQuoteSource(flaky), [5000, 20000, 50000], NOW_MS)

    assert [r.success for r in results] == [True, False, True]
    failed = results[1]
    assert failed.size == 20000
    assert failed.trade is None
    assert "Rate limited" in failed.error
    assert store.db.query(SimTrade).count() == 2


def test_sell_leg_failure_is_per_size(store, spread):
    def no_sell(chain, src, dest, amount):
        if src == "ETH":
            raise QuoteSourceError("HTTP 500: Internal Server Error", ErrorKind.HTTP_ERROR, status=500)
        return fixed_legs(chain, src, dest, amount)

    results = simulate_trades(store, spread, ScriptedQuoteSource(no_sell), [5000, 10000], NOW_MS)

    assert not any(r.success for r in results)
    assert all("HTTP 500" in r.error for r in results)
    assert store.db.query(SimTrade).count() == 0


def test_zero_size_has_zero_profit_pct(store, spread):
    trade = simulate_single_trade(store, spread, ScriptedQuoteSource(fixed_legs), 0, NOW_MS)
    assert trade.profit_pct == 0


def test_non_finite_gas_fails_only_that_size(store, spread):
    def nan_gas_at_5000(chain, src, dest, amount):
        if src == "USDC" and amount == 5000:
            return make_quote(dest_amount="4000000000000000000", dest_decimals=18, gas="nan")
        return fixed_legs(chain, src, dest, amount)

    results = simulate_trades(store, spread, ScriptedQuoteSource(nan_gas_at_5000), [5000, 10000, 20000], NOW_MS)

    assert [r.success for r in results] == [False, True, True]
    assert "non-finite" in results[0].error
    assert store.db.query(SimTrade).count() == 2


def test_rejected_write_does_not_poison_later_sizes(store, spread, monkeypatch):
    insert = store.insert_sim_trade
    calls = []

    def first_insert_breaks(**fields):
        calls.append(fields["trade_size_usd"])
        if len(calls) == 1:
            fields = dict(fields, profit_pct=None)
        return insert(**fields)

    monkeypatch.setattr(store, "insert_sim_trade", first_insert_breaks)
    results = simulate_trades(store, spread, ScriptedQuoteSource(fixed_legs), [5000, 10000, 20000], NOW_MS)

    assert [r.success for r in results] == [False, True, True]
    assert calls == [5000.0, 10000.0, 20000.0]
    assert sorted(t.trade_size_usd for t in store.db.query(SimTrade)) == [10000.0, 20000.0]
    # the spread row is still readable after the rollback
    assert store.get_spread(spread.id).pair == "ETH/USDC"
