import pytest

from arbwatch.jobs.lifecycle import process_spreads, update_daily_stats
from arbwatch.models import DailyStat, Spread
from arbwatch.spreads import SpreadCandidate
from arbwatch.utils import date_str
from conftest import NOW_MS


def cand(buy="arbitrum", sell="base", pair="ETH/USDC", gross=0.5, net=0.45, buy_price=2000.0, sell_price=2010.0):
    return SpreadCandidate(
        pair=pair,
        buy_chain=buy,
        sell_chain=sell,
        buy_price=buy_price,
        sell_price=sell_price,
        gross_spread_pct=gross,
        net_spread_pct=net,
        high_friction="ethereum" in (buy, sell),
    )


def test_new_candidate_opens_spread(store):
    changes = process_spreads(store, [cand()], NOW_MS)

    assert len(changes.new_spreads) == 1
    assert changes.closed_spreads == []
    row = changes.new_spreads[0]
    assert row.id is not None
    assert row.detected_at == NOW_MS
    assert row.closed_at is None
    assert row.duration_seconds is None
    assert [s.id for s in store.get_open_spreads()] == [row.id]


def test_same_candidates_twice_open_nothing_new(store):
    process_spreads(store, [cand()], NOW_MS)
    second = process_spreads(store, [cand(buy_price=1990.0, gross=1.0)], NOW_MS + 15_000)

    assert second.new_spreads == []
    assert second.closed_spreads == []
    assert len(store.get_open_spreads()) == 1


def test_open_spread_keeps_first_seen_prices(store):
    first = process_spreads(store, [cand()], NOW_MS).new_spreads[0]
    process_spreads(store, [cand(buy_price=1990.0, gross=1.0)], NOW_MS + 15_000)

    row = store.get_spread(first.id)
    assert row.buy_price == 2000.0
    assert row.gross_spread_pct == 0.5


def test_vanished_spread_closes_with_duration(store):
    opened = process_spreads(store, [cand()], NOW_MS).new_spreads[0]
    changes = process_spreads(store, [], NOW_MS + 47_600)

    assert [s.id for s in changes.closed_spreads] == [opened.id]
    closed = store.get_spread(opened.id)
    assert closed.closed_at == NOW_MS + 47_600
    assert closed.duration_seconds == 48
    assert store.get_open_spreads() == []


def test_closed_spread_is_not_closed_again(store):
    opened = process_spreads(store, [cand()], NOW_MS).new_spreads[0]
    process_spreads(store, [], NOW_MS + 10_000)
    again = process_spreads(store, [], NOW_MS + 99_000)

    assert again.closed_spreads == []
    assert store.get_spread(opened.id).closed_at == NOW_MS + 10_000


def test_reversed_direction_is_a_new_spread(store):
    first = process_spreads(store, [cand()], NOW_MS).new_spreads[0]
    flipped = process_spreads(
        store,
        [cand(buy="base", sell="arbitrum", buy_price=2000.0, sell_price=2012.0)],
        NOW_MS + 15_000,
    )

    assert [s.id for s in flipped.closed_spreads] == [first.id]
    assert len(flipped.new_spreads) == 1
    assert flipped.new_spreads[0].buy_chain == "base"


def test_duplicate_key_in_one_batch_inserts_once(store):
    changes = process_spreads(store, [cand(), cand()], NOW_MS)
    assert len(changes.new_spreads) == 1


def test_new_spread_updates_daily_stats(store):
    process_spreads(
        store,
        [cand(net=0.4), cand(buy="ethereum", sell="base", net=0.6), cand(pair="WBTC/USDC", net=0.2)],
        NOW_MS,
    )

    day = store.db.get(DailyStat, date_str(NOW_MS))
    assert day.total_spreads == 3
    assert day.actionable_spreads == 3
    assert day.avg_spread_pct == pytest.approx(0.4)
    assert day.best_spread_pct == pytest.approx(0.6)
    assert day.most_active_pair == "ETH/USDC"
    assert day.most_active_route == "arbitrum→base"
    assert day.sim_trades == 0


def test_daily_stats_recompute_counts_only_that_day(store):
    store.insert_spread(
        detected_at=NOW_MS - 3 * 86_400_000, pair="ETH/USDC", buy_chain="base", sell_chain="arbitrum",
        buy_price=1.0, sell_price=1.1, gross_spread_pct=10.0, net_spread_pct=9.0,
    )
    store.insert_spread(
        detected_at=NOW_MS, pair="ETH/USDC", buy_chain="arbitrum", sell_chain="base",
        buy_price=2000.0, sell_price=2010.0, gross_spread_pct=0.5, net_spread_pct=None,
    )
    store.insert_sim_trade(
        spread_id=2, timestamp=NOW_MS, pair="ETH/USDC", buy_chain="arbitrum", sell_chain="base",
        trade_size_usd=10000.0, tokens_bought=5.0, usd_received=10030.0, gas_cost_buy=0.5,
        gas_cost_sell=0.5, net_profit_usd=29.0, profit_pct=0.29,
    )

    day = update_daily_stats(store, NOW_MS)

    assert day.total_spreads == 1
    assert day.actionable_spreads == 0
    assert day.avg_spread_pct == 0
    assert day.best_spread_pct == 0
    assert day.sim_trades == 1
    assert day.total_sim_profit == pytest.approx(29.0)


def test_daily_stats_upsert_overwrites(store):
    process_spreads(store, [cand()], NOW_MS)
    process_spreads(store, [cand(buy="ethereum", sell="base")], NOW_MS + 1000)

    rows = store.get_daily_stats()
    assert len(rows) == 1
    assert rows[0].total_spreads == 2


def test_spread_rows_round_trip_high_friction(store):
    process_spreads(store, [cand(buy="ethereum", sell="arbitrum")], NOW_MS)
    row = store.db.query(Spread).one()
    assert row.high_friction is True
    assert row.buy_price <= row.sell_price
