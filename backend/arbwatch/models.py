from sqlalchemy import BigInteger, Boolean, Column, Float, ForeignKey, Index, Integer, String

from .db import Base


class PriceSnapshot(Base):
    __tablename__ = "prices"

    id = Column(Integer, primary_key=True, index=True)

    # epoch ms of the cycle that stored it
    timestamp = Column(BigInteger, nullable=False)
    chain = Column(String, nullable=False)
    pair = Column(String, nullable=False)
    price = Column(Float, nullable=False)

    # epoch seconds reported by the price source
    source_ts = Column(BigInteger, nullable=True)
    liquidity_usd = Column(Float, nullable=True)
    gas_price_gwei = Column(Float, nullable=True)


class Spread(Base):
    __tablename__ = "spreads"

    id = Column(Integer, primary_key=True, index=True)

    detected_at = Column(BigInteger, nullable=False)
    closed_at = Column(BigInteger, nullable=True)

    pair = Column(String, nullable=False)
    buy_chain = Column(String, nullable=False)
    sell_chain = Column(String, nullable=False)
    buy_price = Column(Float, nullable=False)
    sell_price = Column(Float, nullable=False)

    gross_spread_pct = Column(Float, nullable=False)
    net_spread_pct = Column(Float, nullable=True)
    high_friction = Column(Boolean, nullable=False, default=False)

    duration_seconds = Column(Integer, nullable=True)

    @property
    def key(self):
        return (self.pair, self.buy_chain, self.sell_chain)

    @property
    def is_open(self) -> bool:
        return self.closed_at is None


class SimTrade(Base):
    __tablename__ = "sim_trades"

    id = Column(Integer, primary_key=True, index=True)
    spread_id = Column(Integer, ForeignKey("spreads.id"), nullable=False)

    timestamp = Column(BigInteger, nullable=False)
    pair = Column(String, nullable=False)
    buy_chain = Column(String, nullable=False)
    sell_chain = Column(String, nullable=False)

    trade_size_usd = Column(Float, nullable=False)
    tokens_bought = Column(Float, nullable=False)
    usd_received = Column(Float, nullable=False)
    gas_cost_buy = Column(Float, nullable=False)
    gas_cost_sell = Column(Float, nullable=False)
    net_profit_usd = Column(Float, nullable=False)
    profit_pct = Column(Float, nullable=False)


class DailyStat(Base):
    __tablename__ = "daily_stats"

    # YYYY-MM-DD, UTC
    date = Column(String, primary_key=True)

    total_spreads = Column(Integer, nullable=False, default=0)
    actionable_spreads = Column(Integer, nullable=False, default=0)
    sim_trades = Column(Integer, nullable=False, default=0)
    total_sim_profit = Column(Float, nullable=False, default=0.0)
    avg_spread_pct = Column(Float, nullable=False, default=0.0)
    best_spread_pct = Column(Float, nullable=False, default=0.0)
    most_active_pair = Column(String, nullable=True)
    most_active_route = Column(String, nullable=True)


Index("idx_prices_chain_pair_ts", PriceSnapshot.chain, PriceSnapshot.pair, PriceSnapshot.timestamp)
Index("idx_spreads_pair_detected", Spread.pair, Spread.detected_at)
Index("idx_sim_trades_spread", SimTrade.spread_id)
