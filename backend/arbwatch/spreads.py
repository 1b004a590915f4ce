from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .connectors.base import PriceObservation

# A chain with no refined gas figure costs nothing. This can admit a marginal
# spread but never filters out a real one.
DEFAULT_GAS_COST_USD = 0.0
DEFAULT_REFERENCE_TRADE_SIZE = 10000.0
DEFAULT_HIGH_FRICTION_CHAINS = ("ethereum",)


@dataclass(frozen=True)
class GrossSpread:
    gross_spread_pct: float
    buy_chain: str
    sell_chain: str
    buy_price: float
    sell_price: float


@dataclass(frozen=True)
class SpreadCandidate:
    pair: str
    buy_chain: str
    sell_chain: str
    buy_price: float
    sell_price: float
    gross_spread_pct: float
    net_spread_pct: float
    high_friction: bool

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.pair, self.buy_chain, self.sell_chain)


def calculate_gross_spread(price_a: float, chain_a: str, price_b: float, chain_b: str) -> GrossSpread:
    """(high - low) / low * 100, buying on the cheaper chain."""
    low = min(price_a, price_b)
    high = max(price_a, price_b)

    if low <= 0:
        return GrossSpread(0.0, chain_a, chain_b, price_a, price_b)

    gross = (high - low) / low * 100.0
    if price_a <= price_b:
        return GrossSpread(gross, chain_a, chain_b, low, high)
    return GrossSpread(gross, chain_b, chain_a, low, high)


def calculate_net_spread(
    gross_spread_pct: float,
    buy_gas_cost_usd: float,
    sell_gas_cost_usd: float,
    trade_size: float,
) -> float:
    if trade_size <= 0:
        return 0.0
    gas_pct = (buy_gas_cost_usd + sell_gas_cost_usd) / trade_size * 100.0
    return gross_spread_pct - gas_pct


def is_high_friction(
    buy_chain: str,
    sell_chain: str,
    high_friction_chains: Iterable[str] = DEFAULT_HIGH_FRICTION_CHAINS,
) -> bool:
    chains = set(high_friction_chains)
    return buy_chain in chains or sell_chain in chains


def generate_chain_pairs(chains: Sequence[str]) -> List[Tuple[str, str]]:
    out = []
    for i in range(len(chains)):
        for j in range(i + 1, len(chains)):
            out.append((chains[i], chains[j]))
    return out


def detect_spreads(
    prices: Iterable[PriceObservation],
    gas_costs: Optional[Mapping[str, float]] = None,
    min_gross_spread_pct: float = 0.05,
    min_net_spread_pct: float = 0.02,
    reference_trade_size: float = DEFAULT_REFERENCE_TRADE_SIZE,
    high_friction_chains: Iterable[str] = DEFAULT_HIGH_FRICTION_CHAINS,
) -> List[SpreadCandidate]:
    """
    Compare every chain combination of each pair and keep the spreads that
    clear both thresholds. Pure: no I/O, same input gives same output.
    """
    gas_costs = gas_costs or {}
    high_friction_chains = tuple(high_friction_chains)

    by_pair: Dict[str, Dict[str, float]] = {}
    for p in prices:
        # first observation per chain wins, as the batch holds one per key
        by_pair.setdefault(p.pair, {}).setdefault(p.chain, p.price)

    out: List[SpreadCandidate] = []
    for pair, chain_prices in by_pair.items():
        if len(chain_prices) < 2:
            continue

        for chain_a, chain_b in generate_chain_pairs(list(chain_prices)):
            g = calculate_gross_spread(chain_prices[chain_a], chain_a, chain_prices[chain_b], chain_b)
            if g.gross_spread_pct < min_gross_spread_pct:
                continue

            buy_gas = gas_costs.get(g.buy_chain, DEFAULT_GAS_COST_USD)
            sell_gas = gas_costs.get(g.sell_chain, DEFAULT_GAS_COST_USD)
            net = calculate_net_spread(g.gross_spread_pct, buy_gas, sell_gas, reference_trade_size)
            if net < min_net_spread_pct:
                continue

            out.append(
                SpreadCandidate(
                    pair=pair,
                    buy_chain=g.buy_chain,
                    sell_chain=g.sell_chain,
                    buy_price=g.buy_price,
                    sell_price=g.sell_price,
                    gross_spread_pct=g.gross_spread_pct,
                    net_spread_pct=net,
                    high_friction=is_high_friction(g.buy_chain, g.sell_chain, high_friction_chains),
                )
            )

    return out


def involved_chains(candidates: Iterable[SpreadCandidate]) -> Dict[str, str]:
    """Map each chain used by a candidate to the first pair it was seen with."""
    chains: Dict[str, str] = {}
    for c in candidates:
        chains.setdefault(c.buy_chain, c.pair)
        chains.setdefault(c.sell_chain, c.pair)
    return chains
