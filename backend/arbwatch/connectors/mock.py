import random
import time

from ..config import TOKEN_DECIMALS, registry_name
from .base import PriceBatch, PriceConnector, PriceObservation, Quote, QuoteConnector

# rough USD anchors per base token
ANCHORS = {"ETH": 2000.0, "WETH": 2000.0, "BTC": 60000.0, "WBTC": 60000.0}


class MockPriceConnector(PriceConnector):
    """Seeded random walk per (chain, pair) so the monitor runs offline."""

    def __init__(self, chains, pairs, seed=7, drift_pct=0.3):
        self.rng = random.Random(seed)
        self.drift_pct = drift_pct
        self.prices = {}
        for pair in pairs:
            anchor = ANCHORS.get(pair.base, 1.0)
            for chain in chains:
                self.prices[(chain, pair.symbol)] = anchor * (1 + self.rng.uniform(-0.002, 0.002))

    def fetch_prices(self):
        now = int(time.time())
        out = PriceBatch()
        for (chain, pair), p in self.prices.items():
            p = max(p * (1 + self.rng.uniform(-self.drift_pct, self.drift_pct) / 100.0), 1e-9)
            self.prices[(chain, pair)] = p
            out.prices.append(PriceObservation(chain=chain, pair=pair, price=p, timestamp=now))
        return out


class MockQuoteConnector(QuoteConnector):
    """Fills at the anchor price with a small random slippage and flat gas."""

    def __init__(self, seed=7, gas_cost_usd=0.25, slippage_pct=0.05):
        self.rng = random.Random(seed)
        self.gas_cost_usd = gas_cost_usd
        self.slippage_pct = slippage_pct

    def fetch_quote(self, chain, src_token, dest_token, amount):
        src_dec = TOKEN_DECIMALS.get(registry_name(src_token), 18)
        dest_dec = TOKEN_DECIMALS.get(registry_name(dest_token), 18)
        slip = 1 - self.rng.uniform(0, self.slippage_pct) / 100.0

        if src_token in ANCHORS:
            dest_amount = amount * ANCHORS[src_token] * slip
        else:
            dest_amount = amount / ANCHORS.get(dest_token, 1.0) * slip

        return Quote(
            src_token=src_token,
            dest_token=dest_token,
            src_amount=str(int(amount * 10 ** src_dec)),
            dest_amount=str(int(dest_amount * 10 ** dest_dec)),
            src_decimals=src_dec,
            dest_decimals=dest_dec,
            gas_cost_usd=f"{self.gas_cost_usd:.4f}",
            best_route=[{"exchange": "mock", "percent": 100}],
        )
