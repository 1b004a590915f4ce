# Per-chain gas price over JSON-RPC (eth_gasPrice), one call per chain.
#
# Stored with each price row as gwei. The USD swap estimate is
#   gas_price_wei * swap_gas_units / 1e18 * eth_price_usd

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Mapping, Optional

import requests
from web3 import Web3
from web3.exceptions import Web3Exception

from ..config import DEFAULT_RPCS, Settings
from .base import DEFAULT_TIMEOUT_SECONDS, ConnectorError, ErrorKind, GasSourceError

log = logging.getLogger(__name__)

# rough gas units for one DEX swap
DEFAULT_SWAP_GAS_UNITS = 200_000
WEI_PER_GWEI = 10 ** 9
WEI_PER_ETH = 10 ** 18


@dataclass(frozen=True)
class GasReading:
    chain: str
    gas_price_gwei: Optional[float]
    gas_estimate_usd: Optional[float] = None
    error: Optional[str] = None


def make_web3(rpc_url: str, timeout: float) -> Web3:
    return Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))


def estimate_swap_cost_usd(
    gas_price_wei: int,
    eth_price_usd: float,
    swap_gas_units: int = DEFAULT_SWAP_GAS_UNITS,
) -> float:
    return gas_price_wei * swap_gas_units / WEI_PER_ETH * eth_price_usd


class GasPriceConnector:
    """
    Reads eth_gasPrice from each chain's RPC. Clients are built lazily and
    kept per chain.
    """

    def __init__(
        self,
        rpc_urls: Mapping[str, str] = DEFAULT_RPCS,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        swap_gas_units: int = DEFAULT_SWAP_GAS_UNITS,
        web3_factory: Callable[[str, float], Web3] = make_web3,
    ):
        self.rpc_urls = dict(rpc_urls)
        self.timeout = timeout
        self.swap_gas_units = swap_gas_units
        self.web3_factory = web3_factory
        self._clients: Dict[str, Web3] = {}

    @classmethod
    def from_settings(cls, settings: Settings, web3_factory: Callable[[str, float], Web3] = make_web3):
        return cls(
            rpc_urls=settings.rpc_urls,
            timeout=settings.http_timeout_seconds,
            swap_gas_units=settings.swap_gas_units,
            web3_factory=web3_factory,
        )

    def _client(self, chain: str) -> Web3:
        w3 = self._clients.get(chain)
        if w3 is None:
            url = self.rpc_urls.get(chain)
            if not url:
                raise GasSourceError(f"No RPC configured for chain: {chain}", ErrorKind.INVALID_INPUT)
            w3 = self.web3_factory(url, self.timeout)
            self._clients[chain] = w3
        return w3

    def gas_price_wei(self, chain: str) -> int:
        w3 = self._client(chain)
        try:
            wei = w3.eth.gas_price
        except requests.Timeout:
            raise GasSourceError(f"Request timed out after {self.timeout}s", ErrorKind.TIMEOUT)
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            if status == 429:
                raise GasSourceError("Rate limited (429)", ErrorKind.RATE_LIMITED, status=429)
            raise GasSourceError(f"HTTP {status}: {e}", ErrorKind.HTTP_ERROR, status=status)
        except requests.RequestException as e:
            raise GasSourceError(f"Fetch failed: {e}", ErrorKind.NETWORK_ERROR)
        except (Web3Exception, ValueError, TypeError) as e:
            raise GasSourceError(f"RPC error from {chain}: {e}", ErrorKind.MALFORMED_RESPONSE)

        if not isinstance(wei, int) or isinstance(wei, bool) or wei < 0:
            raise GasSourceError(f"No gas price data returned for chain: {chain}", ErrorKind.MALFORMED_RESPONSE)
        return int(wei)

    def fetch_gas_price(self, chain: str, eth_price_usd: Optional[float] = None) -> GasReading:
        wei = self.gas_price_wei(chain)
        estimate = None
        if eth_price_usd is not None:
            estimate = estimate_swap_cost_usd(wei, eth_price_usd, self.swap_gas_units)
        return GasReading(chain=chain, gas_price_gwei=wei / WEI_PER_GWEI, gas_estimate_usd=estimate)

    def fetch_all(self, chains: Iterable[str], eth_price_usd: Optional[float] = None) -> Dict[str, GasReading]:
        """One reading per chain; a chain whose RPC fails carries the error instead."""
        out: Dict[str, GasReading] = {}
        for chain in chains:
            try:
                out[chain] = self.fetch_gas_price(chain, eth_price_usd)
            except ConnectorError as e:
                log.warning("gas price for %s unavailable: %s", chain, e)
                out[chain] = GasReading(chain=chain, gas_price_gwei=None, error=str(e))
        return out
