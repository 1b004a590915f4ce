import pytest
import requests
from web3 import Web3
from web3.providers import BaseProvider

from arbwatch.connectors.base import ErrorKind, GasSourceError
from arbwatch.connectors.gas import GasPriceConnector, estimate_swap_cost_usd, make_web3

RPCS = {"arbitrum": "https://arb.example/rpc", "base": "https://base.example/rpc"}


class FakeEth:
    def __init__(self, outcome):
        self.outcome = outcome

    @property
    def gas_price(self):
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


class FakeWeb3:
    def __init__(self, outcome):
        self.eth = FakeEth(outcome)


def factory_for(outcomes):
    """web3_factory returning a FakeWeb3 per chain URL; records every build."""
    built = []

    def factory(url, timeout):
        built.append((url, timeout))
        chain = next(c for c, u in RPCS.items() if u == url)
        return FakeWeb3(outcomes[chain])

    factory.built = built
    return factory


def http_error(status):
    resp = requests.Response()
    resp.status_code = status
    return requests.HTTPError(f"{status} Server Error", response=resp)


def test_reading_in_gwei_with_usd_estimate():
    src = GasPriceConnector(RPCS, web3_factory=factory_for({"arbitrum": 2_500_000_000}))
    r = src.fetch_gas_price("arbitrum", eth_price_usd=2000.0)

    assert r.chain == "arbitrum"
    assert r.gas_price_gwei == pytest.approx(2.5)
    # 2.5 gwei * 200k gas = 0.0005 ETH
    assert r.gas_estimate_usd == pytest.approx(1.0)
    assert r.error is None


def test_no_eth_price_means_no_estimate():
    src = GasPriceConnector(RPCS, web3_factory=factory_for({"base": 10_000_000}))
    r = src.fetch_gas_price("base")
    assert r.gas_price_gwei == pytest.approx(0.01)
    assert r.gas_estimate_usd is None


def test_estimate_swap_cost_usd():
    assert estimate_swap_cost_usd(30 * 10 ** 9, 2000.0) == pytest.approx(12.0)
    assert estimate_swap_cost_usd(30 * 10 ** 9, 2000.0, swap_gas_units=100_000) == pytest.approx(6.0)


def test_clients_are_built_once_per_chain_with_timeout():
    factory = factory_for({"arbitrum": 1, "base": 2})
    src = GasPriceConnector(RPCS, timeout=4.0, web3_factory=factory)

    src.gas_price_wei("arbitrum")
    src.gas_price_wei("arbitrum")
    src.gas_price_wei("base")

    assert factory.built == [(RPCS["arbitrum"], 4.0), (RPCS["base"], 4.0)]


def test_unconfigured_chain_is_invalid_input_without_a_client():
    factory = factory_for({})
    src = GasPriceConnector(RPCS, web3_factory=factory)

    with pytest.raises(GasSourceError) as exc:
        src.gas_price_wei("ethereum")
    assert exc.value.kind == ErrorKind.INVALID_INPUT
    assert factory.built == []


@pytest.mark.parametrize(
    "outcome, kind, status",
    [
        (requests.Timeout("read timed out"), ErrorKind.TIMEOUT, None),
        (http_error(429), ErrorKind.RATE_LIMITED, 429),
        (http_error(503), ErrorKind.HTTP_ERROR, 503),
        (requests.ConnectionError("connection refused"), ErrorKind.NETWORK_ERROR, None),
        (ValueError({"code": -32000, "message": "header not found"}), ErrorKind.MALFORMED_RESPONSE, None),
        (None, ErrorKind.MALFORMED_RESPONSE, None),
        (-1, ErrorKind.MALFORMED_RESPONSE, None),
    ],
)
def test_rpc_error_kinds(outcome, kind, status):
    src = GasPriceConnector(RPCS, web3_factory=factory_for({"base": outcome}))
    with pytest.raises(GasSourceError) as exc:
        src.gas_price_wei("base")
    assert exc.value.kind == kind
    assert exc.value.status == status


def test_fetch_all_keeps_going_past_a_failed_chain(caplog):
    factory = factory_for({"arbitrum": requests.Timeout("slow"), "base": 5_000_000})
    src = GasPriceConnector(RPCS, web3_factory=factory)

    readings = src.fetch_all(["arbitrum", "base", "ethereum"], eth_price_usd=2000.0)

    assert list(readings) == ["arbitrum", "base", "ethereum"]
    assert readings["arbitrum"].gas_price_gwei is None
    assert "timed out" in readings["arbitrum"].error
    assert readings["base"].gas_price_gwei == pytest.approx(0.005)
    assert "No RPC configured" in readings["ethereum"].error
    assert "gas price for arbitrum unavailable" in caplog.text


class StaticGasProvider(BaseProvider):
    """Answers eth_gasPrice with a fixed hex quantity."""

    def __init__(self, wei):
        super().__init__()
        self.wei = wei
        self.methods = []

    def make_request(self, method, params):
        self.methods.append(method)
        return {"jsonrpc": "2.0", "id": 1, "result": hex(self.wei)}

    def is_connected(self, show_traceback=False):
        return True


def test_reads_through_a_web3_provider():
    provider = StaticGasProvider(3_000_000_000)
    src = GasPriceConnector(RPCS, web3_factory=lambda url, timeout: Web3(provider))

    r = src.fetch_gas_price("base", eth_price_usd=1000.0)

    assert provider.methods == ["eth_gasPrice"]
    assert r.gas_price_gwei == pytest.approx(3.0)
    assert r.gas_estimate_usd == pytest.approx(0.6)


def test_make_web3_sets_request_timeout():
    w3 = make_web3("http://127.0.0.1:8545", 3.0)
    assert w3.provider.endpoint_uri == "http://127.0.0.1:8545"
    assert dict(w3.provider.get_request_kwargs())["timeout"] == 3.0
