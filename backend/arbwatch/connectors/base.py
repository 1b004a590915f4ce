from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import requests

UA = {"User-Agent": "arbwatch/0.1", "Accept": "application/json"}
DEFAULT_TIMEOUT_SECONDS = 10.0


class ErrorKind(str, Enum):
    RATE_LIMITED = "RATE_LIMITED"
    HTTP_ERROR = "HTTP_ERROR"
    MALFORMED_RESPONSE = "MALFORMED_RESPONSE"
    TIMEOUT = "TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    INVALID_INPUT = "INVALID_INPUT"


class ConnectorError(Exception):
    """Failure from an upstream API, tagged with an ErrorKind."""

    def __init__(self, message: str, kind: ErrorKind, status: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.status = status


class PriceSourceError(ConnectorError):
    pass


class QuoteSourceError(ConnectorError):
    pass


class GasSourceError(ConnectorError):
    pass


@dataclass(frozen=True)
class PriceObservation:
    chain: str
    pair: str
    price: float
    # epoch seconds from the source
    timestamp: int


@dataclass(frozen=True)
class StaleEntry:
    key: str
    age: int


@dataclass
class PriceBatch:
    prices: List[PriceObservation] = field(default_factory=list)
    stale: List[StaleEntry] = field(default_factory=list)


def _units(amount: Any):
    # smallest-unit amounts arrive as integer strings
    try:
        return int(amount)
    except (TypeError, ValueError):
        return float(amount)


@dataclass(frozen=True)
class Quote:
    src_token: Optional[str]
    dest_token: Optional[str]
    src_amount: str
    dest_amount: str
    src_decimals: int
    dest_decimals: int
    gas_cost_usd: str = "0"
    best_route: List[Any] = field(default_factory=list)

    @property
    def dest_human(self) -> float:
        return _units(self.dest_amount) / 10 ** int(self.dest_decimals)

    @property
    def src_human(self) -> float:
        return _units(self.src_amount) / 10 ** int(self.src_decimals)

    @property
    def gas_usd(self) -> float:
        return float(self.gas_cost_usd)


class PriceConnector(ABC):
    @abstractmethod
    def fetch_prices(self) -> PriceBatch:
        raise NotImplementedError


class QuoteConnector(ABC):
    @abstractmethod
    def fetch_quote(self, chain: str, src_token: str, dest_token: str, amount: float) -> Quote:
        raise NotImplementedError


def get_json(
    session: requests.Session,
    url: str,
    params: Optional[Dict[str, Any]] = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    error_cls=ConnectorError,
) -> Any:
    """
    One GET with its own timeout. Every failure comes back as error_cls with
    the matching ErrorKind; nothing is retried here.
    """
    try:
        r = session.get(url, params=params, headers=UA, timeout=timeout)
    except requests.Timeout:
        raise error_cls(f"Request timed out after {timeout}s", ErrorKind.TIMEOUT)
    except requests.RequestException as e:
        raise error_cls(f"Fetch failed: {e}", ErrorKind.NETWORK_ERROR)

    if r.status_code == 429:
        raise error_cls("Rate limited (429)", ErrorKind.RATE_LIMITED, status=429)

    if not r.ok:
        raise error_cls(
            f"HTTP {r.status_code}: {r.reason}",
            ErrorKind.HTTP_ERROR,
            status=r.status_code,
        )

    try:
        return r.json()
    except ValueError:
        raise error_cls("Malformed JSON response", ErrorKind.MALFORMED_RESPONSE, status=r.status_code)
