"""
Base connector interfaces plus the shared retrying HTTP session
"""
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterator, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

RETRY_STATUSES = frozenset({429, 500, 502, 503, 504})


@dataclass
class SourceOrder:
    """Order as fetched from the source system (fresh every pass)"""
    source_id: str
    business_number: str
    name: str
    updated_at: Optional[datetime] = None
    validation_status: Optional[str] = None


@dataclass
class DestinationOrder:
    """Matching order in the destination system"""
    order_id: str
    order_number: str
    tag_ids: List[int] = field(default_factory=list)


class RateLimitRetry(Retry):
    """urllib3 Retry that also reads ShipStation's X-Rate-Limit-Reset header"""

    def get_retry_after(self, response):
        retry_after = response.headers.get('Retry-After') or response.headers.get('X-Rate-Limit-Reset')
        if retry_after is None:
            return None
        return self.parse_retry_after(retry_after)


def build_retry(max_retries: int, backoff_factor: float = 1.0, max_backoff: float = 60.0) -> Retry:
    """Retry policy for every connector session.

    Timeouts, connection errors and 429/5xx responses are retried with
    exponential backoff, all methods included. When retries run out the last
    response is handed back so ``raise_for_status()`` reports it.
    """
    return RateLimitRetry(
        total=max_retries,
        backoff_factor=backoff_factor,
        backoff_max=max_backoff,
        status_forcelist=RETRY_STATUSES,
        allowed_methods=None,
        respect_retry_after_header=True,
        raise_on_status=False,
    )


class HttpConnector:
    """Holds one requests.Session with a retrying HTTPAdapter mounted.

    Anything the adapter gives up on is raised as a
    ``requests.exceptions.RequestException`` subclass.
    """

    def __init__(self, config: Dict):
        self.config = config
        self.timeout = float(config.get('timeout', 20))
        self.max_retries = int(config.get('max_retries', 3))
        self.backoff_factor = float(config.get('backoff_factor', 1.0))
        self.max_backoff = float(config.get('max_backoff', 60.0))
        self.sleep = config.get('sleep', time.sleep)

        self.session = config.get('session') or requests.Session()
        adapter = config.get('adapter') or HTTPAdapter(
            max_retries=build_retry(self.max_retries, self.backoff_factor, self.max_backoff)
        )
        self.session.mount('https://', adapter)
        self.session.mount('http://', adapter)

    def request(self, method: str, url: str, **kwargs) -> requests.Response:
        response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        response.raise_for_status()
        return response

    def backoff(self, attempt: int) -> float:
        """Wait before retry ``attempt`` of a retry the transport cannot see"""
        return min(self.backoff_factor * (2 ** (attempt - 1)), self.max_backoff)

    def close(self):
        self.session.close()


def describe_error(e: Exception) -> str:
    """Error detail for the ledger note - API body when there is one"""
    response = getattr(e, 'response', None)
    if response is not None:
        try:
            return f"{response.status_code}: {response.json()}"
        except ValueError:
            return f"{response.status_code}: {response.text[:500]}"
    return str(e) or e.__class__.__name__


class SourceConnector(ABC):
    """Source system: lists orders modified since a timestamp"""

    @abstractmethod
    def scan(self, since: datetime, extra_filter: Optional[str] = None) -> Iterator[SourceOrder]:
        """Lazily yield every order modified since ``since``.

        Raises SourceUnavailable when a page cannot be fetched.
        """


class DestinationConnector(ABC):
    """Destination system: tag directory, order lookup, tag action"""

    @abstractmethod
    def resolve_tag_id(self, tag_name: str) -> Optional[int]:
        """Tag id for a tag name, or None if no such tag"""

    @abstractmethod
    def find_by_business_number(self, number: str) -> Optional[DestinationOrder]:
        """Order with this business number, or None if it has not synced yet"""

    @abstractmethod
    def apply_tag(self, order_id: str, tag_id: int) -> None:
        """Add a tag to an order; raises TagApplicationFailure"""
