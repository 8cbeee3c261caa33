"""
Shopify source connector using the Admin GraphQL API
"""
import logging
from datetime import datetime
from typing import Dict, Iterator, Optional

import requests

from errors import SourceUnavailable
from ledger import format_timestamp, parse_timestamp
from .base import HttpConnector, SourceConnector, SourceOrder, describe_error

logger = logging.getLogger(__name__)

PAGE_SIZE = 50

ORDERS_QUERY = """
query OrdersUpdatedSince($first: Int!, $after: String, $query: String!) {
  orders(first: $first, after: $after, query: $query, sortKey: UPDATED_AT, reverse: false) {
    edges {
      cursor
      node {
        id
        name
        updatedAt
        shippingAddress {
          validationResultSummary
        }
      }
    }
    pageInfo {
      hasNextPage
      endCursor
    }
  }
}
"""


def order_number_from_name(name: Optional[str]) -> str:
    """Shopify order.name is like '#66053'"""
    return str(name or '').replace('#', '').strip()


class ShopifyConnector(HttpConnector, SourceConnector):
    """Shopify store connector using GraphQL cursor pagination"""

    def __init__(self, config: Dict):
        super().__init__(config)

        self.shop_url = config['shop_url']
        self.access_token = config['access_token']
        self.api_version = config.get('api_version', '2024-10')
        self.extra_query = (config.get('extra_query') or '').strip()
        self.page_size = int(config.get('page_size', PAGE_SIZE))

        # Base URL for API requests
        self.base_url = f"https://{self.shop_url}/admin/api/{self.api_version}"

        self.session.headers.update({
            'Content-Type': 'application/json',
            'X-Shopify-Access-Token': self.access_token
        })

    def build_query(self, since: datetime, extra_filter: Optional[str] = None) -> str:
        """Order search query: updated_at:>=<since> [AND (<extra>)]"""
        parts = [f"updated_at:>={format_timestamp(since)}"]
        extra = (extra_filter if extra_filter is not None else self.extra_query).strip()
        if extra:
            parts.append(f"({extra})")
        return ' AND '.join(parts)

    def scan(self, since: datetime, extra_filter: Optional[str] = None) -> Iterator[SourceOrder]:
        """Yield orders updated since ``since``, one GraphQL page at a time"""
        query = self.build_query(since, extra_filter)
        after = None
        page = 1

        while True:
            orders = self._fetch_page(query, after)
            edges = orders.get('edges') or []
            page_info = orders.get('pageInfo') or {}

            logger.debug("Shopify fetched %d orders (page %d) query=%r", len(edges), page, query)

            for edge in edges:
                yield self._serialize_order(edge.get('node') or {})

            if not page_info.get('hasNextPage'):
                break
            after = page_info.get('endCursor')
            if not after:
                # would restart from page 1 and never finish
                raise SourceUnavailable(f"Shopify reported page {page} has a next page but no endCursor")
            page += 1

    def _fetch_page(self, query: str, after: Optional[str]) -> Dict:
        url = f"{self.base_url}/graphql.json"
        payload = {
            'query': ORDERS_QUERY,
            'variables': {'first': self.page_size, 'after': after, 'query': query},
        }

        attempt = 0
        while True:
            attempt += 1
            try:
                response = self.request('POST', url, json=payload)
                body = response.json()
            except (requests.exceptions.RequestException, ValueError) as e:
                raise SourceUnavailable(f"Shopify orders page failed: {describe_error(e)}") from e

            errors = body.get('errors') or []
            if not errors:
                return (body.get('data') or {}).get('orders') or {}

            # Cost-based throttling comes back as a 200 with a THROTTLED error
            throttled = any(
                (err.get('extensions') or {}).get('code') == 'THROTTLED'
                for err in errors if isinstance(err, dict)
            )
            if not throttled or attempt > self.max_retries:
                raise SourceUnavailable(f"Shopify GraphQL errors: {errors}")

            wait = self.backoff(attempt)
            logger.warning("Shopify throttled, retry %d/%d in %.1fs", attempt, self.max_retries, wait)
            self.sleep(wait)

    def _serialize_order(self, node: Dict) -> SourceOrder:
        """Convert a GraphQL order node to a SourceOrder"""
        shipping = node.get('shippingAddress') or {}
        updated_at = node.get('updatedAt')

        return SourceOrder(
            source_id=str(node.get('id', '')),
            business_number=order_number_from_name(node.get('name')),
            name=node.get('name') or '',
            updated_at=parse_timestamp(updated_at) if updated_at else None,
            validation_status=shipping.get('validationResultSummary'),
        )
