"""
ShipStation connectors (v1 REST API): tag destination and page-number source
"""
import logging
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional
from zoneinfo import ZoneInfo

import requests

from errors import SourceUnavailable, DestinationLookupFailure, TagApplicationFailure
from .base import (
    HttpConnector, SourceConnector, DestinationConnector,
    SourceOrder, DestinationOrder, describe_error,
)

logger = logging.getLogger(__name__)

BASE_URL = 'https://ssapi.shipstation.com'
PAGE_SIZE = 100

# ShipStation timestamps are US Pacific without an offset
SHIPSTATION_TZ = ZoneInfo('America/Los_Angeles')


def normalize_order_number(number) -> str:
    return str(number or '').replace('#', '').strip().lower()


class ShipStationBase(HttpConnector):
    """Basic-auth session against ssapi.shipstation.com"""

    def __init__(self, config: Dict):
        super().__init__(config)

        self.base_url = config.get('base_url', BASE_URL).rstrip('/')
        self.session.auth = (config['api_key'], config['api_secret'])
        self.session.headers.update({'Content-Type': 'application/json'})

    def get(self, path: str, params: Optional[Dict] = None) -> requests.Response:
        return self.request('GET', f"{self.base_url}{path}", params=params)

    def post(self, path: str, payload: Dict) -> requests.Response:
        return self.request('POST', f"{self.base_url}{path}", json=payload)


class ShipStationConnector(ShipStationBase, DestinationConnector):
    """ShipStation as the destination: resolves tags, finds and tags orders"""

    def resolve_tag_id(self, tag_name: str) -> Optional[int]:
        """Look up a tag id by name (case-insensitive)"""
        response = self.get('/accounts/listtags')
        data = response.json()
        tags = data.get('tags', []) if isinstance(data, dict) else (data or [])

        wanted = tag_name.strip().lower()
        for tag in tags:
            if str(tag.get('name') or '').strip().lower() == wanted:
                return tag.get('tagId')
        return None

    def find_by_business_number(self, number: str) -> Optional[DestinationOrder]:
        """Find the order with exactly this order number.

        The orderNumber filter matches prefixes, so results are narrowed to
        an exact (case-insensitive, '#'-insensitive) match.
        """
        try:
            response = self.get('/orders', params={'orderNumber': number})
            orders = response.json().get('orders') or []
        except (requests.exceptions.RequestException, ValueError) as e:
            raise DestinationLookupFailure(
                f"ShipStation search failed for {number}: {describe_error(e)}"
            ) from e

        wanted = normalize_order_number(number)
        for order in orders:
            if normalize_order_number(order.get('orderNumber')) == wanted:
                return DestinationOrder(
                    order_id=str(order.get('orderId')),
                    order_number=str(order.get('orderNumber')),
                    tag_ids=list(order.get('tagIds') or []),
                )
        return None

    def apply_tag(self, order_id: str, tag_id: int) -> None:
        try:
            response = self.post('/orders/addtag', {'orderId': int(order_id), 'tagId': tag_id})
        except requests.exceptions.RequestException as e:
            raise TagApplicationFailure(
                f"ShipStation addtag failed for order {order_id}: {describe_error(e)}"
            ) from e

        # addtag answers 200 with success=false when the order cannot be tagged
        try:
            body = response.json()
        except ValueError:
            return
        if isinstance(body, dict) and body.get('success') is False:
            raise TagApplicationFailure(
                f"ShipStation addtag rejected for order {order_id}: {body.get('message')}"
            )


class ShipStationSourceConnector(ShipStationBase, SourceConnector):
    """ShipStation as the source: pages through each order status in turn"""

    def __init__(self, config: Dict):
        super().__init__(config)
        self.statuses: List[str] = list(config.get('statuses') or ['awaiting_shipment'])
        self.page_size = int(config.get('page_size', PAGE_SIZE))

    def scan(self, since: datetime, extra_filter: Optional[str] = None) -> Iterator[SourceOrder]:
        """Yield orders modified since ``since``, status by status, page by page"""
        extra_params = self.parse_filter(extra_filter)

        for status in self.statuses:
            page = 1
            while True:
                params = {
                    'orderStatus': status,
                    'modifyDateStart': self.format_date(since),
                    'sortBy': 'ModifyDate',
                    'sortDir': 'ASC',
                    'page': page,
                    'pageSize': self.page_size,
                }
                params.update(extra_params)

                try:
                    data = self.get('/orders', params=params).json()
                except (requests.exceptions.RequestException, ValueError) as e:
                    raise SourceUnavailable(
                        f"ShipStation orders page {page} ({status}) failed: {describe_error(e)}"
                    ) from e

                orders = data.get('orders') or []
                pages = int(data.get('pages') or 0)
                logger.debug("ShipStation fetched %d orders (status=%s page %d/%d)",
                             len(orders), status, page, pages)

                for order in orders:
                    yield self._serialize_order(order)

                if page >= pages or not orders:
                    break
                page += 1

    @staticmethod
    def parse_filter(extra_filter: Optional[str]) -> Dict[str, str]:
        """'storeId=123&customerName=x' -> query params"""
        params = {}
        for part in (extra_filter or '').split('&'):
            if '=' in part:
                key, value = part.split('=', 1)
                if key.strip():
                    params[key.strip()] = value.strip()
        return params

    @staticmethod
    def format_date(value: datetime) -> str:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(SHIPSTATION_TZ).strftime('%Y-%m-%d %H:%M:%S')

    @staticmethod
    def parse_date(value: Optional[str]) -> Optional[datetime]:
        if not value:
            return None
        # '2015-06-29T09:38:10.6170000' - seven fractional digits
        head, _, fraction = value.partition('.')
        if fraction:
            head = f"{head}.{fraction[:6].ljust(6, '0')}"
        parsed = datetime.fromisoformat(head)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=SHIPSTATION_TZ)
        return parsed.astimezone(timezone.utc)

    def _serialize_order(self, order: Dict) -> SourceOrder:
        ship_to = order.get('shipTo') or {}
        return SourceOrder(
            source_id=str(order.get('orderId', '')),
            business_number=str(order.get('orderNumber') or '').replace('#', '').strip(),
            name=str(order.get('orderNumber') or ''),
            updated_at=self.parse_date(order.get('modifyDate')),
            validation_status=ship_to.get('addressVerified'),
        )
