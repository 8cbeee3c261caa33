# tests/conftest.py
import os
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

# Must be set before models.py builds its module-level engine
os.environ['DATABASE_URL'] = 'sqlite://'

import json
import threading
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs, urlsplit

import pytest
import requests
from requests.adapters import BaseAdapter
from requests.structures import CaseInsensitiveDict
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from connectors.base import SourceConnector, DestinationConnector, SourceOrder, DestinationOrder
from errors import SourceUnavailable, DestinationLookupFailure, TagApplicationFailure
from ledger import LedgerStore
from models import init_db


@pytest.fixture
def ledger():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield LedgerStore(sessionmaker(bind=engine, expire_on_commit=False))
    engine.dispose()


class FakeSource(SourceConnector):
    def __init__(self, orders=None, fail_after=None):
        self.orders = list(orders or [])
        self.fail_after = fail_after
        self.calls = []

    def scan(self, since, extra_filter=None):
        self.calls.append((since, extra_filter))
        for i, order in enumerate(self.orders):
            if self.fail_after is not None and i >= self.fail_after:
                raise SourceUnavailable("page 2 failed after 3 retries")
            yield order


class FakeDestination(DestinationConnector):
    def __init__(self, orders=None, tags=None):
        self.orders = dict(orders or {})
        self.tags = tags if tags is not None else {'ADDRESS ISSUE': 7}
        self.lookups = []
        self.tagged = []
        self.lookup_errors = set()
        self.tag_errors = set()

    def resolve_tag_id(self, tag_name):
        return self.tags.get(tag_name)

    def find_by_business_number(self, number):
        self.lookups.append(number)
        if number in self.lookup_errors:
            raise DestinationLookupFailure(f"ShipStation search failed for {number}: 503")
        return self.orders.get(number)

    def apply_tag(self, order_id, tag_id):
        if order_id in self.tag_errors:
            raise TagApplicationFailure(f"ShipStation addtag failed for order {order_id}: 500")
        self.tagged.append((order_id, tag_id))

    def close(self):
        pass


def make_order(number, status='ERROR', source_id=None):
    return SourceOrder(
        source_id=source_id or f"gid://shopify/Order/{number}",
        business_number=str(number),
        name=f"#{number}",
        updated_at=datetime(2024, 10, 1, 12, 0, tzinfo=timezone.utc),
        validation_status=status,
    )


def make_destination_order(number, order_id):
    return DestinationOrder(order_id=str(order_id), order_number=str(number))


class FakeResponse:
    """Canned reply; FakeAdapter turns it into a real requests.Response"""

    def __init__(self, status_code=200, payload=None, headers=None, text=''):
        self.status_code = status_code
        self.payload = payload
        self.headers = headers or {}
        self.text = text

    def build(self, request):
        response = requests.Response()
        response.status_code = self.status_code
        response.headers = CaseInsensitiveDict(self.headers)
        body = json.dumps(self.payload) if self.payload is not None else self.text
        response._content = body.encode('utf-8')
        response.encoding = 'utf-8'
        response.url = request.url
        response.request = request
        return response


class FakeAdapter(BaseAdapter):
    """Transport adapter that replays queued FakeResponses or exceptions.

    Mounted in place of the retrying HTTPAdapter, so each queued item is one
    final answer from the transport.
    """

    def __init__(self, responses):
        super().__init__()
        self.responses = list(responses)
        self.requests = []

    def send(self, request, stream=False, timeout=None, verify=True, cert=None, proxies=None):
        self.requests.append(request)
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item.build(request)

    def close(self):
        pass


def sent_json(request):
    return json.loads(request.body)


def sent_params(request):
    return {k: v[0] for k, v in parse_qs(urlsplit(request.url).query).items()}


class ScriptedServer:
    """Local HTTP server answering from a queue of (status, payload, headers)"""

    def __init__(self, replies):
        self.replies = list(replies)
        self.requests = []
        server = self

        class Handler(BaseHTTPRequestHandler):
            def reply(self):
                length = int(self.headers.get('Content-Length') or 0)
                if length:
                    self.rfile.read(length)
                server.requests.append((self.command, self.path))

                status, payload, headers = server.replies.pop(0)
                data = json.dumps(payload).encode('utf-8')
                self.send_response(status)
                for name, value in (headers or {}).items():
                    self.send_header(name, value)
                self.send_header('Content-Type', 'application/json')
                self.send_header('Content-Length', str(len(data)))
                self.end_headers()
                self.wfile.write(data)

            do_GET = do_POST = reply

            def log_message(self, format, *args):
                pass

        self.httpd = ThreadingHTTPServer(('127.0.0.1', 0), Handler)
        self.url = f"http://127.0.0.1:{self.httpd.server_address[1]}"
        self.thread = threading.Thread(target=self.httpd.serve_forever, daemon=True)
        self.thread.start()

    def stop(self):
        self.httpd.shutdown()
        self.httpd.server_close()


@pytest.fixture
def scripted_server():
    servers = []

    def start(replies):
        server = ScriptedServer(replies)
        servers.append(server)
        return server

    yield start
    for server in servers:
        server.stop()
