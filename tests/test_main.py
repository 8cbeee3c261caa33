import json
import logging

import pytest

import config
from conftest import FakeSource, FakeDestination, make_order
from errors import ConfigurationError
from lambda_handler import lambda_handler
from logging_setup import configure_logging
from main import build_service


@pytest.fixture
def configured(monkeypatch):
    monkeypatch.setattr(config, 'SOURCE_TYPE', 'shopify')
    monkeypatch.setattr(config, 'SHOPIFY_SHOP_DOMAIN', 'example.myshopify.com')
    monkeypatch.setattr(config, 'SHOPIFY_ADMIN_ACCESS_TOKEN', 'shpat_test')
    monkeypatch.setattr(config, 'SHIPSTATION_API_KEY', 'key')
    monkeypatch.setattr(config, 'SHIPSTATION_API_SECRET', 'secret')
    monkeypatch.setattr(config, 'ADDRESS_ISSUE_TAG_NAME', 'ADDRESS ISSUE')
    monkeypatch.setattr(config, 'RETRY_POLICY', 'unresolved')
    monkeypatch.setattr(config, 'TAG_DELAY_SECONDS', 0)


def test_missing_env_vars(monkeypatch):
    monkeypatch.setattr(config, 'SHOPIFY_SHOP_DOMAIN', '')
    monkeypatch.setattr(config, 'SHOPIFY_ADMIN_ACCESS_TOKEN', '')
    monkeypatch.setattr(config, 'SHIPSTATION_API_KEY', 'key')
    monkeypatch.setattr(config, 'SHIPSTATION_API_SECRET', '')

    assert config.missing_env_vars('shopify') == [
        'SHOPIFY_SHOP_DOMAIN', 'SHOPIFY_ADMIN_ACCESS_TOKEN', 'SHIPSTATION_API_SECRET',
    ]
    assert config.missing_env_vars('shipstation') == ['SHIPSTATION_API_SECRET']


def test_validate_rejects_missing_credentials(configured, monkeypatch):
    monkeypatch.setattr(config, 'SHIPSTATION_API_KEY', '')
    with pytest.raises(ConfigurationError, match='SHIPSTATION_API_KEY'):
        build_service(source=FakeSource(), destination=FakeDestination())


def test_validate_rejects_unknown_policy(configured, monkeypatch):
    monkeypatch.setattr(config, 'RETRY_POLICY', 'sometimes')
    with pytest.raises(ConfigurationError, match='RETRY_POLICY'):
        config.validate()


def test_validate_rejects_non_positive_poll_interval(configured, monkeypatch):
    monkeypatch.setattr(config, 'POLL_INTERVAL', 0)
    with pytest.raises(ConfigurationError, match='POLL_INTERVAL'):
        config.validate()


def test_unknown_tag_is_fatal(configured, ledger):
    with pytest.raises(ConfigurationError, match='not found'):
        build_service(ledger=ledger, source=FakeSource(), destination=FakeDestination(tags={}))


def test_build_service_resolves_tag(configured, ledger):
    service = build_service(ledger=ledger, source=FakeSource(), destination=FakeDestination(tags={'ADDRESS ISSUE': 42}))
    assert service.tag_id == 42
    assert service.tag_name == 'ADDRESS ISSUE'


def test_lambda_handler_runs_one_pass(configured, ledger):
    service = build_service(
        ledger=ledger,
        source=FakeSource([make_order(1001, 'ERROR')]),
        destination=FakeDestination(),
    )

    result = lambda_handler({}, None, service=service)

    assert result['statusCode'] == 200
    body = json.loads(result['body'])
    assert body['status'] == 'success'
    assert body['results']['issues'] == 1
    assert body['results']['not_found'] == 1


def test_lambda_handler_reports_source_failure(configured, ledger):
    service = build_service(
        ledger=ledger,
        source=FakeSource([make_order(1001, 'ERROR')], fail_after=0),
        destination=FakeDestination(),
    )

    result = lambda_handler({}, None, service=service)

    assert result['statusCode'] == 500
    body = json.loads(result['body'])
    assert body['status'] == 'error'
    assert body['results']['aborted'] is True
    assert ledger.get_watermark() is None


def test_lambda_handler_reports_unexpected_failure(configured, ledger):
    class BrokenLedger:
        def get_watermark(self):
            raise RuntimeError("database is locked")

    service = build_service(ledger=ledger, source=FakeSource(), destination=FakeDestination())
    service.ledger = BrokenLedger()

    result = lambda_handler({}, None, service=service)

    assert result['statusCode'] == 500
    body = json.loads(result['body'])
    assert body['status'] == 'error'
    assert body['error'] == 'database is locked'


def test_configure_logging_accepts_level_names():
    configure_logging('debug', force=True)
    assert logging.getLogger().level == logging.DEBUG
    configure_logging('nonsense', force=True)
    assert logging.getLogger().level == logging.INFO
