"""
Main application - resolve the tag once, then poll on a fixed interval
"""
import logging
import signal
import sys
import threading

import requests

import config
from connectors import get_connector
from connectors.base import describe_error
from dashboard import create_app, serve_in_background
from errors import ConfigurationError
from ledger import LedgerStore
from logging_setup import configure_logging
from models import init_db
from scheduler import Scheduler
from service import AddressIssueService

logger = logging.getLogger(__name__)


def build_connectors():
    """Source and destination connectors, constructed once per process"""
    http = {'timeout': config.HTTP_TIMEOUT, 'max_retries': config.HTTP_MAX_RETRIES}

    if config.SOURCE_TYPE == 'shopify':
        source_config = {
            'shop_url': config.SHOPIFY_SHOP_DOMAIN,
            'access_token': config.SHOPIFY_ADMIN_ACCESS_TOKEN,
            'api_version': config.SHOPIFY_API_VERSION,
            **http,
        }
    else:
        source_config = {
            'api_key': config.SHIPSTATION_API_KEY,
            'api_secret': config.SHIPSTATION_API_SECRET,
            'statuses': config.SHIPSTATION_SOURCE_STATUSES,
            **http,
        }

    source = get_connector(config.SOURCE_TYPE, source_config, role='source')
    destination = get_connector('shipstation', {
        'api_key': config.SHIPSTATION_API_KEY,
        'api_secret': config.SHIPSTATION_API_SECRET,
        **http,
    }, role='destination')
    return source, destination


def build_service(ledger: LedgerStore = None, source=None, destination=None,
                  should_stop=None) -> AddressIssueService:
    """Validate config, resolve the tag id and wire the service.

    Raises ConfigurationError on missing credentials or an unknown tag.
    """
    config.validate()

    if source is None or destination is None:
        built_source, built_destination = build_connectors()
        source = source or built_source
        destination = destination or built_destination

    if ledger is None:
        init_db()
        ledger = LedgerStore()

    try:
        tag_id = destination.resolve_tag_id(config.ADDRESS_ISSUE_TAG_NAME)
    except requests.exceptions.RequestException as e:
        raise ConfigurationError(f"Could not list destination tags: {describe_error(e)}") from e
    if not tag_id:
        raise ConfigurationError(
            f'Destination tag "{config.ADDRESS_ISSUE_TAG_NAME}" not found. '
            f'Create it in ShipStation first, then restart.'
        )
    logger.info('Destination tag ready: "%s" (tagId=%s)', config.ADDRESS_ISSUE_TAG_NAME, tag_id)

    extra_filter = config.SHOPIFY_EXTRA_QUERY if config.SOURCE_TYPE == 'shopify' else None

    return AddressIssueService(
        ledger=ledger,
        source=source,
        destination=destination,
        tag_id=tag_id,
        tag_name=config.ADDRESS_ISSUE_TAG_NAME,
        lookback_minutes=config.LOOKBACK_MINUTES_ON_FIRST_RUN,
        extra_filter=extra_filter,
        retry_policy=config.RETRY_POLICY,
        retry_window_hours=config.RETRY_WINDOW_HOURS,
        tag_delay=config.TAG_DELAY_SECONDS,
        should_stop=should_stop,
    )


def main():
    """Main loop"""
    configure_logging(config.LOG_LEVEL)

    stop_event = threading.Event()
    try:
        service = build_service(should_stop=stop_event.is_set)
    except ConfigurationError as e:
        logger.error("Startup aborted: %s", e)
        sys.exit(1)

    scheduler = Scheduler(service.run_pass, config.POLL_INTERVAL, stop_event=stop_event)

    def handle_signal(signum, frame):
        logger.info("%s: finishing current order, then shutting down...", signal.Signals(signum).name)
        scheduler.stop()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    if config.DASHBOARD_PORT:
        app = create_app(service, poll_interval=config.POLL_INTERVAL, source_type=config.SOURCE_TYPE)
        serve_in_background(app, config.DASHBOARD_PORT)

    try:
        scheduler.run_forever()
    finally:
        service.source.close()
        service.destination.close()


if __name__ == '__main__':
    main()
