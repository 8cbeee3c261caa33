import os
from dotenv import load_dotenv

from errors import ConfigurationError

load_dotenv()

# Database
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///address_issues.db')

# Polling
POLL_INTERVAL = int(os.getenv('POLL_INTERVAL', 300))
LOOKBACK_MINUTES_ON_FIRST_RUN = int(os.getenv('LOOKBACK_MINUTES_ON_FIRST_RUN', 24 * 60))
TAG_DELAY_SECONDS = float(os.getenv('TAG_DELAY_SECONDS', 0.2))

# Tagging
ADDRESS_ISSUE_TAG_NAME = os.getenv('ADDRESS_ISSUE_TAG_NAME', 'ADDRESS ISSUE')

# Re-resolution of ledger entries: 'unresolved' retries not_found/error, 'never' skips them
RETRY_POLICY = os.getenv('RETRY_POLICY', 'unresolved').strip().lower()
RETRY_WINDOW_HOURS = int(os.getenv('RETRY_WINDOW_HOURS', 72))

# Source: 'shopify' or 'shipstation'
SOURCE_TYPE = os.getenv('SOURCE_TYPE', 'shopify').strip().lower()

# Shopify
SHOPIFY_SHOP_DOMAIN = os.getenv('SHOPIFY_SHOP_DOMAIN', '').strip()
SHOPIFY_ADMIN_ACCESS_TOKEN = os.getenv('SHOPIFY_ADMIN_ACCESS_TOKEN', '').strip()
SHOPIFY_API_VERSION = os.getenv('SHOPIFY_API_VERSION', '2024-10')
# Extra order search filter, e.g. "financial_status:paid"
SHOPIFY_EXTRA_QUERY = os.getenv('SHOPIFY_EXTRA_QUERY', '').strip()

# ShipStation
SHIPSTATION_API_KEY = os.getenv('SHIPSTATION_API_KEY', '').strip()
SHIPSTATION_API_SECRET = os.getenv('SHIPSTATION_API_SECRET', '').strip()
SHIPSTATION_SOURCE_STATUSES = [
    s.strip() for s in os.getenv('SHIPSTATION_SOURCE_STATUSES', 'awaiting_shipment,on_hold').split(',')
    if s.strip()
]

# HTTP
HTTP_TIMEOUT = float(os.getenv('HTTP_TIMEOUT', 20))
HTTP_MAX_RETRIES = int(os.getenv('HTTP_MAX_RETRIES', 3))

# Dashboard (0 disables)
DASHBOARD_PORT = int(os.getenv('DASHBOARD_PORT', 3000))

LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

RETRY_POLICIES = ('unresolved', 'never')
SOURCE_TYPES = ('shopify', 'shipstation')


def missing_env_vars(source_type: str = None) -> list:
    """Names of required credentials that are not set for the chosen source"""
    source_type = source_type or SOURCE_TYPE
    missing = []
    if source_type == 'shopify':
        if not SHOPIFY_SHOP_DOMAIN:
            missing.append('SHOPIFY_SHOP_DOMAIN')
        if not SHOPIFY_ADMIN_ACCESS_TOKEN:
            missing.append('SHOPIFY_ADMIN_ACCESS_TOKEN')
    if not SHIPSTATION_API_KEY:
        missing.append('SHIPSTATION_API_KEY')
    if not SHIPSTATION_API_SECRET:
        missing.append('SHIPSTATION_API_SECRET')
    return missing


def validate():
    """Raise ConfigurationError if the process cannot start"""
    if SOURCE_TYPE not in SOURCE_TYPES:
        raise ConfigurationError(f"Unsupported SOURCE_TYPE: {SOURCE_TYPE}")
    if RETRY_POLICY not in RETRY_POLICIES:
        raise ConfigurationError(f"Unsupported RETRY_POLICY: {RETRY_POLICY}")
    if not ADDRESS_ISSUE_TAG_NAME.strip():
        raise ConfigurationError("ADDRESS_ISSUE_TAG_NAME is empty")
    if POLL_INTERVAL <= 0:
        raise ConfigurationError(f"POLL_INTERVAL must be a positive number of seconds, got {POLL_INTERVAL}")

    missing = missing_env_vars()
    if missing:
        raise ConfigurationError(f"Missing env vars: {', '.join(missing)}")
