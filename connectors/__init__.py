"""
Connector factory - easily add new store types here
"""
from .base import SourceOrder, DestinationOrder, SourceConnector, DestinationConnector
from .shopify_connector import ShopifyConnector
from .shipstation_connector import ShipStationConnector, ShipStationSourceConnector

# Registry of available connectors, per role
SOURCE_CONNECTORS = {
    'shopify': ShopifyConnector,
    'shipstation': ShipStationSourceConnector,
}

DESTINATION_CONNECTORS = {
    'shipstation': ShipStationConnector,
}


def get_connector(store_type: str, config: dict, role: str = 'source'):
    """Get connector instance for store type and role ('source' or 'destination')"""
    registry = SOURCE_CONNECTORS if role == 'source' else DESTINATION_CONNECTORS
    connector_class = registry.get(store_type.lower())

    if not connector_class:
        raise ValueError(f"Unsupported {role} store type: {store_type}")

    return connector_class(config)
