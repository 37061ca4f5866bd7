"""Platform connectors package."""
from connectors.base import BasePlatformConnector, ConnectionConfig
from connectors.registry import ConnectorMeta, discover_connectors

__all__ = ["BasePlatformConnector", "ConnectionConfig", "ConnectorMeta", "discover_connectors"]
