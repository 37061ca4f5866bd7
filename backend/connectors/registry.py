"""
Connector registry: auto-discovery and metadata types.

ConnectorMeta is the single source of truth for what a platform connector is,
which entities it fetches, and how it authenticates. discover_connectors()
scans backend/connectors/ and falls back to entry_points for externally
installed connector packages.
"""

from __future__ import annotations

import importlib
import logging
import pkgutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from connectors.base import BasePlatformConnector

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP: str = "prism_reports.connectors"

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class AuthType(Enum):
    """How a connector authenticates with its platform."""

    API_KEY = "api_key"
    BEARER_TOKEN = "bearer_token"


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConnectorMeta:
    """Self-describing metadata for a platform connector."""

    name: str
    slug: str
    auth_type: AuthType
    entity_types: list[str] = field(default_factory=list)
    default_project_status: str = "active"
    description: str = ""

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "slug": self.slug,
            "auth_type": self.auth_type.value,
            "entity_types": list(self.entity_types),
            "description": self.description,
        }


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------

_SKIP_MODULES = frozenset({"base", "registry", "models", "errors", "retry", "decoders", "fetcher"})


def discover_connectors() -> dict[str, type[BasePlatformConnector]]:
    """Build connector registry from in-tree modules + installed packages."""
    from connectors.base import BasePlatformConnector  # deferred to avoid circular import

    registry: dict[str, type[BasePlatformConnector]] = {}

    connectors_dir = Path(__file__).parent
    for module_info in pkgutil.iter_modules([str(connectors_dir)]):
        if module_info.name.startswith("_") or module_info.name in _SKIP_MODULES:
            continue
        try:
            module = importlib.import_module(f"connectors.{module_info.name}")
        except Exception:
            logger.warning("Failed to import connector module %s", module_info.name, exc_info=True)
            continue

        for attr_name in dir(module):
            obj = getattr(module, attr_name)
            if (
                isinstance(obj, type)
                and issubclass(obj, BasePlatformConnector)
                and obj is not BasePlatformConnector
                and hasattr(obj, "meta")
            ):
                meta: ConnectorMeta = obj.meta
                registry[meta.slug] = obj

    from importlib.metadata import entry_points

    for ep in entry_points(group=ENTRY_POINT_GROUP):
        if ep.name in registry:
            continue
        try:
            registry[ep.name] = ep.load()
        except Exception:
            logger.warning("Failed to load entry-point connector %s", ep.name, exc_info=True)

    return registry
