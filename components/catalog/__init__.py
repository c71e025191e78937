# components/catalog/__init__.py
"""
Catalog components.

Modules:
- models: Catalog devices, end users, per-connection snapshot
- clients: Static and HTTP catalog providers, HTTP CRM mirror
- rules_engine: Per-device threshold rules
- sync: Per-connection catalog sync pipeline
"""

from components.catalog.clients import (
    HttpCatalogProvider,
    HttpCrmMirror,
    StaticCatalogProvider,
)
from components.catalog.models import CatalogDevice, CatalogSnapshot, EndUser
from components.catalog.rules_engine import RulesEngine, RuleViolation
from components.catalog.sync import CatalogSync

__all__ = [
    "CatalogDevice",
    "CatalogSnapshot",
    "CatalogSync",
    "EndUser",
    "HttpCatalogProvider",
    "HttpCrmMirror",
    "RuleViolation",
    "RulesEngine",
    "StaticCatalogProvider",
]
