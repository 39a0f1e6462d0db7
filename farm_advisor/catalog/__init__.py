"""
Rule catalog: authored, versioned decision rules.

  catalog/registry.py — ``RuleCatalog``: immutable lookup by code / version.
  catalog/loader.py   — JSON rule files → validated ``RuleCatalog``.
"""

from farm_advisor.catalog.loader import load_catalog, load_rules, parse_rules
from farm_advisor.catalog.registry import RuleCatalog

__all__ = [
    "RuleCatalog",
    "load_catalog",
    "load_rules",
    "parse_rules",
]
