"""
Rule catalog loader: JSON → validated ``Rule`` models → ``RuleCatalog``.

File format
-----------
    {
      "catalog": "ghana_rules",
      "rules": [
        {"code": "MAIZE_TOPDRESS_WINDOW", "version": 1, ...},
        ...
      ]
    }

A bare JSON list of rule objects is also accepted.

Validation rules
----------------
- Every record must carry a non-empty ``code``.
- Duplicate ``(code, version)`` pairs in the input are rejected.
- Each record must pass ``Rule`` validation (operand shapes, field paths,
  targeting consistency, priority escalation).
- ``supersedes`` must reference codes present in the file, without cycles
  (enforced by ``RuleCatalog``).

Usage
-----
    from farm_advisor.catalog.loader import load_catalog

    catalog = load_catalog(Path("config/rules/ghana_rules_v1.json"))
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Union

from farm_advisor.catalog.registry import RuleCatalog
from farm_advisor.models.rule import Rule

logger = logging.getLogger(__name__)


def _validate_records(records: list[dict[str, Any]]) -> None:
    """Raise ValueError for structural problems the model cannot see."""
    seen: set[tuple[str, int]] = set()
    for i, rec in enumerate(records):
        if not isinstance(rec, dict):
            raise ValueError(f"Rule at index {i} is not an object.")
        code = rec.get("code")
        if not code:
            raise ValueError(f"Rule at index {i} is missing 'code' field.")
        key = (code, int(rec.get("version", 1)))
        if key in seen:
            raise ValueError(f"Duplicate rule '{code}' version {key[1]} at index {i}.")
        seen.add(key)


def parse_rules(raw: Union[list, dict]) -> list[Rule]:
    """Validate already-decoded JSON into ``Rule`` models.

    Raises:
        ValueError: On structural problems.
        pydantic.ValidationError: If a rule fails model validation.
    """
    records = raw.get("rules", []) if isinstance(raw, dict) else raw
    if not isinstance(records, list):
        raise ValueError("Rule file must contain a list of rules.")
    _validate_records(records)
    return [Rule.model_validate(rec) for rec in records]


def load_rules(path: Path) -> list[Rule]:
    """Read and validate every rule in ``path``.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        json.JSONDecodeError: If the JSON is malformed.
        ValueError / pydantic.ValidationError: On invalid rules.
    """
    if not path.exists():
        raise FileNotFoundError(
            f"Rule catalog file not found: {path}\n"
            "Set catalog.rules_file in config/default.toml or FARM_ADVISOR_RULES_FILE."
        )
    with open(path, encoding="utf-8") as f:
        raw = json.load(f)
    return parse_rules(raw)


def load_catalog(path: Path) -> RuleCatalog:
    """Load ``path`` into an immutable ``RuleCatalog``."""
    rules = load_rules(path)
    catalog = RuleCatalog(rules, source=str(path))
    logger.info(
        "Loaded rule catalog from %s: %d codes (%d active), %d rule versions",
        path, len(catalog), len(catalog.active_rules()), len(rules),
    )
    return catalog
