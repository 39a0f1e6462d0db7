"""
Rule catalog: an immutable, versioned registry of ``Rule`` records.

A ``RuleCatalog`` is built once at process start (``load_catalog()``) and then
passed explicitly into ``RulesEngine`` and ``ExplanationReconstructor``.  It is
read-only after construction, so it needs no locking and can be shared by
every request.

Versioning
----------
Every version of a rule is kept, keyed by ``(code, version)``.  Lookups by
code return the highest version; only that version is ever evaluated, and if
it is inactive the code does not fire at all (older versions never fall back
into service).

Usage
-----
    from farm_advisor.catalog.registry import RuleCatalog

    catalog = RuleCatalog([rule_v1, rule_v2])
    catalog.get("MAIZE_TOPDRESS_WINDOW").version   # 2
    catalog.versions("MAIZE_TOPDRESS_WINDOW")      # (1, 2)
    [r.code for r in catalog.active_rules()]       # precedence order

Validation (raises ``ValueError`` at construction)
--------------------------------------------------
- Duplicate ``(code, version)`` pairs.
- ``supersedes`` entries that reference a code not in the catalog.
- Supersession cycles among the latest versions (A → B → A).
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Optional

from farm_advisor.models.rule import Rule


class RuleCatalog:
    """Immutable rule registry.

    Args:
        rules: Every authored rule version.
        source: Where the rules came from (file path), for logs and CLI output.
    """

    def __init__(self, rules: Iterable[Rule], source: Optional[str] = None) -> None:
        by_code: dict[str, dict[int, Rule]] = {}
        for rule in rules:
            versions = by_code.setdefault(rule.code, {})
            if rule.version in versions:
                raise ValueError(
                    f"Duplicate rule '{rule.code}' version {rule.version}."
                )
            versions[rule.version] = rule

        self._versions: dict[str, tuple[Rule, ...]] = {
            code: tuple(versions[v] for v in sorted(versions))
            for code, versions in sorted(by_code.items())
        }
        self._latest: dict[str, Rule] = {
            code: versions[-1] for code, versions in self._versions.items()
        }
        self._active: tuple[Rule, ...] = tuple(
            sorted(
                (r for r in self._latest.values() if r.is_active),
                key=lambda r: (-r.precedence, r.code),
            )
        )
        self.source = source
        self._validate_supersedes()

    # ── Lookup ────────────────────────────────────────────────────────────────

    def get(self, code: str) -> Optional[Rule]:
        """Return the latest version of ``code``, or ``None``."""
        return self._latest.get(code)

    def get_version(self, code: str, version: int) -> Optional[Rule]:
        for rule in self._versions.get(code, ()):
            if rule.version == version:
                return rule
        return None

    def versions(self, code: str) -> tuple[int, ...]:
        return tuple(r.version for r in self._versions.get(code, ()))

    def codes(self) -> tuple[str, ...]:
        return tuple(self._latest)

    def latest_rules(self) -> tuple[Rule, ...]:
        """Latest version of every code, sorted by code."""
        return tuple(self._latest.values())

    def active_rules(self) -> tuple[Rule, ...]:
        """Rules the engine evaluates: latest, active, precedence descending."""
        return self._active

    def supersedes_map(self) -> dict[str, tuple[str, ...]]:
        return {code: rule.supersedes for code, rule in self._latest.items() if rule.supersedes}

    def without(self, *codes: str) -> "RuleCatalog":
        """Return a new catalog with every version of ``codes`` removed.

        Supersession references to the removed codes are dropped as well.
        """
        removed = set(codes)
        kept: list[Rule] = []
        for code, versions in self._versions.items():
            if code in removed:
                continue
            for rule in versions:
                if removed.intersection(rule.supersedes):
                    rule = rule.model_copy(
                        update={"supersedes": tuple(s for s in rule.supersedes if s not in removed)}
                    )
                kept.append(rule)
        return RuleCatalog(kept, source=self.source)

    # ── Container protocol ────────────────────────────────────────────────────

    def __contains__(self, code: object) -> bool:
        return code in self._latest

    def __iter__(self) -> Iterator[Rule]:
        return iter(self._latest.values())

    def __len__(self) -> int:
        return len(self._latest)

    def __repr__(self) -> str:
        return f"RuleCatalog(codes={len(self)}, active={len(self._active)}, source={self.source!r})"

    # ── Validation ────────────────────────────────────────────────────────────

    def _validate_supersedes(self) -> None:
        for code, versions in self._versions.items():
            for rule in versions:
                for target in rule.supersedes:
                    if target not in self._latest:
                        raise ValueError(
                            f"Rule '{code}' v{rule.version} supersedes unknown rule '{target}'."
                        )

        graph = self.supersedes_map()
        visiting: set[str] = set()
        done: set[str] = set()

        def _visit(code: str, path: list[str]) -> None:
            if code in done:
                return
            if code in visiting:
                cycle = " -> ".join(path[path.index(code):] + [code])
                raise ValueError(f"Supersession cycle detected: {cycle}.")
            visiting.add(code)
            for target in graph.get(code, ()):
                _visit(target, path + [code])
            visiting.discard(code)
            done.add(code)

        for code in graph:
            _visit(code, [])
