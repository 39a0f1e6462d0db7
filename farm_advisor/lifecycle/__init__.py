"""
Recommendation lifecycle: what happens to engine output once it is persisted.

Modules
-------
freshness : FreshnessPolicy — pure cache-age check.
manager   : LifecycleManager — cache-vs-regenerate, atomic expire-then-insert
            under a per-user generation CAS, feedback transitions.
explain   : ExplanationReconstructor — justification rebuilt from stored
            evidence plus the current catalog.
"""

from farm_advisor.lifecycle.explain import ExplanationReconstructor
from farm_advisor.lifecycle.freshness import FreshnessPolicy
from farm_advisor.lifecycle.manager import LifecycleManager

__all__ = [
    "ExplanationReconstructor",
    "FreshnessPolicy",
    "LifecycleManager",
]
