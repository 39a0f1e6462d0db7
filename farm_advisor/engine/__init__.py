"""
Decision engine: evaluates authored rules against a farm-state snapshot and
produces ranked, explainable recommendation candidates.

Modules
-------
conditions   : resolve_field() + evaluate() — total condition-tree evaluator,
               no I/O and no clock reads.
scorer       : priority / confidence / impact / validity / reasons / templates
               for one matched rule — pure functions.
ranker       : dedupe_candidates() + apply_supersession() + rank_candidates().
rules_engine : RulesEngine — catalog walk, targeting expansion and per-rule
               failure isolation.
"""
