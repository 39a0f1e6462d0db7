"""
Error taxonomy for the decision support engine.

Propagation policy
------------------
  ValidationError          — malformed input; raised before any evaluation,
                             propagates to the caller with field-level detail.
  NotFoundError            — recommendation / rule / user / farm absent *or*
                             not owned by the caller.  The two cases are never
                             distinguished in the message.
  UnauthenticatedError     — no caller identity was supplied.
  PartialEvaluationError   — one rule failed during an engine pass.  Absorbed
                             by the engine (logged, rule skipped).
  LifecycleConflictError   — a refresh lost a race on the per-user generation
                             marker or hit a locked database.  Retried once by
                             the lifecycle manager, then propagated.
  UpstreamUnavailableError — a fact sub-source failed.  Absorbed by the context
                             builder (neutral default substituted) unless the
                             sub-source is mandatory (identity).

The service facade converts every subclass into an ``ErrorPayload`` via
``error_code``; callers never see raw exceptions.
"""

from __future__ import annotations

from typing import Any, Optional


class DecisionSupportError(Exception):
    """Base class for all engine errors.

    Attributes:
        error_code: Stable machine-readable code used in error payloads.
    """

    error_code: str = "internal_error"


class ValidationError(DecisionSupportError):
    """Malformed input shape.

    Attributes:
        fields: Mapping of field name → human-readable problem.
    """

    error_code = "validation_error"

    def __init__(self, message: str, fields: Optional[dict[str, str]] = None) -> None:
        self.fields = dict(fields or {})
        super().__init__(message)

    @classmethod
    def from_pydantic(cls, exc: Any) -> "ValidationError":
        """Build from a ``pydantic.ValidationError``, keeping one message per field."""
        fields: dict[str, str] = {}
        for err in exc.errors():
            loc = ".".join(str(part) for part in err.get("loc", ())) or "__root__"
            fields.setdefault(loc, err.get("msg", "invalid value"))
        return cls("Request failed validation.", fields)


class NotFoundError(DecisionSupportError):
    """Resource is absent or not owned by the caller."""

    error_code = "not_found"

    def __init__(self, resource: str) -> None:
        self.resource = resource
        super().__init__(f"{resource} not found.")


class UnauthenticatedError(DecisionSupportError):
    """No authenticated caller identity."""

    error_code = "unauthenticated"

    def __init__(self) -> None:
        super().__init__("Authentication required.")


class PartialEvaluationError(DecisionSupportError):
    """A single rule failed while the rest of the catalog was evaluated.

    Attributes:
        rule_code: Code of the failing rule.
        entity_id: Entity the rule was being evaluated for, if any.
    """

    error_code = "partial_evaluation"

    def __init__(self, rule_code: str, entity_id: Optional[str], cause: BaseException) -> None:
        self.rule_code = rule_code
        self.entity_id = entity_id
        self.cause = cause
        super().__init__(
            f"Rule '{rule_code}' failed for entity={entity_id or 'farm'}: {cause!r}"
        )


class LifecycleConflictError(DecisionSupportError):
    """A concurrent refresh won the race for this user's active set."""

    error_code = "conflict"

    def __init__(self, user_id: str, detail: str = "") -> None:
        self.user_id = user_id
        message = f"Recommendation refresh for user '{user_id}' conflicted with another update."
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class UpstreamUnavailableError(DecisionSupportError):
    """A fact sub-source (weather, market, ...) could not be read.

    Attributes:
        source: Name of the failed sub-source.
    """

    error_code = "upstream_unavailable"

    def __init__(self, source: str, cause: Optional[BaseException] = None) -> None:
        self.source = source
        self.cause = cause
        detail = f": {cause!r}" if cause is not None else ""
        super().__init__(f"Fact source '{source}' unavailable{detail}")
