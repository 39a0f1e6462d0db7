"""
Service facade: the boundary the HTTP layer (and the CLI) call into.

Operations
----------
  list(user_id, params)              read path: cache or regenerate
  refresh(user_id, params)           forced regeneration
  explain(user_id, params)           justification for one recommendation
  feedback(user_id, params)          record feedback, apply transitions
  get(user_id, recommendation_id)    one recommendation with its feedback
  feedback_history(user_id, params)  the caller's feedback, newest first

Every operation returns a ``ServiceResult``; exceptions never cross this
boundary.  Raw params are validated through ``models.requests`` before any
evaluation runs.

Error mapping
-------------
  user_id is None              → unauthenticated
  pydantic validation failure  → validation_error (with per-field detail)
  NotFoundError                → not_found
  LifecycleConflictError       → conflict
  any other exception          → internal_error (logged with traceback)
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any, Optional, TypeVar

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from farm_advisor.catalog.registry import RuleCatalog
from farm_advisor.config import AppConfig
from farm_advisor.context.builder import ContextBuilder, weather_provider_from_config
from farm_advisor.context.weather_client import WeatherProvider
from farm_advisor.errors import DecisionSupportError, UnauthenticatedError, ValidationError
from farm_advisor.lifecycle.explain import ExplanationReconstructor
from farm_advisor.lifecycle.freshness import FreshnessPolicy
from farm_advisor.lifecycle.manager import LifecycleManager
from farm_advisor.models.requests import (
    ExplainRequest,
    FeedbackHistoryRequest,
    FeedbackRequest,
    ListRequest,
    RefreshRequest,
)
from farm_advisor.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorPayload(BaseModel):
    """Structured error returned to callers.

    Attributes:
        code: ``unauthenticated``, ``not_found``, ``validation_error``,
            ``conflict`` or ``internal_error``.
        message: Human-readable summary.
        fields: Per-field problems (validation errors only).
    """

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    fields: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_exception(cls, exc: DecisionSupportError) -> "ErrorPayload":
        return cls(
            code=exc.error_code,
            message=str(exc),
            fields=getattr(exc, "fields", {}) or {},
        )


class ServiceResult(BaseModel):
    """Outcome of one facade call: ``data`` on success, ``error`` otherwise."""

    model_config = ConfigDict(frozen=True)

    ok: bool
    data: Any = None
    error: Optional[ErrorPayload] = None

    @classmethod
    def success(cls, data: Any) -> "ServiceResult":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, exc: DecisionSupportError) -> "ServiceResult":
        return cls(ok=False, error=ErrorPayload.from_exception(exc))


class DecisionSupportService:
    """Wires context builder, engine, lifecycle manager and reconstructor.

    Args:
        conn: Request-scoped SQLite connection.
        catalog: Immutable rule catalog, built once per process.
        config: Application config.
        weather_provider: Override for the configured weather source.
        clock: Source of "now"; injectable for tests.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        catalog: RuleCatalog,
        config: Optional[AppConfig] = None,
        weather_provider: Optional[WeatherProvider] = None,
        freshness: Optional[FreshnessPolicy] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config or AppConfig()
        self.catalog = catalog
        builder = ContextBuilder(
            conn,
            self.config.context,
            weather_provider or weather_provider_from_config(self.config.weather, conn),
        )
        self.lifecycle = LifecycleManager(
            conn,
            catalog,
            builder,
            config=self.config.engine,
            freshness=freshness,
            clock=clock,
        )
        self.explainer = ExplanationReconstructor(self.lifecycle.repo, catalog)

    # ── Operations ────────────────────────────────────────────────────────────

    def list(self, user_id: Optional[str], params: Optional[Mapping[str, Any]] = None) -> ServiceResult:
        def op(uid: str) -> Any:
            request = ListRequest.model_validate(dict(params or {}))
            return self.lifecycle.get_or_refresh(uid, request)

        return self._run("list", user_id, op)

    def refresh(self, user_id: Optional[str], params: Optional[Mapping[str, Any]] = None) -> ServiceResult:
        def op(uid: str) -> Any:
            request = RefreshRequest.model_validate(dict(params or {}))
            return self.lifecycle.refresh(uid, request.farm_id)

        return self._run("refresh", user_id, op)

    def explain(self, user_id: Optional[str], params: Mapping[str, Any]) -> ServiceResult:
        def op(uid: str) -> Any:
            request = ExplainRequest.model_validate(dict(params))
            return self.explainer.explain(uid, request.recommendation_id)

        return self._run("explain", user_id, op)

    def feedback(self, user_id: Optional[str], params: Mapping[str, Any]) -> ServiceResult:
        def op(uid: str) -> Any:
            request = FeedbackRequest.model_validate(dict(params))
            return self.lifecycle.apply_feedback(uid, request)

        return self._run("feedback", user_id, op)

    def get(self, user_id: Optional[str], recommendation_id: str) -> ServiceResult:
        def op(uid: str) -> Any:
            request = ExplainRequest.model_validate({"recommendation_id": recommendation_id})
            return self.lifecycle.get_detail(uid, request.recommendation_id)

        return self._run("get", user_id, op)

    def feedback_history(
        self,
        user_id: Optional[str],
        params: Optional[Mapping[str, Any]] = None,
    ) -> ServiceResult:
        def op(uid: str) -> Any:
            request = FeedbackHistoryRequest.model_validate(dict(params or {}))
            return self.lifecycle.feedback_history(uid, request.recommendation_id)

        return self._run("feedback_history", user_id, op)

    # ── Error boundary ────────────────────────────────────────────────────────

    def _run(self, operation: str, user_id: Optional[str], op: Callable[[str], T]) -> ServiceResult:
        if not user_id:
            return ServiceResult.failure(UnauthenticatedError())
        try:
            return ServiceResult.success(op(user_id))
        except pydantic.ValidationError as exc:
            return ServiceResult.failure(ValidationError.from_pydantic(exc))
        except DecisionSupportError as exc:
            logger.info("%s failed for user=%s: %s", operation, user_id, exc)
            return ServiceResult.failure(exc)
        except Exception:
            logger.exception("Unexpected error in %s for user=%s", operation, user_id)
            return ServiceResult.failure(DecisionSupportError("An unexpected error occurred."))
