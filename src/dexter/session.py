"""One interactive copilot session: the request pipeline.

    utterance -> route -> build command -> safety check -> confirm -> run

Each stage finishes before the next begins and only one request is in
flight at a time. Every pipeline error is caught here and turned into a
RequestResult; only ProcessSpawnError escapes.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from dexter.config import DexterConfig
from dexter.context import RoutingContext
from dexter.errors import (
    DexterError,
    ExecutionFailed,
    FallbackExhausted,
    ParameterValidationFailed,
    RoutingUnresolved,
    SafetyDenied,
)
from dexter.executor import ConfirmFn, ExecutionEngine, ExecutionRecord, ExecutionState
from dexter.fallback import FallbackManager
from dexter.history import HistoryStore
from dexter.plugins.base import CandidateCommand
from dexter.plugins.registry import PluginRegistry, default_registry
from dexter.router import Clarify, ClarifyOption, IntentRouter, Route, RoutingDecision, Unresolved
from dexter.safety import SafetyValidator, SafetyVerdict

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, dict], None]


class RequestStatus(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUSED = "refused"
    CLARIFY = "clarify"
    UNRESOLVED = "unresolved"
    INVALID = "invalid"
    ERROR = "error"


@dataclass
class RequestResult:
    """What happened to one utterance."""

    utterance: str
    status: RequestStatus
    decision: RoutingDecision | None = None
    candidate: CandidateCommand | None = None
    verdict: SafetyVerdict | None = None
    record: ExecutionRecord | None = None
    error: DexterError | None = None

    @property
    def clarification(self) -> Clarify | None:
        return self.decision if isinstance(self.decision, Clarify) else None

    def message(self) -> str:
        if self.error is not None:
            return self.error.user_message()
        if self.status is RequestStatus.CLARIFY and self.clarification:
            return self.clarification.question
        if self.record is not None and self.record.outcome is not None:
            return str(self.record.outcome)
        return self.status.value


class CopilotSession:
    """Routes, builds, checks and (with approval) runs one request at a time."""

    def __init__(
        self,
        config: DexterConfig | Callable[[], DexterConfig],
        registry: PluginRegistry | None = None,
        fallback: FallbackManager | None = None,
        validator: SafetyValidator | None = None,
        engine: ExecutionEngine | None = None,
        history: HistoryStore | None = None,
        cwd: str | None = None,
    ):
        self._config_source = config if callable(config) else (lambda: config)
        self.registry = registry or default_registry()
        self.fallback = fallback or FallbackManager(self._config_source)
        self.router = IntentRouter(self.fallback, self.registry)
        self.validator = validator or SafetyValidator()
        preferences = self._config_source().preferences
        self.engine = engine or ExecutionEngine(self.validator, preferences.max_output_bytes)
        self.history = history
        self.cwd = cwd or os.getcwd()
        self._lock = asyncio.Lock()

    @property
    def records(self) -> list[ExecutionRecord]:
        return self.engine.records

    async def handle(
        self,
        utterance: str,
        confirm: ConfirmFn,
        callback: ProgressCallback | None = None,
    ) -> RequestResult:
        """Run one request end to end.

        `confirm(record)` is asked for approval (sync or async). `callback`
        receives (event_type, data) progress events.
        """
        async with self._lock:
            return await self._handle(utterance, confirm, callback or _no_progress)

    async def resolve_clarification(
        self,
        option: ClarifyOption,
        confirm: ConfirmFn,
        callback: ProgressCallback | None = None,
    ) -> RequestResult:
        """Re-run the pipeline with the request text the chosen option stands for."""
        return await self.handle(option.resolved_intent, confirm, callback)

    async def _handle(self, utterance: str, confirm: ConfirmFn, callback: ProgressCallback) -> RequestResult:
        utterance = utterance.strip()
        result = RequestResult(utterance, RequestStatus.ERROR)

        # 1. Route
        callback("routing", {"utterance": utterance})
        max_files = self._config_source().preferences.context_max_files
        context = RoutingContext.build(utterance, self.cwd, self.registry, max_files)
        try:
            decision = await self.router.route(utterance, context)
        except FallbackExhausted as e:
            result.error = e
            callback("error", {"stage": "routing", "error": e.user_message()})
            return result
        result.decision = decision

        if isinstance(decision, Clarify):
            result.status = RequestStatus.CLARIFY
            callback("clarify", {"question": decision.question, "options": [o.label for o in decision.options]})
            return result
        if isinstance(decision, Unresolved):
            result.status = RequestStatus.UNRESOLVED
            result.error = RoutingUnresolved(decision.reason, decision.raw)
            callback("unresolved", {"reason": decision.reason})
            return result

        # 2. Build
        assert isinstance(decision, Route)
        plugin = self.registry.get(decision.plugin_id)
        callback("routed", {"plugin": decision.plugin_id, "parameters": decision.parameters})
        try:
            candidate = plugin.build_command(decision.parameters)
        except ParameterValidationFailed as e:
            result.status = RequestStatus.INVALID
            result.error = e
            callback("invalid", {"plugin": decision.plugin_id, "reason": e.reason})
            return result
        result.candidate = candidate

        # 3. Safety
        verdict = self.validator.check_candidate(candidate)
        result.verdict = verdict
        callback("verdict", {"command": candidate.text, "allowed": verdict.allowed, "reason": verdict.reason})
        try:
            record = self.engine.propose(candidate, verdict, cwd=self.cwd)
        except SafetyDenied as e:
            result.status = RequestStatus.REFUSED
            result.error = e
            return result
        result.record = record

        # 4. Confirm and run
        callback("proposed", {"command": record.command, "summary": record.summary})
        await self.engine.confirm_and_run(record, confirm)
        result.status = _STATUS_BY_STATE[record.state]
        if record.state is ExecutionState.FAILED:
            result.error = ExecutionFailed(record.exit_code, record.output)
        if record.state is not ExecutionState.CANCELLED:
            self._record_history(record)
        callback("finished", {"outcome": str(record.outcome), "exit_code": record.exit_code})
        return result

    def _record_history(self, record: ExecutionRecord) -> None:
        if self.history is None:
            return
        try:
            self.history.record(record.plugin_id, record.command, str(record.outcome))
        except OSError as e:
            logger.warning(f"Could not write history: {e}")


_STATUS_BY_STATE = {
    ExecutionState.SUCCEEDED: RequestStatus.SUCCEEDED,
    ExecutionState.FAILED: RequestStatus.FAILED,
    ExecutionState.CANCELLED: RequestStatus.CANCELLED,
}


def _no_progress(event_type: str, data: dict[str, Any]) -> None:
    pass
