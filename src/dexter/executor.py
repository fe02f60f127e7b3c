"""Confirmation-gated execution engine.

State machine (see VALID_TRANSITIONS):

    PROPOSED -> AWAITING_CONFIRMATION -> RUNNING -> SUCCEEDED | FAILED
        \\                 \\
         +-> CANCELLED      +-> CANCELLED

A denied command never becomes a record: `propose` raises SafetyDenied.
Nothing runs without an explicit approval, and a finished record is never
run again. Once the process has started, a cancel request is recorded but
the process is left to finish on its own.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from dexter.errors import InvalidTransition, ProcessSpawnError, SafetyDenied
from dexter.plugins.base import CandidateCommand
from dexter.safety import SafetyValidator, SafetyVerdict

logger = logging.getLogger(__name__)

DEFAULT_MAX_OUTPUT_BYTES = 64 * 1024
READ_CHUNK = 4096
COMMAND_NOT_FOUND = 127
# the shell's "cannot execute" status
CANNOT_EXECUTE = 126


class ExecutionState(Enum):
    PROPOSED = "proposed"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


VALID_TRANSITIONS: dict[ExecutionState, set[ExecutionState]] = {
    ExecutionState.PROPOSED: {ExecutionState.AWAITING_CONFIRMATION, ExecutionState.CANCELLED},
    ExecutionState.AWAITING_CONFIRMATION: {ExecutionState.RUNNING, ExecutionState.CANCELLED},
    ExecutionState.RUNNING: {ExecutionState.SUCCEEDED, ExecutionState.FAILED},
    ExecutionState.SUCCEEDED: set(),
    ExecutionState.FAILED: set(),
    ExecutionState.CANCELLED: set(),
}

TERMINAL_STATES = frozenset(s for s, targets in VALID_TRANSITIONS.items() if not targets)


@dataclass(frozen=True)
class ExecutionOutcome:
    state: ExecutionState
    exit_code: int | None = None

    def __str__(self) -> str:
        if self.state is ExecutionState.SUCCEEDED:
            return "Succeeded"
        if self.state is ExecutionState.FAILED:
            return f"Failed({self.exit_code})"
        return "Cancelled"


@dataclass
class ExecutionRecord:
    """One proposed command and everything that happened to it."""

    plugin_id: str
    command: str
    argv: tuple[str, ...]
    summary: str
    cwd: str
    id: str = field(default_factory=lambda: f"exec-{uuid.uuid4().hex[:8]}")
    state: ExecutionState = ExecutionState.PROPOSED
    created_at: float = field(default_factory=time.time)
    started_at: float | None = None
    finished_at: float | None = None
    exit_code: int | None = None
    output: str = ""
    output_truncated: bool = False
    cancel_requested: bool = False
    transitions: list[dict] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def outcome(self) -> ExecutionOutcome | None:
        if not self.is_terminal:
            return None
        return ExecutionOutcome(self.state, self.exit_code)

    @property
    def duration(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return self.finished_at - self.started_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "plugin": self.plugin_id,
            "command": self.command,
            "cwd": self.cwd,
            "state": self.state.value,
            "exit_code": self.exit_code,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "output_truncated": self.output_truncated,
            "cancel_requested": self.cancel_requested,
            "transitions": list(self.transitions),
        }


ConfirmFn = Callable[[ExecutionRecord], "bool | Awaitable[bool]"]


class ExecutionEngine:
    """Turns approved candidate commands into supervised processes."""

    def __init__(
        self,
        validator: SafetyValidator | None = None,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
    ):
        self.validator = validator or SafetyValidator()
        self.max_output_bytes = max_output_bytes
        self.records: list[ExecutionRecord] = []

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _transition(self, record: ExecutionRecord, target: ExecutionState) -> None:
        """Move a record to `target`.

        Raises InvalidTransition if VALID_TRANSITIONS does not allow it.
        """
        allowed = VALID_TRANSITIONS[record.state]
        if target not in allowed:
            raise InvalidTransition(
                f"Invalid transition: {record.state.value} -> {target.value} "
                f"(allowed: {sorted(s.value for s in allowed)})"
            )
        prev = record.state
        record.state = target
        record.transitions.append({
            "from": prev.value,
            "to": target.value,
            "timestamp": time.time(),
        })
        logger.info(f"Execution {record.id}: {prev.value} -> {target.value}")

    def propose(
        self,
        candidate: CandidateCommand,
        verdict: SafetyVerdict | None = None,
        cwd: str | None = None,
    ) -> ExecutionRecord:
        """Create a PROPOSED record for an allowed command.

        The command is checked again here; a Deny from either the supplied
        verdict or the re-check raises SafetyDenied and creates no record.
        """
        if verdict is not None and verdict.denied:
            raise SafetyDenied(candidate.text, verdict)
        current = self.validator.check_candidate(candidate)
        if current.denied:
            raise SafetyDenied(candidate.text, current)

        record = ExecutionRecord(
            plugin_id=candidate.plugin_id,
            command=candidate.text,
            argv=candidate.argv,
            summary=candidate.summary,
            cwd=cwd or os.getcwd(),
        )
        self.records.append(record)
        logger.info(f"Execution {record.id} proposed: {record.command}")
        return record

    def request_confirmation(self, record: ExecutionRecord) -> None:
        self._transition(record, ExecutionState.AWAITING_CONFIRMATION)

    def cancel(self, record: ExecutionRecord) -> bool:
        """Cancel before spawn. Returns False if the record was already running or done."""
        if record.state in (ExecutionState.PROPOSED, ExecutionState.AWAITING_CONFIRMATION):
            self._transition(record, ExecutionState.CANCELLED)
            record.finished_at = time.time()
            return True
        if record.state is ExecutionState.RUNNING:
            record.cancel_requested = True
            logger.info(f"Execution {record.id}: cancel requested while running; process continues")
        return False

    async def confirm_and_run(self, record: ExecutionRecord, confirm: ConfirmFn) -> ExecutionRecord:
        """Ask `confirm` for approval, then run or cancel."""
        self.request_confirmation(record)
        approved = confirm(record)
        if inspect.isawaitable(approved):
            approved = await approved
        if not approved:
            self.cancel(record)
            return record
        return await self.run(record)

    # ------------------------------------------------------------------
    # Process supervision
    # ------------------------------------------------------------------

    async def run(self, record: ExecutionRecord) -> ExecutionRecord:
        """Spawn the approved command and wait for it to exit.

        The record must be AWAITING_CONFIRMATION. Raises ProcessSpawnError
        if the host cannot create the process at all.
        """
        if record.is_terminal:
            raise InvalidTransition(f"Execution {record.id} already finished ({record.state.value})")
        self._transition(record, ExecutionState.RUNNING)
        record.started_at = time.time()

        if not os.path.isdir(record.cwd):
            record.output = f"working directory no longer exists: {record.cwd}"
            self._finish(record, CANNOT_EXECUTE)
            return record

        try:
            process = await asyncio.create_subprocess_exec(
                *record.argv,
                cwd=record.cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except FileNotFoundError:
            record.output = f"{record.argv[0]}: command not found"
            self._finish(record, COMMAND_NOT_FOUND)
            return record
        except OSError as e:
            record.output = str(e)
            self._finish(record, -1)
            raise ProcessSpawnError(f"Could not start {record.argv[0]}: {e}") from e

        output, dropped = await self._read_bounded(process.stdout)
        exit_code = await process.wait()
        record.output = output.decode("utf-8", errors="replace")
        if dropped:
            record.output_truncated = True
            record.output += f"\n...[output truncated: {dropped} more bytes]"
        if record.cancel_requested:
            logger.info(f"Execution {record.id}: ran to completion despite cancel request")
        self._finish(record, exit_code)
        return record

    async def _read_bounded(self, stream: asyncio.StreamReader) -> tuple[bytes, int]:
        """Read a stream to EOF, keeping at most max_output_bytes."""
        kept = bytearray()
        dropped = 0
        while True:
            chunk = await stream.read(READ_CHUNK)
            if not chunk:
                break
            room = self.max_output_bytes - len(kept)
            if room > 0:
                kept.extend(chunk[:room])
            dropped += max(0, len(chunk) - max(room, 0))
        return bytes(kept), dropped

    def _finish(self, record: ExecutionRecord, exit_code: int) -> None:
        record.exit_code = exit_code
        record.finished_at = time.time()
        target = ExecutionState.SUCCEEDED if exit_code == 0 else ExecutionState.FAILED
        self._transition(record, target)
        logger.info(f"Execution {record.id} finished: {record.outcome}")
