"""Tests for dexter.executor: confirmation gate, state machine, process supervision."""

import asyncio
import sys

import pytest

from dexter.errors import InvalidTransition, SafetyDenied
from dexter.executor import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    ExecutionEngine,
    ExecutionState,
)
from dexter.plugins.base import CandidateCommand
from dexter.safety import RiskCategory, SafetyVerdict


def python(code: str) -> CandidateCommand:
    return CandidateCommand("test", (sys.executable, "-c", code), "run a snippet")


def approve(record):
    return True


def decline(record):
    return False


@pytest.fixture
def engine():
    return ExecutionEngine()


class TestTransitions:

    def test_terminal_states_have_no_exits(self):
        assert TERMINAL_STATES == {ExecutionState.SUCCEEDED, ExecutionState.FAILED, ExecutionState.CANCELLED}
        for state in TERMINAL_STATES:
            assert VALID_TRANSITIONS[state] == set()

    def test_running_cannot_be_cancelled(self):
        assert ExecutionState.CANCELLED not in VALID_TRANSITIONS[ExecutionState.RUNNING]

    @pytest.mark.asyncio
    async def test_run_without_confirmation_is_invalid(self, engine, tmp_path):
        record = engine.propose(python("pass"), cwd=str(tmp_path))
        with pytest.raises(InvalidTransition) as exc:
            await engine.run(record)
        assert "proposed -> running" in str(exc.value)
        assert record.state is ExecutionState.PROPOSED


class TestPropose:

    def test_allowed_command_becomes_proposed(self, engine, tmp_path):
        record = engine.propose(python("pass"), cwd=str(tmp_path))
        assert record.state is ExecutionState.PROPOSED
        assert record.id.startswith("exec-")
        assert record.cwd == str(tmp_path)
        assert engine.records == [record]

    def test_denied_command_creates_no_record(self, engine):
        candidate = CandidateCommand("remove", ("rm", "-rf", "/"), "Delete /")
        with pytest.raises(SafetyDenied) as exc:
            engine.propose(candidate)
        assert exc.value.verdict.category is RiskCategory.RECURSIVE_DELETE
        assert engine.records == []

    def test_supplied_deny_is_honoured(self, engine):
        verdict = SafetyVerdict.deny(RiskCategory.MALFORMED, "upstream said no")
        with pytest.raises(SafetyDenied):
            engine.propose(python("pass"), verdict)
        assert engine.records == []

    def test_supplied_allow_is_rechecked(self, engine):
        candidate = CandidateCommand("remove", ("rm", "-r", "photos"), "Delete photos")
        with pytest.raises(SafetyDenied):
            engine.propose(candidate, SafetyVerdict.allow())


class TestConfirmAndRun:

    @pytest.mark.asyncio
    async def test_success(self, engine, tmp_path):
        record = engine.propose(python("print('hello')"), cwd=str(tmp_path))
        await engine.confirm_and_run(record, approve)

        assert record.state is ExecutionState.SUCCEEDED
        assert record.exit_code == 0
        assert record.output.strip() == "hello"
        assert str(record.outcome) == "Succeeded"
        assert record.duration is not None and record.duration >= 0
        assert [t["to"] for t in record.transitions] == ["awaiting_confirmation", "running", "succeeded"]

    @pytest.mark.asyncio
    async def test_decline_never_spawns(self, engine, tmp_path):
        marker = tmp_path / "ran"
        record = engine.propose(python(f"open({str(marker)!r}, 'w').close()"), cwd=str(tmp_path))
        await engine.confirm_and_run(record, decline)

        assert record.state is ExecutionState.CANCELLED
        assert record.exit_code is None
        assert not marker.exists()
        assert str(record.outcome) == "Cancelled"

    @pytest.mark.asyncio
    async def test_async_confirm(self, engine, tmp_path):
        async def confirm(record):
            await asyncio.sleep(0)
            return True

        record = engine.propose(python("pass"), cwd=str(tmp_path))
        await engine.confirm_and_run(record, confirm)
        assert record.state is ExecutionState.SUCCEEDED

    @pytest.mark.asyncio
    async def test_nonzero_exit_fails(self, engine, tmp_path):
        record = engine.propose(python("import sys; print('boom'); sys.exit(3)"), cwd=str(tmp_path))
        await engine.confirm_and_run(record, approve)

        assert record.state is ExecutionState.FAILED
        assert record.exit_code == 3
        assert "boom" in record.output
        assert str(record.outcome) == "Failed(3)"

    @pytest.mark.asyncio
    async def test_stderr_is_captured(self, engine, tmp_path):
        record = engine.propose(python("import sys; sys.stderr.write('oops')"), cwd=str(tmp_path))
        await engine.confirm_and_run(record, approve)
        assert "oops" in record.output

    @pytest.mark.asyncio
    async def test_runs_in_cwd(self, engine, tmp_path):
        record = engine.propose(python("import os; print(os.getcwd())"), cwd=str(tmp_path))
        await engine.confirm_and_run(record, approve)
        assert record.output.strip() == str(tmp_path.resolve())

    @pytest.mark.asyncio
    async def test_missing_program(self, engine, tmp_path):
        candidate = CandidateCommand("test", ("dexter-no-such-program-xyz", "--help"), "nothing")
        record = engine.propose(candidate, cwd=str(tmp_path))
        await engine.confirm_and_run(record, approve)

        assert record.state is ExecutionState.FAILED
        assert record.exit_code == 127
        assert "command not found" in record.output

    @pytest.mark.asyncio
    async def test_missing_working_directory(self, engine, tmp_path):
        gone = tmp_path / "gone"
        gone.mkdir()
        record = engine.propose(python("pass"), cwd=str(gone))
        gone.rmdir()
        await engine.confirm_and_run(record, approve)

        assert record.state is ExecutionState.FAILED
        assert record.exit_code == 126
        assert "working directory no longer exists" in record.output
        assert "command not found" not in record.output

    @pytest.mark.asyncio
    async def test_output_is_bounded(self, tmp_path):
        engine = ExecutionEngine(max_output_bytes=10)
        record = engine.propose(python("print('x' * 100)"), cwd=str(tmp_path))
        await engine.confirm_and_run(record, approve)

        assert record.output_truncated
        assert record.output.startswith("x" * 10)
        assert record.output.endswith("[output truncated: 91 more bytes]")

    @pytest.mark.asyncio
    async def test_finished_record_never_runs_again(self, engine, tmp_path):
        record = engine.propose(python("pass"), cwd=str(tmp_path))
        await engine.confirm_and_run(record, approve)
        with pytest.raises(InvalidTransition):
            await engine.run(record)
        assert record.state is ExecutionState.SUCCEEDED


class TestCancel:

    def test_cancel_before_confirmation(self, engine, tmp_path):
        record = engine.propose(python("pass"), cwd=str(tmp_path))
        assert engine.cancel(record) is True
        assert record.state is ExecutionState.CANCELLED
        assert engine.cancel(record) is False

    @pytest.mark.asyncio
    async def test_cancel_while_running_lets_process_finish(self, engine, tmp_path):
        record = engine.propose(python("import time; time.sleep(0.3); print('done')"), cwd=str(tmp_path))
        task = asyncio.create_task(engine.confirm_and_run(record, approve))
        for _ in range(200):
            if record.state is ExecutionState.RUNNING:
                break
            await asyncio.sleep(0.01)

        assert engine.cancel(record) is False
        assert record.cancel_requested
        await task
        assert record.state is ExecutionState.SUCCEEDED
        assert "done" in record.output
