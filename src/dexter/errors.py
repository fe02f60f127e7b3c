"""Error taxonomy for the request pipeline.

Every error here is recoverable at the boundary that detects it and is
surfaced to the user as a message. The one exception is ProcessSpawnError,
which abandons the current request.
"""

from __future__ import annotations

from typing import Any


class DexterError(Exception):
    """Base class for user-visible pipeline errors."""

    label = "error"

    def user_message(self) -> str:
        return str(self)


class RoutingUnresolved(DexterError):
    """The model output named no usable plugin and no clarification."""

    label = "could not understand request"

    def __init__(self, reason: str = "", raw: str = ""):
        self.reason = reason or "no plugin or clarification could be recovered"
        self.raw = raw
        super().__init__(self.reason)

    def user_message(self) -> str:
        return f"Could not understand request: {self.reason}"


class FallbackExhausted(DexterError):
    """Every enabled model in the fallback chain failed."""

    label = "all models failed"

    def __init__(self, attempts: list[Any] | None = None):
        self.attempts = list(attempts or [])
        if self.attempts:
            detail = "; ".join(str(a) for a in self.attempts)
            message = f"All {len(self.attempts)} model(s) failed: {detail}"
        else:
            message = "No enabled models are configured. Run: dexter setup"
        super().__init__(message)


class ParameterValidationFailed(DexterError):
    """A plugin refused to build a command from the routed parameters."""

    label = "cannot build command"

    def __init__(self, plugin_id: str, reason: str):
        self.plugin_id = plugin_id
        self.reason = reason
        super().__init__(f"{plugin_id}: {reason}")

    def user_message(self) -> str:
        return f"Cannot build command: {self.reason}"


class SafetyDenied(DexterError):
    """The safety validator refused a command. Never overridable."""

    label = "refused"

    def __init__(self, command: str, verdict: Any):
        self.command = command
        self.verdict = verdict
        super().__init__(f"{verdict.category.value}: {verdict.reason}")

    @property
    def reason(self) -> str:
        return self.verdict.reason

    def user_message(self) -> str:
        return f"Refused ({self.verdict.category.value}): {self.verdict.reason}"


class ExecutionFailed(DexterError):
    """The process ran but exited non-zero."""

    label = "command failed"

    def __init__(self, exit_code: int, output: str = ""):
        self.exit_code = exit_code
        self.output = output
        super().__init__(f"Command exited with status {exit_code}")


class ConfigPersistFailed(DexterError):
    """Saving configuration failed; the previous file is still authoritative."""

    label = "could not save settings"


class ProcessSpawnError(DexterError):
    """The host could not create the child process at all."""

    label = "could not start process"


class InvalidTransition(DexterError):
    """A state machine was asked for a transition its table does not allow."""
