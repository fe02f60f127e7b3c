"""Dexter: a terminal copilot that turns plain requests into confirmed shell commands."""

__version__ = "0.1.0"

from dexter.config import DexterConfig, ModelEntry, ProviderConfig
from dexter.errors import (
    ConfigPersistFailed,
    DexterError,
    ExecutionFailed,
    FallbackExhausted,
    ParameterValidationFailed,
    ProcessSpawnError,
    RoutingUnresolved,
    SafetyDenied,
)
from dexter.executor import ExecutionEngine, ExecutionRecord, ExecutionState
from dexter.fallback import FallbackManager
from dexter.history import HistoryStore
from dexter.plugins import CandidateCommand, Plugin, PluginRegistry, default_registry
from dexter.router import IntentRouter
from dexter.safety import SafetyValidator, SafetyVerdict
from dexter.session import CopilotSession, RequestStatus
from dexter.wizard import SetupWizard, WizardStep

__all__ = [
    "DexterConfig",
    "ModelEntry",
    "ProviderConfig",
    "ConfigPersistFailed",
    "DexterError",
    "ExecutionFailed",
    "FallbackExhausted",
    "ParameterValidationFailed",
    "ProcessSpawnError",
    "RoutingUnresolved",
    "SafetyDenied",
    "ExecutionEngine",
    "ExecutionRecord",
    "ExecutionState",
    "FallbackManager",
    "HistoryStore",
    "CandidateCommand",
    "Plugin",
    "PluginRegistry",
    "default_registry",
    "IntentRouter",
    "SafetyValidator",
    "SafetyVerdict",
    "CopilotSession",
    "RequestStatus",
    "SetupWizard",
    "WizardStep",
]
