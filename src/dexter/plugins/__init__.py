"""Plugin adapters: one per external tool."""

from dexter.plugins.base import CandidateCommand, Plugin, PluginCapability
from dexter.plugins.registry import PluginRegistry, default_registry

__all__ = [
    "CandidateCommand",
    "Plugin",
    "PluginCapability",
    "PluginRegistry",
    "default_registry",
]
