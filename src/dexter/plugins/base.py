"""Plugin contract: turn routed parameters into a literal command line."""

from __future__ import annotations

import shlex
import shutil
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from dexter.errors import ParameterValidationFailed


@dataclass(frozen=True)
class CandidateCommand:
    """A built command. Immutable; rebuild from new parameters to change it."""

    plugin_id: str
    argv: tuple[str, ...]
    summary: str

    @property
    def program(self) -> str:
        return self.argv[0]

    @property
    def text(self) -> str:
        return shlex.join(self.argv)


@dataclass(frozen=True)
class PluginCapability:
    """What the router is told about a plugin."""

    plugin_id: str
    summary: str
    parameters: Mapping[str, str] = field(default_factory=dict)

    def prompt_line(self) -> str:
        params = ", ".join(f"{name} ({desc})" for name, desc in self.parameters.items())
        return f"- {self.plugin_id}: {self.summary}\n  parameters: {params or 'none'}"


class Plugin(ABC):
    """Adapter for one external tool."""

    id: str = ""
    program: str = ""
    description: str = ""
    router_doc: str = ""
    aliases: tuple[str, ...] = ()
    parameters: dict[str, str] = {}
    install_hint: str = ""

    def describe(self) -> PluginCapability:
        return PluginCapability(self.id, self.router_doc or self.description, dict(self.parameters))

    def is_installed(self) -> bool:
        return shutil.which(self.program) is not None

    @abstractmethod
    def build_command(self, parameters: Mapping[str, Any]) -> CandidateCommand:
        """Validate parameters and return the command, or raise ParameterValidationFailed."""

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------

    def fail(self, reason: str) -> ParameterValidationFailed:
        return ParameterValidationFailed(self.id, reason)

    def command(self, argv: list[str], summary: str) -> CandidateCommand:
        return CandidateCommand(self.id, tuple(argv), summary)

    def text_param(
        self, parameters: Mapping[str, Any], name: str, required: bool = True
    ) -> str | None:
        value = parameters.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            if required:
                raise self.fail(f"missing required parameter '{name}'")
            return None
        if not isinstance(value, (str, int, float)) or isinstance(value, bool):
            raise self.fail(f"parameter '{name}' must be text")
        text = str(value).strip()
        if "\x00" in text or "\n" in text:
            raise self.fail(f"parameter '{name}' contains control characters")
        return text

    def path_param(
        self, parameters: Mapping[str, Any], name: str, required: bool = True
    ) -> str | None:
        """A file path argument. Leading '-' would be read as an option."""
        path = self.text_param(parameters, name, required)
        if path is not None and path.startswith("-"):
            raise self.fail(f"'{name}' may not start with '-': {path}")
        return path

    def bool_param(self, parameters: Mapping[str, Any], name: str, default: bool = False) -> bool:
        value = parameters.get(name, default)
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in ("true", "yes", "1", "on"):
                return True
            if lowered in ("false", "no", "0", "off", ""):
                return False
        if isinstance(value, int):
            return bool(value)
        raise self.fail(f"parameter '{name}' must be true or false")

    def list_param(self, parameters: Mapping[str, Any], name: str) -> list[str]:
        value = parameters.get(name)
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, (list, tuple)):
            raise self.fail(f"parameter '{name}' must be a list")
        items = []
        for item in value:
            text = self.path_param({name: item}, name)
            items.append(text)
        return items

    def choice_param(
        self,
        parameters: Mapping[str, Any],
        name: str,
        choices: tuple[str, ...],
        required: bool = False,
    ) -> str | None:
        value = self.text_param(parameters, name, required)
        if value is None:
            return None
        value = value.lower()
        if value not in choices:
            raise self.fail(f"unsupported {name} '{value}' (expected one of: {', '.join(choices)})")
        return value


def extension(path: str) -> str:
    """Lower-case extension without the dot, or ''."""
    name = path.rsplit("/", 1)[-1]
    if "." not in name.lstrip("."):
        return ""
    return name.rsplit(".", 1)[-1].lower()
