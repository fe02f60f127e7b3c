"""Per-request routing context: the utterance plus what the model should know."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from dexter.plugins.base import PluginCapability
from dexter.plugins.registry import PluginRegistry

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILES = 20


@dataclass(frozen=True)
class FileContext:
    files: tuple[str, ...]
    summary: str


class ContextScanner:
    """Lists the working directory: visible entries, sorted, capped."""

    def scan(self, cwd: str | Path, max_files: int = DEFAULT_MAX_FILES) -> FileContext:
        root = Path(cwd)
        try:
            names = sorted(
                entry.name + ("/" if entry.is_dir() else "")
                for entry in root.iterdir()
                if not entry.name.startswith(".")
            )
        except OSError as e:
            logger.warning(f"Could not list {root}: {e}")
            return FileContext((), f"Directory {root} could not be read.")

        shown = tuple(names[:max_files])
        if not names:
            summary = f"Directory {root} is empty."
        elif len(names) > max_files:
            summary = f"Directory {root} has {len(names)} entries; showing the first {max_files}."
        else:
            summary = f"Directory {root} has {len(names)} entries."
        return FileContext(shown, summary)


@dataclass(frozen=True)
class RoutingContext:
    """Everything the router sends to the model for one request."""

    utterance: str
    cwd: str
    files: tuple[str, ...]
    summary: str
    capabilities: tuple[PluginCapability, ...]

    @classmethod
    def build(
        cls,
        utterance: str,
        cwd: str | Path,
        registry: PluginRegistry,
        max_files: int = DEFAULT_MAX_FILES,
        scanner: ContextScanner | None = None,
    ) -> RoutingContext:
        listing = (scanner or ContextScanner()).scan(cwd, max_files)
        return cls(
            utterance=utterance.strip(),
            cwd=str(cwd),
            files=listing.files,
            summary=listing.summary,
            capabilities=tuple(registry.capabilities()),
        )

    def format_for_prompt(self) -> str:
        lines = [f"Working directory: {self.cwd}", self.summary]
        lines.extend(f"  {name}" for name in self.files)
        return "\n".join(lines)
