"""Persistent command history and pins.

history.jsonl holds one JSON object per executed command, redacted before
it is written. A corrupt line is skipped, never fatal. history_pins.json
holds the pinned subset and is always rewritten atomically.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path

from dexter.config import DEXTER_HOME
from dexter.redaction import redact_sensitive_text

logger = logging.getLogger(__name__)

HISTORY_FILE = "history.jsonl"
PINS_FILE = "history_pins.json"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass(frozen=True)
class HistoryEntry:
    timestamp: str
    plugin: str
    command: str
    outcome: str = ""

    def same_as(self, other: HistoryEntry | PinnedEntry) -> bool:
        return (self.timestamp, self.plugin, self.command) == (
            other.timestamp, other.plugin, other.command
        )


@dataclass(frozen=True)
class PinnedEntry:
    timestamp: str
    plugin: str
    command: str
    pinned_at: str


@dataclass(frozen=True)
class HistoryItem:
    """An entry as shown to the user."""

    entry: HistoryEntry
    pinned: bool


def _entry_from(data: object) -> HistoryEntry | None:
    if not isinstance(data, dict):
        return None
    try:
        return HistoryEntry(
            timestamp=str(data["timestamp"]),
            plugin=str(data["plugin"]),
            command=str(data["command"]),
            outcome=str(data.get("outcome") or ""),
        )
    except KeyError:
        return None


class HistoryStore:
    """History and pins under one directory (default ~/.dexter)."""

    def __init__(self, base_dir: Path | None = None):
        self.base_dir = Path(base_dir) if base_dir else DEXTER_HOME
        self.history_path = self.base_dir / HISTORY_FILE
        self.pins_path = self.base_dir / PINS_FILE

    def record(self, plugin: str, command: str, outcome: str = "") -> HistoryEntry:
        """Append one redacted entry."""
        entry = HistoryEntry(_now(), plugin, redact_sensitive_text(command), outcome)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        with open(self.history_path, "a") as fh:
            fh.write(json.dumps(asdict(entry)) + "\n")
        return entry

    def load_entries(self) -> tuple[list[HistoryEntry], int]:
        """Return (entries oldest first, number of skipped bad lines)."""
        if not self.history_path.exists():
            return [], 0
        entries: list[HistoryEntry] = []
        skipped = 0
        for raw in self.history_path.read_bytes().splitlines():
            try:
                line = raw.decode("utf-8").strip()
            except UnicodeDecodeError:
                skipped += 1
                continue
            if not line:
                continue
            try:
                entry = _entry_from(json.loads(line))
            except json.JSONDecodeError:
                entry = None
            if entry is None:
                skipped += 1
                continue
            entries.append(entry)
        if skipped:
            logger.warning(f"Skipped {skipped} invalid history line(s) in {self.history_path}")
        return entries, skipped

    def load_pins(self) -> list[PinnedEntry]:
        """Pinned entries. Raises ValueError if the pin file is corrupt."""
        if not self.pins_path.exists():
            return []
        text = self.pins_path.read_text().strip()
        if not text:
            return []
        try:
            data = json.loads(text)
            return [PinnedEntry(**item) for item in data]
        except (json.JSONDecodeError, TypeError) as e:
            raise ValueError(f"Invalid pin history JSON at {self.pins_path}: {e}") from e

    def _load_pins_or_empty(self) -> list[PinnedEntry]:
        try:
            return self.load_pins()
        except ValueError as e:
            logger.warning(f"Pin file is invalid, rebuilding from empty: {e}")
            return []

    def set_pin(self, entry: HistoryEntry) -> None:
        pins = [p for p in self._load_pins_or_empty() if not entry.same_as(p)]
        pins.append(PinnedEntry(entry.timestamp, entry.plugin, entry.command, _now()))
        self._write_pins(pins)

    def unset_pin(self, entry: HistoryEntry) -> None:
        existed = self.pins_path.exists()
        pins = [p for p in self._load_pins_or_empty() if not entry.same_as(p)]
        if not existed and not pins:
            return
        self._write_pins(pins)

    def _write_pins(self, pins: list[PinnedEntry]) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".pins-", suffix=".tmp", dir=self.base_dir)
        try:
            with os.fdopen(fd, "w") as fh:
                json.dump([asdict(p) for p in pins], fh, indent=2)
            os.replace(tmp_name, self.pins_path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def merged_items(self) -> list[HistoryItem]:
        """Pinned entries first (most recently pinned first), then the rest newest first."""
        entries, _ = self.load_entries()
        ordered = sorted(
            enumerate(self._load_pins_or_empty()),
            key=lambda item: (item[1].pinned_at, item[0]),
            reverse=True,
        )
        pins = [pin for _, pin in ordered]
        items = []
        for pin in pins:
            match = next((e for e in entries if e.same_as(pin)), None)
            items.append(HistoryItem(match or HistoryEntry(pin.timestamp, pin.plugin, pin.command), True))
        for entry in reversed(entries):
            if not any(entry.same_as(p) for p in pins):
                items.append(HistoryItem(entry, False))
        return items
