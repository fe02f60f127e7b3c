"""Duplicate file discovery via jdupes."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from dexter.plugins.base import CandidateCommand, Plugin

MODES = ("list", "summary", "sizes", "unique", "json", "delete")

# Linking, dedupe and the unsafe speed shortcuts are never emitted.
_MODE_FLAGS = {
    "list": [],
    "summary": ["-m"],
    "sizes": ["-S"],
    "unique": ["-u"],
    "json": ["-j"],
    # keeps the first file of each set; -N answers the per-set prompt
    "delete": ["-d", "-N"],
}


class JdupesPlugin(Plugin):
    id = "jdupes"
    program = "jdupes"
    aliases = ("duplicates", "dupes", "fdupes")
    description = "Finds duplicate files, with a controlled delete mode that keeps one copy."
    router_doc = (
        "Best for scanning directories for duplicate files, summarizing the space they "
        "use, listing unique files, and deleting duplicates while keeping one copy."
    )
    parameters = {
        "paths": "list of directories or files to scan",
        "mode": f"one of {', '.join(MODES)} (default list)",
        "recursive": "false to scan only the top level (default true)",
    }
    install_hint = "brew install jdupes  (Debian/Ubuntu: apt install jdupes)"

    def build_command(self, parameters: Mapping[str, Any]) -> CandidateCommand:
        paths = self.list_param(parameters, "paths")
        if not paths and parameters.get("path"):
            paths = self.list_param(parameters, "path")
        if not paths:
            raise self.fail("need at least one directory to scan")
        for path in paths:
            # jdupes reads '@file' arguments as option files
            if path.startswith("@"):
                raise self.fail(f"path may not start with '@': {path}")
        mode = self.choice_param(parameters, "mode", MODES) or "list"

        argv = ["jdupes"]
        if self.bool_param(parameters, "recursive", default=True):
            argv.append("-r")
        argv += _MODE_FLAGS[mode]
        argv += paths
        scope = ", ".join(paths)
        if mode == "delete":
            return self.command(argv, f"Delete duplicate files under {scope}, keeping the first copy")
        return self.command(argv, f"Find duplicate files under {scope} ({mode})")
