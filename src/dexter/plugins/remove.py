"""File removal.

Builds whatever rm invocation the request describes. Whether that command
may run is decided by the safety validator, not here.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from dexter.plugins.base import CandidateCommand, Plugin


class RemovePlugin(Plugin):
    id = "remove"
    program = "rm"
    aliases = ("rm", "delete")
    description = "Remove files or directories."
    router_doc = "Deletes files or directories the user names explicitly."
    parameters = {
        "paths": "list of files or directories to delete",
        "recursive": "true to delete directories and their contents",
        "force": "true to ignore missing files and never prompt",
    }

    def build_command(self, parameters: Mapping[str, Any]) -> CandidateCommand:
        paths = self.list_param(parameters, "paths")
        if not paths and parameters.get("path"):
            paths = self.list_param(parameters, "path")
        if not paths:
            raise self.fail("missing required parameter 'paths'")
        argv = ["rm"]
        if self.bool_param(parameters, "recursive"):
            argv.append("-r")
        if self.bool_param(parameters, "force"):
            argv.append("-f")
        argv.append("--")
        argv.extend(paths)
        return self.command(argv, f"Delete {', '.join(paths)}")
