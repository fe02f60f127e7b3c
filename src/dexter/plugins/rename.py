"""Batch rename via f2, or a single explicit rename via mv."""

from __future__ import annotations

import posixpath
from collections.abc import Mapping
from typing import Any

from dexter.plugins.base import CandidateCommand, Plugin


class RenamePlugin(Plugin):
    id = "rename"
    program = "f2"
    aliases = ("f2", "mv", "batch_rename")
    description = "A fast, safe batch renamer (f2), or mv for a single file."
    router_doc = (
        "Best for renaming files: one file to a new name, or batch find/replace "
        "(optionally regex) across many file names."
    )
    parameters = {
        "source": "existing file name, for a single rename",
        "target": "new file name, for a single rename",
        "find": "text or regex to search for in file names, for a batch rename",
        "replace": "replacement text, for a batch rename",
        "paths": "optional list of files the batch rename is limited to",
        "regex": "true if 'find' is a regular expression",
    }
    install_hint = "brew install f2  (or: go install github.com/ayoisaiah/f2/v2/cmd/f2@latest)"

    def build_command(self, parameters: Mapping[str, Any]) -> CandidateCommand:
        if parameters.get("source") or parameters.get("target"):
            return self._single(parameters)
        if parameters.get("find"):
            return self._batch(parameters)
        raise self.fail("need either source/target or find/replace")

    def _single(self, parameters: Mapping[str, Any]) -> CandidateCommand:
        source = self.path_param(parameters, "source")
        target = self.path_param(parameters, "target")
        for label, path in (("source", source), ("target", target)):
            self._check_scoped(label, path)
        if posixpath.normpath(source) == posixpath.normpath(target):
            raise self.fail("source and target are the same")
        # -n: never overwrite an existing file
        return self.command(["mv", "-n", "--", source, target], f"Rename {source} to {target}")

    def _batch(self, parameters: Mapping[str, Any]) -> CandidateCommand:
        find = self.text_param(parameters, "find")
        replace = self.text_param(parameters, "replace", required=False) or ""
        paths = self.list_param(parameters, "paths")
        for path in paths:
            self._check_scoped("paths", path)
        argv = ["f2", "-f", find, "-r", replace]
        if not self.bool_param(parameters, "regex", default=True):
            argv.append("--string-mode")
        argv.append("-x")
        argv.extend(paths)
        scope = ", ".join(paths) if paths else "the current directory"
        return self.command(argv, f"Replace '{find}' with '{replace}' in names under {scope}")

    def _check_scoped(self, label: str, path: str) -> None:
        if path.startswith("/") or path.startswith("~"):
            raise self.fail(f"{label} must be relative to the working directory: {path}")
        if ".." in path.split("/"):
            raise self.fail(f"{label} may not leave the working directory: {path}")
