"""Structural PDF operations via qpdf."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from dexter.plugins.base import CandidateCommand, Plugin, extension

OPERATIONS = ("check", "linearize", "decrypt", "encrypt", "extract", "merge")

_PAGE_RANGE_RE = re.compile(r"^(z|r?\d+)(-(z|r?\d+))?(,(z|r?\d+)(-(z|r?\d+))?)*$")


class QpdfPlugin(Plugin):
    id = "qpdf"
    program = "qpdf"
    description = "Structural, content-preserving PDF transformations."
    router_doc = (
        "Best for merging PDFs, extracting page ranges, encrypting/decrypting, "
        "linearizing for the web and checking PDF structure."
    )
    parameters = {
        "operation": f"one of {', '.join(OPERATIONS)}",
        "input": "source PDF (merge: list of PDFs in 'inputs')",
        "inputs": "list of PDFs to merge, in order",
        "output": "destination PDF (not needed for check)",
        "pages": "page range for extract, e.g. 1-3,5 or 2-z",
        "password": "password for decrypt or encrypt",
    }
    install_hint = "brew install qpdf"

    def build_command(self, parameters: Mapping[str, Any]) -> CandidateCommand:
        operation = self.choice_param(parameters, "operation", OPERATIONS, required=True)
        if operation == "merge":
            return self._merge(parameters)

        source = self._pdf(parameters, "input")
        if operation == "check":
            return self.command(["qpdf", "--check", source], f"Check the structure of {source}")

        output = self._pdf(parameters, "output")
        if output == source:
            raise self.fail("output must differ from input; qpdf does not edit in place here")

        if operation == "linearize":
            argv = ["qpdf", "--linearize", source, output]
            summary = f"Linearize {source} into {output}"
        elif operation == "decrypt":
            password = self.text_param(parameters, "password", required=False)
            argv = ["qpdf", "--decrypt"]
            if password:
                argv.append(f"--password={password}")
            argv += [source, output]
            summary = f"Remove encryption from {source} into {output}"
        elif operation == "encrypt":
            password = self.text_param(parameters, "password")
            argv = ["qpdf", "--encrypt", password, password, "256", "--", source, output]
            summary = f"Encrypt {source} with AES-256 into {output}"
        else:
            pages = self.text_param(parameters, "pages")
            if not _PAGE_RANGE_RE.match(pages.replace(" ", "")):
                raise self.fail(f"invalid page range '{pages}'")
            argv = ["qpdf", source, "--pages", ".", pages.replace(" ", ""), "--", output]
            summary = f"Extract pages {pages} of {source} into {output}"
        return self.command(argv, summary)

    def _merge(self, parameters: Mapping[str, Any]) -> CandidateCommand:
        inputs = self.list_param(parameters, "inputs")
        if len(inputs) < 2:
            raise self.fail("merge needs at least two input PDFs")
        for item in inputs:
            if extension(item) != "pdf":
                raise self.fail(f"not a PDF: {item}")
        output = self._pdf(parameters, "output")
        if output in inputs:
            raise self.fail("output may not overwrite one of the inputs")
        argv = ["qpdf", "--empty", "--pages", *inputs, "--", output]
        return self.command(argv, f"Merge {len(inputs)} PDFs into {output}")

    def _pdf(self, parameters: Mapping[str, Any], name: str) -> str:
        path = self.path_param(parameters, name)
        if extension(path) != "pdf":
            raise self.fail(f"'{name}' must be a .pdf file: {path}")
        return path
