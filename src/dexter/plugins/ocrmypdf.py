"""OCR text layers for scanned PDFs via ocrmypdf."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from dexter.plugins.base import CandidateCommand, Plugin, extension

MODES = ("default", "force", "skip", "redo")
INPUT_EXTENSIONS = ("pdf", "png", "jpg", "jpeg", "tif", "tiff")

# tesseract language codes, joined with '+'
_LANGUAGE_RE = re.compile(r"^[a-z]{3}(_[a-z]+)?(\+[a-z]{3}(_[a-z]+)?)*$")

_MODE_FLAGS = {
    "force": "--force-ocr",
    "skip": "--skip-text",
    "redo": "--redo-ocr",
}


class OcrmypdfPlugin(Plugin):
    id = "ocrmypdf"
    program = "ocrmypdf"
    aliases = ("ocr",)
    description = "Adds an OCR text layer to scanned PDF files."
    router_doc = "Best for making scanned PDFs searchable (OCR) with language selection and deskew."
    parameters = {
        "input": "scanned PDF or image",
        "output": "destination PDF",
        "language": "tesseract language code(s), e.g. eng or eng+deu",
        "mode": f"one of {', '.join(MODES)}: how to treat pages that already have text",
        "deskew": "true to straighten crooked pages",
        "optimize": "optimization level 0-3",
    }
    install_hint = "brew install ocrmypdf"

    def build_command(self, parameters: Mapping[str, Any]) -> CandidateCommand:
        source = self.path_param(parameters, "input")
        output = self.path_param(parameters, "output")
        if extension(source) not in INPUT_EXTENSIONS:
            raise self.fail(f"unsupported input type: {source}")
        if extension(output) != "pdf":
            raise self.fail(f"output must be a .pdf file: {output}")
        if source == output:
            raise self.fail("input and output must differ")

        language = self.text_param(parameters, "language", required=False)
        if language:
            language = language.lower()
            if not _LANGUAGE_RE.match(language):
                raise self.fail(f"invalid language code '{language}'")
        mode = self.choice_param(parameters, "mode", MODES) or "default"
        deskew = self.bool_param(parameters, "deskew")
        if deskew and mode == "redo":
            raise self.fail("deskew cannot be combined with redo mode")

        argv = ["ocrmypdf"]
        if language:
            argv += ["-l", language]
        if mode in _MODE_FLAGS:
            argv.append(_MODE_FLAGS[mode])
        if deskew:
            argv.append("--deskew")
        optimize = parameters.get("optimize")
        if optimize is not None:
            if str(optimize) not in ("0", "1", "2", "3"):
                raise self.fail("optimize must be 0, 1, 2 or 3")
            argv += ["-O", str(optimize)]
        argv += [source, output]
        return self.command(argv, f"OCR {source} into {output}")
