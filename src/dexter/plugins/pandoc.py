"""Document conversion via pandoc."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from dexter.plugins.base import CandidateCommand, Plugin, extension

OUTPUT_EXTENSIONS = ("md", "markdown", "html", "htm", "docx", "odt", "pdf", "epub", "rst", "tex", "txt", "pptx")
FORMATS = (
    "markdown", "gfm", "commonmark", "html", "docx", "odt", "latex", "rst",
    "epub", "plain", "pptx", "org", "mediawiki",
)


class PandocPlugin(Plugin):
    id = "pandoc"
    program = "pandoc"
    description = "A universal document converter (Markdown/DOCX/HTML/PDF and more)."
    router_doc = (
        "Best for converting documents between formats (Markdown/DOCX/HTML/PDF) "
        "and generating PDF/Word/HTML from Markdown."
    )
    parameters = {
        "input": "source document",
        "output": "destination document; extension picks the format",
        "from_format": "optional input format override",
        "to_format": "optional output format override",
        "standalone": "true to produce a complete standalone document",
    }
    install_hint = "brew install pandoc  (PDF output also needs a TeX engine)"

    def build_command(self, parameters: Mapping[str, Any]) -> CandidateCommand:
        source = self.path_param(parameters, "input")
        output = self.path_param(parameters, "output")
        if source == output:
            raise self.fail("input and output must differ")
        from_format = self.choice_param(parameters, "from_format", FORMATS)
        to_format = self.choice_param(parameters, "to_format", FORMATS)
        if not to_format and extension(output) not in OUTPUT_EXTENSIONS:
            raise self.fail(f"cannot infer an output format from '{output}'; set to_format")

        # Filters run arbitrary code and are never emitted.
        argv = ["pandoc", source, "-o", output]
        if from_format:
            argv += ["-f", from_format]
        if to_format:
            argv += ["-t", to_format]
        if self.bool_param(parameters, "standalone"):
            argv.append("-s")
        return self.command(argv, f"Convert {source} to {output}")
