"""Local speech-to-text via whisper.cpp."""

from __future__ import annotations

import re
import shutil
from collections.abc import Mapping
from typing import Any

from dexter.plugins.base import CandidateCommand, Plugin, extension

# Homebrew installs whisper-cli; older builds ship whisper-cpp.
EXECUTABLES = ("whisper-cli", "whisper-cpp")
AUDIO_EXTENSIONS = ("wav", "mp3", "ogg", "flac")
OUTPUT_FORMATS = {
    "txt": "-otxt",
    "srt": "-osrt",
    "vtt": "-ovtt",
    "json": "-oj",
    "csv": "-ocsv",
    "lrc": "-olrc",
}

_LANGUAGE_RE = re.compile(r"^(auto|[a-z]{2,3})$")


class WhisperCppPlugin(Plugin):
    id = "whisper-cpp"
    program = "whisper-cli"
    aliases = ("whisper", "whispercpp", "whisper-cli", "transcribe")
    description = "Local speech-to-text with whisper.cpp: transcripts and subtitles."
    router_doc = (
        "Best for transcribing or translating audio locally with whisper.cpp, "
        "writing TXT/SRT/VTT/JSON transcripts or subtitles."
    )
    parameters = {
        "model": "path to a ggml model file (.bin)",
        "input": "audio file (wav, mp3, ogg, flac)",
        "language": "spoken language code, e.g. en or de, or auto",
        "translate": "true to translate the speech to English",
        "formats": f"list of output formats: {', '.join(OUTPUT_FORMATS)} (default txt)",
        "output_prefix": "optional output path without extension",
    }
    install_hint = "brew install whisper-cpp  (models: https://huggingface.co/ggerganov/whisper.cpp)"

    def executable(self) -> str:
        for name in EXECUTABLES:
            if shutil.which(name):
                return name
        return EXECUTABLES[0]

    def is_installed(self) -> bool:
        return any(shutil.which(name) for name in EXECUTABLES)

    def build_command(self, parameters: Mapping[str, Any]) -> CandidateCommand:
        model = self.path_param(parameters, "model")
        if extension(model) != "bin":
            raise self.fail(f"model must be a ggml .bin file: {model}")
        source = self.path_param(parameters, "input")
        if extension(source) not in AUDIO_EXTENSIONS:
            raise self.fail(f"unsupported audio type: {source} (convert it to wav first)")

        formats = [item.lower() for item in self.list_param(parameters, "formats")] or ["txt"]
        for item in formats:
            if item not in OUTPUT_FORMATS:
                raise self.fail(f"unsupported output format '{item}'")

        # Grammar options are never emitted.
        argv = [self.executable(), "-m", model, "-f", source]
        language = self.text_param(parameters, "language", required=False)
        if language:
            language = language.lower()
            if not _LANGUAGE_RE.match(language):
                raise self.fail(f"invalid language code '{language}'")
            argv += ["-l", language]
        translate = self.bool_param(parameters, "translate")
        if translate:
            argv.append("-tr")
        argv += [OUTPUT_FORMATS[item] for item in dict.fromkeys(formats)]
        prefix = self.path_param(parameters, "output_prefix", required=False)
        if prefix:
            argv += ["-of", prefix]

        verb = "Translate" if translate else "Transcribe"
        return self.command(argv, f"{verb} {source} to {', '.join(dict.fromkeys(formats))}")
