"""Media download via yt-dlp."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlparse

from dexter.plugins.base import CandidateCommand, Plugin

AUDIO_FORMATS = ("mp3", "m4a", "opus", "wav", "flac", "best")

_FORMAT_RE = re.compile(r"^[A-Za-z0-9_+/\[\]<>=*.-]+$")


class YtDlpPlugin(Plugin):
    id = "yt-dlp"
    program = "yt-dlp"
    aliases = ("ytdlp", "youtube-dl", "download")
    description = "A feature-rich command-line audio/video downloader."
    router_doc = "Best for downloading videos or audio from YouTube and many other sites."
    parameters = {
        "url": "http(s) URL of the video or playlist",
        "audio_only": "true to extract audio only",
        "audio_format": f"one of {', '.join(AUDIO_FORMATS)} when audio_only",
        "format": "yt-dlp format selector, e.g. bestvideo+bestaudio",
        "output_template": "output file name template, e.g. %(title)s.%(ext)s",
    }
    install_hint = "brew install yt-dlp"

    def build_command(self, parameters: Mapping[str, Any]) -> CandidateCommand:
        url = self.text_param(parameters, "url")
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise self.fail(f"url must be an http(s) URL: {url}")

        audio_only = self.bool_param(parameters, "audio_only")
        audio_format = self.choice_param(parameters, "audio_format", AUDIO_FORMATS)
        if audio_format and not audio_only:
            audio_only = True
        fmt = self.text_param(parameters, "format", required=False)
        if fmt and audio_only:
            raise self.fail("format selector cannot be combined with audio_only")
        if fmt and not _FORMAT_RE.match(fmt):
            raise self.fail(f"invalid format selector '{fmt}'")
        template = self.path_param(parameters, "output_template", required=False)
        if template and (template.startswith("/") or ".." in template.split("/")):
            raise self.fail("output_template must stay inside the working directory")

        argv = ["yt-dlp"]
        if audio_only:
            argv.append("-x")
            if audio_format:
                argv += ["--audio-format", audio_format]
        if fmt:
            argv += ["-f", fmt]
        if template:
            argv += ["-o", template]
        argv += ["--", url]
        what = "audio" if audio_only else "media"
        return self.command(argv, f"Download {what} from {parsed.netloc}")
