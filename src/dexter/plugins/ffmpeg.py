"""Media transcoding via ffmpeg."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from dexter.plugins.base import CandidateCommand, Plugin, extension

VIDEO_CODECS = ("copy", "libx264", "libx265", "libvpx-vp9", "libaom-av1", "mpeg4")
AUDIO_CODECS = ("copy", "aac", "libmp3lame", "libopus", "libvorbis", "flac", "pcm_s16le")
AUDIO_ONLY_FORMATS = ("mp3", "wav", "flac", "m4a", "aac", "ogg", "opus")
CRF_CODECS = ("libx264", "libx265", "libvpx-vp9", "libaom-av1")

_TIME_RE = re.compile(r"^\d+(\.\d+)?$|^\d{1,2}:\d{2}:\d{2}(\.\d+)?$")
_SCALE_RE = re.compile(r"^-?\d+:-?\d+$")


class FFmpegPlugin(Plugin):
    id = "ffmpeg"
    program = "ffmpeg"
    description = "A complete, cross-platform solution to record, convert and stream audio and video."
    router_doc = "Best for video/audio conversion, resizing, trimming, compressing and extracting audio."
    parameters = {
        "input": "source media file",
        "output": "destination file; its extension picks the container",
        "video_codec": f"one of {', '.join(VIDEO_CODECS)}",
        "audio_codec": f"one of {', '.join(AUDIO_CODECS)}",
        "crf": "quality 0-51 for x264/x265/vp9/av1 (lower is better)",
        "scale": "WIDTH:HEIGHT, e.g. 1280:720 or -2:720",
        "start": "start offset, seconds or HH:MM:SS",
        "duration": "clip length, seconds or HH:MM:SS",
    }
    install_hint = "brew install ffmpeg"

    def build_command(self, parameters: Mapping[str, Any]) -> CandidateCommand:
        source = self.path_param(parameters, "input")
        output = self.path_param(parameters, "output")
        if source == output:
            raise self.fail("input and output must differ")
        out_ext = extension(output)
        if not out_ext:
            raise self.fail("output needs a file extension")
        audio_only = out_ext in AUDIO_ONLY_FORMATS

        video_codec = self.choice_param(parameters, "video_codec", VIDEO_CODECS)
        audio_codec = self.choice_param(parameters, "audio_codec", AUDIO_CODECS)
        if audio_only and video_codec:
            raise self.fail(f"video codec '{video_codec}' makes no sense for .{out_ext} output")
        if audio_codec == "libmp3lame" and out_ext not in ("mp3", "mkv", "avi"):
            raise self.fail(f"libmp3lame cannot be muxed into .{out_ext}")

        crf = parameters.get("crf")
        if crf is not None:
            try:
                crf = int(crf)
            except (TypeError, ValueError):
                raise self.fail("crf must be an integer") from None
            if not 0 <= crf <= 51:
                raise self.fail("crf must be between 0 and 51")
            if video_codec not in CRF_CODECS:
                raise self.fail("crf needs video_codec libx264, libx265, libvpx-vp9 or libaom-av1")

        scale = self.text_param(parameters, "scale", required=False)
        if scale and (audio_only or not _SCALE_RE.match(scale)):
            raise self.fail(f"invalid scale '{scale}'")
        if scale and video_codec == "copy":
            raise self.fail("cannot scale while copying the video stream")

        argv = ["ffmpeg", "-hide_banner", "-n"]
        start = self._time(parameters, "start")
        if start:
            argv += ["-ss", start]
        argv += ["-i", source]
        duration = self._time(parameters, "duration")
        if duration:
            argv += ["-t", duration]
        if audio_only:
            argv.append("-vn")
        if video_codec:
            argv += ["-c:v", video_codec]
        if crf is not None:
            argv += ["-crf", str(crf)]
        if scale:
            argv += ["-vf", f"scale={scale}"]
        if audio_codec:
            argv += ["-c:a", audio_codec]
        argv.append(output)
        return self.command(argv, f"Convert {source} to {output}")

    def _time(self, parameters: Mapping[str, Any], name: str) -> str | None:
        value = self.text_param(parameters, name, required=False)
        if value is not None and not _TIME_RE.match(value):
            raise self.fail(f"{name} must be seconds or HH:MM:SS, got '{value}'")
        return value
