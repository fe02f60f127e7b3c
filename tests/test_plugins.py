"""Tests for dexter.plugins: parameter validation and argv construction."""

import pytest

from dexter.errors import ParameterValidationFailed
from dexter.plugins import PluginRegistry, default_registry
from dexter.plugins.base import CandidateCommand, extension
from dexter.plugins.ffmpeg import FFmpegPlugin
from dexter.plugins.jdupes import JdupesPlugin
from dexter.plugins.libvips import LibvipsPlugin
from dexter.plugins.ocrmypdf import OcrmypdfPlugin
from dexter.plugins.pandoc import PandocPlugin
from dexter.plugins.qpdf import QpdfPlugin
from dexter.plugins.remove import RemovePlugin
from dexter.plugins.rename import RenamePlugin
from dexter.plugins.whispercpp import WhisperCppPlugin
from dexter.plugins.ytdlp import YtDlpPlugin


def argv(plugin, **parameters):
    return list(plugin.build_command(parameters).argv)


def rejects(plugin, **parameters):
    with pytest.raises(ParameterValidationFailed) as exc:
        plugin.build_command(parameters)
    assert exc.value.plugin_id == plugin.id
    return exc.value.reason


class TestRegistry:

    def test_default_registry_ids(self):
        assert default_registry().ids == (
            "rename", "ffmpeg", "pandoc", "qpdf", "ocrmypdf", "yt-dlp",
            "jdupes", "libvips", "whisper-cpp", "remove",
        )

    def test_resolve_aliases_case_insensitive(self):
        registry = default_registry()
        assert registry.resolve("F2").id == "rename"
        assert registry.resolve(" ocr ").id == "ocrmypdf"
        assert registry.resolve("youtube-dl").id == "yt-dlp"
        assert registry.resolve("imagemagick") is None
        assert "mv" in registry

    def test_duplicate_ids_rejected(self):
        with pytest.raises(ValueError):
            PluginRegistry([QpdfPlugin(), QpdfPlugin()])

    def test_capabilities_describe_parameters(self):
        capability = RenamePlugin().describe()
        line = capability.prompt_line()
        assert line.startswith("- rename: ")
        assert "source (" in line

    def test_is_installed_uses_path(self, monkeypatch):
        monkeypatch.setattr("shutil.which", lambda name: None)
        assert not PandocPlugin().is_installed()
        monkeypatch.setattr("shutil.which", lambda name: f"/usr/local/bin/{name}")
        assert PandocPlugin().is_installed()


class TestCandidateCommand:

    def test_text_is_shell_quoted(self):
        candidate = CandidateCommand("rename", ("mv", "-n", "--", "my file.jpeg", "b.jpg"), "x")
        assert candidate.text == "mv -n -- 'my file.jpeg' b.jpg"
        assert candidate.program == "mv"

    @pytest.mark.parametrize("path,ext", [
        ("a.MP4", "mp4"), ("dir.d/file", ""), (".bashrc", ""), ("x.tar.gz", "gz"),
    ])
    def test_extension(self, path, ext):
        assert extension(path) == ext


class TestRenamePlugin:

    def test_single_rename(self):
        plugin = RenamePlugin()
        candidate = plugin.build_command({"source": "photo1.jpeg", "target": "photo1.jpg"})
        assert candidate.argv == ("mv", "-n", "--", "photo1.jpeg", "photo1.jpg")
        assert candidate.summary == "Rename photo1.jpeg to photo1.jpg"

    def test_batch_rename(self):
        assert argv(RenamePlugin(), find="jpeg", replace="jpg", regex=False) == [
            "f2", "-f", "jpeg", "-r", "jpg", "--string-mode", "-x",
        ]

    def test_batch_rename_scoped_paths(self):
        assert argv(RenamePlugin(), find=r"(\d+)", replace="img-$1", paths=["a.png", "b.png"])[-3:] == [
            "-x", "a.png", "b.png",
        ]

    @pytest.mark.parametrize("parameters", [
        {},
        {"source": "a.jpg"},
        {"source": "a.jpg", "target": "./a.jpg"},
        {"source": "/etc/hosts", "target": "hosts"},
        {"source": "a", "target": "../a"},
        {"source": "-rf", "target": "b"},
        {"source": "a\nb", "target": "c"},
    ])
    def test_rejects(self, parameters):
        rejects(RenamePlugin(), **parameters)


class TestFFmpegPlugin:

    def test_convert(self):
        assert argv(FFmpegPlugin(), input="talk.mov", output="talk.mp4") == [
            "ffmpeg", "-hide_banner", "-n", "-i", "talk.mov", "talk.mp4",
        ]

    def test_full_options(self):
        assert argv(
            FFmpegPlugin(), input="in.mov", output="out.mp4", video_codec="libx264",
            crf="23", scale="1280:-2", audio_codec="aac", start="00:01:00", duration=30,
        ) == [
            "ffmpeg", "-hide_banner", "-n", "-ss", "00:01:00", "-i", "in.mov", "-t", "30",
            "-c:v", "libx264", "-crf", "23", "-vf", "scale=1280:-2", "-c:a", "aac", "out.mp4",
        ]

    def test_extract_audio(self):
        assert argv(FFmpegPlugin(), input="talk.mp4", output="talk.mp3", audio_codec="libmp3lame") == [
            "ffmpeg", "-hide_banner", "-n", "-i", "talk.mp4", "-vn", "-c:a", "libmp3lame", "talk.mp3",
        ]

    @pytest.mark.parametrize("parameters", [
        {"input": "a.mp4", "output": "a.mp4"},
        {"input": "a.mp4", "output": "noext"},
        {"input": "a.mp4", "output": "a.mp3", "video_codec": "libx264"},
        {"input": "a.mp4", "output": "a.m4a", "audio_codec": "libmp3lame"},
        {"input": "a.mov", "output": "a.mp4", "crf": 60, "video_codec": "libx264"},
        {"input": "a.mov", "output": "a.mp4", "crf": 20},
        {"input": "a.mov", "output": "a.mp4", "scale": "big"},
        {"input": "a.mov", "output": "a.mp4", "scale": "640:480", "video_codec": "copy"},
        {"input": "a.mov", "output": "a.mp4", "video_codec": "h264_magic"},
        {"input": "a.mov", "output": "a.mp4", "start": "1 minute"},
    ])
    def test_rejects(self, parameters):
        rejects(FFmpegPlugin(), **parameters)


class TestPandocPlugin:

    def test_convert(self):
        assert argv(PandocPlugin(), input="notes.md", output="notes.docx", standalone="yes") == [
            "pandoc", "notes.md", "-o", "notes.docx", "-s",
        ]

    def test_explicit_formats(self):
        assert argv(PandocPlugin(), input="a.txt", output="a.out", from_format="gfm", to_format="html") == [
            "pandoc", "a.txt", "-o", "a.out", "-f", "gfm", "-t", "html",
        ]

    def test_unknown_output_extension(self):
        assert "to_format" in rejects(PandocPlugin(), input="a.md", output="a.xyz")

    def test_unknown_format(self):
        rejects(PandocPlugin(), input="a.md", output="a.html", to_format="klingon")


class TestQpdfPlugin:

    def test_check(self):
        assert argv(QpdfPlugin(), operation="check", input="a.pdf") == ["qpdf", "--check", "a.pdf"]

    def test_merge(self):
        assert argv(QpdfPlugin(), operation="merge", inputs=["a.pdf", "b.pdf"], output="ab.pdf") == [
            "qpdf", "--empty", "--pages", "a.pdf", "b.pdf", "--", "ab.pdf",
        ]

    def test_extract(self):
        assert argv(QpdfPlugin(), operation="extract", input="a.pdf", output="p.pdf", pages="1-3, 5") == [
            "qpdf", "a.pdf", "--pages", ".", "1-3,5", "--", "p.pdf",
        ]

    def test_encrypt(self):
        assert argv(QpdfPlugin(), operation="encrypt", input="a.pdf", output="e.pdf", password="pw") == [
            "qpdf", "--encrypt", "pw", "pw", "256", "--", "a.pdf", "e.pdf",
        ]

    def test_decrypt(self):
        assert argv(QpdfPlugin(), operation="decrypt", input="a.pdf", output="d.pdf", password="pw") == [
            "qpdf", "--decrypt", "--password=pw", "a.pdf", "d.pdf",
        ]

    @pytest.mark.parametrize("parameters", [
        {"input": "a.pdf"},
        {"operation": "explode", "input": "a.pdf"},
        {"operation": "merge", "inputs": ["a.pdf"], "output": "b.pdf"},
        {"operation": "merge", "inputs": ["a.pdf", "b.doc"], "output": "c.pdf"},
        {"operation": "merge", "inputs": ["a.pdf", "b.pdf"], "output": "a.pdf"},
        {"operation": "linearize", "input": "a.pdf", "output": "a.pdf"},
        {"operation": "linearize", "input": "a.pdf", "output": "a.txt"},
        {"operation": "extract", "input": "a.pdf", "output": "b.pdf", "pages": "first three"},
        {"operation": "encrypt", "input": "a.pdf", "output": "b.pdf"},
    ])
    def test_rejects(self, parameters):
        rejects(QpdfPlugin(), **parameters)


class TestOcrmypdfPlugin:

    def test_ocr(self):
        assert argv(
            OcrmypdfPlugin(), input="scan.pdf", output="scan-ocr.pdf",
            language="ENG+deu", mode="skip", deskew=True, optimize=2,
        ) == [
            "ocrmypdf", "-l", "eng+deu", "--skip-text", "--deskew", "-O", "2", "scan.pdf", "scan-ocr.pdf",
        ]

    @pytest.mark.parametrize("parameters", [
        {"input": "scan.docx", "output": "out.pdf"},
        {"input": "scan.pdf", "output": "out.txt"},
        {"input": "scan.pdf", "output": "scan.pdf"},
        {"input": "scan.pdf", "output": "o.pdf", "language": "english"},
        {"input": "scan.pdf", "output": "o.pdf", "mode": "redo", "deskew": True},
        {"input": "scan.pdf", "output": "o.pdf", "optimize": 9},
    ])
    def test_rejects(self, parameters):
        rejects(OcrmypdfPlugin(), **parameters)


class TestYtDlpPlugin:

    def test_audio_format_implies_audio_only(self):
        assert argv(YtDlpPlugin(), url="https://youtu.be/abc", audio_format="mp3") == [
            "yt-dlp", "-x", "--audio-format", "mp3", "--", "https://youtu.be/abc",
        ]

    def test_video_with_template(self):
        assert argv(
            YtDlpPlugin(), url="https://example.com/v", format="bestvideo+bestaudio",
            output_template="%(title)s.%(ext)s",
        ) == [
            "yt-dlp", "-f", "bestvideo+bestaudio", "-o", "%(title)s.%(ext)s", "--", "https://example.com/v",
        ]

    @pytest.mark.parametrize("parameters", [
        {"url": "file:///etc/passwd"},
        {"url": "youtube.com/watch"},
        {"url": "https://x.com/v", "audio_only": True, "format": "best"},
        {"url": "https://x.com/v", "format": "best; rm"},
        {"url": "https://x.com/v", "output_template": "../%(title)s"},
        {"url": "https://x.com/v", "audio_only": "maybe"},
    ])
    def test_rejects(self, parameters):
        rejects(YtDlpPlugin(), **parameters)


class TestRemovePlugin:

    def test_builds_whatever_was_asked(self):
        assert argv(RemovePlugin(), paths=["/"], recursive=True, force=True) == ["rm", "-r", "-f", "--", "/"]

    def test_single_path_alias(self):
        assert argv(RemovePlugin(), path="old.log") == ["rm", "--", "old.log"]

    def test_needs_a_path(self):
        rejects(RemovePlugin())


class TestJdupesPlugin:

    def test_scan_defaults_to_recursive_list(self):
        assert argv(JdupesPlugin(), paths=["Downloads"]) == ["jdupes", "-r", "Downloads"]

    def test_summary_without_recursion(self):
        assert argv(JdupesPlugin(), path="Pictures", mode="summary", recursive=False) == [
            "jdupes", "-m", "Pictures",
        ]

    def test_delete_mode_never_prompts(self):
        command = JdupesPlugin().build_command({"paths": ["a", "b"], "mode": "delete"})
        assert list(command.argv) == ["jdupes", "-r", "-d", "-N", "a", "b"]
        assert "keeping the first copy" in command.summary

    @pytest.mark.parametrize("parameters", [
        {},
        {"paths": []},
        {"paths": ["-L"]},
        {"paths": ["@options.txt"]},
        {"paths": ["."], "mode": "hardlink"},
    ])
    def test_rejects(self, parameters):
        rejects(JdupesPlugin(), **parameters)


class TestLibvipsPlugin:

    def test_thumbnail(self):
        assert argv(LibvipsPlugin(), operation="thumbnail", input="photo.jpg", output="thumb.jpg", width=256) == [
            "vips", "thumbnail", "photo.jpg", "thumb.jpg", "256",
        ]

    def test_resize_with_quality(self):
        assert argv(
            LibvipsPlugin(), operation="resize", input="photo.png", output="small.webp", scale="0.5", quality=80,
        ) == ["vips", "resize", "photo.png", "small.webp[Q=80]", "0.5"]

    def test_crop(self):
        assert argv(
            LibvipsPlugin(), operation="crop", input="a.jpg", output="b.jpg", left=10, top=20, width=400, height=300,
        ) == ["vips", "crop", "a.jpg", "b.jpg", "10", "20", "400", "300"]

    def test_rotate_and_convert_use_vips_names(self):
        assert argv(LibvipsPlugin(), operation="rotate", input="a.jpg", output="b.jpg", angle="90")[1:] == [
            "rot", "a.jpg", "b.jpg", "d90",
        ]
        assert argv(LibvipsPlugin(), operation="convert", input="a.heic", output="a.jpg") == [
            "vips", "copy", "a.heic", "a.jpg",
        ]

    @pytest.mark.parametrize("parameters", [
        {"operation": "black", "input": "a.jpg", "output": "b.jpg"},
        {"operation": "autorot", "input": "a.jpg", "output": "a.jpg"},
        {"operation": "autorot", "input": "[descriptor=0]", "output": "b.jpg"},
        {"operation": "copy", "input": "a.jpg", "output": "b.jpg[strip]"},
        {"operation": "autorot", "input": "notes.md", "output": "b.jpg"},
        {"operation": "thumbnail", "input": "a.jpg", "output": "b.jpg"},
        {"operation": "thumbnail", "input": "a.jpg", "output": "b.jpg", "width": "big"},
        {"operation": "rotate", "input": "a.jpg", "output": "b.jpg", "angle": "45"},
        {"operation": "resize", "input": "a.jpg", "output": "b.jpg", "scale": 0},
        {"operation": "convert", "input": "a.jpg", "output": "b.png", "quality": 80},
    ])
    def test_rejects(self, parameters):
        rejects(LibvipsPlugin(), **parameters)


class TestWhisperCppPlugin:

    @pytest.fixture(autouse=True)
    def whisper_cli_on_path(self, monkeypatch):
        monkeypatch.setattr("shutil.which", lambda name: "/opt/homebrew/bin/whisper-cli" if name == "whisper-cli" else None)

    def test_transcribe_defaults_to_txt(self):
        assert argv(WhisperCppPlugin(), model="models/ggml-base.en.bin", input="talk.wav") == [
            "whisper-cli", "-m", "models/ggml-base.en.bin", "-f", "talk.wav", "-otxt",
        ]

    def test_translate_to_subtitles(self):
        command = WhisperCppPlugin().build_command({
            "model": "ggml-base.bin", "input": "speech.mp3", "language": "DE",
            "translate": True, "formats": ["srt", "vtt", "srt"], "output_prefix": "out/speech",
        })
        assert list(command.argv) == [
            "whisper-cli", "-m", "ggml-base.bin", "-f", "speech.mp3", "-l", "de", "-tr",
            "-osrt", "-ovtt", "-of", "out/speech",
        ]
        assert command.summary.startswith("Translate speech.mp3")

    def test_falls_back_to_whisper_cpp_executable(self, monkeypatch):
        monkeypatch.setattr("shutil.which", lambda name: "/usr/local/bin/whisper-cpp" if name == "whisper-cpp" else None)
        plugin = WhisperCppPlugin()
        assert plugin.is_installed()
        assert argv(plugin, model="m.bin", input="a.wav")[0] == "whisper-cpp"

    def test_not_installed(self, monkeypatch):
        monkeypatch.setattr("shutil.which", lambda name: None)
        assert not WhisperCppPlugin().is_installed()

    @pytest.mark.parametrize("parameters", [
        {"input": "talk.wav"},
        {"model": "m.bin"},
        {"model": "model.gguf", "input": "talk.wav"},
        {"model": "m.bin", "input": "talk.mov"},
        {"model": "m.bin", "input": "talk.wav", "formats": ["docx"]},
        {"model": "m.bin", "input": "talk.wav", "language": "english"},
        {"model": "m.bin", "input": "talk.wav", "output_prefix": "--grammar"},
    ])
    def test_rejects(self, parameters):
        rejects(WhisperCppPlugin(), **parameters)
