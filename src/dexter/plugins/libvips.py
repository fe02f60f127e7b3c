"""Image resize, crop, rotate and format conversion via the vips CLI."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from dexter.plugins.base import CandidateCommand, Plugin, extension

OPERATIONS = ("thumbnail", "resize", "crop", "rotate", "flip", "autorot", "convert")
IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "webp", "tif", "tiff", "gif", "heic", "avif", "jp2")
QUALITY_EXTENSIONS = ("jpg", "jpeg", "webp", "heic", "avif", "jp2")
ANGLES = {"90": "d90", "180": "d180", "270": "d270"}
DIRECTIONS = ("horizontal", "vertical")

# vips operation names for the operations that differ
_VIPS_OPERATION = {"rotate": "rot", "convert": "copy"}


class LibvipsPlugin(Plugin):
    id = "libvips"
    program = "vips"
    aliases = ("vips", "vipsthumbnail", "image")
    description = "Fast, low-memory image processing with libvips."
    router_doc = (
        "Best for resizing, thumbnailing, cropping, rotating, flipping and "
        "converting images between formats (JPEG/PNG/WebP/TIFF/HEIC)."
    )
    parameters = {
        "operation": f"one of {', '.join(OPERATIONS)}",
        "input": "source image",
        "output": "destination image; its extension picks the format",
        "width": "thumbnail: target width in pixels; crop: region width",
        "height": "crop: region height",
        "left": "crop: left edge of the region",
        "top": "crop: top edge of the region",
        "scale": "resize: scale factor, e.g. 0.5",
        "angle": "rotate: 90, 180 or 270",
        "direction": "flip: horizontal or vertical",
        "quality": "optional 1-100 for lossy output formats",
    }
    install_hint = "brew install vips  (Debian/Ubuntu: apt install libvips-tools)"

    def build_command(self, parameters: Mapping[str, Any]) -> CandidateCommand:
        operation = self.choice_param(parameters, "operation", OPERATIONS, required=True)
        source = self._image(parameters, "input")
        output = self._image(parameters, "output")
        if source == output:
            raise self.fail("input and output must differ")

        if operation == "thumbnail":
            args = [str(self._int(parameters, "width", minimum=1))]
        elif operation == "resize":
            args = [self._scale(parameters)]
        elif operation == "crop":
            args = [
                str(self._int(parameters, "left", minimum=0)),
                str(self._int(parameters, "top", minimum=0)),
                str(self._int(parameters, "width", minimum=1)),
                str(self._int(parameters, "height", minimum=1)),
            ]
        elif operation == "rotate":
            angle = self.text_param(parameters, "angle").lower().removeprefix("d")
            if angle not in ANGLES:
                raise self.fail(f"angle must be 90, 180 or 270, got '{angle}'")
            args = [ANGLES[angle]]
        elif operation == "flip":
            args = [self.choice_param(parameters, "direction", DIRECTIONS, required=True)]
        else:
            args = []

        target = output
        quality = parameters.get("quality")
        if quality is not None:
            if extension(output) not in QUALITY_EXTENSIONS:
                raise self.fail(f"quality does not apply to .{extension(output)} output")
            target = f"{output}[Q={self._int(parameters, 'quality', minimum=1, maximum=100)}]"

        argv = ["vips", _VIPS_OPERATION.get(operation, operation), source, target, *args]
        return self.command(argv, f"{operation.capitalize()} {source} into {output}")

    def _image(self, parameters: Mapping[str, Any], name: str) -> str:
        path = self.path_param(parameters, name)
        # vips reads '[...]' suffixes as load/save options, e.g. [descriptor=0]
        if "[" in path or "]" in path:
            raise self.fail(f"'{name}' may not carry vips options: {path}")
        if extension(path) not in IMAGE_EXTENSIONS:
            raise self.fail(f"'{name}' is not a supported image: {path}")
        return path

    def _int(self, parameters: Mapping[str, Any], name: str, minimum: int, maximum: int | None = None) -> int:
        value = parameters.get(name)
        if value is None or isinstance(value, bool):
            raise self.fail(f"missing required parameter '{name}'")
        try:
            number = int(value)
        except (TypeError, ValueError):
            raise self.fail(f"{name} must be an integer") from None
        if number < minimum or (maximum is not None and number > maximum):
            raise self.fail(f"{name} out of range: {number}")
        return number

    def _scale(self, parameters: Mapping[str, Any]) -> str:
        value = parameters.get("scale")
        if value is None or isinstance(value, bool):
            raise self.fail("missing required parameter 'scale'")
        try:
            scale = float(value)
        except (TypeError, ValueError):
            raise self.fail("scale must be a number") from None
        if not 0 < scale <= 16:
            raise self.fail(f"scale out of range: {value}")
        return f"{scale:g}"
