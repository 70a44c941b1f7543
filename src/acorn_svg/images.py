"""Raster layers and multi-combination export.

Raster sublayers are decoded once with Pillow and re-encoded for every
export combination, either as files next to the SVG or as data: URIs.
"""

import base64
import io
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from xml.etree import ElementTree as ET

from PIL import Image

from .attributes import Diagnostics
from .container import AcornDocument
from .convert import (
    ConvertReport,
    ConvertRule,
    ExportCombination,
    convert_layer_tree,
    serialize_svg,
)
from .geometry import BoundingBox
from .postprocess import sanitize_id
from .records import Color, LayerNode
from .utils import make_element, set_float_attribute, xlink_attr

logger = logging.getLogger(__name__)

# Pillow format name, MIME type and file extension per image format
IMAGE_CODECS = {
    "png": ("PNG", "image/png", "png"),
    "jpeg": ("JPEG", "image/jpeg", "jpg"),
    "webp": ("WEBP", "image/webp", "webp"),
}

# Default names Acorn gives new bitmap layers; useless as file names
GENERIC_LAYER_NAME_PREFIX = "Bitmap Layer "


class RasterError(Exception):
    """A raster layer cannot be decoded or encoded."""


def decode_raster(data: bytes | None, uti: str | None = None) -> Image.Image:
    """Decode a raster layer payload.

    Args:
        data: Encoded image bytes (PNG, TIFF, JPEG, ...).
        uti: Layer type identifier, used in error messages.

    Returns:
        First frame of the image, fully loaded.

    Raises:
        RasterError: If the data is missing or cannot be decoded.
    """
    if not data:
        raise RasterError(f"raster layer ({uti}) has no image data")
    try:
        image = Image.open(io.BytesIO(data))
        image.seek(0)
        image.load()
    except (OSError, ValueError, EOFError, Image.DecompressionBombError) as e:
        raise RasterError(f"cannot decode raster layer ({uti}): {e}") from e
    return image


def uniform_color(image: Image.Image) -> Color | None:
    """Get the color of an image whose pixels are all identical.

    Returns:
        Color, or None if the image has more than one color (or no pixels).
    """
    if image.width == 0 or image.height == 0:
        return None
    rgba = image.convert("RGBA")
    extrema = rgba.getextrema()
    if any(low != high for low, high in extrema):
        return None
    r, g, b, a = (low for low, _high in extrema)
    return Color(r / 255, g / 255, b / 255, a / 255)


def encode_raster(image: Image.Image, combination: ExportCombination) -> bytes:
    """Scale and encode an image for one export combination.

    Raises:
        RasterError: If Pillow cannot encode the image.
    """
    pil_format, _mime, _ext = IMAGE_CODECS[combination.image_format]
    if combination.scale != 1:
        size = (
            max(1, round(image.width * combination.scale)),
            max(1, round(image.height * combination.scale)),
        )
        image = image.resize(size, Image.Resampling.LANCZOS)

    if pil_format == "JPEG":
        image = image.convert("RGB")
    elif image.mode not in ("RGB", "RGBA", "L", "LA"):
        image = image.convert("RGBA")

    options: dict[str, Any] = {}
    if pil_format in ("JPEG", "WEBP"):
        options["quality"] = combination.quality

    buffer = io.BytesIO()
    try:
        image.save(buffer, format=pil_format, **options)
    except (OSError, ValueError, KeyError) as e:
        raise RasterError(f"cannot encode {combination.image_format}: {e}") from e
    return buffer.getvalue()


@dataclass
class ImageSink:
    """Raster output for one export combination.

    Decoded images are cached by layer id; pass the same cache to the sinks
    of every combination so each layer is decoded once. Files are only
    written by flush().
    """

    combination: ExportCombination
    directory: Path
    stem: str
    cache: dict[Any, Image.Image] = field(default_factory=dict)
    pending: list[tuple[Path, bytes]] = field(default_factory=list)
    counter: int = 0

    def decoded(self, layer: LayerNode) -> Image.Image:
        """Decode a raster layer, using the cache."""
        if layer.oid not in self.cache:
            self.cache[layer.oid] = decode_raster(layer.data, layer.uti)
        return self.cache[layer.oid]

    def uniform_color(self, layer: LayerNode) -> Color | None:
        """Get the single color of a raster layer, if it has one."""
        return uniform_color(self.decoded(layer))

    def _file_name(self, layer: LayerNode, extension: str) -> str:
        hint = None
        if layer.name and not layer.name.startswith(GENERIC_LAYER_NAME_PREFIX):
            hint = sanitize_id(layer.name)
        name = f"{self.stem}-{self.combination.name}-{hint or f'img{self.counter}'}"
        taken = {path.name for path, _data in self.pending}
        if f"{name}.{extension}" in taken:
            name = f"{name}-{self.counter}"
        return f"{name}.{extension}"

    def image_element(self, layer: LayerNode, box: BoundingBox) -> ET.Element:
        """Build an <image> for a raster layer placed at box.

        Raises:
            RasterError: If the layer cannot be decoded or encoded.
        """
        data = encode_raster(self.decoded(layer), self.combination)
        _pil_format, mime, extension = IMAGE_CODECS[self.combination.image_format]
        self.counter += 1

        if self.combination.embed_images:
            href = f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"
        else:
            href = self._file_name(layer, extension)
            self.pending.append((self.directory / href, data))

        element = make_element("image")
        if box.x != 0 or box.y != 0:
            set_float_attribute(element, "x", box.x)
            set_float_attribute(element, "y", box.y)
        set_float_attribute(element, "width", box.width)
        set_float_attribute(element, "height", box.height)
        element.set("preserveAspectRatio", "none")
        element.set(xlink_attr("href"), href)
        return element

    def flush(self) -> list[Path]:
        """Write pending image files.

        Raises:
            OSError: If a file cannot be written.
        """
        written = []
        for path, data in self.pending:
            path.write_bytes(data)
            written.append(path)
        self.pending.clear()
        return written


@dataclass
class WrittenImage:
    """Record of one export request.

    Holds the output location, the SVG roots produced (one per successful
    combination) and the failures of the others. Elements may only be added
    until finish() is called.
    """

    location: Path
    elements: list[ET.Element] | tuple[ET.Element, ...] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)
    outputs: dict[str, Path] = field(default_factory=dict)
    files: dict[str, list[Path]] = field(default_factory=dict)
    reports: dict[str, ConvertReport] = field(default_factory=dict)

    @property
    def finished(self) -> bool:
        """Check if the element list is frozen."""
        return isinstance(self.elements, tuple)

    @property
    def succeeded(self) -> bool:
        """Check if every combination succeeded."""
        return not self.failures

    def add_element(self, element: ET.Element) -> None:
        """Append the SVG root of a finished combination."""
        if self.finished:
            raise RuntimeError("cannot add elements to a finished WrittenImage")
        self.elements.append(element)  # type: ignore[union-attr]

    def record_failure(self, name: str, message: str) -> None:
        """Mark a combination as failed."""
        self.failures[name] = message

    def finish(self) -> None:
        """Freeze the element list."""
        self.elements = tuple(self.elements)


def output_paths(
    output: Path, stem: str, combinations: list[ExportCombination]
) -> tuple[Path, str, dict[str, Path]]:
    """Decide where each combination's SVG goes.

    A single combination writes to output itself unless it is an existing
    directory. Several combinations write <stem>-<name>.svg into output,
    which is treated as a directory.

    Returns:
        Tuple of (directory for image files, file name stem, combination
        name to SVG path).
    """
    if len(combinations) == 1 and not output.is_dir():
        return output.parent, output.stem, {combinations[0].name: output}
    return output, stem, {
        combination.name: output / f"{stem}-{combination.name}.svg"
        for combination in combinations
    }


def export_document(
    document: AcornDocument,
    rule: ConvertRule,
    output: Path,
    root: LayerNode | None = None,
) -> WrittenImage:
    """Convert a document once per export combination and write the results.

    A failing combination (raster decode/encode or file write error) is
    recorded and the others still run.

    Args:
        document: Open Acorn document.
        rule: Conversion rule with the export combinations.
        output: Output file (single combination) or directory.
        root: Pre-loaded layer tree (loaded from the document if omitted).

    Returns:
        The finished WrittenImage.
    """
    if root is None:
        root = document.load()

    output = Path(output)
    directory, stem, svg_paths = output_paths(output, document.path.stem, rule.exports)
    written = WrittenImage(location=output)
    cache: dict[Any, Image.Image] = {}

    for combination in rule.exports:
        svg_path = svg_paths[combination.name]
        sink = ImageSink(
            combination=combination,
            directory=directory,
            stem=stem,
            cache=cache,
        )
        diagnostics = Diagnostics()
        try:
            result = convert_layer_tree(
                root, document.image_size, rule, combination, sink, diagnostics
            )
            text = serialize_svg(result.svg_root, rule.pretty)
            directory.mkdir(parents=True, exist_ok=True)
            files = sink.flush()
            svg_path.write_text(text, encoding="utf-8")
        except (RasterError, OSError) as e:
            logger.warning("combination %s failed: %s", combination.name, e)
            written.record_failure(combination.name, str(e))
            continue

        written.add_element(result.svg_root)
        written.outputs[combination.name] = svg_path
        written.files[combination.name] = files
        written.reports[combination.name] = result.report

    written.finish()
    return written


def format_written_image(written: WrittenImage) -> str:
    """Format the outcome of an export as text."""
    lines: list[str] = []
    lines.append(f"Output: {written.location}")
    for name, path in written.outputs.items():
        images = written.files.get(name, [])
        suffix = f" (+{len(images)} image file(s))" if images else ""
        lines.append(f"  [OK] {name}: {path}{suffix}")
    for name, message in written.failures.items():
        lines.append(f"  [FAILED] {name}: {message}")
    return "\n".join(lines)


def export_acorn_file(
    acorn_path: Path,
    rule: ConvertRule,
    output: Path,
) -> tuple[WrittenImage, Diagnostics]:
    """Open an Acorn file, read it in full, and export it.

    Args:
        acorn_path: Path to the .acorn file.
        rule: Conversion rule.
        output: Output file or directory.

    Returns:
        Tuple of (WrittenImage, diagnostics from reading the document).

    Raises:
        ContainerError: If the document cannot be read.
    """
    diagnostics = Diagnostics()
    with AcornDocument.open(acorn_path, diagnostics) as document:
        root = document.load()
        written = export_document(document, rule, output, root)
    return written, diagnostics
