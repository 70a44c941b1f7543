"""Conversion pipeline: layer tree to a finished SVG document."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal
from xml.etree import ElementTree as ET

import yaml

from .attributes import Diagnostics
from .postprocess import assign_namespace_prefixes, remove_redundant_groups
from .records import LayerNode
from .utils import count_drawing_elements, format_float, make_element
from .walker import ConversionContext, WalkStats, add_layer_to_element

if TYPE_CHECKING:
    from .images import ImageSink

logger = logging.getLogger(__name__)

ImageFormat = Literal["png", "jpeg", "webp"]

IMAGE_FORMATS: tuple[ImageFormat, ...] = ("png", "jpeg", "webp")

# Unit suffixes accepted for the root width/height
UNITS = ("pt", "px", "mm", "cm", "in", "")

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>\n'

DOCUMENT_KEYS = frozenset(["unit", "collapse_uniform_rasters", "text_metrics", "pretty"])
EXPORT_KEYS = frozenset(["name", "scale", "image_format", "quality", "embed_images"])


@dataclass(frozen=True)
class ExportCombination:
    """One requested export: a scale plus raster image overrides."""

    name: str = "1x"
    scale: float = 1.0
    image_format: ImageFormat = "png"
    quality: int = 90
    embed_images: bool = False


@dataclass
class ConvertRule:
    """Complete conversion rule configuration."""

    unit: str = "pt"
    collapse_uniform_rasters: bool = True
    text_metrics: bool = True
    pretty: bool = True
    exports: list[ExportCombination] = field(
        default_factory=lambda: [ExportCombination()]
    )


@dataclass
class ConvertReport:
    """Result summary of converting one combination."""

    combination: str
    page_size: tuple[float, float]
    scale: float
    stats: WalkStats = field(default_factory=WalkStats)
    shadow_count: int = 0
    gradient_count: int = 0
    font_count: int = 0
    groups_removed: int = 0
    element_counts: dict[str, int] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    @property
    def total_elements(self) -> int:
        """Total number of drawing elements in the output."""
        return sum(self.element_counts.values())

    @property
    def has_warnings(self) -> bool:
        """Check if there are any diagnostics."""
        return len(self.warnings) > 0


@dataclass
class ConvertResult:
    """A converted document and its report."""

    svg_root: ET.Element
    report: ConvertReport


def _check_keys(data: dict, known: frozenset[str], section: str) -> None:
    unknown = sorted(str(key) for key in data if key not in known)
    if unknown:
        raise ValueError(f"Unknown key(s) in {section}: {', '.join(unknown)}")


def _parse_bool(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"{name} must be true or false, got {value!r}")
    return value


def _parse_export(data: Any, index: int) -> ExportCombination:
    if not isinstance(data, dict):
        raise ValueError(f"exports[{index}] must be a dictionary")
    _check_keys(data, EXPORT_KEYS, f"exports[{index}]")

    if "name" not in data:
        raise ValueError(f"exports[{index}] must have 'name' field")
    name = str(data["name"])
    if not name or "/" in name:
        raise ValueError(f"exports[{index}]: invalid name {name!r}")

    kwargs: dict[str, Any] = {"name": name}

    if "scale" in data:
        try:
            scale = float(data["scale"])
        except (TypeError, ValueError) as e:
            raise ValueError(f"Export '{name}': scale must be a number") from e
        if scale <= 0:
            raise ValueError(f"Export '{name}': scale must be positive, got {scale}")
        kwargs["scale"] = scale

    if "image_format" in data:
        image_format = str(data["image_format"]).lower()
        if image_format == "jpg":
            image_format = "jpeg"
        if image_format not in IMAGE_FORMATS:
            raise ValueError(
                f"Export '{name}': Invalid image_format value: {data['image_format']}. "
                f"Must be one of {', '.join(IMAGE_FORMATS)}"
            )
        kwargs["image_format"] = image_format

    if "quality" in data:
        quality = data["quality"]
        if isinstance(quality, bool) or not isinstance(quality, int) or not 1 <= quality <= 100:
            raise ValueError(
                f"Export '{name}': quality must be an integer from 1 to 100, got {quality!r}"
            )
        kwargs["quality"] = quality

    if "embed_images" in data:
        kwargs["embed_images"] = _parse_bool(
            data["embed_images"], f"Export '{name}': embed_images"
        )

    return ExportCombination(**kwargs)


def parse_convert_rule(data: Any) -> ConvertRule:
    """Build a ConvertRule from parsed YAML data.

    Args:
        data: Parsed YAML document (None for an empty file).

    Returns:
        Parsed ConvertRule.

    Raises:
        ValueError: If the rule format is invalid.
    """
    if data is None:
        return ConvertRule()
    if not isinstance(data, dict):
        raise ValueError("Rule file must be a YAML dictionary")
    _check_keys(data, frozenset(["document", "exports"]), "rule file")

    rule = ConvertRule()

    document = data.get("document") or {}
    if not isinstance(document, dict):
        raise ValueError("document must be a dictionary")
    _check_keys(document, DOCUMENT_KEYS, "document")
    if "unit" in document:
        unit = "" if document["unit"] is None else str(document["unit"])
        if unit not in UNITS:
            raise ValueError(
                f"Invalid document.unit value: {unit}. "
                f"Must be one of {', '.join(u or '(empty)' for u in UNITS)}"
            )
        rule.unit = unit
    for key in ("collapse_uniform_rasters", "text_metrics", "pretty"):
        if key in document:
            setattr(rule, key, _parse_bool(document[key], f"document.{key}"))

    if "exports" in data:
        exports = data["exports"]
        if not isinstance(exports, list) or not exports:
            raise ValueError("exports must be a non-empty list")
        rule.exports = [_parse_export(item, i) for i, item in enumerate(exports)]
        names = [combination.name for combination in rule.exports]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate export name(s): {', '.join(duplicates)}")

    return rule


def parse_convert_rule_file(rule_path: Path) -> ConvertRule:
    """Parse a YAML conversion rule file.

    Args:
        rule_path: Path to the YAML rule file.

    Returns:
        Parsed ConvertRule.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        ValueError: If the rule format is invalid.
    """
    with open(rule_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return parse_convert_rule(data)


def create_svg_root(
    page_size: tuple[float, float], scale: float = 1.0, unit: str = "pt"
) -> ET.Element:
    """Create the root <svg> element for a page.

    The viewBox stays in page units; width and height are scaled.
    """
    width, height = page_size
    root = make_element("svg")
    root.set("version", "1.1")
    if width > 0:
        root.set("width", format_float(width * scale, unit))
    if height > 0:
        root.set("height", format_float(height * scale, unit))
    root.set("viewBox", f"0 0 {format_float(width)} {format_float(height)}")
    return root


def convert_layer_tree(
    root_layer: LayerNode,
    page_size: tuple[float, float],
    rule: ConvertRule | None = None,
    combination: ExportCombination | None = None,
    images: "ImageSink | None" = None,
    diagnostics: Diagnostics | None = None,
) -> ConvertResult:
    """Convert a layer tree into a finished SVG element tree.

    Builds the root, walks the layers, inserts <defs> first, then removes
    redundant groups and assigns namespace prefixes.

    Args:
        root_layer: Root of the layer tree (its children are the top layers).
        page_size: Page (width, height) in points.
        rule: Conversion options (defaults if omitted).
        combination: Export combination (default "1x" if omitted).
        images: Raster output, or None to skip raster layers.
        diagnostics: Sink for non-fatal problems (created if omitted).

    Returns:
        ConvertResult with the svg root and its report.

    Raises:
        RasterError: If a raster layer cannot be decoded or encoded.
    """
    rule = rule if rule is not None else ConvertRule()
    combination = combination if combination is not None else ExportCombination()
    diagnostics = diagnostics if diagnostics is not None else Diagnostics()

    svg = create_svg_root(page_size, combination.scale, rule.unit)
    context = ConversionContext(
        page_height=page_size[1],
        diagnostics=diagnostics,
        images=images,
        text_metrics=rule.text_metrics,
        collapse_uniform_rasters=rule.collapse_uniform_rasters,
    )
    add_layer_to_element(root_layer, svg, context)

    defs = context.defs.defs_element()
    if defs is not None:
        svg.insert(0, defs)

    removed = remove_redundant_groups(svg)
    assign_namespace_prefixes(svg)
    logger.debug(
        "converted %s: %d layers, %d graphics, %d groups removed",
        combination.name,
        context.stats.layers_visited,
        context.stats.graphics_emitted,
        removed,
    )

    report = ConvertReport(
        combination=combination.name,
        page_size=page_size,
        scale=combination.scale,
        stats=context.stats,
        shadow_count=len(context.defs.shadows),
        gradient_count=len(context.defs.gradients),
        font_count=sum(1 for metrics in context.defs.fonts.values() if metrics is not None),
        groups_removed=removed,
        element_counts=count_drawing_elements(svg),
        warnings=list(diagnostics.messages),
    )
    return ConvertResult(svg_root=svg, report=report)


def serialize_svg(root: ET.Element, pretty: bool = True) -> str:
    """Serialize a finished SVG tree with an XML declaration.

    Pretty printing never adds whitespace inside <text> elements, where it
    would be rendered.
    """
    if pretty:
        ET.indent(root, space="  ")
        for text in root.iter("text"):
            text.text = None
            for span in text:
                span.tail = None
    return XML_DECLARATION + ET.tostring(root, encoding="unicode") + "\n"


def format_convert_report(report: ConvertReport) -> str:
    """Format a conversion report as text.

    Args:
        report: Conversion report.

    Returns:
        Formatted text.
    """
    stats = report.stats
    width, height = report.page_size
    lines: list[str] = []
    lines.append(f"Combination: {report.combination}")
    lines.append(f"  Page: {width:g} x {height:g} pt (scale {report.scale:g})")
    lines.append(f"  Layers: {stats.layers_visited} converted, {stats.layers_hidden} hidden")
    if stats.layers_unknown:
        lines.append(f"  Unknown layer types: {stats.layers_unknown}")
    lines.append(
        f"  Graphics: {stats.graphics_emitted} emitted, {stats.graphics_skipped} skipped"
    )
    if stats.rasters_emitted:
        lines.append(f"  Rasters: {stats.rasters_emitted}")
    lines.append(
        f"  Definitions: {report.shadow_count} shadow(s), {report.gradient_count} gradient(s), "
        f"{report.font_count} font(s)"
    )
    lines.append(f"  Redundant groups removed: {report.groups_removed}")

    if report.element_counts:
        lines.append("  Elements:")
        for name, count in sorted(report.element_counts.items()):
            lines.append(f"    {name}: {count}")

    for warning in report.warnings:
        lines.append(f"  [WARNING] {warning}")

    return "\n".join(lines)
