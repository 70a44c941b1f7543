"""Geometry and style encoding of shape-layer graphics.

Each decoded GraphicRecord maps to zero or more SVG elements. Shadow
filters and gradients are collected in a DefsRegistry so that graphics with
equal parameters share one definition.
"""

import logging
import math
from dataclasses import dataclass, field
from xml.etree import ElementTree as ET

from .attributes import Diagnostics
from .geometry import PageFlip, PathElement, svg_path_data
from .postprocess import IdRegistry
from .records import GradientSpec, GraphicRecord, ShadowSpec
from .text import (
    FontMetrics,
    FontStyle,
    TextRun,
    font_metrics,
    font_style,
    line_metrics,
    measure_run,
    parse_rich_text,
    split_lines,
)
from .utils import format_float, make_element, set_float_attribute

logger = logging.getLogger(__name__)

# Values at or below these are treated as zero
MIN_STROKE_WIDTH = 1e-8
MIN_CORNER_RADIUS = 1e-5

DEFAULT_PAINT = "#000000"

# Arrow heads are at least this long when PointLength is unset
MIN_ARROW_HEAD = 10.0


@dataclass
class DefsRegistry:
    """Deduplicated <defs> content for one document.

    Shadow filters and gradients are keyed by value equality of their
    parameters. Ids come from the document IdRegistry. Fonts get one
    <font-face> per font name and style, when the font file is found.
    """

    ids: IdRegistry = field(default_factory=IdRegistry)
    shadows: dict[ShadowSpec, str] = field(default_factory=dict)
    gradients: dict[GradientSpec, str] = field(default_factory=dict)
    fonts: dict[tuple[str, FontStyle], FontMetrics | None] = field(default_factory=dict)
    definitions: list[ET.Element] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.definitions)

    def shadow_id(self, spec: ShadowSpec) -> str:
        """Get the filter id for a shadow, creating the filter if needed."""
        if spec not in self.shadows:
            filter_id = self.ids.allocate("shadow")
            self.shadows[spec] = filter_id
            self.definitions.append(shadow_filter(spec, filter_id))
            logger.debug("new shadow filter %s for %s", filter_id, spec)
        return self.shadows[spec]

    def gradient_id(self, spec: GradientSpec) -> str:
        """Get the gradient id for a config, creating the gradient if needed."""
        if spec not in self.gradients:
            gradient_id = self.ids.allocate("gradient")
            self.gradients[spec] = gradient_id
            self.definitions.append(gradient_element(spec, gradient_id))
            logger.debug("new gradient %s", gradient_id)
        return self.gradients[spec]

    def register_font(self, run: TextRun, metrics: bool = True) -> FontStyle:
        """Get the CSS style for a run, describing its font once in <defs>.

        Args:
            run: Text run whose font is used.
            metrics: Look up the font file for a <font-face>; when False no
                font-face is added.
        """
        style = font_style(run)
        key = (run.font_name, style)
        if key not in self.fonts:
            face_metrics = font_metrics(run) if metrics else None
            self.fonts[key] = face_metrics
            if face_metrics is not None:
                self.definitions.append(font_face_element(run.font_name, style, face_metrics))
                logger.debug("new font-face for %s", run.font_name)
        return style

    def defs_element(self) -> ET.Element | None:
        """Build the <defs> element, or None if nothing was registered."""
        if not self.definitions:
            return None
        defs = make_element("defs")
        defs.extend(self.definitions)
        return defs


def font_face_element(font_name: str, style: FontStyle, metrics: FontMetrics) -> ET.Element:
    """Build a <font-face> naming the local font and its metrics.

    Metrics are in font units, so units-per-em is written only when it
    differs from the SVG default of 1000.
    """
    element = make_element("font-face")
    element.set("font-family", style.family)
    for name, value in style.attributes().items():
        if name != "font-family":
            element.set(name, value)
    if metrics.units_per_em != 1000:
        element.set("units-per-em", str(metrics.units_per_em))
    set_float_attribute(element, "ascent", metrics.ascent)
    set_float_attribute(element, "descent", metrics.descent)
    set_float_attribute(element, "underline-position", metrics.underline_position)
    set_float_attribute(element, "underline-thickness", metrics.underline_thickness)
    source = make_element("font-face-src", element)
    make_element("font-face-name", source).set("name", font_name)
    return element


def shadow_filter(
spec: ShadowSpec, filter_id: str) -> ET.Element:
    """Build a drop-shadow filter.

    The blurred, offset alpha of the source is flooded with the shadow
    color and drawn beneath the source graphic.
    """
    element = make_element("filter")
    element.set("id", filter_id)
    element.set("x", "-50%")
    element.set("y", "-50%")
    element.set("width", "200%")
    element.set("height", "200%")

    source = "SourceAlpha"
    if spec.blur > 0:
        blur = make_element("feGaussianBlur", element)
        blur.set("in", source)
        # Cocoa blur radii are roughly twice the standard deviation
        set_float_attribute(blur, "stdDeviation", spec.blur / 2)
        blur.set("result", "blur")
        source = "blur"

    offset = make_element("feOffset", element)
    offset.set("in", source)
    set_float_attribute(offset, "dx", spec.offset[0])
    set_float_attribute(offset, "dy", -spec.offset[1])
    offset.set("result", "offset")

    flood = make_element("feFlood", element)
    flood.set("flood-color", spec.color.hex())
    if not spec.color.is_opaque:
        set_float_attribute(flood, "flood-opacity", spec.color.alpha)

    composite = make_element("feComposite", element)
    composite.set("in2", "offset")
    composite.set("operator", "in")

    merge = make_element("feMerge", element)
    make_element("feMergeNode", merge)
    make_element("feMergeNode", merge).set("in", "SourceGraphic")
    return element


def gradient_element(spec: GradientSpec, gradient_id: str) -> ET.Element:
    """Build a linearGradient or radialGradient definition."""
    if spec.kind == "radial":
        element = make_element("radialGradient")
        element.set("id", gradient_id)
    else:
        element = make_element("linearGradient")
        element.set("id", gradient_id)
        # Angles are counter-clockwise from the +X axis with Y up
        radians = math.radians(spec.angle)
        dx = math.cos(radians) / 2
        dy = math.sin(radians) / 2
        set_float_attribute(element, "x1", 0.5 - dx)
        set_float_attribute(element, "y1", 0.5 + dy)
        set_float_attribute(element, "x2", 0.5 + dx)
        set_float_attribute(element, "y2", 0.5 - dy)

    for offset, color in spec.stops:
        stop = make_element("stop", element)
        set_float_attribute(stop, "offset", offset)
        stop.set("stop-color", color.hex())
        if not color.is_opaque:
            set_float_attribute(stop, "stop-opacity", color.alpha)
    return element


def apply_fill_stroke(
    element: ET.Element, record: GraphicRecord, defs: DefsRegistry
) -> None:
    """Set fill and stroke presentation attributes."""
    if not record.draws_fill:
        element.set("fill", "none")
    elif record.gradient is not None:
        element.set("fill", f"url(#{defs.gradient_id(record.gradient)})")
    elif record.fill_color is not None:
        element.set("fill", record.fill_color.to_svg())
    else:
        element.set("fill", DEFAULT_PAINT)

    if not record.draws_stroke or record.stroke_width <= MIN_STROKE_WIDTH:
        element.set("stroke", "none")
        return

    paint = record.stroke_color.to_svg() if record.stroke_color else DEFAULT_PAINT
    element.set("stroke", paint)
    set_float_attribute(element, "stroke-width", record.stroke_width)
    if record.line_join is not None:
        element.set("stroke-linejoin", record.line_join)
    if record.dash > 0:
        gap = record.gap if record.gap > 0 else record.dash
        element.set(
            "stroke-dasharray", f"{format_float(record.dash)} {format_float(gap)}"
        )


def rotation_transform(record: GraphicRecord, flip: PageFlip) -> str | None:
    """Get the rotate() transform for a rotated graphic, or None."""
    if record.rotation == 0:
        return None
    box = flip.box(record.bounds)
    # Source angles are counter-clockwise in a Y-up space
    return (
        f"rotate({format_float(-record.rotation)} "
        f"{format_float(box.center_x)} {format_float(box.center_y)})"
    )


def apply_effects(
    element: ET.Element,
    record: GraphicRecord,
    flip: PageFlip,
    defs: DefsRegistry,
    transform: str | None = None,
) -> None:
    """Set shadow filter, rotation and blend mode attributes."""
    if record.shadow is not None:
        element.set("filter", f"url(#{defs.shadow_id(record.shadow)})")

    rotation = rotation_transform(record, flip)
    transforms = [t for t in (rotation, transform) if t]
    if transforms:
        element.set("transform", " ".join(transforms))

    if record.blend_mode:
        element.set("style", f"mix-blend-mode:{record.blend_mode}")


def encode_rect(record: GraphicRecord, flip: PageFlip) -> ET.Element:
    """Encode a rectangle-like graphic."""
    box = flip.box(record.bounds)
    element = make_element("rect")
    set_float_attribute(element, "x", box.x)
    set_float_attribute(element, "y", box.y)
    set_float_attribute(element, "width", box.width)
    set_float_attribute(element, "height", box.height)
    if record.has_corner_radius and record.corner_radius > MIN_CORNER_RADIUS:
        set_float_attribute(element, "rx", record.corner_radius)
        set_float_attribute(element, "ry", record.corner_radius)
    return element


def encode_ellipse(record: GraphicRecord, flip: PageFlip) -> ET.Element:
    """Encode an ellipse-like graphic."""
    box = flip.box(record.bounds)
    element = make_element("ellipse")
    set_float_attribute(element, "cx", box.center_x)
    set_float_attribute(element, "cy", box.center_y)
    set_float_attribute(element, "rx", box.width / 2)
    set_float_attribute(element, "ry", box.height / 2)
    return element


def encode_path(
    elements: list[PathElement], flip: PageFlip, diagnostics: Diagnostics
) -> ET.Element | None:
    """Encode path elements as a <path>, or None if nothing is drawable."""
    d = svg_path_data(elements, flip, diagnostics)
    if not d:
        return None
    element = make_element("path")
    element.set("d", d)
    return element


def encode_line(
    record: GraphicRecord, flip: PageFlip, diagnostics: Diagnostics
) -> ET.Element | None:
    """Encode a line from its end points, or from its path."""
    if record.start_point is not None and record.end_point is not None:
        x1, y1 = flip.point(record.start_point)
        x2, y2 = flip.point(record.end_point)
        element = make_element("line")
        set_float_attribute(element, "x1", x1)
        set_float_attribute(element, "y1", y1)
        set_float_attribute(element, "x2", x2)
        set_float_attribute(element, "y2", y2)
        return element
    if record.path:
        return encode_path(record.path, flip, diagnostics)
    diagnostics.warnf("%s has neither end points nor a path, ignoring", record.cls)
    return None


def arrow_path(record: GraphicRecord) -> list[PathElement]:
    """Build the shaft and closed head of an arrow, in source coordinates.

    The head is PointLength long (default three stroke widths, at least
    MIN_ARROW_HEAD) and as wide as it is long.
    """
    assert record.start_point is not None and record.end_point is not None
    (sx, sy), (ex, ey) = record.start_point, record.end_point
    length = math.hypot(ex - sx, ey - sy)
    if length == 0:
        return []

    head = record.point_length
    if head <= 0:
        head = max(3 * record.stroke_width, MIN_ARROW_HEAD)
    ux, uy = (ex - sx) / length, (ey - sy) / length
    base = (ex - ux * head, ey - uy * head)
    half = head / 2
    left = (base[0] - uy * half, base[1] + ux * half)
    right = (base[0] + uy * half, base[1] - ux * half)

    return [
        PathElement("moveto", ((sx, sy),)),
        PathElement("lineto", (base,)),
        PathElement("moveto", ((ex, ey),)),
        PathElement("lineto", (left,)),
        PathElement("lineto", (right,)),
        PathElement("closepath"),
    ]


def encode_arrow(
    record: GraphicRecord, flip: PageFlip, diagnostics: Diagnostics
) -> ET.Element | None:
    """Encode an arrow from its path, or from its end points."""
    if record.path:
        return encode_path(record.path, flip, diagnostics)
    if record.start_point is None or record.end_point is None:
        diagnostics.warnf("%s has neither end points nor a path, ignoring", record.cls)
        return None
    elements = arrow_path(record)
    if not elements:
        diagnostics.warnf("%s has zero length, ignoring", record.cls)
        return None
    return encode_path(elements, flip, diagnostics)


def encode_text(
    record: GraphicRecord,
    flip: PageFlip,
    diagnostics: Diagnostics,
    text_metrics: bool = True,
    defs: DefsRegistry | None = None,
) -> ET.Element:
    """Encode a text graphic as <text> with one <tspan> per run per line.

    Tspans are positioned relative to the top-left corner of the text box,
    which the returned element's transform moves into place. Each tspan
    carries its own fill so the text stays visible whatever the graphic's
    fill settings. Fonts are registered in defs when given.
    """
    box = flip.box(record.bounds)
    element = make_element("text")
    element.set(
        "transform", f"translate({format_float(box.x)} {format_float(box.y)})"
    )

    y = 0.0
    for line in split_lines(parse_rich_text(record.text, diagnostics)):
        ascent, height = line_metrics(line)
        for index, run in enumerate(line):
            span = make_element("tspan", element)
            if index == 0:
                span.set("x", "0")
                set_float_attribute(span, "y", y + ascent)
            if defs is not None:
                style = defs.register_font(run, text_metrics)
            else:
                style = font_style(run)
            for name, value in style.attributes().items():
                span.set(name, value)
            set_float_attribute(span, "font-size", run.font_size)
            span.set("fill", run.color.to_svg() if run.color else DEFAULT_PAINT)
            if text_metrics and len(run.text) > 1:
                width = measure_run(run)
                if width is not None:
                    set_float_attribute(span, "textLength", width)
            span.text = run.text
        y += height
    return element


def encode_graphic(
    record: GraphicRecord,
    flip: PageFlip,
    defs: DefsRegistry,
    diagnostics: Diagnostics,
    text_metrics: bool = True,
) -> list[ET.Element]:
    """Map one decoded graphic to SVG elements.

    A graphic that draws neither fill nor stroke is still emitted, with
    fill="none" and stroke="none".

    Args:
        record: Decoded graphic.
        flip: Coordinate mapping for the owning layer.
        defs: Shared shadow/gradient definitions.
        diagnostics: Sink for non-fatal problems.
        text_metrics: Whether to measure text runs for textLength.

    Returns:
        Elements to append to the layer group (empty if skipped).
    """
    extra_transform = None
    if record.kind == "rect":
        element = encode_rect(record, flip)
    elif record.kind == "ellipse":
        element = encode_ellipse(record, flip)
    elif record.kind == "line":
        element = encode_line(record, flip, diagnostics)
    elif record.kind == "arrow":
        element = encode_arrow(record, flip, diagnostics)
    elif record.kind == "path":
        if not record.path:
            diagnostics.warnf("%s has no path data, ignoring", record.cls)
            return []
        element = encode_path(record.path, flip, diagnostics)
    else:
        element = encode_text(record, flip, diagnostics, text_metrics, defs)
        extra_transform = element.attrib.pop("transform")

    if element is None:
        return []

    apply_fill_stroke(element, record, defs)
    if record.kind == "text" and abs(record.text_stroke_width) > MIN_STROKE_WIDTH:
        paint = record.stroke_color.to_svg() if record.stroke_color else DEFAULT_PAINT
        element.set("stroke", paint)
        set_float_attribute(element, "stroke-width", abs(record.text_stroke_width))
    apply_effects(element, record, flip, defs, extra_transform)
    return [element]
