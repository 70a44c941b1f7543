"""Typed records for Acorn layers and graphics.

Shape layers store their graphics as loosely-typed dictionaries. Each
dictionary is decoded exactly once into a GraphicRecord; the decoding step
also reports keys it does not know about.
"""

import math
import re
from dataclasses import dataclass, field
from typing import Any, Literal

import typedstream

from .attributes import (
    Diagnostics,
    bool_for_key,
    float_for_key,
    list_for_key,
    record_class,
    string_for_key,
    warn_if_unknown_keys,
)
from .geometry import (
    BoundingBox,
    PathElement,
    Point,
    parse_bounds,
    parse_path_elements,
    parse_point,
    parse_size,
)
from .utils import format_float

# Layer type identifiers
SHAPE_LAYER_UTI = "com.flyingmeat.acorn.shapelayer"
GROUP_LAYER_UTI = "com.flyingmeat.acorn.grouplayer"
BITMAP_LAYER_UTI = "com.flyingmeat.acorn.bitmaplayer"

LayerKind = Literal["shape", "group", "raster", "unknown"]

GraphicKind = Literal["rect", "ellipse", "line", "arrow", "path", "text"]

# Graphic class names (lowercased) to the element family they produce
GRAPHIC_KINDS: dict[str, GraphicKind] = {
    "rectangle": "rect",
    "roundedrectangle": "rect",
    "square": "rect",
    "circle": "ellipse",
    "oval": "ellipse",
    "ellipse": "ellipse",
    "line": "line",
    "arrowshape": "arrow",
    "arrow": "arrow",
    "path": "path",
    "bezierpath": "path",
    "freehand": "path",
    "polygon": "path",
    "star": "path",
    "shapeimage": "path",
    "textarea": "text",
    "text": "text",
}

SHAPE_LAYER_KEYS = frozenset(
    ["class", "GraphicsList", "compositingMode", "layerName", "opacity", "visible"]
)

COMMON_GRAPHIC_KEYS = frozenset(
    [
        "Class",
        "AntiAlias",
        "BlendMode",
        "Bounds",
        "CornerRadius",
        "CustomStrokeStyleDash",
        "CustomStrokeStyleGap",
        "DrawsFill",
        "DrawsStroke",
        "FillColor",
        "GradientConfig",
        "HasCornerRadius",
        "HasShadow",
        "LineJoinStyle",
        "RotationAngle",
        "ShadowBlurRadius",
        "ShadowColor",
        "ShadowOffset",
        "StrokeColor",
        "StrokeLineWidth",
        "StrokeStyle",
    ]
)

KNOWN_GRAPHIC_KEYS: dict[GraphicKind, frozenset[str]] = {
    "rect": COMMON_GRAPHIC_KEYS,
    "ellipse": COMMON_GRAPHIC_KEYS,
    "line": COMMON_GRAPHIC_KEYS | {"FMPath", "Path", "StartPoint", "EndPoint"},
    "arrow": COMMON_GRAPHIC_KEYS
    | {"FMPath", "Path", "StartPoint", "EndPoint", "PointLength"},
    "path": COMMON_GRAPHIC_KEYS | {"FMPath", "Path"},
    "text": COMMON_GRAPHIC_KEYS
    | {"KeepBoundsWhenEditing", "RTFD", "TextStrokeWidth"},
}

GRADIENT_KEYS = frozenset(
    ["Type", "GradientType", "Angle", "Colors", "Locations", "StartColor", "EndColor"]
)

# NSBezierPath line join styles
LINE_JOINS = {0: "miter", 1: "round", 2: "bevel"}

# CGBlendMode numbering to CSS mix-blend-mode names
BLEND_MODES = {
    0: "normal",
    1: "multiply",
    2: "screen",
    3: "overlay",
    4: "darken",
    5: "lighten",
    6: "color-dodge",
    7: "color-burn",
    8: "soft-light",
    9: "hard-light",
    10: "difference",
    11: "exclusion",
    12: "hue",
    13: "saturation",
    14: "color",
    15: "luminosity",
}

BLEND_MODE_NAMES = {name: name for name in BLEND_MODES.values()}
BLEND_MODE_NAMES.update(
    {
        name.replace("-", ""): name
        for name in BLEND_MODES.values()
        if "-" in name
    }
)


@dataclass(frozen=True)
class Color:
    """An sRGB color with components in 0..1."""

    red: float
    green: float
    blue: float
    alpha: float = 1.0

    @property
    def is_opaque(self) -> bool:
        """True when alpha is 1."""
        return self.alpha >= 1.0

    def rgb_bytes(self) -> tuple[int, int, int]:
        """Components scaled to 0..255."""
        return (_rescale(self.red), _rescale(self.green), _rescale(self.blue))

    def hex(self) -> str:
        """Color as #rrggbb, ignoring alpha."""
        r, g, b = self.rgb_bytes()
        return f"#{r:02x}{g:02x}{b:02x}"

    def to_svg(self) -> str:
        """Color as an SVG paint string.

        Examples:
            >>> Color(1, 0, 0).to_svg()
            '#ff0000'
            >>> Color(1, 0, 0, 0.5).to_svg()
            'rgba(255,0,0,0.5)'
        """
        if self.is_opaque:
            return self.hex()
        r, g, b = self.rgb_bytes()
        return f"rgba({r},{g},{b},{format_float(max(self.alpha, 0.0))})"


def _rescale(component: float) -> int:
    value = math.floor(256 * component)
    return max(0, min(255, value))


HEX_COLOR_RE = re.compile(r"^#?([0-9a-fA-F]{6})([0-9a-fA-F]{2})?$")


def _archived_color(obj: Any) -> Color | None:
    if type(obj).__name__ != "NSColor":
        return None
    value = getattr(obj, "value", obj)
    named = getattr(value, "color", None)
    if named is not None:
        return _archived_color(named)

    alpha = float(getattr(value, "alpha", 1.0))
    if all(hasattr(value, name) for name in ("red", "green", "blue")):
        return Color(float(value.red), float(value.green), float(value.blue), alpha)
    if hasattr(value, "white"):
        white = float(value.white)
        return Color(white, white, white, alpha)
    if all(hasattr(value, name) for name in ("cyan", "magenta", "yellow", "black")):
        key = 1 - float(value.black)
        return Color(
            (1 - float(value.cyan)) * key,
            (1 - float(value.magenta)) * key,
            (1 - float(value.yellow)) * key,
            alpha,
        )
    # Pattern and catalog colors without a fallback have no flat color
    return None


def unarchive_color(data: bytes) -> Color | None:
    """Decode an NSColor stored with NSArchiver (a typedstream).

    RGB, gray and CMYK colors map to their sRGB components; named colors use
    the color they carry.

    Returns:
        Color or None if the data is not an archived, flat NSColor.
    """
    try:
        obj = typedstream.unarchive_from_data(data)
    except Exception:
        return None
    return _archived_color(obj)


def parse_color(value: Any) -> Color | None:
    """Parse a color value.

    Accepts NSArchiver NSColor bytes, "#RRGGBB"/"#RRGGBBAA", component
    strings ("1 0 0 0.5"), lists of three or four numbers, and dicts with
    r/g/b[/a] keys.

    Returns:
        Color or None if the value is not a recognizable color.
    """
    if isinstance(value, (bytes, bytearray)):
        return unarchive_color(bytes(value))

    if isinstance(value, dict):
        try:
            return Color(
                float(value["r"]),
                float(value["g"]),
                float(value["b"]),
                float(value.get("a", 1.0)),
            )
        except (KeyError, TypeError, ValueError):
            return None

    if isinstance(value, str):
        text = value.strip()
        match = HEX_COLOR_RE.match(text)
        if match:
            rgb = match.group(1)
            alpha = int(match.group(2), 16) / 255 if match.group(2) else 1.0
            return Color(
                int(rgb[0:2], 16) / 255,
                int(rgb[2:4], 16) / 255,
                int(rgb[4:6], 16) / 255,
                alpha,
            )
        parts = text.replace(",", " ").split()
        try:
            numbers = [float(part) for part in parts]
        except ValueError:
            return None
    elif isinstance(value, (list, tuple)):
        try:
            numbers = [float(part) for part in value]
        except (TypeError, ValueError):
            return None
    else:
        return None

    if len(numbers) == 3:
        return Color(*numbers)
    if len(numbers) == 4:
        return Color(*numbers)
    return None


@dataclass(frozen=True)
class ShadowSpec:
    """Drop shadow parameters; equal specs share one filter."""

    blur: float
    offset: tuple[float, float]
    color: Color


@dataclass(frozen=True)
class GradientSpec:
    """Gradient parameters; equal specs share one definition."""

    kind: Literal["linear", "radial"]
    angle: float
    stops: tuple[tuple[float, Color], ...]


@dataclass
class GraphicRecord:
    """A decoded shape-layer graphic."""

    cls: str
    kind: GraphicKind
    bounds: BoundingBox = field(default_factory=lambda: BoundingBox(0, 0, 0, 0))
    path: list[PathElement] = field(default_factory=list)
    start_point: Point | None = None
    end_point: Point | None = None
    point_length: float = 0.0
    has_corner_radius: bool = False
    corner_radius: float = 0.0
    draws_fill: bool = False
    fill_color: Color | None = None
    draws_stroke: bool = False
    stroke_color: Color | None = None
    stroke_width: float = 0.0
    line_join: str | None = None
    dash: float = 0.0
    gap: float = 0.0
    has_shadow: bool = False
    shadow: ShadowSpec | None = None
    gradient: GradientSpec | None = None
    rotation: float = 0.0
    text: Any = None
    text_stroke_width: float = 0.0
    blend_mode: str | None = None


@dataclass
class ShapeLayerRecord:
    """The top-level dictionary of a shape layer."""

    graphics: list[dict] = field(default_factory=list)
    layer_name: str | None = None
    opacity: float | None = None
    visible: bool = True
    compositing_mode: str | None = None


@dataclass(eq=False)
class LayerNode:
    """A node in the document's layer tree.

    The oid identifies the layer in its container and cannot be reassigned.
    Children are kept in z-order, bottom first.
    """

    oid: bytes | str | None
    name: str | None = None
    uti: str | None = None
    children: list["LayerNode"] = field(default_factory=list)
    attributes: dict[str, Any] = field(default_factory=dict)
    frame: BoundingBox | None = None
    data: bytes | None = None

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "oid" and "oid" in self.__dict__:
            raise AttributeError("oid is read-only")
        super().__setattr__(name, value)

    @property
    def kind(self) -> LayerKind:
        """Classify the layer by its type identifier."""
        if self.uti == SHAPE_LAYER_UTI:
            return "shape"
        if self.uti == GROUP_LAYER_UTI or (self.oid is None and self.uti is None):
            return "group"
        if self.uti == BITMAP_LAYER_UTI or (self.uti or "").startswith("public."):
            return "raster"
        return "unknown"

    def iter_layers(self):
        """Iterate over this layer and its descendants depth-first."""
        yield self
        for child in self.children:
            yield from child.iter_layers()

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {
            "name": self.name,
            "uti": self.uti,
            "kind": self.kind,
        }
        if self.frame is not None:
            result["frame"] = [
                self.frame.x,
                self.frame.y,
                self.frame.width,
                self.frame.height,
            ]
        if self.children:
            result["children"] = [child.to_dict() for child in self.children]
        return result


def css_blend_mode(value: Any, diagnostics: Diagnostics) -> str | None:
    """Map a compositing/blend mode to a CSS mix-blend-mode name.

    Returns:
        The mode name, or None for normal, absent or unmappable modes.
    """
    if value is None:
        return None
    name: str | None = None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        name = BLEND_MODES.get(int(value))
    elif isinstance(value, str):
        text = value.strip()
        if text.lstrip("-").isdigit():
            name = BLEND_MODES.get(int(text))
        else:
            key = text.lower().replace(" ", "").replace("_", "")
            if key.startswith("kcgblendmode"):
                key = key[len("kcgblendmode") :]
            name = BLEND_MODE_NAMES.get(key)
    if name is None:
        diagnostics.warnf("unsupported blend mode %r, using normal", value)
        return None
    if name == "normal":
        return None
    return name


def _decode_line_join(value: Any, diagnostics: Diagnostics) -> str | None:
    if value is None:
        return None
    join: int | None = None
    if isinstance(value, int) and not isinstance(value, bool):
        join = value
    elif isinstance(value, str) and value.strip().isdigit():
        join = int(value.strip())
    if join not in LINE_JOINS:
        diagnostics.warnf("unknown line join style %r, ignoring", value)
        return None
    return LINE_JOINS[join]


def _decode_paint(
    data: dict, key: str, diagnostics: Diagnostics
) -> Color | None:
    value = data.get(key)
    if value is None:
        return None
    color = parse_color(value)
    if color is None:
        kind = "undecodable archived data" if isinstance(value, bytes) else type(value).__name__
        diagnostics.warnf('unknown paint in "%s": expected a color, got %s', key, kind)
    return color


def _decode_shadow(data: dict, diagnostics: Diagnostics) -> ShadowSpec | None:
    color = _decode_paint(data, "ShadowColor", diagnostics)
    if color is None:
        if "ShadowColor" not in data:
            color = Color(0, 0, 0, 1 / 3)
        else:
            return None
    # Fully transparent shadows draw nothing
    if color.alpha < 1e-5:
        return None
    offset = parse_size(data.get("ShadowOffset")) or (0.0, 0.0)
    return ShadowSpec(
        blur=float_for_key(data, "ShadowBlurRadius"),
        offset=offset,
        color=color,
    )


def decode_gradient(value: Any, diagnostics: Diagnostics) -> GradientSpec | None:
    """Decode a GradientConfig dictionary.

    Recognized keys: Type/GradientType (0 or "linear", 1 or "radial"),
    Angle (degrees), Colors with optional Locations, or StartColor/EndColor.

    Returns:
        GradientSpec, or None if the config has fewer than two usable stops.
    """
    if not isinstance(value, dict):
        diagnostics.warnf("GradientConfig is not a dictionary, ignoring")
        return None
    warn_if_unknown_keys(value, GRADIENT_KEYS, diagnostics, context="GradientConfig")

    raw_type = value.get("Type", value.get("GradientType", 0))
    if raw_type in (1, "1") or str(raw_type).lower() == "radial":
        kind: Literal["linear", "radial"] = "radial"
    else:
        kind = "linear"

    raw_colors = list_for_key(value, "Colors")
    if raw_colors is None:
        raw_colors = [c for c in (value.get("StartColor"), value.get("EndColor")) if c is not None]

    colors: list[Color] = []
    for raw in raw_colors:
        color = parse_color(raw)
        if color is None:
            diagnostics.warnf("unknown gradient color %r, ignoring", raw)
            continue
        colors.append(color)

    if len(colors) < 2:
        diagnostics.warnf("gradient has fewer than two colors, using flat fill")
        return None

    locations = list_for_key(value, "Locations")
    if locations is None or len(locations) != len(colors):
        locations = [i / (len(colors) - 1) for i in range(len(colors))]

    stops = []
    for location, color in zip(locations, colors):
        try:
            offset = min(max(float(location), 0.0), 1.0)
        except (TypeError, ValueError):
            offset = 0.0
        stops.append((offset, color))

    return GradientSpec(
        kind=kind,
        angle=float_for_key(value, "Angle"),
        stops=tuple(stops),
    )


def decode_graphic(data: Any, diagnostics: Diagnostics) -> GraphicRecord | None:
    """Decode one graphic dictionary into a GraphicRecord.

    Unknown keys are reported once here. Unknown classes are reported and
    yield None so the caller skips the graphic.

    Args:
        data: Raw graphic dictionary from a shape layer.
        diagnostics: Sink for non-fatal problems.

    Returns:
        GraphicRecord, or None if the graphic cannot be converted.
    """
    if not isinstance(data, dict):
        diagnostics.warnf("graphic is not a dictionary (%s), ignoring", type(data).__name__)
        return None

    cls = record_class(data)
    kind = GRAPHIC_KINDS.get((cls or "").lower())
    if kind is None:
        diagnostics.warnf('unknown Acorn shape class "%s", ignoring', cls)
        return None

    warn_if_unknown_keys(data, KNOWN_GRAPHIC_KEYS[kind], diagnostics)

    record = GraphicRecord(cls=cls or "", kind=kind)

    bounds = parse_bounds(data.get("Bounds"))
    if bounds is not None:
        record.bounds = bounds
    elif kind in ("rect", "ellipse", "text"):
        diagnostics.warnf("%s has no usable Bounds, using an empty rectangle", cls)

    if "FMPath" in data:
        record.path = parse_path_elements(data["FMPath"], diagnostics)
    elif "Path" in data and kind == "path":
        diagnostics.warnf("%s has only archived path data, which is not supported", cls)

    record.start_point = parse_point(data.get("StartPoint"))
    record.end_point = parse_point(data.get("EndPoint"))
    record.point_length = float_for_key(data, "PointLength")

    record.has_corner_radius = bool_for_key(data, "HasCornerRadius", False, diagnostics)
    record.corner_radius = float_for_key(data, "CornerRadius")

    record.draws_fill = bool_for_key(data, "DrawsFill", False, diagnostics)
    record.fill_color = _decode_paint(data, "FillColor", diagnostics)
    record.draws_stroke = bool_for_key(data, "DrawsStroke", False, diagnostics)
    record.stroke_color = _decode_paint(data, "StrokeColor", diagnostics)
    record.stroke_width = float_for_key(data, "StrokeLineWidth")
    record.line_join = _decode_line_join(data.get("LineJoinStyle"), diagnostics)
    record.dash = float_for_key(data, "CustomStrokeStyleDash")
    record.gap = float_for_key(data, "CustomStrokeStyleGap")

    record.has_shadow = bool_for_key(data, "HasShadow", False, diagnostics)
    if record.has_shadow:
        record.shadow = _decode_shadow(data, diagnostics)
    if "GradientConfig" in data:
        record.gradient = decode_gradient(data["GradientConfig"], diagnostics)
    record.rotation = float_for_key(data, "RotationAngle")
    record.blend_mode = css_blend_mode(data.get("BlendMode"), diagnostics)

    if kind == "text":
        record.text = data.get("RTFD")
        record.text_stroke_width = float_for_key(data, "TextStrokeWidth")

    return record


def decode_shape_layer(data: Any, diagnostics: Diagnostics) -> ShapeLayerRecord:
    """Decode the top-level dictionary of a shape layer.

    Args:
        data: Parsed property list of the layer.
        diagnostics: Sink for non-fatal problems.

    Returns:
        ShapeLayerRecord (empty if the data is unusable).
    """
    if not isinstance(data, dict):
        diagnostics.warnf("shape layer data is not a dictionary, ignoring")
        return ShapeLayerRecord()

    cls = record_class(data)
    if cls not in (None, "TSShapeLayer"):
        diagnostics.warnf('unexpected shape layer class "%s"', cls)
    warn_if_unknown_keys(data, SHAPE_LAYER_KEYS, diagnostics, context="TSShapeLayer")

    graphics = list_for_key(data, "GraphicsList") or []
    opacity = float_for_key(data, "opacity", -1.0)
    return ShapeLayerRecord(
        graphics=graphics,
        layer_name=string_for_key(data, "layerName"),
        opacity=opacity if opacity >= 0 else None,
        visible=bool_for_key(data, "visible", True, diagnostics),
        compositing_mode=css_blend_mode(data.get("compositingMode"), diagnostics),
    )

