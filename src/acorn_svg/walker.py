"""Recursive conversion of the layer tree into nested SVG groups."""

import logging
import plistlib
from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from xml.etree import ElementTree as ET
from xml.parsers.expat import ExpatError

from .attributes import Diagnostics, bool_for_key, float_for_key
from .encoder import DefsRegistry, encode_graphic
from .geometry import BoundingBox, PageFlip
from .postprocess import IdRegistry, conditionally_set_id
from .records import (
    LayerNode,
    ShapeLayerRecord,
    css_blend_mode,
    decode_graphic,
    decode_shape_layer,
)
from .utils import make_element, set_float_attribute

if TYPE_CHECKING:
    from .images import ImageSink

logger = logging.getLogger(__name__)


@dataclass
class WalkStats:
    """Counters collected while walking the layer tree."""

    layers_visited: int = 0
    layers_hidden: int = 0
    layers_unknown: int = 0
    graphics_emitted: int = 0
    graphics_skipped: int = 0
    rasters_emitted: int = 0


@dataclass
class ConversionContext:
    """State shared by one conversion of one document.

    Attributes:
        page_height: Page height used for the Y flip.
        diagnostics: Sink for non-fatal problems.
        ids: Document-wide id registry (layer ids and defs ids).
        defs: Shadow/gradient definitions (created from ids if omitted).
        images: Raster output for this combination, or None to skip rasters.
        text_metrics: Measure text runs for textLength.
        collapse_uniform_rasters: Emit single-color rasters as rects.
    """

    page_height: float
    diagnostics: Diagnostics = field(default_factory=Diagnostics)
    ids: IdRegistry = field(default_factory=IdRegistry)
    defs: DefsRegistry | None = None
    images: "ImageSink | None" = None
    text_metrics: bool = True
    collapse_uniform_rasters: bool = True
    stats: WalkStats = field(default_factory=WalkStats)

    def __post_init__(self) -> None:
        if self.defs is None:
            self.defs = DefsRegistry(self.ids)

    @property
    def flip(self) -> PageFlip:
        """Page-level coordinate mapping."""
        return PageFlip(self.page_height)


def layer_opacity(value: float | None) -> float | None:
    """Normalize a layer opacity; values above 1 are percentages."""
    if value is None:
        return None
    if value > 1:
        value = value / 100
    return min(max(value, 0.0), 1.0)


def _decode_shape_data(
    layer: LayerNode, diagnostics: Diagnostics
) -> ShapeLayerRecord | None:
    if not layer.data:
        diagnostics.warnf('shape layer "%s" has no data', layer.name)
        return None
    try:
        data = plistlib.loads(layer.data)
    except (ValueError, ExpatError) as e:
        diagnostics.warnf('shape layer "%s" has unreadable data: %s', layer.name, e)
        return None
    return decode_shape_layer(data, diagnostics)


def _add_graphics(
    shape: ShapeLayerRecord,
    layer: LayerNode,
    group: ET.Element,
    context: ConversionContext,
) -> None:
    flip = context.flip.for_frame(layer.frame)
    for raw in shape.graphics:
        record = decode_graphic(raw, context.diagnostics)
        if record is None:
            context.stats.graphics_skipped += 1
            continue
        elements = encode_graphic(
            record, flip, context.defs, context.diagnostics, context.text_metrics
        )
        if not elements:
            context.stats.graphics_skipped += 1
        group.extend(elements)
        context.stats.graphics_emitted += len(elements)


def _add_raster(
    layer: LayerNode, group: ET.Element, context: ConversionContext
) -> None:
    if context.images is None:
        context.diagnostics.warnf('raster layer "%s" skipped: no image output', layer.name)
        return

    image = context.images.decoded(layer)
    frame = layer.frame or BoundingBox(0, 0, image.width, image.height)
    box = context.flip.box(frame)

    if context.collapse_uniform_rasters:
        color = context.images.uniform_color(layer)
        if color is not None:
            rect = make_element("rect", group)
            set_float_attribute(rect, "x", box.x)
            set_float_attribute(rect, "y", box.y)
            set_float_attribute(rect, "width", box.width)
            set_float_attribute(rect, "height", box.height)
            rect.set("fill", color.to_svg())
            context.stats.rasters_emitted += 1
            return

    group.append(context.images.image_element(layer, box))
    context.stats.rasters_emitted += 1


def add_layer_to_element(
    layer: LayerNode, parent: ET.Element, context: ConversionContext
) -> ET.Element | None:
    """Convert a layer and its subtree into a <g> appended to parent.

    Invisible layers emit nothing. Unknown layer types produce an empty
    group whose children are still converted.

    Args:
        layer: Layer to convert.
        parent: Element receiving the group.
        context: Shared conversion state.

    Returns:
        The appended group, or None for an invisible layer.

    Raises:
        RasterError: If a raster layer cannot be decoded or encoded.
    """
    diagnostics = context.diagnostics
    attributes = layer.attributes

    if not bool_for_key(attributes, "visible", True, diagnostics):
        logger.debug("skipping hidden layer %r", layer.name)
        context.stats.layers_hidden += 1
        return None

    kind = layer.kind
    shape = _decode_shape_data(layer, diagnostics) if kind == "shape" else None
    if shape is not None and not shape.visible:
        context.stats.layers_hidden += 1
        return None

    context.stats.layers_visited += 1
    group = make_element("g")

    opacity = None
    if "opacity" in attributes:
        opacity = layer_opacity(float_for_key(attributes, "opacity", 1.0))
    elif shape is not None:
        opacity = layer_opacity(shape.opacity)
    if opacity is not None and abs(opacity - 1) > 1e-6:
        set_float_attribute(group, "opacity", opacity)

    blend_mode = css_blend_mode(attributes.get("blendMode"), diagnostics)
    if blend_mode is None and shape is not None:
        blend_mode = shape.compositing_mode
    if blend_mode:
        group.set("style", f"mix-blend-mode:{blend_mode}")

    name = layer.name or (shape.layer_name if shape is not None else None)
    conditionally_set_id(group, name, context.ids)

    if shape is not None:
        _add_graphics(shape, layer, group, context)
    elif kind == "raster":
        _add_raster(layer, group, context)
    elif kind == "unknown":
        diagnostics.warnf(
            'unknown layer type "%s" (layer "%s"), ignoring its contents',
            layer.uti,
            layer.name,
        )
        context.stats.layers_unknown += 1

    for child in layer.children:
        add_layer_to_element(child, group, context)

    parent.append(group)
    return group
