"""Tests for acorn_svg.records module."""

import pytest
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from builders import archived_color

from acorn_svg.attributes import Diagnostics
from acorn_svg.geometry import BoundingBox
from acorn_svg.records import (
    BITMAP_LAYER_UTI,
    GROUP_LAYER_UTI,
    SHAPE_LAYER_UTI,
    Color,
    LayerNode,
    ShadowSpec,
    css_blend_mode,
    decode_gradient,
    decode_graphic,
    decode_shape_layer,
    parse_color,
)


class TestColor:
    """Tests for Color and parse_color."""

    def test_hex(self):
        """Hex strings are parsed with and without alpha."""
        assert parse_color("#FF0000") == Color(1, 0, 0, 1)
        color = parse_color("#0000FF80")
        assert color.blue == 1
        assert color.alpha == pytest.approx(128 / 255)

    def test_component_string(self):
        """Space-separated component strings are parsed."""
        assert parse_color("1 0 0 0.5") == Color(1, 0, 0, 0.5)
        assert parse_color("0, 1, 0") == Color(0, 1, 0)

    def test_list_and_dict(self):
        """Lists and r/g/b dicts are parsed."""
        assert parse_color([0, 0, 1]) == Color(0, 0, 1)
        assert parse_color({"r": 1, "g": 1, "b": 0, "a": 0.25}) == Color(1, 1, 0, 0.25)

    def test_archived_nscolor(self):
        """NSArchiver NSColor data is decoded."""
        color = parse_color(archived_color(1, 0.5, 0.25, 0.5))
        assert color == Color(1, 0.5, 0.25, 0.5)
        assert color.to_svg() == "rgba(255,128,64,0.5)"

    def test_unrecognized(self):
        """Truncated archives and junk are not colors."""
        assert parse_color(b"\x00archived") is None
        assert parse_color("red") is None
        assert parse_color([1, 2]) is None
        assert parse_color(None) is None

    def test_to_svg(self):
        """Opaque colors are hex; translucent ones use rgba()."""
        assert Color(1, 0, 0).to_svg() == "#ff0000"
        assert Color(1, 0, 0, 0.5).to_svg() == "rgba(255,0,0,0.5)"
        assert Color(0.5, 0.5, 0.5).hex() == "#808080"

    def test_components_clamped(self):
        """Out-of-range components are clamped to 0..255."""
        assert Color(2, -1, 0).rgb_bytes() == (255, 0, 0)


class TestDecodeGraphic:
    """Tests for decode_graphic function."""

    def test_circle(self, circle_graphic):
        """A circle decodes to an ellipse record."""
        diagnostics = Diagnostics()
        record = decode_graphic(circle_graphic, diagnostics)

        assert record.kind == "ellipse"
        assert record.bounds == BoundingBox(10, 10, 50, 50)
        assert record.draws_fill is True
        assert record.fill_color == Color(1, 0, 0)
        assert record.draws_stroke is False
        assert len(diagnostics) == 0

    def test_unknown_key_reported_once(self, circle_graphic):
        """An unknown key yields exactly one diagnostic and no other change."""
        diagnostics = Diagnostics()
        expected = decode_graphic(circle_graphic, Diagnostics())

        record = decode_graphic(dict(circle_graphic, FutureFeature=1), diagnostics)

        assert len(diagnostics) == 1
        assert "FutureFeature" in diagnostics.messages[0]
        assert record == expected

    def test_unknown_class(self):
        """Unknown classes are reported and skipped."""
        diagnostics = Diagnostics()
        assert decode_graphic({"Class": "Hologram"}, diagnostics) is None
        assert diagnostics.messages == ['unknown Acorn shape class "Hologram", ignoring']

    def test_not_a_dict(self):
        """Non-dictionary graphics are skipped."""
        diagnostics = Diagnostics()
        assert decode_graphic("Circle", diagnostics) is None
        assert len(diagnostics) == 1

    def test_class_is_case_insensitive(self):
        """Class names are matched ignoring case."""
        record = decode_graphic({"Class": "RECTANGLE"}, Diagnostics())
        assert record.kind == "rect"

    def test_stroke_attributes(self):
        """Stroke settings are coerced."""
        data = {
            "Class": "Rectangle",
            "Bounds": "{{0, 0}, {10, 10}}",
            "DrawsStroke": "1",
            "StrokeColor": "0 1 0",
            "StrokeLineWidth": "2.5",
            "LineJoinStyle": 1,
            "CustomStrokeStyleDash": 4,
        }
        record = decode_graphic(data, Diagnostics())

        assert record.draws_stroke is True
        assert record.stroke_color == Color(0, 1, 0)
        assert record.stroke_width == pytest.approx(2.5)
        assert record.line_join == "round"
        assert record.dash == 4

    def test_unknown_line_join(self):
        """Out-of-range join styles are reported and dropped."""
        diagnostics = Diagnostics()
        record = decode_graphic({"Class": "Line", "LineJoinStyle": 7}, diagnostics)

        assert record.line_join is None
        assert len(diagnostics) == 1

    def test_archived_paints(self):
        """Archived fill, stroke and shadow colors are decoded."""
        data = {
            "Class": "Rectangle",
            "Bounds": "{{0, 0}, {10, 10}}",
            "DrawsFill": True,
            "FillColor": archived_color(0, 0, 1),
            "StrokeColor": archived_color(0, 1, 0),
            "HasShadow": True,
            "ShadowColor": archived_color(0, 0, 0, 0.5),
        }
        diagnostics = Diagnostics()
        record = decode_graphic(data, diagnostics)

        assert record.fill_color == Color(0, 0, 1)
        assert record.stroke_color == Color(0, 1, 0)
        assert record.shadow.color == Color(0, 0, 0, 0.5)
        assert len(diagnostics) == 0

    def test_archived_paint_reported(self):
        """Undecodable archived data is reported as an unknown paint."""
        diagnostics = Diagnostics()
        data = {"Class": "Oval", "Bounds": "{{0, 0}, {1, 1}}", "FillColor": b"\x04\x0bstreamtyped"}
        record = decode_graphic(data, diagnostics)

        assert record.fill_color is None
        assert diagnostics.messages == [
            'unknown paint in "FillColor": expected a color, got undecodable archived data'
        ]

    def test_shadow(self):
        """Shadows are decoded only when HasShadow is set."""
        data = {
            "Class": "Rectangle",
            "Bounds": "{{0, 0}, {10, 10}}",
            "HasShadow": True,
            "ShadowBlurRadius": 4,
            "ShadowOffset": "{2, -2}",
            "ShadowColor": "#00000080",
        }
        record = decode_graphic(data, Diagnostics())
        assert record.has_shadow is True
        assert record.shadow == ShadowSpec(4.0, (2.0, -2.0), parse_color("#00000080"))

        record = decode_graphic(dict(data, HasShadow=False), Diagnostics())
        assert record.has_shadow is False
        assert record.shadow is None

    def test_default_shadow_color(self):
        """A shadow without a color is translucent black."""
        data = {"Class": "Rectangle", "HasShadow": True}
        record = decode_graphic(data, Diagnostics())
        assert record.shadow.color == Color(0, 0, 0, 1 / 3)

    def test_transparent_shadow_dropped(self):
        """A fully transparent shadow draws nothing."""
        data = {"Class": "Rectangle", "HasShadow": True, "ShadowColor": "0 0 0 0"}
        assert decode_graphic(data, Diagnostics()).shadow is None

    def test_path_graphic(self):
        """Path graphics decode FMPath."""
        data = {"Class": "Path", "FMPath": "M 0 0 L 10 10"}
        record = decode_graphic(data, Diagnostics())
        assert record.kind == "path"
        assert len(record.path) == 2

    def test_text_graphic(self):
        """Text graphics keep their raw payload."""
        data = {"Class": "TextArea", "Bounds": "{{0, 0}, {10, 10}}", "RTFD": "hi", "TextStrokeWidth": -3}
        record = decode_graphic(data, Diagnostics())
        assert record.kind == "text"
        assert record.text == "hi"
        assert record.text_stroke_width == -3


class TestDecodeGradient:
    """Tests for decode_gradient function."""

    def test_colors_with_default_locations(self):
        """Stops are spread evenly without Locations."""
        spec = decode_gradient({"Colors": ["#FF0000", "#0000FF"], "Angle": 90}, Diagnostics())
        assert spec.kind == "linear"
        assert spec.angle == 90
        assert spec.stops == ((0.0, Color(1, 0, 0)), (1.0, Color(0, 0, 1)))

    def test_start_end_colors_radial(self):
        """StartColor/EndColor and radial types are recognized."""
        spec = decode_gradient(
            {"Type": "radial", "StartColor": "1 1 1", "EndColor": "0 0 0"}, Diagnostics()
        )
        assert spec.kind == "radial"
        assert len(spec.stops) == 2

    def test_too_few_colors(self):
        """A single color is not a gradient."""
        diagnostics = Diagnostics()
        assert decode_gradient({"Colors": ["#FF0000"]}, diagnostics) is None
        assert len(diagnostics) == 1

    def test_equal_configs_are_equal(self):
        """Equal configs decode to equal (hashable) specs."""
        config = {"Colors": ["#FF0000", "#0000FF"]}
        first = decode_gradient(config, Diagnostics())
        second = decode_gradient(dict(config), Diagnostics())
        assert first == second
        assert hash(first) == hash(second)


class TestDecodeShapeLayer:
    """Tests for decode_shape_layer function."""

    def test_fields(self):
        """Layer-level keys are decoded."""
        data = {
            "class": "TSShapeLayer",
            "GraphicsList": [{"Class": "Circle"}],
            "layerName": "Shapes",
            "opacity": 0.5,
            "visible": False,
            "compositingMode": 1,
        }
        diagnostics = Diagnostics()
        shape = decode_shape_layer(data, diagnostics)

        assert shape.graphics == [{"Class": "Circle"}]
        assert shape.layer_name == "Shapes"
        assert shape.opacity == 0.5
        assert shape.visible is False
        assert shape.compositing_mode == "multiply"
        assert len(diagnostics) == 0

    def test_missing_opacity(self):
        """Missing opacity is None, not zero."""
        shape = decode_shape_layer({"GraphicsList": []}, Diagnostics())
        assert shape.opacity is None

    def test_unknown_key(self):
        """Unknown layer keys are reported."""
        diagnostics = Diagnostics()
        decode_shape_layer({"class": "TSShapeLayer", "mystery": 1}, diagnostics)
        assert diagnostics.messages == ['unknown key "mystery" (in TSShapeLayer), ignoring']

    def test_not_a_dict(self):
        """Unusable data yields an empty layer."""
        diagnostics = Diagnostics()
        shape = decode_shape_layer([1, 2], diagnostics)
        assert shape.graphics == []
        assert len(diagnostics) == 1


class TestCssBlendMode:
    """Tests for css_blend_mode function."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (1, "multiply"),
            ("2", "screen"),
            ("overlay", "overlay"),
            ("colorDodge", "color-dodge"),
            ("kCGBlendModeMultiply", "multiply"),
            ("soft-light", "soft-light"),
        ],
    )
    def test_mapped(self, value, expected):
        """Numbers and names map to CSS names."""
        diagnostics = Diagnostics()
        assert css_blend_mode(value, diagnostics) == expected
        assert len(diagnostics) == 0

    def test_normal_and_absent(self):
        """Normal and absent modes need no style."""
        diagnostics = Diagnostics()
        assert css_blend_mode(0, diagnostics) is None
        assert css_blend_mode(None, diagnostics) is None
        assert len(diagnostics) == 0

    def test_unsupported(self):
        """Unmapped modes fall back to normal with a diagnostic."""
        diagnostics = Diagnostics()
        assert css_blend_mode(99, diagnostics) is None
        assert diagnostics.messages == ["unsupported blend mode 99, using normal"]


class TestLayerNode:
    """Tests for LayerNode class."""

    def test_oid_is_read_only(self):
        """The oid cannot be reassigned; other fields can."""
        layer = LayerNode(oid=b"1", name="Layer")
        with pytest.raises(AttributeError):
            layer.oid = b"2"
        layer.name = "Renamed"
        assert layer.name == "Renamed"

    @pytest.mark.parametrize(
        "oid,uti,kind",
        [
            (b"1", SHAPE_LAYER_UTI, "shape"),
            (b"1", GROUP_LAYER_UTI, "group"),
            (b"1", BITMAP_LAYER_UTI, "raster"),
            (b"1", "public.png", "raster"),
            (b"1", "com.example.unknown", "unknown"),
            (None, None, "group"),
        ],
    )
    def test_kind(self, oid, uti, kind):
        """Layers are classified by uti; the root is a group."""
        assert LayerNode(oid=oid, uti=uti).kind == kind

    def test_iter_layers(self):
        """Iteration is depth-first, parents first."""
        child = LayerNode(oid=b"c", name="c")
        group = LayerNode(oid=b"g", name="g", uti=GROUP_LAYER_UTI, children=[child])
        root = LayerNode(oid=None, children=[group])
        assert [layer.name for layer in root.iter_layers()] == [None, "g", "c"]

    def test_to_dict(self):
        """Dicts include frame and children only when present."""
        child = LayerNode(oid=b"c", name="c", uti=SHAPE_LAYER_UTI)
        group = LayerNode(
            oid=b"g",
            name="g",
            uti=GROUP_LAYER_UTI,
            children=[child],
            frame=BoundingBox(0, 0, 10, 20),
        )
        assert group.to_dict() == {
            "name": "g",
            "uti": GROUP_LAYER_UTI,
            "kind": "group",
            "frame": [0, 0, 10, 20],
            "children": [{"name": "c", "uti": SHAPE_LAYER_UTI, "kind": "shape"}],
        }
