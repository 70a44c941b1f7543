"""Tests for acorn_svg.postprocess module."""

import pytest
from pathlib import Path
from xml.etree import ElementTree as ET

import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from acorn_svg.postprocess import (
    IdRegistry,
    assign_namespace_prefixes,
    conditionally_set_id,
    is_redundant_group,
    remove_redundant_groups,
    sanitize_id,
)
from acorn_svg.utils import make_element, svg_tag, xlink_attr


class TestIdRegistry:
    """Tests for IdRegistry class."""

    def test_claim(self):
        """First claim wins."""
        ids = IdRegistry()
        assert ids.claim("Layer") is True
        assert ids.claim("Layer") is False
        assert "Layer" in ids

    def test_claim_empty(self):
        """Empty ids are never claimed."""
        assert IdRegistry().claim("") is False

    def test_allocate_skips_used(self):
        """Allocated ids avoid ids already claimed by layers."""
        ids = IdRegistry()
        ids.claim("shadow1")
        assert ids.allocate("shadow") == "shadow2"
        assert ids.allocate("shadow") == "shadow3"
        assert ids.allocate("gradient") == "gradient1"


class TestSanitizeId:
    """Tests for sanitize_id function."""

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("Circle", "Circle"),
            ("Bitmap Layer 1", "Bitmap_Layer_1"),
            ("2nd", "_2nd"),
            ("a/b:c", "a_b_c"),
            ("-x", "_-x"),
        ],
    )
    def test_sanitize(self, name, expected):
        """Names become valid XML ids."""
        assert sanitize_id(name) == expected


class TestConditionallySetId:
    """Tests for conditionally_set_id function."""

    def test_duplicate_names(self):
        """The first layer keeps the id; the second gets none."""
        ids = IdRegistry()
        first = make_element("g")
        second = make_element("g")

        assert conditionally_set_id(first, "Layer", ids) is True
        assert conditionally_set_id(second, "Layer", ids) is False
        assert first.get("id") == "Layer"
        assert second.get("id") is None

    def test_empty_name(self):
        """Unnamed layers get no id."""
        element = make_element("g")
        assert conditionally_set_id(element, None, IdRegistry()) is False
        assert conditionally_set_id(element, "", IdRegistry()) is False
        assert "id" not in element.attrib


class TestIsRedundantGroup:
    """Tests for is_redundant_group function."""

    def test_single_child(self):
        """A bare group with one child is redundant."""
        group = make_element("g")
        make_element("rect", group)
        assert is_redundant_group(group)

    def test_neutral_opacity(self):
        """opacity="1" does not prevent collapsing."""
        group = make_element("g")
        group.set("opacity", "1")
        make_element("rect", group)
        assert is_redundant_group(group)

    @pytest.mark.parametrize("name,value", [("opacity", "0.5"), ("id", "Layer")])
    def test_attributes_keep_group(self, name, value):
        """Any other attribute keeps the group."""
        group = make_element("g")
        group.set(name, value)
        make_element("rect", group)
        assert not is_redundant_group(group)

    def test_child_count(self):
        """Empty groups and groups with several children are kept."""
        empty = make_element("g")
        pair = make_element("g")
        make_element("rect", pair)
        make_element("rect", pair)
        assert not is_redundant_group(empty)
        assert not is_redundant_group(pair)

    def test_not_a_group(self):
        """Only groups can be redundant."""
        text = make_element("text")
        make_element("tspan", text)
        assert not is_redundant_group(text)


class TestRemoveRedundantGroups:
    """Tests for remove_redundant_groups function."""

    def test_nested_chain_collapses(self):
        """Chains of redundant groups collapse in one call."""
        root = make_element("svg")
        outer = make_element("g", root)
        inner = make_element("g", outer)
        rect = make_element("rect", inner)

        assert remove_redundant_groups(root) == 2
        assert list(root) == [rect]

    def test_kept_groups_untouched(self):
        """Groups with ids survive; their redundant children do not."""
        root = make_element("svg")
        layer = make_element("g", root)
        layer.set("id", "Layer")
        wrapper = make_element("g", layer)
        ellipse = make_element("ellipse", wrapper)
        make_element("rect", root)

        assert remove_redundant_groups(root) == 1
        assert root[0] is layer
        assert list(layer) == [ellipse]

    def test_idempotent(self):
        """A second run changes nothing."""
        root = make_element("svg")
        group = make_element("g", root)
        make_element("g", make_element("g", group))
        make_element("rect", group)
        remove_redundant_groups(root)
        before = ET.tostring(root)

        assert remove_redundant_groups(root) == 0
        assert ET.tostring(root) == before


class TestAssignNamespacePrefixes:
    """Tests for assign_namespace_prefixes function."""

    def _build(self) -> ET.Element:
        root = make_element("svg")
        image = make_element("image", root)
        image.set(xlink_attr("href"), "a.png")
        image.set("width", "10")
        return root

    def test_prefixes(self):
        """Elements are unqualified and xlink attributes prefixed."""
        root = assign_namespace_prefixes(self._build())
        image = root[0]

        assert root.tag == "svg"
        assert image.tag == "image"
        assert image.get("xlink:href") == "a.png"
        assert image.get("width") == "10"

    def test_declarations_once(self):
        """Namespaces are declared once, on the root."""
        text = ET.tostring(assign_namespace_prefixes(self._build()), encoding="unicode")

        assert text.count('xmlns="http://www.w3.org/2000/svg"') == 1
        assert text.count('xmlns:xlink="http://www.w3.org/1999/xlink"') == 1
        assert "ns0" not in text

    def test_idempotent(self):
        """Running the pass twice gives the same tree."""
        root = assign_namespace_prefixes(self._build())
        first = ET.tostring(root)
        assign_namespace_prefixes(root)

        assert ET.tostring(root) == first

    def test_unknown_element_namespace(self):
        """Foreign elements are rejected."""
        root = make_element("svg")
        ET.SubElement(root, "{http://example.com/ns}thing")
        with pytest.raises(ValueError):
            assign_namespace_prefixes(root)

    def test_unknown_attribute_namespace(self):
        """Foreign attributes are rejected."""
        root = make_element("svg")
        root.set("{http://example.com/ns}attr", "1")
        with pytest.raises(ValueError):
            assign_namespace_prefixes(root)

    def test_tag_helpers_still_match(self):
        """Unqualified groups are still recognized as groups."""
        root = make_element("svg")
        group = make_element("g", root)
        make_element("rect", group)
        assign_namespace_prefixes(root)

        assert root[0].tag != svg_tag("g")
        assert remove_redundant_groups(root) == 1
