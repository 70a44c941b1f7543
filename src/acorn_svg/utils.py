"""Utility functions for building and inspecting SVG trees."""

from xml.etree import ElementTree as ET

# SVG namespace mappings
SVG_NAMESPACES = {
    "svg": "http://www.w3.org/2000/svg",
    "xlink": "http://www.w3.org/1999/xlink",
}

# Drawing elements to count
DRAWING_ELEMENTS = frozenset(
    [
        "rect",
        "circle",
        "ellipse",
        "line",
        "polyline",
        "polygon",
        "path",
        "text",
        "image",
        "use",
    ]
)


def svg_tag(local_name: str) -> str:
    """Return the namespaced tag for an SVG element.

    Example:
        >>> svg_tag("rect")
        '{http://www.w3.org/2000/svg}rect'
    """
    return f"{{{SVG_NAMESPACES['svg']}}}{local_name}"


def xlink_attr(local_name: str) -> str:
    """Return the namespaced name of an xlink attribute."""
    return f"{{{SVG_NAMESPACES['xlink']}}}{local_name}"


def make_element(local_name: str, parent: ET.Element | None = None) -> ET.Element:
    """Create an SVG element, appending it to parent when given."""
    if parent is None:
        return ET.Element(svg_tag(local_name))
    return ET.SubElement(parent, svg_tag(local_name))


def get_local_name(tag: str) -> str:
    """Extract local name from a namespaced tag.

    Args:
        tag: Full tag name, possibly with namespace.

    Returns:
        Local name without namespace prefix.

    Example:
        >>> get_local_name("{http://www.w3.org/2000/svg}rect")
        'rect'
    """
    if tag.startswith("{"):
        return tag.split("}", 1)[1]
    return tag


def get_namespace(tag: str) -> str | None:
    """Extract the namespace URI of a tag, or None if unqualified."""
    if tag.startswith("{"):
        return tag[1:].split("}", 1)[0]
    return None


def is_drawing_element(element: ET.Element) -> bool:
    """Check if an element is a drawing element.

    Args:
        element: An XML element.

    Returns:
        True if the element is a drawing element.
    """
    return get_local_name(element.tag) in DRAWING_ELEMENTS


def count_drawing_elements(root: ET.Element) -> dict[str, int]:
    """Count drawing elements below root by local name.

    Elements inside <defs> are not counted.
    """
    counts: dict[str, int] = {}

    def _visit(element: ET.Element) -> None:
        for child in element:
            local_name = get_local_name(child.tag)
            if local_name == "defs":
                continue
            if local_name in DRAWING_ELEMENTS:
                counts[local_name] = counts.get(local_name, 0) + 1
            _visit(child)

    _visit(root)
    return counts


def format_float(value: float, suffix: str | None = None) -> str:
    """Format a number compactly for an SVG attribute.

    Uses four decimals, then trims trailing zeros and a trailing dot.
    The result never depends on the locale.

    Args:
        value: Number to format.
        suffix: Optional unit suffix (e.g. "pt").

    Returns:
        Formatted string.

    Examples:
        >>> format_float(35.0)
        '35'
        >>> format_float(0.25)
        '0.25'
        >>> format_float(12.5, "pt")
        '12.5pt'
    """
    text = f"{value:.4f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    if text == "-0":
        text = "0"
    if suffix:
        text += suffix
    return text


def set_float_attribute(
    element: ET.Element, name: str, value: float, suffix: str | None = None
) -> None:
    """Set an attribute to a compactly formatted number."""
    element.set(name, format_float(value, suffix))
