"""Passes over a finished SVG tree: group collapsing, namespaces and ids."""

import logging
from dataclasses import dataclass, field
from xml.etree import ElementTree as ET

from .utils import SVG_NAMESPACES, get_local_name, get_namespace, svg_tag

logger = logging.getLogger(__name__)

# Attributes a group may carry and still be collapsed
NEUTRAL_GROUP_ATTRIBUTES = {"opacity": "1"}

# Namespace URI to the prefix written for qualified attributes
ATTRIBUTE_PREFIXES = {
    SVG_NAMESPACES["svg"]: "",
    SVG_NAMESPACES["xlink"]: "xlink:",
}


@dataclass
class IdRegistry:
    """Document-wide set of element ids.

    The first claimant of an id keeps it; later claims are refused.
    """

    used: set[str] = field(default_factory=set)

    def __contains__(self, element_id: str) -> bool:
        return element_id in self.used

    def claim(self, element_id: str) -> bool:
        """Reserve an id. Returns False if it is already taken."""
        if not element_id or element_id in self.used:
            return False
        self.used.add(element_id)
        return True

    def allocate(self, prefix: str) -> str:
        """Reserve and return the first free id of the form prefixN.

        Example:
            >>> ids = IdRegistry()
            >>> ids.allocate("shadow"), ids.allocate("shadow")
            ('shadow1', 'shadow2')
        """
        index = 1
        while f"{prefix}{index}" in self.used:
            index += 1
        element_id = f"{prefix}{index}"
        self.used.add(element_id)
        return element_id


def _is_name_start_char(char: str) -> bool:
    return char.isalpha() or char == "_"


def _is_name_char(char: str) -> bool:
    return char.isalnum() or char in "_-."


def sanitize_id(name: str) -> str:
    """Turn a layer name into a valid XML id.

    Invalid characters become "_"; a name that cannot start an XML name gets
    a leading "_".

    Examples:
        >>> sanitize_id("Circle")
        'Circle'
        >>> sanitize_id("Bitmap Layer 1")
        'Bitmap_Layer_1'
        >>> sanitize_id("2nd")
        '_2nd'
    """
    result = "".join(char if _is_name_char(char) else "_" for char in name)
    if result and not _is_name_start_char(result[0]):
        result = "_" + result
    return result


def conditionally_set_id(
    element: ET.Element, name: str | None, ids: IdRegistry
) -> bool:
    """Set element's id from name unless the name is empty or already used.

    Collisions are skipped silently; nothing is renamed.

    Args:
        element: Element to label.
        name: Candidate name (usually a layer name).
        ids: Document-wide id registry.

    Returns:
        True if the id was set.
    """
    if not name:
        return False
    element_id = sanitize_id(name)
    if not ids.claim(element_id):
        logger.debug("id %r already in use, not assigned", element_id)
        return False
    element.set("id", element_id)
    return True


def _is_group(element: ET.Element) -> bool:
    return element.tag in (svg_tag("g"), "g")


def is_redundant_group(element: ET.Element) -> bool:
    """Check if a group adds nothing and can be replaced by its child.

    A redundant group has exactly one element child, no text, and no
    attributes other than opacity="1".
    """
    if not _is_group(element) or len(element) != 1:
        return False
    if element.text and element.text.strip():
        return False
    for name, value in element.attrib.items():
        if NEUTRAL_GROUP_ATTRIBUTES.get(name) != value:
            return False
    return True


def remove_redundant_groups(root: ET.Element) -> int:
    """Replace every redundant group below root by its only child.

    Children are processed before their parents, so chains of nested
    redundant groups collapse in a single call. The tree is modified in
    place.

    Returns:
        Number of groups removed.
    """
    removed = 0
    # Iterate backwards so replacements do not shift unvisited children
    for index in range(len(root) - 1, -1, -1):
        child = root[index]
        removed += remove_redundant_groups(child)
        if is_redundant_group(child):
            replacement = child[0]
            replacement.tail = child.tail
            root[index] = replacement
            removed += 1
    return removed


def _qualified_attribute(name: str) -> str:
    namespace = get_namespace(name)
    if namespace is None:
        return name
    if namespace not in ATTRIBUTE_PREFIXES:
        raise ValueError(f"Attribute {name} uses an unknown namespace")
    return ATTRIBUTE_PREFIXES[namespace] + get_local_name(name)


def assign_namespace_prefixes(root: ET.Element) -> ET.Element:
    """Rewrite namespaced names into prefixed form.

    SVG elements become unqualified, xlink attributes get the "xlink:"
    prefix, and the root declares both namespaces exactly once. Running
    the pass again leaves the tree unchanged.

    Args:
        root: Root svg element (modified in place).

    Returns:
        The root element.

    Raises:
        ValueError: If an element or attribute uses an unknown namespace.
    """
    for element in root.iter():
        if not isinstance(element.tag, str):
            continue
        namespace = get_namespace(element.tag)
        if namespace is not None:
            if namespace != SVG_NAMESPACES["svg"]:
                raise ValueError(f"Element {element.tag} uses an unknown namespace")
            element.tag = get_local_name(element.tag)

        if any(name.startswith("{") for name in element.attrib):
            items = list(element.attrib.items())
            element.attrib.clear()
            for name, value in items:
                element.set(_qualified_attribute(name), value)

    root.set("xmlns", SVG_NAMESPACES["svg"])
    root.set("xmlns:xlink", SVG_NAMESPACES["xlink"])
    return root
