"""Geometry utilities: bounds, Acorn coordinate strings and path data."""

import re
from dataclasses import dataclass
from typing import Any, Literal

from .attributes import Diagnostics
from .utils import format_float

NUMBER_RE = re.compile(r"[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")

PathOp = Literal["moveto", "lineto", "curveto", "closepath"]

# NSBezierPathElement numbering
PATH_OPS: tuple[PathOp, ...] = ("moveto", "lineto", "curveto", "closepath")

PATH_OP_ALIASES: dict[str, PathOp] = {
    "m": "moveto",
    "move": "moveto",
    "moveto": "moveto",
    "l": "lineto",
    "line": "lineto",
    "lineto": "lineto",
    "c": "curveto",
    "curve": "curveto",
    "curveto": "curveto",
    "z": "closepath",
    "close": "closepath",
    "closepath": "closepath",
}

# Number of points carried by each operator
POINT_COUNTS: dict[PathOp, int] = {
    "moveto": 1,
    "lineto": 1,
    "curveto": 3,
    "closepath": 0,
}


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned bounding box."""

    x: float
    y: float
    width: float
    height: float

    @property
    def center_x(self) -> float:
        """X coordinate of the center."""
        return self.x + self.width / 2

    @property
    def center_y(self) -> float:
        """Y coordinate of the center."""
        return self.y + self.height / 2

    @property
    def center(self) -> tuple[float, float]:
        """Center point (x, y)."""
        return (self.center_x, self.center_y)


Point = tuple[float, float]


@dataclass(frozen=True)
class PathElement:
    """One element of a bezier path."""

    op: PathOp
    points: tuple[Point, ...] = ()


@dataclass(frozen=True)
class PageFlip:
    """Maps Acorn coordinates (Y up) to SVG coordinates (Y down).

    Acorn measures Y from the bottom edge of the page; SVG measures it from
    the top. Graphic coordinates are also relative to their layer's origin.
    """

    height: float
    origin_x: float = 0.0
    origin_y: float = 0.0

    def x(self, x: float) -> float:
        """Translate an X coordinate."""
        return self.origin_x + x

    def y(self, y: float) -> float:
        """Flip a Y coordinate."""
        return self.height - (self.origin_y + y)

    def point(self, point: Point) -> Point:
        """Translate and flip a point."""
        return (self.x(point[0]), self.y(point[1]))

    def box(self, bounds: BoundingBox) -> BoundingBox:
        """Return bounds in SVG space (origin at the top-left corner)."""
        return BoundingBox(
            x=self.x(bounds.x),
            y=self.y(bounds.y + bounds.height),
            width=bounds.width,
            height=bounds.height,
        )

    def unflip_y(self, y: float) -> float:
        """Inverse of y()."""
        return self.height - y - self.origin_y

    def for_frame(self, frame: BoundingBox | None) -> "PageFlip":
        """Return a flip for graphics relative to a layer frame."""
        if frame is None:
            return PageFlip(self.height)
        return PageFlip(self.height, frame.x, frame.y)


def _numbers(value: Any) -> list[float] | None:
    """Flatten a string, list or dict of numbers into a list of floats."""
    if isinstance(value, bytes):
        value = value.decode("utf-8", "replace")
    if isinstance(value, str):
        return [float(token) for token in NUMBER_RE.findall(value)]
    if isinstance(value, (list, tuple)):
        result: list[float] = []
        for item in value:
            if isinstance(item, bool):
                return None
            if isinstance(item, (int, float)):
                result.append(float(item))
                continue
            nested = _numbers(item)
            if nested is None:
                return None
            result.extend(nested)
        return result
    return None


def parse_point(value: Any) -> Point | None:
    """Parse a point such as "{12, 34}", [12, 34] or {"x": 12, "y": 34}.

    Returns:
        (x, y) tuple or None if the value is not a point.
    """
    if isinstance(value, dict):
        try:
            return (float(value["x"]), float(value["y"]))
        except (KeyError, TypeError, ValueError):
            return None
    numbers = _numbers(value)
    if numbers is None or len(numbers) != 2:
        return None
    return (numbers[0], numbers[1])


def parse_size(value: Any) -> tuple[float, float] | None:
    """Parse a size such as "{640, 480}"; dicts use width/height keys."""
    if isinstance(value, dict):
        try:
            return (float(value["width"]), float(value["height"]))
        except (KeyError, TypeError, ValueError):
            return None
    return parse_point(value)


def parse_bounds(value: Any) -> BoundingBox | None:
    """Parse a rectangle such as "{{10, 10}, {50, 50}}".

    Lists of four numbers and dicts with x/y/width/height keys are also
    accepted.

    Returns:
        BoundingBox or None if the value is not a rectangle.
    """
    if isinstance(value, dict):
        try:
            return BoundingBox(
                float(value["x"]),
                float(value["y"]),
                float(value["width"]),
                float(value["height"]),
            )
        except (KeyError, TypeError, ValueError):
            return None
    numbers = _numbers(value)
    if numbers is None or len(numbers) != 4:
        return None
    return BoundingBox(*numbers)


def _parse_path_op(value: Any) -> PathOp | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        if 0 <= value < len(PATH_OPS):
            return PATH_OPS[value]
        return None
    if isinstance(value, str):
        return PATH_OP_ALIASES.get(value.strip().lower())
    return None


def _parse_path_string(d: str) -> list[PathElement]:
    """Parse M/L/C/Z path text into absolute elements.

    Lowercase commands are relative to the current point, as in SVG.
    """
    tokens = re.findall(r"[MmLlCcZz]|" + NUMBER_RE.pattern, d)
    elements: list[PathElement] = []
    command: str | None = None
    numbers: list[float] = []
    current: Point = (0.0, 0.0)
    start: Point = (0.0, 0.0)

    def _flush() -> None:
        nonlocal current, start
        if command is None:
            return
        op = PATH_OP_ALIASES[command.lower()]
        relative = command.islower()
        count = POINT_COUNTS[op]
        if count == 0:
            elements.append(PathElement(op))
            current = start
            return
        step = count * 2
        if len(numbers) < step or len(numbers) % step:
            raise ValueError(f"bad argument count for {op}")
        for i in range(0, len(numbers), step):
            chunk = numbers[i : i + step]
            base = current if relative else (0.0, 0.0)
            points = tuple(
                (base[0] + chunk[j], base[1] + chunk[j + 1]) for j in range(0, step, 2)
            )
            # Extra coordinate pairs after a moveto are linetos
            this_op = op if i == 0 or op != "moveto" else "lineto"
            elements.append(PathElement(this_op, points))
            current = points[-1]
            if this_op == "moveto":
                start = current

    for token in tokens:
        if token.isalpha():
            _flush()
            command = token
            numbers = []
        else:
            numbers.append(float(token))
    _flush()
    return elements


def parse_path_elements(value: Any, diagnostics: Diagnostics) -> list[PathElement]:
    """Decode an FMPath value into path elements.

    The value is either path text using M/L/C/Z commands, or a list
    whose items are dicts ({"type": 0..3 or a name, "points": [...]}) or
    lists ([op, point, ...]).

    Args:
        value: Raw FMPath value.
        diagnostics: Sink for malformed elements.

    Returns:
        Decoded elements; malformed ones are skipped.
    """
    if isinstance(value, bytes):
        value = value.decode("utf-8", "replace")
    if isinstance(value, str):
        try:
            return _parse_path_string(value)
        except ValueError as e:
            diagnostics.warnf("could not parse path data: %s", e)
            return []
    if not isinstance(value, (list, tuple)):
        diagnostics.warnf("path data has unexpected type %s", type(value).__name__)
        return []

    elements: list[PathElement] = []
    for index, item in enumerate(value):
        if isinstance(item, dict):
            raw_op = item.get("type", item.get("op", item.get("element")))
            raw_points = item.get("points", [])
        elif isinstance(item, (list, tuple)) and item:
            raw_op = item[0]
            raw_points = list(item[1:])
        else:
            diagnostics.warnf("path element %d is malformed, ignoring", index)
            continue

        op = _parse_path_op(raw_op)
        if op is None:
            diagnostics.warnf("path element %d has unknown type %r, ignoring", index, raw_op)
            continue

        if not isinstance(raw_points, (list, tuple)):
            diagnostics.warnf("path element %d has bad points, ignoring", index)
            continue
        points = [parse_point(p) for p in raw_points]
        if any(p is None for p in points) or len(points) < POINT_COUNTS[op]:
            diagnostics.warnf("path element %d has bad points, ignoring", index)
            continue

        elements.append(PathElement(op, tuple(points[: POINT_COUNTS[op]])))  # type: ignore[arg-type]

    return elements


def iter_subpaths(elements: list[PathElement]) -> list[tuple[int, int, bool]]:
    """Split elements into subpaths.

    Returns:
        List of (first_index, element_count, closed). The closepath element
        itself is not counted.
    """
    subpaths: list[tuple[int, int, bool]] = []
    first = 0
    index = 0
    for index, element in enumerate(elements):
        if element.op == "moveto":
            if index > first:
                subpaths.append((first, index - first, False))
            first = index
        elif element.op == "closepath":
            subpaths.append((first, index - first, True))
            first = index + 1
    if len(elements) > first:
        subpaths.append((first, len(elements) - first, False))
    return subpaths


def format_point(point: Point) -> str:
    """Format a point as "x y"."""
    return f"{format_float(point[0])} {format_float(point[1])}"


def svg_path_data(
    elements: list[PathElement],
    flip: PageFlip,
    diagnostics: Diagnostics,
) -> str:
    """Build a compact SVG path "d" attribute.

    Coordinates are flipped into SVG space. Repeated operators are omitted,
    axis-aligned segments use h/v, and each lineto uses whichever of the
    absolute and relative forms is shorter.

    Args:
        elements: Path elements in Acorn coordinates.
        flip: Coordinate mapping for the owning layer.
        diagnostics: Sink for malformed subpaths.

    Returns:
        Path data string (empty if nothing drawable).
    """
    ops: list[str] = []

    for first, count, closed in iter_subpaths(elements):
        # Zero-length subpaths come from some path constructors
        if count < 1:
            continue

        head = elements[first]
        if head.op != "moveto":
            diagnostics.warnf(
                "subpath at index %d starts with %s (no current point), ignoring",
                first,
                head.op,
            )
            continue

        # An isolated moveto has no effect
        if count < 2:
            continue

        start = flip.point(head.points[0])
        prev = start
        ops.append("M")
        ops.append(format_point(start))
        implicit = "L"

        def insert_op(op: str) -> None:
            nonlocal implicit
            if op != implicit:
                ops.append(op)
                implicit = op

        for ix in range(1, count):
            element = elements[first + ix]
            if element.op == "lineto":
                point = flip.point(element.points[0])

                # The closing lineto of a closed path is implied by Z
                if ix > 1 and ix + 1 == count and closed and point == start:
                    continue

                already_relative = implicit == "l"
                if not already_relative and point[0] == prev[0]:
                    insert_op("v")
                    ops.append(format_float(point[1] - prev[1]))
                elif not already_relative and point[1] == prev[1]:
                    insert_op("h")
                    ops.append(format_float(point[0] - prev[0]))
                else:
                    absolute = format_point(point)
                    relative = format_point((point[0] - prev[0], point[1] - prev[1]))
                    if len(absolute) <= len(relative):
                        insert_op("L")
                        ops.append(absolute)
                    else:
                        insert_op("l")
                        ops.append(relative)
                prev = point
            elif element.op == "curveto":
                insert_op("C")
                points = [flip.point(p) for p in element.points]
                ops.extend(format_point(p) for p in points)
                prev = points[2]

        if closed:
            ops.append("Z")

    return " ".join(ops)
