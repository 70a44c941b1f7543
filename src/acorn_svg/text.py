"""Rich text runs and font metrics for text graphics.

Text graphics carry their contents as RTF (or flattened RTFD, which wraps an
RTF document). Only what affects rendering is extracted: the characters and,
per run, the font family, size, weight, slant and color.
"""

import logging
import re
import subprocess
from dataclasses import dataclass, field, replace
from functools import lru_cache
from typing import Any

import freetype

from .attributes import Diagnostics
from .records import Color

logger = logging.getLogger(__name__)

# Measurement size for accurate font metrics (larger = more accurate)
MEASURE_FONT_SIZE_PT = 100

DEFAULT_FONT_NAME = "Helvetica"
DEFAULT_FONT_SIZE = 12.0

# Fallback ratios used when no font file can be found
ASCENT_RATIO = 0.8
LINE_HEIGHT_RATIO = 1.2

# RTF font table family classes to CSS generic families
GENERIC_FAMILIES = {
    "fswiss": "sans-serif",
    "froman": "serif",
    "fmodern": "monospace",
    "fscript": "cursive",
    "fdecor": "fantasy",
}

# Style words in the suffix of PostScript names such as "Helvetica-BoldOblique"
FONT_WEIGHTS = {
    "thin": 100,
    "hairline": 100,
    "ultralight": 200,
    "extralight": 200,
    "light": 300,
    "book": 400,
    "regular": 400,
    "roman": 400,
    "normal": 400,
    "medium": 500,
    "semibold": 600,
    "demibold": 600,
    "demi": 600,
    "bold": 700,
    "extrabold": 800,
    "ultrabold": 800,
    "heavy": 800,
    "black": 900,
}
FONT_SLANTS = {"italic": "italic", "oblique": "oblique"}
FONT_STRETCHES = {
    "condensed": "condensed",
    "narrow": "condensed",
    "compressed": "condensed",
    "expanded": "expanded",
    "extended": "expanded",
    "wide": "expanded",
}

# Longest words first so "semibold" is not read as "bold"
STYLE_WORD_RE = re.compile(
    "|".join(
        sorted([*FONT_WEIGHTS, *FONT_SLANTS, *FONT_STRETCHES], key=len, reverse=True)
    )
)
POSTSCRIPT_SUFFIX_RE = re.compile(r"(?:PSMT|PS|MT)$")
CSS_IDENT_RE = re.compile(r"-?[_a-zA-Z][_a-zA-Z0-9-]*")
CSS_GENERIC_FAMILIES = frozenset(
    ["serif", "sans-serif", "monospace", "cursive", "fantasy", "inherit", "initial"]
)

RTF_TOKEN_RE = re.compile(
    r"\\([a-zA-Z]+)(-?\d+)? ?"  # control word
    r"|\\'([0-9a-fA-F]{2})"  # hex-escaped byte
    r"|\\(.)"  # control symbol
    r"|([{}])"  # group delimiter
    r"|([^\\{}\r\n]+)"  # plain text
    r"|[\r\n]+",
    re.S,
)

# Destinations whose contents are never rendered text
SKIPPED_DESTINATIONS = frozenset(
    [
        "stylesheet",
        "info",
        "pict",
        "header",
        "footer",
        "expandedcolortbl",
        "listtable",
        "listoverridetable",
        "NeXTGraphic",
        "field",
        "fldinst",
    ]
)


@dataclass(frozen=True)
class TextRun:
    """A run of characters sharing one set of font attributes."""

    text: str
    font_name: str = DEFAULT_FONT_NAME
    font_size: float = DEFAULT_FONT_SIZE
    bold: bool = False
    italic: bool = False
    color: Color | None = None
    generic_family: str | None = None

    def same_style(self, other: "TextRun") -> bool:
        """Check if two runs can be merged."""
        return replace(self, text="") == replace(other, text="")


@dataclass
class _RtfState:
    font: int = 0
    size: float = DEFAULT_FONT_SIZE
    bold: bool = False
    italic: bool = False
    color: int = 0
    destination: str | None = None
    unicode_skip: int = 1


@dataclass
class _RtfParser:
    runs: list[TextRun] = field(default_factory=list)
    fonts: dict[int, tuple[str, str | None]] = field(default_factory=dict)
    colors: list[Color | None] = field(default_factory=list)
    state: _RtfState = field(default_factory=_RtfState)
    stack: list[_RtfState] = field(default_factory=list)
    pending_skip: int = 0
    font_index: int = 0
    font_name: str = ""
    font_generic: str | None = None
    color_parts: dict[str, int] = field(default_factory=dict)

    def parse(self, rtf: str) -> list[TextRun]:
        for match in RTF_TOKEN_RE.finditer(rtf):
            word, param, hex_byte, symbol, brace, text = match.groups()
            if brace == "{":
                self.stack.append(replace(self.state))
            elif brace == "}":
                self._end_group()
            elif word is not None:
                self._control_word(word, int(param) if param is not None else None)
            elif hex_byte is not None:
                self._text(bytes([int(hex_byte, 16)]).decode("cp1252", "replace"))
            elif symbol is not None:
                self._control_symbol(symbol)
            elif text is not None:
                self._text(text)
        return self.runs

    def _end_group(self) -> None:
        if self.state.destination == "fonttbl" and self.font_name.strip():
            self._finish_font()
        if self.stack:
            self.state = self.stack.pop()

    def _finish_font(self) -> None:
        name = self.font_name.strip().rstrip(";").strip()
        if name:
            self.fonts[self.font_index] = (name, self.font_generic)
        self.font_name = ""
        self.font_generic = None

    def _control_symbol(self, symbol: str) -> None:
        if symbol == "*":
            self.state.destination = "skip"
        elif symbol in "\\{}":
            self._text(symbol)
        elif symbol == "~":
            self._text("\u00a0")
        elif symbol == "_":
            self._text("-")
        elif symbol in "\r\n":
            self._text("\n")

    def _control_word(self, word: str, param: int | None) -> None:
        state = self.state
        if word in ("fonttbl", "colortbl"):
            state.destination = word
            return
        if word in SKIPPED_DESTINATIONS:
            state.destination = "skip"
            return

        if state.destination == "fonttbl":
            if word == "f" and param is not None:
                if self.font_name.strip():
                    self._finish_font()
                self.font_index = param
                self.font_name = ""
                self.font_generic = None
            elif word in GENERIC_FAMILIES:
                self.font_generic = GENERIC_FAMILIES[word]
            return
        if state.destination == "colortbl":
            if word in ("red", "green", "blue") and param is not None:
                self.color_parts[word] = param
            return
        if state.destination is not None:
            return

        flag = param is None or param != 0
        if word == "f" and param is not None:
            state.font = param
        elif word == "fs" and param is not None:
            state.size = param / 2
        elif word == "b":
            state.bold = flag
        elif word == "i":
            state.italic = flag
        elif word == "cf" and param is not None:
            state.color = param
        elif word == "plain":
            state.font = 0
            state.size = DEFAULT_FONT_SIZE
            state.bold = False
            state.italic = False
        elif word in ("par", "line"):
            self._text("\n")
        elif word == "tab":
            self._text("\t")
        elif word == "uc" and param is not None:
            state.unicode_skip = param
        elif word == "u" and param is not None:
            code = param + 65536 if param < 0 else param
            self._text(chr(code))
            self.pending_skip = state.unicode_skip

    def _text(self, text: str) -> None:
        state = self.state
        if state.destination == "fonttbl":
            self.font_name += text
            if ";" in text:
                self._finish_font()
            return
        if state.destination == "colortbl":
            for _ in range(text.count(";")):
                if self.color_parts:
                    self.colors.append(
                        Color(
                            self.color_parts.get("red", 0) / 255,
                            self.color_parts.get("green", 0) / 255,
                            self.color_parts.get("blue", 0) / 255,
                        )
                    )
                else:
                    self.colors.append(None)
                self.color_parts = {}
            return
        if state.destination is not None:
            return

        # Fallback characters following a \u escape
        if self.pending_skip:
            dropped = min(self.pending_skip, len(text))
            self.pending_skip -= dropped
            text = text[dropped:]
            if not text:
                return

        color = self.colors[state.color] if 0 <= state.color < len(self.colors) else None
        font_name, generic_family = self.fonts.get(state.font, (DEFAULT_FONT_NAME, None))
        run = TextRun(
            text=text,
            font_name=font_name,
            font_size=state.size,
            bold=state.bold,
            italic=state.italic,
            color=color,
            generic_family=generic_family,
        )
        if self.runs and self.runs[-1].same_style(run):
            self.runs[-1] = replace(self.runs[-1], text=self.runs[-1].text + text)
        else:
            self.runs.append(run)


def extract_rtf(payload: bytes) -> str | None:
    """Return the RTF document inside an RTF or flattened RTFD payload."""
    start = payload.find(b"{\\rtf")
    if start < 0:
        return None
    depth = 0
    for index in range(start, len(payload)):
        byte = payload[index : index + 1]
        if byte == b"{" and payload[index - 1 : index] != b"\\":
            depth += 1
        elif byte == b"}" and payload[index - 1 : index] != b"\\":
            depth -= 1
            if depth == 0:
                return payload[start : index + 1].decode("latin-1")
    return payload[start:].decode("latin-1")


def parse_rich_text(payload: Any, diagnostics: Diagnostics) -> list[TextRun]:
    """Extract plain text runs from a text graphic's payload.

    Args:
        payload: RTF/RTFD bytes, RTF text, or plain text.
        diagnostics: Sink for undecodable payloads.

    Returns:
        Runs in reading order. Line breaks are kept as "\\n" inside runs.
    """
    if payload is None:
        return []
    if isinstance(payload, str):
        if payload.lstrip().startswith("{\\rtf"):
            return _RtfParser().parse(payload)
        return [TextRun(payload)] if payload else []
    if isinstance(payload, bytes):
        rtf = extract_rtf(payload)
        if rtf is None:
            diagnostics.warnf("text payload contains no RTF document, ignoring")
            return []
        return _RtfParser().parse(rtf)
    diagnostics.warnf("text payload has unexpected type %s, ignoring", type(payload).__name__)
    return []


def split_lines(runs: list[TextRun]) -> list[list[TextRun]]:
    """Split runs at line breaks.

    Returns:
        One list of runs per line; empty lines yield empty lists.
    """
    lines: list[list[TextRun]] = [[]]
    for run in runs:
        parts = run.text.split("\n")
        for index, part in enumerate(parts):
            if index > 0:
                lines.append([])
            if part:
                lines[-1].append(replace(run, text=part))
    # A trailing paragraph mark does not start a new line
    if len(lines) > 1 and not lines[-1]:
        lines.pop()
    return lines


@dataclass(frozen=True)
class FontStyle:
    """CSS font properties derived from a font name and run flags."""

    family: str
    weight: int = 400
    slant: str = "normal"
    stretch: str = "normal"
    generic: str | None = None

    @property
    def weight_name(self) -> str:
        """CSS font-weight keyword or number."""
        if self.weight == 700:
            return "bold"
        if self.weight == 400:
            return "normal"
        return str(self.weight)

    def family_list(self) -> str:
        """CSS font-family value: the family, then the generic fallback."""
        families = [css_family_name(self.family)]
        if self.generic is not None:
            families.append(self.generic)
        return ", ".join(families)

    def attributes(self) -> dict[str, str]:
        """Presentation attributes; properties at their normal value are left out."""
        attrs = {"font-family": self.family_list()}
        if self.weight != 400:
            attrs["font-weight"] = self.weight_name
        if self.slant != "normal":
            attrs["font-style"] = self.slant
        if self.stretch != "normal":
            attrs["font-stretch"] = self.stretch
        return attrs


def css_family_name(family: str) -> str:
    """Quote a family name unless it is a plain CSS identifier.

    Examples:
        >>> css_family_name("Helvetica")
        'Helvetica'
        >>> css_family_name("Times New Roman")
        "'Times New Roman'"
    """
    if CSS_IDENT_RE.fullmatch(family) and family.lower() not in CSS_GENERIC_FAMILIES:
        return family
    escaped = family.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


@lru_cache(maxsize=64)
def parse_font_name(name: str) -> FontStyle:
    """Split a PostScript font name into a family and style.

    "Helvetica-BoldOblique" becomes family "Helvetica", weight 700, slant
    "oblique". Compact family parts such as "TimesNewRomanPSMT" are spelled
    out as "Times New Roman". Names containing spaces are already family
    names and are kept whole.

    Args:
        name: Font name from the RTF font table.

    Returns:
        FontStyle without a generic family.
    """
    name = name.strip()
    if " " in name:
        return FontStyle(family=name)

    base, _, suffix = name.partition("-")
    family = POSTSCRIPT_SUFFIX_RE.sub("", base) or base
    family = re.sub(r"(?<=[a-z])(?=[A-Z])", " ", family)

    weight = 400
    slant = "normal"
    stretch = "normal"
    # Later words win, so "ItalicOblique" is oblique
    for match in STYLE_WORD_RE.finditer(suffix.lower()):
        word = match.group(0)
        if word in FONT_WEIGHTS:
            weight = FONT_WEIGHTS[word]
        elif word in FONT_SLANTS:
            slant = FONT_SLANTS[word]
        else:
            stretch = FONT_STRETCHES[word]
    return FontStyle(family=family or DEFAULT_FONT_NAME, weight=weight, slant=slant, stretch=stretch)


def font_style(run: TextRun) -> FontStyle:
    """Combine a run's font name with its bold/italic flags."""
    style = parse_font_name(run.font_name)
    weight = max(style.weight, 700) if run.bold else style.weight
    slant = style.slant
    if slant == "normal" and run.italic:
        slant = "italic"
    return replace(style, weight=weight, slant=slant, generic=run.generic_family)


@dataclass(frozen=True)
class FontMetrics:
    """Face metrics in font units, as used by <font-face>."""

    units_per_em: int
    ascent: float
    descent: float
    underline_position: float
    underline_thickness: float


def font_pattern(family: str, bold: bool = False, italic: bool = False) -> str:
    """Build a fontconfig pattern such as "Helvetica:bold:italic"."""
    pattern = family
    if bold:
        pattern += ":bold"
    if italic:
        pattern += ":italic"
    return pattern


@lru_cache(maxsize=32)
def find_font_file(pattern: str) -> str | None:
    """Find font file path using fc-match.

    Args:
        pattern: Fontconfig pattern (family plus optional styles).

    Returns:
        Path to font file or None if not found.
    """
    try:
        result = subprocess.run(
            ["fc-match", pattern, "-f", "%{file}"],
            capture_output=True,
            text=True,
            timeout=5,
        )
        if result.returncode == 0 and result.stdout.strip():
            return result.stdout.strip()
    except (subprocess.TimeoutExpired, FileNotFoundError):
        logger.debug("fc-match unavailable for %s", pattern)
    return None


@lru_cache(maxsize=8)
def load_font_face(font_path: str) -> freetype.Face:
    """Load a FreeType font face.

    Args:
        font_path: Path to font file.

    Returns:
        FreeType Face object.
    """
    return freetype.Face(font_path)


def face_for_run(run: TextRun) -> freetype.Face | None:
    """Load the face used to measure a run, or None if unavailable."""
    style = font_style(run)
    pattern = font_pattern(style.family, style.weight >= 600, style.slant != "normal")
    font_path = find_font_file(pattern)
    if font_path is None:
        return None
    try:
        return load_font_face(font_path)
    except (freetype.ft_errors.FT_Exception, OSError) as e:
        logger.debug("cannot load font %s: %s", font_path, e)
        return None


def font_metrics(run: TextRun) -> FontMetrics | None:
    """Get the face metrics for a run's font, or None without a font file."""
    face = face_for_run(run)
    if face is None or not face.units_per_EM:
        return None
    return FontMetrics(
        units_per_em=face.units_per_EM,
        ascent=face.ascender,
        descent=abs(face.descender),
        underline_position=face.underline_position,
        underline_thickness=face.underline_thickness,
    )


def text_advance(face: freetype.Face, text: str, font_size_pt: float) -> float:
    """Get the advance width of text in points.

    The face is measured at MEASURE_FONT_SIZE_PT and scaled to the target
    size.
    """
    # 72 DPI makes one pixel one point
    face.set_char_size(int(MEASURE_FONT_SIZE_PT * 64), 0, 72, 72)
    pen_x = 0
    for char in text:
        face.load_char(char, freetype.FT_LOAD_DEFAULT)
        pen_x += face.glyph.advance.x >> 6
    return pen_x * font_size_pt / MEASURE_FONT_SIZE_PT


def measure_run(run: TextRun) -> float | None:
    """Measure the advance width of a run in points.

    Returns:
        Width, or None when no font file is available.
    """
    face = face_for_run(run)
    if face is None:
        return None
    return text_advance(face, run.text, run.font_size)


def line_metrics(runs: list[TextRun]) -> tuple[float, float]:
    """Get (ascent, line height) in points for one line of runs.

    Uses the faces' vertical metrics where a font file is found, otherwise
    fixed ratios of the font size.
    """
    ascent = 0.0
    height = 0.0
    if not runs:
        runs = [TextRun("")]
    for run in runs:
        face = face_for_run(run)
        if face is not None and face.units_per_EM:
            run_ascent = face.ascender / face.units_per_EM * run.font_size
            run_height = face.height / face.units_per_EM * run.font_size
        else:
            run_ascent = run.font_size * ASCENT_RATIO
            run_height = run.font_size * LINE_HEIGHT_RATIO
        ascent = max(ascent, run_ascent)
        height = max(height, run_height)
    return ascent, height
