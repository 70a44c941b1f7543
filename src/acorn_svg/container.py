"""Reader for Acorn documents.

An Acorn document is an SQLite database with three tables:

    layers(id, parent_id, uti, name, sequence, data)
    layer_attributes(id, name, value)
    image_attributes(name, value)

Layer ids are opaque (usually blobs). Children of a layer are ordered by
their sequence column, bottom-most first.
"""

import logging
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .attributes import Diagnostics, bool_for_key, float_for_key
from .geometry import parse_bounds, parse_size
from .records import LayerNode

logger = logging.getLogger(__name__)

# PRAGMA application_id of Acorn files ('Acrn')
ACORN_APPLICATION_ID = 0x4163726E

SUPPORTED_FILE_VERSION = 4


class ContainerError(Exception):
    """The document cannot be opened or is not an Acorn file."""


@dataclass
class AcornDocument:
    """An open Acorn document.

    Use AcornDocument.open() rather than the constructor. Documents are
    context managers and close their connection on exit.
    """

    path: Path
    connection: sqlite3.Connection
    file_version: int
    image_size: tuple[float, float]
    dpi: float | None = None
    diagnostics: Diagnostics = field(default_factory=Diagnostics)

    @classmethod
    def open(
        cls, path: Path, diagnostics: Diagnostics | None = None
    ) -> "AcornDocument":
        """Open an Acorn document read-only and validate its header.

        Args:
            path: Path to the .acorn file.
            diagnostics: Sink for non-fatal problems (created if omitted).

        Returns:
            The open document.

        Raises:
            ContainerError: If the file cannot be opened, is not SQLite, or
                is not an Acorn document.
        """
        path = Path(path)
        diagnostics = diagnostics if diagnostics is not None else Diagnostics()
        if not path.is_file():
            raise ContainerError(f"{path}: cannot open")

        try:
            connection = sqlite3.connect(f"{path.resolve().as_uri()}?mode=ro", uri=True)
        except sqlite3.Error as e:
            raise ContainerError(f"{path}: cannot open: {e}") from e

        try:
            document = cls._validate(path, connection, diagnostics)
        except Exception:
            connection.close()
            raise
        logger.debug(
            "opened %s (version %d, size %s)",
            path,
            document.file_version,
            document.image_size,
        )
        return document

    @classmethod
    def _validate(
        cls, path: Path, connection: sqlite3.Connection, diagnostics: Diagnostics
    ) -> "AcornDocument":
        try:
            row = connection.execute("PRAGMA application_id").fetchone()
        except sqlite3.DatabaseError as e:
            raise ContainerError(
                f"{path}: not a sqlite3 db, and therefore not an Acorn file"
            ) from e
        if row is None or row[0] != ACORN_APPLICATION_ID:
            found = f"0x{row[0]:08X}" if row else "nothing"
            raise ContainerError(
                f"{path}: does not look like an Acorn file "
                f"(expected application id 'Acrn', found {found})"
            )

        try:
            attributes = dict(
                connection.execute("SELECT name, value FROM image_attributes").fetchall()
            )
        except sqlite3.DatabaseError as e:
            raise ContainerError(f"{path}: cannot read image attributes: {e}") from e

        if "acorn.fileVersion" not in attributes:
            raise ContainerError(f"{path}: missing acorn.fileVersion")
        try:
            file_version = int(attributes["acorn.fileVersion"])
        except (TypeError, ValueError) as e:
            raise ContainerError(
                f"{path}: unreadable acorn.fileVersion "
                f"{attributes['acorn.fileVersion']!r}"
            ) from e
        if file_version != SUPPORTED_FILE_VERSION:
            diagnostics.warnf(
                "unexpected acorn.fileVersion %d (expected %d), continuing",
                file_version,
                SUPPORTED_FILE_VERSION,
            )

        image_size = parse_size(attributes.get("imageSize"))
        if image_size is None:
            diagnostics.warnf("missing or unreadable imageSize, using 0 x 0")
            image_size = (0.0, 0.0)

        dpi = float_for_key(attributes, "dpi", 0.0)
        return cls(
            path=path,
            connection=connection,
            file_version=file_version,
            image_size=image_size,
            dpi=dpi or None,
            diagnostics=diagnostics,
        )

    def __enter__(self) -> "AcornDocument":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        """Close the database connection."""
        self.connection.close()

    def _query(self, sql: str, params: tuple = ()) -> list[tuple]:
        try:
            return self.connection.execute(sql, params).fetchall()
        except sqlite3.DatabaseError as e:
            raise ContainerError(f"{self.path}: {e}") from e

    def layer_tree(self) -> LayerNode:
        """Read the layer hierarchy (no attributes or payloads).

        Layers whose parent does not exist, and layers on a parent cycle,
        are reported and attached to the root.

        Returns:
            Synthetic root node (oid None) holding the top-level layers.
        """
        rows = self._query(
            "SELECT id, parent_id, uti, name FROM layers ORDER BY sequence ASC"
        )
        root = LayerNode(oid=None)
        by_oid: dict[Any, LayerNode] = {}
        for oid, _parent, uti, name in rows:
            by_oid[oid] = LayerNode(oid=oid, name=name, uti=uti)

        parents: dict[Any, LayerNode] = {}
        for oid, parent_oid, _uti, _name in rows:
            layer = by_oid[oid]
            if parent_oid is None:
                root.children.append(layer)
            elif parent_oid in by_oid and parent_oid != oid:
                by_oid[parent_oid].children.append(layer)
                parents[oid] = by_oid[parent_oid]
            else:
                self.diagnostics.warnf(
                    'layer "%s" has a missing parent, placing it at the top level',
                    layer.name,
                )
                root.children.append(layer)

        # Every layer not reachable from the root hangs off a cycle
        reachable = {id(layer) for layer in root.iter_layers()}
        for oid, _parent, _uti, _name in rows:
            layer = by_oid[oid]
            if id(layer) in reachable:
                continue
            self.diagnostics.warnf(
                'layer "%s" is part of a parent cycle, placing it at the top level',
                layer.name,
            )
            parents[oid].children.remove(layer)
            root.children.append(layer)
            reachable.update(id(node) for node in layer.iter_layers())
        return root

    def layer_attributes(self, oid: Any) -> dict[str, Any]:
        """Read the attribute rows of one layer."""
        rows = self._query(
            "SELECT name, value FROM layer_attributes WHERE id = ?", (oid,)
        )
        return {name: value for name, value in rows}

    def layer_data(self, oid: Any) -> bytes | None:
        """Read the payload blob of one layer."""
        rows = self._query("SELECT data FROM layers WHERE id = ?", (oid,))
        if not rows or rows[0][0] is None:
            return None
        data = rows[0][0]
        return data.encode("utf-8") if isinstance(data, str) else bytes(data)

    def load(self) -> LayerNode:
        """Read the whole layer tree with attributes, frames and payloads.

        Returns:
            Synthetic root node of the fully populated tree.
        """
        root = self.layer_tree()
        for layer in root.iter_layers():
            if layer.oid is None:
                continue
            layer.attributes = self.layer_attributes(layer.oid)
            if "frame" in layer.attributes:
                layer.frame = parse_bounds(layer.attributes["frame"])
                if layer.frame is None:
                    self.diagnostics.warnf(
                        'layer "%s" has an unreadable frame %r',
                        layer.name,
                        layer.attributes["frame"],
                    )
            layer.data = self.layer_data(layer.oid)
        return root


def format_layer_tree(root: LayerNode, indent: str = "  ") -> str:
    """Format a layer tree as indented "name: uti" lines.

    Hidden layers are marked "(hidden)".
    """
    lines: list[str] = []

    def _visit(layer: LayerNode, depth: int) -> None:
        name = layer.name or "(unnamed)"
        line = f"{indent * depth}{name}: {layer.uti}"
        if not bool_for_key(layer.attributes, "visible", True):
            line += " (hidden)"
        lines.append(line)
        for child in layer.children:
            _visit(child, depth + 1)

    for child in root.children:
        _visit(child, 0)
    return "\n".join(lines)


def layer_tree_to_dict(document: AcornDocument, root: LayerNode) -> dict:
    """Convert a document and its layer tree to a JSON-serializable dict."""
    return {
        "file": str(document.path),
        "file_version": document.file_version,
        "image_size": list(document.image_size),
        "dpi": document.dpi,
        "layers": [child.to_dict() for child in root.children],
    }
