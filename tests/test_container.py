"""Tests for acorn_svg.container module."""

import json
import sqlite3
import pytest
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from builders import shape_layer_data, write_acorn

from acorn_svg.attributes import Diagnostics
from acorn_svg.container import (
    AcornDocument,
    ContainerError,
    format_layer_tree,
    layer_tree_to_dict,
)
from acorn_svg.geometry import BoundingBox
from acorn_svg.records import GROUP_LAYER_UTI, SHAPE_LAYER_UTI


class TestOpen:
    """Tests for AcornDocument.open."""

    def test_valid_document(self, sample_acorn):
        """Header values are read."""
        with AcornDocument.open(sample_acorn) as document:
            assert document.file_version == 4
            assert document.image_size == (100.0, 100.0)
            assert document.dpi == 72.0
            assert len(document.diagnostics) == 0

    def test_missing_file(self, tmp_path):
        """Missing files cannot be opened."""
        with pytest.raises(ContainerError):
            AcornDocument.open(tmp_path / "missing.acorn")

    def test_not_sqlite(self, tmp_path):
        """Non-database files are rejected."""
        path = tmp_path / "text.acorn"
        path.write_bytes(b"this is certainly not an sqlite database, just some text" * 4)
        with pytest.raises(ContainerError):
            AcornDocument.open(path)

    def test_wrong_application_id(self, tmp_path):
        """Other SQLite databases are rejected."""
        path = write_acorn(tmp_path / "other.acorn", [], application_id=1234)
        with pytest.raises(ContainerError, match="does not look like an Acorn file"):
            AcornDocument.open(path)

    def test_missing_file_version(self, tmp_path):
        """acorn.fileVersion is required."""
        path = write_acorn(tmp_path / "noversion.acorn", [], image_attributes={"imageSize": "{1, 1}"})
        with pytest.raises(ContainerError, match="fileVersion"):
            AcornDocument.open(path)

    def test_other_file_version(self, tmp_path):
        """Unexpected versions are reported but accepted."""
        path = write_acorn(
            tmp_path / "v3.acorn",
            [],
            image_attributes={"acorn.fileVersion": 3, "imageSize": "{10, 20}"},
        )
        diagnostics = Diagnostics()
        with AcornDocument.open(path, diagnostics) as document:
            assert document.file_version == 3
            assert document.image_size == (10.0, 20.0)
            assert document.dpi is None
        assert len(diagnostics) == 1

    def test_missing_image_size(self, tmp_path):
        """A missing size is reported and treated as empty."""
        path = write_acorn(tmp_path / "nosize.acorn", [], image_attributes={"acorn.fileVersion": 4})
        with AcornDocument.open(path) as document:
            assert document.image_size == (0.0, 0.0)
            assert len(document.diagnostics) == 1

    def test_read_only(self, sample_acorn):
        """Documents are opened read-only."""
        with AcornDocument.open(sample_acorn) as document:
            with pytest.raises(sqlite3.OperationalError):
                document.connection.execute("DELETE FROM layers")


class TestLayerTree:
    """Tests for AcornDocument.layer_tree and load."""

    def test_hierarchy(self, sample_acorn):
        """Parents and children are linked; the root is synthetic."""
        with AcornDocument.open(sample_acorn) as document:
            root = document.layer_tree()

        assert root.oid is None
        assert [layer.name for layer in root.children] == ["Group", "Bitmap Layer 1"]
        group = root.children[0]
        assert group.uti == GROUP_LAYER_UTI
        assert [layer.name for layer in group.children] == ["Circle"]

    def test_sequence_order(self, tmp_path):
        """Children are ordered by sequence, not by insertion."""
        layers = [
            {"id": b"a", "name": "Top", "sequence": 5},
            {"id": b"b", "name": "Bottom", "sequence": 1},
            {"id": b"c", "name": "Middle", "sequence": 3},
        ]
        path = write_acorn(tmp_path / "order.acorn", layers)
        with AcornDocument.open(path) as document:
            root = document.layer_tree()

        assert [layer.name for layer in root.children] == ["Bottom", "Middle", "Top"]

    def test_orphan(self, tmp_path):
        """Layers with a missing parent go to the top level."""
        layers = [{"id": b"a", "name": "Orphan", "parent": b"gone"}]
        path = write_acorn(tmp_path / "orphan.acorn", layers)
        with AcornDocument.open(path) as document:
            root = document.layer_tree()
            assert len(document.diagnostics) == 1

        assert [layer.name for layer in root.children] == ["Orphan"]

    def test_parent_cycle(self, tmp_path):
        """Layers that are each other's parent are moved to the top level."""
        layers = [
            {"id": b"a", "name": "A", "parent": b"b", "uti": GROUP_LAYER_UTI},
            {"id": b"b", "name": "B", "parent": b"a", "uti": GROUP_LAYER_UTI},
            {"id": b"c", "name": "C", "parent": b"b"},
        ]
        path = write_acorn(tmp_path / "cycle.acorn", layers)
        with AcornDocument.open(path) as document:
            root = document.load()
            assert len(document.diagnostics) == 1
            assert "cycle" in document.diagnostics.messages[0]

        assert [layer.name for layer in root.children] == ["A"]
        assert [layer.name for layer in root.iter_layers()] == [None, "A", "B", "C"]
        assert format_layer_tree(root).count("\n") == 2

    def test_load(self, sample_acorn):
        """load() fills attributes, frames and payloads."""
        with AcornDocument.open(sample_acorn) as document:
            root = document.load()

        circle = root.children[0].children[0]
        photo = root.children[1]
        assert circle.uti == SHAPE_LAYER_UTI
        assert circle.attributes == {"visible": "1"}
        assert circle.data.startswith(b"bplist00")
        assert circle.frame is None
        assert photo.frame == BoundingBox(0, 90, 4, 4)
        assert photo.data.startswith(b"\x89PNG")

    def test_unreadable_frame(self, tmp_path):
        """Bad frames are reported and ignored."""
        layers = [
            {
                "id": b"a",
                "name": "Shapes",
                "data": shape_layer_data([]),
                "attributes": {"frame": "nonsense"},
            }
        ]
        path = write_acorn(tmp_path / "frame.acorn", layers)
        with AcornDocument.open(path) as document:
            root = document.load()
            assert len(document.diagnostics) == 1

        assert root.children[0].frame is None

    def test_missing_data(self, tmp_path):
        """Layers without payloads have data None."""
        path = write_acorn(tmp_path / "empty.acorn", [{"id": b"a", "name": "Empty"}])
        with AcornDocument.open(path) as document:
            assert document.layer_data(b"a") is None


class TestFormatting:
    """Tests for format_layer_tree and layer_tree_to_dict."""

    def test_format_layer_tree(self, tmp_path):
        """Layers are indented by depth and hidden ones marked."""
        layers = [
            {"id": b"g", "uti": GROUP_LAYER_UTI, "name": "Group"},
            {"id": b"s", "parent": b"g", "attributes": {"visible": "0"}},
        ]
        path = write_acorn(tmp_path / "tree.acorn", layers)
        with AcornDocument.open(path) as document:
            root = document.load()

        assert format_layer_tree(root) == (
            f"Group: {GROUP_LAYER_UTI}\n"
            f"  (unnamed): {SHAPE_LAYER_UTI} (hidden)"
        )

    def test_layer_tree_to_dict(self, sample_acorn):
        """The dict is JSON serializable and mirrors the tree."""
        with AcornDocument.open(sample_acorn) as document:
            data = layer_tree_to_dict(document, document.load())

        assert data["file_version"] == 4
        assert data["image_size"] == [100.0, 100.0]
        assert [layer["name"] for layer in data["layers"]] == ["Group", "Bitmap Layer 1"]
        assert data["layers"][1]["kind"] == "raster"
        json.dumps(data)
