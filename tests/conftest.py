"""Shared fixtures."""

import pytest
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent))

from builders import png_bytes, shape_layer_data, write_acorn
from acorn_svg.records import BITMAP_LAYER_UTI, GROUP_LAYER_UTI


@pytest.fixture
def circle_graphic() -> dict:
    """The red circle used throughout the tests."""
    return {
        "Class": "Circle",
        "Bounds": "{{10, 10}, {50, 50}}",
        "DrawsFill": True,
        "FillColor": "#FF0000",
        "DrawsStroke": False,
    }


@pytest.fixture
def sample_acorn(tmp_path, circle_graphic) -> Path:
    """A document with a group, a shape layer and a two-color raster layer."""
    layers = [
        {
            "id": b"group",
            "uti": GROUP_LAYER_UTI,
            "name": "Group",
            "sequence": 0,
        },
        {
            "id": b"circle",
            "parent": b"group",
            "name": "Circle",
            "sequence": 1,
            "data": shape_layer_data([circle_graphic]),
            "attributes": {"visible": "1"},
        },
        {
            "id": b"photo",
            "uti": BITMAP_LAYER_UTI,
            "name": "Bitmap Layer 1",
            "sequence": 2,
            "data": png_bytes(colors=((255, 0, 0, 255), (0, 0, 255, 255))),
            "attributes": {"frame": "{{0, 90}, {4, 4}}"},
        },
    ]
    return write_acorn(tmp_path / "sample.acorn", layers)
