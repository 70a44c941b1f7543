"""Acorn SVG - Convert Acorn layered images to SVG documents."""

__version__ = "0.1.0"

from .attributes import Diagnostics
from .container import (
    AcornDocument,
    ContainerError,
    format_layer_tree,
    layer_tree_to_dict,
)
from .convert import (
    ConvertReport,
    ConvertRule,
    ExportCombination,
    convert_layer_tree,
    format_convert_report,
    parse_convert_rule_file,
    serialize_svg,
)
from .images import (
    RasterError,
    WrittenImage,
    export_acorn_file,
    export_document,
    format_written_image,
)
from .records import GraphicRecord, LayerNode

__all__ = [
    "Diagnostics",
    # Container
    "AcornDocument",
    "ContainerError",
    "format_layer_tree",
    "layer_tree_to_dict",
    # Conversion
    "ConvertReport",
    "ConvertRule",
    "ExportCombination",
    "convert_layer_tree",
    "format_convert_report",
    "parse_convert_rule_file",
    "serialize_svg",
    # Export
    "RasterError",
    "WrittenImage",
    "export_acorn_file",
    "export_document",
    "format_written_image",
    # Records
    "GraphicRecord",
    "LayerNode",
]
