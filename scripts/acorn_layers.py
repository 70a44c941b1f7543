#!/usr/bin/env python3
"""Display the layer tree of an Acorn file."""

import argparse
import json
import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from acorn_svg.container import (
    AcornDocument,
    ContainerError,
    format_layer_tree,
    layer_tree_to_dict,
)


def main() -> int:
    """Main entry point.

    Returns:
        Exit code (0 for success, 1 for error).
    """
    parser = argparse.ArgumentParser(
        description="Display the layer tree of an Acorn file."
    )
    parser.add_argument("acorn_file", type=Path, help="Path to Acorn file to inspect")
    parser.add_argument(
        "-f",
        "--format",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )
    parser.add_argument(
        "-o", "--output", type=Path, help="Output file (default: stdout)"
    )

    args = parser.parse_args()

    if not args.acorn_file.exists():
        print(f"Error: File not found: {args.acorn_file}", file=sys.stderr)
        return 1

    try:
        with AcornDocument.open(args.acorn_file) as document:
            root = document.load()
            if args.format == "json":
                output = json.dumps(
                    layer_tree_to_dict(document, root), indent=2, ensure_ascii=False
                )
            else:
                width, height = document.image_size
                lines = [
                    f"File: {document.path}",
                    f"Size: {width:g} x {height:g}",
                    "",
                    format_layer_tree(root),
                ]
                lines.extend(f"[WARNING] {message}" for message in document.diagnostics)
                output = "\n".join(lines)
    except ContainerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.output:
        args.output.write_text(output, encoding="utf-8")
    else:
        print(output)

    return 0


if __name__ == "__main__":
    sys.exit(main())
