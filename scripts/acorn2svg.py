#!/usr/bin/env python3
"""Convert Acorn layered images to SVG."""

import argparse
import logging
import sys
from pathlib import Path

import yaml

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from acorn_svg.container import ContainerError
from acorn_svg.convert import (
    ConvertRule,
    ExportCombination,
    format_convert_report,
    parse_convert_rule_file,
)
from acorn_svg.images import export_acorn_file, format_written_image


def build_rule(args: argparse.Namespace) -> ConvertRule:
    """Build the conversion rule from the rule file and command-line overrides.

    Args:
        args: Parsed command-line arguments.

    Returns:
        Conversion rule.

    Raises:
        ValueError: If the rule file or overrides are invalid.
    """
    rule = parse_convert_rule_file(args.rule) if args.rule else ConvertRule()

    if args.scale is not None or args.embed_images:
        if len(rule.exports) != 1:
            raise ValueError("--scale and --embed-images need a single export combination")
        base = rule.exports[0]
        scale = args.scale if args.scale is not None else base.scale
        if scale <= 0:
            raise ValueError(f"scale must be positive, got {scale}")
        rule.exports = [
            ExportCombination(
                name=base.name,
                scale=scale,
                image_format=base.image_format,
                quality=base.quality,
                embed_images=base.embed_images or args.embed_images,
            )
        ]
    return rule


def main() -> int:
    """Main entry point.

    Returns:
        Exit code:
        - 0: Success
        - 1: I/O or document error
        - 2: Rule file error
        - 3: Some export combinations failed
    """
    parser = argparse.ArgumentParser(
        description="Convert Acorn layered images to SVG.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Convert with default settings
  %(prog)s picture.acorn --output picture.svg

  # Embed raster layers as data URIs
  %(prog)s picture.acorn --output picture.svg --embed-images

  # Export every combination listed in a rule file into a directory
  %(prog)s picture.acorn --rule export.yaml --output out/
""",
    )
    parser.add_argument("acorn_file", type=Path, help="Path to Acorn file to convert")
    parser.add_argument(
        "--output",
        "-o",
        type=Path,
        help="Output SVG file, or directory for several combinations "
        "(default: input name with .svg)",
    )
    parser.add_argument("--rule", "-r", type=Path, help="Path to YAML rule file")
    parser.add_argument(
        "--scale", type=float, help="Scale factor (overrides a single combination)"
    )
    parser.add_argument(
        "--embed-images",
        action="store_true",
        help="Embed raster layers as data URIs instead of separate files",
    )
    parser.add_argument(
        "--quiet", "-q", action="store_true", help="Do not print the conversion report"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    # Validate input files exist
    if not args.acorn_file.exists():
        print(f"Error: Acorn file not found: {args.acorn_file}", file=sys.stderr)
        return 1

    if args.rule and not args.rule.exists():
        print(f"Error: Rule file not found: {args.rule}", file=sys.stderr)
        return 1

    # Parse rule file
    try:
        rule = build_rule(args)
    except (ValueError, yaml.YAMLError) as e:
        print(f"Error: Failed to parse rule file: {e}", file=sys.stderr)
        return 2

    output = args.output
    if output is None:
        output = args.acorn_file.with_suffix(".svg")
        if len(rule.exports) > 1:
            output = args.acorn_file.with_suffix("")

    # Convert
    try:
        written, diagnostics = export_acorn_file(args.acorn_file, rule, output)
    except ContainerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    # Print report
    if not args.quiet:
        for message in diagnostics:
            print(f"[WARNING] {message}")
        for report in written.reports.values():
            print(format_convert_report(report))
            print("")
        print(format_written_image(written))

    if not written.succeeded:
        return 3

    return 0


if __name__ == "__main__":
    sys.exit(main())
