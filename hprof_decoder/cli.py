"""
HPROF Decoder - command line interface.

Decodes a heap dump and prints what the decoder found.
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import List, Optional

from .config import load_config
from .decoder import decode_file
from .errors import HprofFormatError
from .model import HeapModel, RootKind


def print_summary(model: HeapModel) -> None:
    summary = model.summary()
    captured_at = model.header.captured_at

    print("=" * 60)
    print("HEAP DUMP")
    print("=" * 60)
    print(f"Format:           {summary['format']}")
    print(f"Identifier size:  {summary['identifier_size']}")
    print(f"Captured:         {captured_at.isoformat() if captured_at else summary['timestamp']}")
    print()
    print(f"Strings:          {summary['strings']:,}")
    print(f"Classes:          {summary['classes']:,}")
    print(f"Instances:        {summary['instances']:,}")
    print(f"Object arrays:    {summary['object_arrays']:,}")
    print(f"Primitive arrays: {summary['primitive_arrays']:,}")
    print(f"GC roots:         {summary['roots']:,}")
    print(f"Total size:       {summary['total_size']:,} bytes")

    if summary['warnings']:
        print(f"\nWARNINGS ({summary['warnings']}):")
        for warning in model.warnings[:20]:
            print(f"  - {warning}")
        if summary['warnings'] > 20:
            print(f"  ... {summary['warnings'] - 20} more")


def print_roots(model: HeapModel) -> None:
    grouped = model.roots_by_kind()
    print(f"GC ROOTS ({len(model.roots):,})")
    print("=" * 60)
    for kind in RootKind:
        roots = grouped.get(kind)
        if roots:
            print(f"  {kind.name:<15} {len(roots):>10,}")


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog='hprof-decoder',
        description='HPROF Decoder - decode Java/Android heap dumps',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Header, entity counts and decode warnings
  %(prog)s inspect heap.hprof

  # GC roots per kind
  %(prog)s roots heap.hprof

  # Full model as JSON
  %(prog)s export heap.hprof -o heap.json
        """
    )

    parser.add_argument(
        'command',
        choices=['inspect', 'roots', 'export'],
        help='Command to execute'
    )

    parser.add_argument(
        'dump_file',
        help='Path to heap dump file (.hprof)'
    )

    parser.add_argument(
        '--output',
        '-o',
        help='Output file for export'
    )

    parser.add_argument(
        '--no-strings',
        action='store_true',
        help='Leave the string table out of the export'
    )

    parser.add_argument(
        '--log-level',
        choices=['CRITICAL', 'ERROR', 'WARNING', 'INFO', 'DEBUG'],
        help='Logging level (default: HPROF_DECODER_LOG_LEVEL or WARNING)'
    )

    args = parser.parse_args(argv)
    if args.command == 'export' and not args.output:
        parser.error("export command requires --output")

    config = load_config()
    if args.log_level:
        config.log_level = args.log_level
    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format='%(levelname)s %(name)s: %(message)s',
    )

    try:
        model = decode_file(args.dump_file, config)
    except HprofFormatError as e:
        print(f"Error: not a readable heap dump: {e}", file=sys.stderr)
        return 2
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.command == 'inspect':
        print_summary(model)
    elif args.command == 'roots':
        print_roots(model)
    elif args.command == 'export':
        with open(args.output, 'w', encoding='utf-8') as f:
            json.dump(model.to_dict(include_strings=not args.no_strings), f, indent=2)
        print(f"Model saved to: {args.output}")

    return 0


if __name__ == '__main__':
    sys.exit(main())
