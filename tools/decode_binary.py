#!/usr/bin/env python3
"""
decode_binary.py - Decode a binary file with a schema and print the result tree

Usage:
    python tools/decode_binary.py formats/archive.bfs data.bin
    python tools/decode_binary.py formats/archive.bfs data.bin --format yaml --verbose
    python tools/decode_binary.py formats/packet.bfs "01 02 0A FF" --hex --format tree
    python tools/decode_binary.py formats/packet.bfs data.bin --options decoder.yaml --endian big

Options given on the command line override the --options file.
"""

import argparse
import sys
from pathlib import Path

# Add tools to path
sys.path.insert(0, str(Path(__file__).parent))
from schema_compiler import compile_file
from schema_errors import SchemaError
from schema_interpreter import DecoderOptions, load_options
from schema_result import format_tree, to_json, to_yaml
from validate_schema import parse_payload


def build_options(args: argparse.Namespace) -> DecoderOptions:
    """Options file first, then per-flag overrides."""
    options = load_options(args.options) if args.options else DecoderOptions()
    overrides = {}
    if args.endian:
        overrides['endian'] = args.endian
    if args.strict_enums:
        overrides['strict_enums'] = True
    if args.max_iterations is not None:
        overrides['max_loop_iterations'] = args.max_iterations
    if args.encoding:
        overrides['text_encoding'] = args.encoding
    return options.merged(overrides)


def main():
    parser = argparse.ArgumentParser(
        description='Decode binary data using a binary format schema'
    )
    parser.add_argument('schema', help='Path to schema file')
    parser.add_argument('input', help='Path to binary input (or hex payload with --hex)')
    parser.add_argument('--hex', action='store_true',
                        help='Treat INPUT as a hex string instead of a file path')
    parser.add_argument('--format', choices=('json', 'yaml', 'tree'), default='json',
                        help='Output format (default: json)')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Include type, offset, size and comment for every field')
    parser.add_argument('--options', help='YAML file with decoder options')
    parser.add_argument('--endian', choices=('little', 'big'),
                        help='Byte order of multi-byte values (default: little)')
    parser.add_argument('--strict-enums', action='store_true',
                        help='Fail on enum values without a matching member')
    parser.add_argument('--max-iterations', type=int,
                        help='Maximum iterations for while/until loops')
    parser.add_argument('--encoding', help='Text encoding for char and string fields')
    args = parser.parse_args()

    try:
        options = build_options(args)
    except (OSError, ValueError) as e:
        print(f"Error loading options: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        schema = compile_file(args.schema)
    except (OSError, SchemaError) as e:
        print(f"Error compiling schema: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        if args.hex:
            result = schema.decode(parse_payload(args.input), options)
        else:
            with open(args.input, 'rb') as f:
                result = schema.decode(f, options)
    except (OSError, ValueError) as e:
        print(f"Error decoding {args.input}: {e}", file=sys.stderr)
        sys.exit(1)

    if args.format == 'yaml':
        print(to_yaml(result.fields, args.verbose), end='')
    elif args.format == 'tree':
        print(format_tree(result.fields))
        print(f"\nBytes consumed: {result.bytes_consumed}")
    else:
        print(to_json(result.fields, args.verbose))

    for warning in result.warnings:
        print(f"Warning: {warning}", file=sys.stderr)


if __name__ == '__main__':
    main()
