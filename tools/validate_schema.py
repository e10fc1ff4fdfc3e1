#!/usr/bin/env python3
"""
validate_schema.py - Compile a schema and run test vectors against it

Usage:
    python tools/validate_schema.py formats/packet.bfs formats/packet.vectors.yaml
    python tools/validate_schema.py formats/packet.bfs formats/packet.vectors.yaml --verbose
    python tools/validate_schema.py formats/packet.bfs formats/packet.vectors.yaml --json

Vectors file:
    options:                 # optional DecoderOptions
      endian: big
    test_vectors:
      - name: basic
        description: Two records
        payload: "44 45 4D 4F 02"
        expected:
          magic: DEMO
          count: 2
      - name: truncated
        payload: "44 45"
        error: Buffer too short    # vector passes if decoding fails with this text

Features:
    - Reports compile errors with line and column
    - Runs all test vectors, per-vector options override the file's
    - Reports pass/fail with details
    - Optionally outputs JSON results
"""

import argparse
import yaml
import json
import re
import sys
from pathlib import Path
from typing import Dict, Any, List, Tuple, Optional
from dataclasses import asdict, dataclass, field

# Add tools to path
sys.path.insert(0, str(Path(__file__).parent))
from schema_compiler import Schema, compile_file
from schema_errors import SchemaError
from schema_interpreter import DecoderOptions


@dataclass
class VectorResult:
    """Outcome of one test vector."""
    name: str
    passed: bool = False
    description: str = ""
    payload: str = ""
    actual: Dict[str, Any] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class ValidationResult:
    schema_valid: bool
    schema_errors: List[str] = field(default_factory=list)
    test_results: List[VectorResult] = field(default_factory=list)

    @property
    def failures(self) -> List[VectorResult]:
        return [t for t in self.test_results if not t.passed]

    @property
    def all_passed(self) -> bool:
        return self.schema_valid and not self.failures

    def to_dict(self) -> Dict[str, Any]:
        report = asdict(self)
        report['tests_passed'] = len(self.test_results) - len(self.failures)
        report['all_passed'] = self.all_passed
        return report


def parse_payload(payload: Any) -> bytes:
    """Bytes from a hex string ("01 02", "0x01,0x02") or a list of ints."""
    if isinstance(payload, (bytes, list)):
        return bytes(payload)
    if isinstance(payload, str):
        return bytes.fromhex(re.sub(r'0x|[\s,]', '', payload))
    raise ValueError(f"Cannot parse payload: {payload!r}")


def values_match(expected: Any, actual: Any, tolerance: float = 0.001) -> Tuple[bool, str]:
    """
    Compare an expected value from a vectors file with a decoded one.

    Mappings match on the expected keys only. A list matches an array
    mapping ({"a[0]": ..., "a[1]": ...}) element by element. Numbers
    match within ``tolerance``.
    """
    if isinstance(expected, dict) and isinstance(actual, dict):
        for key, value in expected.items():
            if key not in actual:
                return False, f"missing key '{key}'"
            match, msg = values_match(value, actual[key], tolerance)
            if not match:
                return False, f"{key}: {msg}"
        return True, ""

    if isinstance(expected, list):
        items = list(actual.values()) if isinstance(actual, dict) else actual
        if not isinstance(items, list):
            return False, f"expected a list, got {actual!r}"
        if len(expected) != len(items):
            return False, f"list length mismatch: expected {len(expected)}, got {len(items)}"
        for i, (e, a) in enumerate(zip(expected, items)):
            match, msg = values_match(e, a, tolerance)
            if not match:
                return False, f"[{i}]: {msg}"
        return True, ""

    numbers = all(isinstance(v, (int, float)) and not isinstance(v, bool)
                  for v in (expected, actual))
    if numbers and abs(expected - actual) <= tolerance:
        return True, ""
    if not numbers and expected == actual and type(expected) == type(actual):
        return True, ""
    return False, f"expected {expected!r}, got {actual!r}"


def load_vectors(path: str) -> Dict[str, Any]:
    """Load and check the shape of a vectors file."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: vectors file must contain a mapping")

    vectors = data.get('test_vectors', [])
    if not isinstance(vectors, list):
        raise ValueError(f"{path}: 'test_vectors' must be an array")
    for i, tv in enumerate(vectors):
        if not isinstance(tv, dict):
            raise ValueError(f"Test vector {i}: must be an object")
        if 'payload' not in tv:
            raise ValueError(f"Test vector {i} ({tv.get('name', '?')}): missing 'payload'")
        if 'expected' not in tv and 'error' not in tv:
            raise ValueError(f"Test vector {i} ({tv.get('name', '?')}): "
                             f"needs 'expected' or 'error'")
    return data


def run_test_vector(schema: Schema, options: DecoderOptions, tv: Dict[str, Any]) -> VectorResult:
    """Decode one vector's payload and check it against ``expected`` or ``error``."""
    result = VectorResult(tv.get('name', 'unnamed'), description=tv.get('description', ''))

    try:
        payload = parse_payload(tv['payload'])
        if 'options' in tv:
            options = options.merged(tv['options'])
    except ValueError as e:
        result.errors.append(str(e))
        return result
    result.payload = payload.hex().upper()

    expected_error = tv.get('error')
    try:
        decoded = schema.decode(payload, options)
    except SchemaError as e:
        if expected_error is not None and str(expected_error) in str(e):
            result.passed = True
        else:
            result.errors.append(f"Decode failed: {e}")
        return result

    result.actual = decoded.data
    result.warnings = list(decoded.warnings)
    if expected_error is not None:
        result.errors.append(f"Expected error containing '{expected_error}', decode succeeded")
        return result

    for name, expected in tv['expected'].items():
        if name not in result.actual:
            result.errors.append(f"Missing field in output: '{name}'")
            continue
        match, msg = values_match(expected, result.actual[name])
        if not match:
            result.errors.append(f"{name}: {msg}")

    result.passed = not result.errors
    return result


def validate_schema(schema_path: str, vectors: Optional[Dict[str, Any]] = None) -> ValidationResult:
    """Compile the schema and run all test vectors."""
    result = ValidationResult(schema_valid=False)
    vectors = vectors or {}

    try:
        schema = compile_file(schema_path)
        options = DecoderOptions.from_dict(vectors.get('options') or {})
    except (OSError, ValueError) as e:
        result.schema_errors.append(str(e))
        return result
    if vectors.get('test_vectors') and not schema.has_root:
        result.schema_errors.append("Schema has no schema block; test vectors cannot run")
        return result

    result.schema_valid = True
    for tv in vectors.get('test_vectors', []):
        result.test_results.append(run_test_vector(schema, options, tv))
    return result


def print_results(result: ValidationResult, verbose: bool = False):
    if not result.schema_valid:
        print("Schema: INVALID")
        for error in result.schema_errors:
            print(f"  - {error}")
        return
    print("Schema: VALID")

    total = len(result.test_results)
    if total == 0:
        print("\nNo test vectors found.")
        return

    print(f"\nTest Vectors: {total - len(result.failures)}/{total} passed")
    print("-" * 50)
    for tr in result.test_results:
        print(f"{'✓' if tr.passed else '✗'} {tr.name}: {'PASS' if tr.passed else 'FAIL'}")
        if tr.passed and not verbose:
            continue
        if tr.description:
            print(f"    Description: {tr.description}")
        if tr.payload:
            print(f"    Payload: {tr.payload}")
        for error in tr.errors:
            print(f"    ERROR: {error}")
        for warning in tr.warnings:
            print(f"    WARNING: {warning}")
        if tr.passed:
            print(f"    Decoded: {tr.actual}")
        print()

    print("-" * 50)
    if result.all_passed:
        print(f"PASSED: All {total} tests passed")
    else:
        print(f"FAILED: {len(result.failures)} of {total} tests failed")


def main():
    parser = argparse.ArgumentParser(
        description='Compile a binary format schema and run test vectors'
    )
    parser.add_argument('schema', help='Path to schema file')
    parser.add_argument('vectors', nargs='?', help='Path to test vectors YAML file')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Show detailed output for all tests')
    parser.add_argument('--json', action='store_true',
                        help='Output results as JSON')
    args = parser.parse_args()

    vectors = None
    if args.vectors:
        try:
            vectors = load_vectors(args.vectors)
        except (OSError, ValueError) as e:
            print(f"Error loading vectors: {e}", file=sys.stderr)
            sys.exit(1)

    result = validate_schema(args.schema, vectors)

    # Output
    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print(f"Validating: {args.schema}")
        print("=" * 50)
        print_results(result, args.verbose)

    # Exit code
    sys.exit(0 if result.all_passed else 1)


if __name__ == '__main__':
    main()
