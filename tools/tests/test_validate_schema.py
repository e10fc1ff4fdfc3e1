"""Tests for validate_schema.py"""

import json
import subprocess
import sys
from pathlib import Path

TOOLS_DIR = Path(__file__).parent.parent
TOOL_PATH = TOOLS_DIR / "validate_schema.py"
FORMATS_DIR = TOOLS_DIR.parent / "formats"

sys.path.insert(0, str(TOOLS_DIR))
from validate_schema import load_vectors, parse_payload, validate_schema, values_match


def run_tool(*args):
    return subprocess.run(
        [sys.executable, str(TOOL_PATH), *map(str, args)],
        capture_output=True,
        text=True,
    )


def test_help():
    """Test that --help works."""
    result = run_tool("--help")
    assert result.returncode == 0
    assert "vectors" in result.stdout.lower()


def test_example_vectors_pass():
    """The shipped example vectors all pass."""
    result = run_tool(FORMATS_DIR / "archive.bfs", FORMATS_DIR / "archive.vectors.yaml")
    assert result.returncode == 0, result.stdout + result.stderr
    assert "Schema: VALID" in result.stdout
    assert "PASSED: All 4 tests passed" in result.stdout


def test_json_output():
    result = run_tool(FORMATS_DIR / "archive.bfs", FORMATS_DIR / "archive.vectors.yaml", "--json")
    assert result.returncode == 0

    report = json.loads(result.stdout)
    assert report["schema_valid"] is True
    assert report["tests_passed"] == 4
    unknown = next(t for t in report["test_results"] if t["name"] == "unknown_method")
    assert unknown["warnings"] == ["method: value 5 is not a member of enum Compression"]


def test_failing_vector(tmp_path):
    schema = tmp_path / "value.bfs"
    schema.write_text("schema { a : byte; b : byte; }")
    vectors = tmp_path / "value.vectors.yaml"
    vectors.write_text("""
test_vectors:
  - name: wrong
    payload: "01 02"
    expected:
      a: 1
      b: 3
""")

    result = run_tool(schema, vectors)
    assert result.returncode == 1
    assert "b: expected 3, got 2" in result.stdout
    assert "FAILED: 1 of 1 tests failed" in result.stdout


def test_expected_error_that_does_not_happen(tmp_path):
    schema = tmp_path / "value.bfs"
    schema.write_text("schema { a : byte; }")
    vectors = tmp_path / "value.vectors.yaml"
    vectors.write_text("""
test_vectors:
  - name: no_error
    payload: [1]
    error: Buffer too short
""")

    result = run_tool(schema, vectors)
    assert result.returncode == 1
    assert "decode succeeded" in result.stdout


def test_invalid_schema(tmp_path):
    schema = tmp_path / "broken.bfs"
    schema.write_text("schema { a : byte }")

    result = run_tool(schema)
    assert result.returncode == 1
    assert "Schema: INVALID" in result.stdout
    assert "expected [;], got [}]" in result.stdout


def test_schema_without_vectors(tmp_path):
    schema = tmp_path / "types.bfs"
    schema.write_text("struct A { a : byte; }")

    result = run_tool(schema)
    assert result.returncode == 0
    assert "No test vectors found." in result.stdout


def test_malformed_vectors_file(tmp_path):
    schema = tmp_path / "value.bfs"
    schema.write_text("schema { a : byte; }")
    vectors = tmp_path / "value.vectors.yaml"
    vectors.write_text("test_vectors:\n  - name: missing_payload\n    expected: {a: 1}\n")

    result = run_tool(schema, vectors)
    assert result.returncode == 1
    assert "missing 'payload'" in result.stderr


def test_parse_payload_formats():
    assert parse_payload("0x01 0x02") == b'\x01\x02'
    assert parse_payload("01,02") == b'\x01\x02'
    assert parse_payload([1, 2]) == b'\x01\x02'


def test_values_match_list_against_array_mapping():
    assert values_match([1, 2], {"a[0]": 1, "a[1]": 2}) == (True, "")
    match, message = values_match([1, 2], {"a[0]": 1})
    assert not match
    assert "list length mismatch" in message


def test_values_match_float_tolerance():
    assert values_match(1.5, 1.5004)[0]
    assert not values_match(1.5, 1.6)[0]


def test_values_match_keeps_bools_apart_from_numbers():
    assert values_match(None, None)[0]
    assert not values_match(True, 1)[0]
    assert values_match({"a": {"b": "x"}}, {"a": {"b": "x", "c": 1}})[0]


def test_report_dict(tmp_path):
    schema = tmp_path / "value.bfs"
    schema.write_text("schema { a : byte; }")
    vectors = tmp_path / "value.vectors.yaml"
    vectors.write_text("test_vectors:\n  - {name: one, payload: '01', expected: {a: 1}}\n"
                       "  - {name: short, payload: '', error: Buffer too short}\n")

    report = validate_schema(str(schema), load_vectors(str(vectors))).to_dict()
    assert report["schema_valid"] is True
    assert report["tests_passed"] == 2
    assert report["all_passed"] is True
    assert report["test_results"][0]["payload"] == "01"
    assert report["test_results"][0]["actual"] == {"a": 1}
