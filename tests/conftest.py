"""
pytest configuration and fixtures for schema compiler and interpreter tests.

Provides reusable fixtures for:
- Compiling schema source with includes resolved against a temp directory
- Decoding payloads in one call
- Hypothesis property-based testing configuration
"""

import os
import sys
from pathlib import Path

import pytest

# Add project paths
sys.path.insert(0, str(Path(__file__).parent.parent / "tools"))

from schema_compiler import Schema, compile_schema
from schema_interpreter import DecoderOptions

# Configure Hypothesis profiles
from hypothesis import settings, Verbosity, Phase

# Default profile: balanced speed and coverage
settings.register_profile(
    "default",
    max_examples=100,
    deadline=None,  # Disable deadline for slow interpreters
)

# CI profile: more thorough testing
settings.register_profile(
    "ci",
    max_examples=500,
    deadline=None,
    suppress_health_check=[],
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
)

# Dev profile: fast iteration
settings.register_profile(
    "dev",
    max_examples=10,
    deadline=None,
)

# Debug profile: verbose output
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    deadline=None,
)

# Load profile from environment
settings.load_profile(os.environ.get("HYPOTHESIS_PROFILE", "default"))


@pytest.fixture
def compile_text(tmp_path):
    """
    Compile schema source; includes resolve against a per-test directory.

    Usage:
        def test_struct(compile_text):
            schema = compile_text("schema { a : byte; }")
    """
    def _compile(text: str) -> Schema:
        return compile_schema(text, base_dir=tmp_path)
    return _compile


@pytest.fixture
def decode():
    """
    Compile and decode in one step; returns the DecodeResult.

    Usage:
        def test_byte(decode):
            result = decode("schema { a : byte; }", b'\\x01')
            assert result.data == {'a': 1}
    """
    def _decode(text: str, payload: bytes, **options):
        schema = compile_schema(text)
        return schema.decode(payload, DecoderOptions.from_dict(options) if options else None)
    return _decode


# Markers for test categorization
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
