#!/usr/bin/env python3
"""
schema_errors.py - Error types raised while compiling schemas and decoding data

Every error derives from SchemaError, which is a ValueError, so callers that
already guard decoding with ``except ValueError`` keep working.

Compile-time errors carry a source location (line, column). Decode-time
errors carry the field name and the byte offset where decoding failed.
"""

from typing import Optional


class SchemaError(ValueError):
    """Base class for every schema compile or decode failure."""
    pass


class LexicalError(SchemaError):
    """Unrecognized character in schema source."""
    line: int
    column: int
    character: str

    def __init__(self, character: str, line: int, column: int,
                 message: Optional[str] = None):
        super().__init__(message or f"({line}:{column}) unexpected character {character!r}")
        self.character = character
        self.line = line
        self.column = column


class SchemaSyntaxError(SchemaError):
    """Grammar violation: the parser expected one thing and found another."""
    line: int
    column: int
    expected: str
    found: str

    def __init__(self, expected: str, found: str, line: int, column: int,
                 message: Optional[str] = None):
        super().__init__(message or f"({line}:{column}) expected {expected}, got {found}")
        self.expected = expected
        self.found = found
        self.line = line
        self.column = column


class UnknownTypeError(SchemaError):
    """Type name or enum constant that is neither a primitive nor declared."""
    name: str
    line: int
    column: int
    field: Optional[str]
    offset: Optional[int]

    def __init__(self, name: str, line: int, column: int,
                 message: Optional[str] = None):
        self.reason = message or f"({line}:{column}) the type [{name}] does not exist"
        super().__init__(self.reason)
        self.name = name
        self.line = line
        self.column = column
        self.field = None
        self.offset = None

    def __str__(self) -> str:
        if self.field is not None:
            return f"{self.reason} [field {self.field} @ {self.offset}]"
        return self.reason


class IncludeError(SchemaError):
    """Include target missing, unreadable or circular."""
    path: str
    line: int
    column: int

    def __init__(self, path: str, line: int, column: int,
                 message: Optional[str] = None):
        super().__init__(message or f"({line}:{column}) couldn't locate include file: {path}")
        self.path = path
        self.line = line
        self.column = column


class ExpressionError(SchemaError):
    """Malformed expression or unresolved identifier at decode time."""
    line: int
    column: int
    field: Optional[str]
    offset: Optional[int]

    def __init__(self, message: str, line: int = 0, column: int = 0,
                 field: Optional[str] = None, offset: Optional[int] = None):
        super().__init__(message)
        self.reason = message
        self.line = line
        self.column = column
        self.field = field
        self.offset = offset

    def __str__(self) -> str:
        where = f"({self.line}:{self.column}) " if self.line else ""
        if self.field is not None:
            return f"{where}{self.reason} [field {self.field} @ {self.offset}]"
        return f"{where}{self.reason}"


class DecodeError(SchemaError):
    """Input exhausted or unreadable while decoding a field."""
    field: Optional[str]
    offset: Optional[int]

    def __init__(self, message: str, field: Optional[str] = None,
                 offset: Optional[int] = None):
        super().__init__(message)
        self.reason = message
        self.field = field
        self.offset = offset

    def __str__(self) -> str:
        if self.field is not None:
            return f"{self.reason} [field {self.field} @ {self.offset}]"
        return self.reason
