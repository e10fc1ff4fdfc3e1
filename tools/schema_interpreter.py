#!/usr/bin/env python3
"""
schema_interpreter.py - Binary interpreter for compiled schemas

Walks a compiled schema's field list against a byte stream and produces an
ordered result tree.

Usage:
    from schema_compiler import Schema
    from schema_interpreter import DecoderOptions, Endian

    schema = Schema.from_file('formats/archive.bfs')
    result = schema.decode(payload_bytes, DecoderOptions(endian=Endian.LITTLE))
    print(result.data)

Supports:
- bool, byte/sbyte, ushort/short, uint/int, ulong/long, float/double
- char, NUL-terminated string, ipaddress (4 bytes), epoch (u32 seconds)
- Struct, enum and bitfield references resolved through the type table
- Arrays with length expressions (char arrays decode to one string)
- if / unless blocks spliced into the enclosing scope
- while / until loops with index-suffixed field names
"""

import codecs
import io
import math
import struct
from dataclasses import dataclass, field, fields
from datetime import datetime, timedelta, timezone
from enum import Enum
from ipaddress import IPv4Address
from pathlib import Path
from typing import Any, BinaryIO, Callable, Dict, List, Mapping, Optional, Tuple, Union

import yaml

from schema_errors import DecodeError, ExpressionError, UnknownTypeError
from schema_expression import EvalContext, evaluate_condition, evaluate_length
from schema_model import (
    BitfieldDef, BodyNode, ControlBlock, EnumDef, Expression, FieldDecl, FieldKind,
    PrimitiveKind, StructDef, TypeDef, TypeRef, primitive_format, primitive_size,
)
from schema_result import Result, ResultScope, to_plain

EPOCH_START = datetime(1970, 1, 1, tzinfo=timezone.utc)


class Endian(Enum):
    BIG = 'big'
    LITTLE = 'little'


@dataclass
class DecoderOptions:
    """Runtime options for one interpreter."""
    endian: Endian = Endian.LITTLE
    strict_enums: bool = False
    max_loop_iterations: Optional[int] = None
    text_encoding: str = 'ascii'

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DecoderOptions':
        """Build options from a config mapping (e.g. parsed YAML)."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown decoder option(s): {', '.join(unknown)}")

        options = cls()
        if 'endian' in data:
            options.endian = Endian(data['endian'])
        if 'strict_enums' in data:
            if not isinstance(data['strict_enums'], bool):
                raise ValueError("'strict_enums' must be true or false")
            options.strict_enums = data['strict_enums']
        if 'max_loop_iterations' in data:
            limit = data['max_loop_iterations']
            if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit < 1):
                raise ValueError("'max_loop_iterations' must be a positive integer or null")
            options.max_loop_iterations = limit
        if 'text_encoding' in data:
            try:
                codecs.lookup(data['text_encoding'])
            except (LookupError, TypeError):
                raise ValueError(f"Unknown text encoding: {data['text_encoding']!r}")
            options.text_encoding = data['text_encoding']
        return options

    def to_dict(self) -> Dict[str, Any]:
        return {
            'endian': self.endian.value,
            'strict_enums': self.strict_enums,
            'max_loop_iterations': self.max_loop_iterations,
            'text_encoding': self.text_encoding,
        }

    def merged(self, overrides: Dict[str, Any]) -> 'DecoderOptions':
        """Copy with ``overrides`` applied; validated like ``from_dict``."""
        return DecoderOptions.from_dict({**self.to_dict(), **overrides})


def load_options(path: Union[str, Path]) -> DecoderOptions:
    """Load DecoderOptions from a YAML file."""
    with open(path, 'r') as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Options file {path} must contain a mapping")
    return DecoderOptions.from_dict(data)


@dataclass
class DecodeResult:
    """Result of decoding a payload."""
    fields: ResultScope
    bytes_consumed: int
    warnings: List[str] = field(default_factory=list)

    @property
    def data(self) -> Dict[str, Any]:
        """Plain nested dict of decoded values."""
        return to_plain(self.fields)


class ByteSource:
    """
    Sequential reader over bytes or a seekable binary stream.

    Position and length queries never move the read position backward.
    """

    def __init__(self, data: Union[bytes, bytearray, memoryview, BinaryIO]):
        if isinstance(data, (bytes, bytearray, memoryview)):
            self._stream = io.BytesIO(bytes(data))
        else:
            self._stream = data
        start = self._stream.tell()
        self._length = self._stream.seek(0, io.SEEK_END)
        self._stream.seek(start)

    @property
    def position(self) -> int:
        return self._stream.tell()

    @property
    def length(self) -> int:
        return self._length

    @property
    def at_eof(self) -> bool:
        return self.position >= self._length

    def read(self, size: int, field_name: str) -> bytes:
        pos = self.position
        available = max(self._length - pos, 0)
        if size > available:
            raise DecodeError(f"Buffer too short: need {size} bytes at pos {pos}, "
                              f"{available} available", field_name, pos)
        data = self._stream.read(size)
        if len(data) < size:
            raise DecodeError(f"Buffer too short: need {size} bytes at pos {pos}, "
                              f"{len(data)} available", field_name, pos)
        return data

    def read_until_nul(self, field_name: str) -> bytes:
        """Bytes up to a 0x00 terminator; the terminator is consumed, not returned."""
        pos = self.position
        data = bytearray()
        while True:
            byte = self._stream.read(1)
            if not byte:
                raise DecodeError(f"Unterminated string starting at pos {pos}", field_name, pos)
            if byte == b'\x00':
                return bytes(data)
            data += byte


@dataclass
class _DecodeState:
    """Mutable state owned by a single decode call."""
    stream: ByteSource
    warnings: List[str]


class BinaryInterpreter:
    """
    Runtime interpreter for compiled schemas.

    Holds only read-only compile output and options; all per-decode state
    lives in the call, so one interpreter can serve concurrent decodes.
    """

    def __init__(self, types: Mapping[str, TypeDef], root: Optional[Tuple[BodyNode, ...]],
                 options: Optional[DecoderOptions] = None):
        self.types = types
        self.root = root
        self.options = options or DecoderOptions()
        self._byte_order = '<' if self.options.endian == Endian.LITTLE else '>'

    def decode(self, data: Union[bytes, bytearray, memoryview, BinaryIO]) -> DecodeResult:
        """
        Decode ``data`` according to the schema block.

        Returns:
            DecodeResult with the complete result tree

        Raises:
            DecodeError, ExpressionError, UnknownTypeError: the decode is
                aborted and no partial tree is returned
        """
        if self.root is None:
            raise DecodeError("Schema has no schema block to decode with")

        state = _DecodeState(ByteSource(data), [])
        start = state.stream.position
        scope = ResultScope()
        self._decode_body(self.root, state, scope)
        return DecodeResult(scope, state.stream.position - start, state.warnings)

    # -------------------------------------------------------------------------
    # Field lists and control flow
    # -------------------------------------------------------------------------

    def _decode_body(self, nodes: Tuple[BodyNode, ...], state: _DecodeState,
                     scope: ResultScope) -> None:
        for node in nodes:
            if isinstance(node, ControlBlock):
                if node.control.is_loop:
                    self._run_loop(node, state, scope)
                else:
                    self._run_conditional(node, state, scope)
            elif node.is_array:
                scope.add(self._decode_array(node, state, scope))
            else:
                scope.add(self._decode_value(node.type_ref, node.name, state, node.comment))

    def _evaluate(self, expression: Expression, evaluator: Callable[[Expression, EvalContext], Any],
                  state: _DecodeState, scope: ResultScope, label: str) -> Any:
        pos = state.stream.position
        context = EvalContext(pos, state.stream.length, scope, self.types)
        try:
            return evaluator(expression, context)
        except (ExpressionError, UnknownTypeError) as e:
            e.field = label
            e.offset = pos
            raise

    def _condition(self, block: ControlBlock, state: _DecodeState, scope: ResultScope) -> bool:
        value = self._evaluate(block.condition, evaluate_condition, state, scope, block.label)
        return value != block.control.negated

    def _run_conditional(self, block: ControlBlock, state: _DecodeState,
                         scope: ResultScope) -> None:
        if not self._condition(block, state, scope):
            return
        body = ResultScope(parent=scope)
        self._decode_body(block.body, state, body)
        for result in body.values():
            scope.add(result)

    def _run_loop(self, block: ControlBlock, state: _DecodeState, scope: ResultScope) -> None:
        limit = self.options.max_loop_iterations
        iteration = 0
        # The condition sees the previous iteration's fields by their plain names
        visible = scope
        while self._condition(block, state, visible):
            start = state.stream.position
            if limit is not None and iteration >= limit:
                raise DecodeError(f"Loop exceeded {limit} iterations", block.label, start)

            body = ResultScope(parent=scope)
            self._decode_body(block.body, state, body)
            for result in body.values():
                scope.add(result.renamed(f"{result.name}[{iteration}]"))
            iteration += 1
            visible = body

            # Nothing consumed means the same values again: the condition cannot change
            if state.stream.position == start:
                raise DecodeError("Loop made no progress", block.label, start)

    # -------------------------------------------------------------------------
    # Values
    # -------------------------------------------------------------------------

    def _decode_array(self, decl: FieldDecl, state: _DecodeState, scope: ResultScope) -> Result:
        offset = state.stream.position
        length = self._evaluate(decl.length, evaluate_length, state, scope, decl.name)
        element = decl.type_ref

        if element.primitive == PrimitiveKind.CHAR:
            data = state.stream.read(length, decl.name)
            text = data.decode(self.options.text_encoding, errors='replace')
            return Result(FieldKind.ARRAY, decl.name, offset, length, decl.type_name,
                          text, decl.comment)

        items = ResultScope()
        for i in range(length):
            items.add(self._decode_value(element, f"{decl.name}[{i}]", state))
        return Result(FieldKind.ARRAY, decl.name, offset, items.total_size(), decl.type_name,
                      items, decl.comment)

    def _decode_value(self, type_ref: TypeRef, name: str, state: _DecodeState,
                      comment: Optional[str] = None) -> Result:
        offset = state.stream.position

        if type_ref.kind == FieldKind.PRIMITIVE:
            value, size = self._read_primitive(type_ref.primitive, state.stream, name)
            raw = int(value.timestamp()) if type_ref.primitive == PrimitiveKind.EPOCH else None
            return Result(FieldKind.PRIMITIVE, name, offset, size, type_ref.type_name,
                          value, comment, raw)

        if type_ref.kind == FieldKind.STRUCT:
            typedef = self._lookup(type_ref.name, StructDef, name, offset)
            children = ResultScope()
            self._decode_body(typedef.body, state, children)
            return Result(FieldKind.STRUCT, name, offset, children.total_size(), typedef.name,
                          children, comment)

        if type_ref.kind == FieldKind.ENUM:
            return self._decode_enum(type_ref, name, state, comment)

        if type_ref.kind == FieldKind.BITFIELD:
            return self._decode_bitfield(type_ref, name, state, comment)

        raise DecodeError(f"Cannot decode a {type_ref.kind.value} as a single value", name, offset)

    def _decode_enum(self, type_ref: TypeRef, name: str, state: _DecodeState,
                     comment: Optional[str]) -> Result:
        offset = state.stream.position
        typedef = self._lookup(type_ref.name, EnumDef, name, offset)
        value, size = self._read_primitive(typedef.base, state.stream, name)
        raw = self._as_integer(value, name, offset)

        member = typedef.member_for(raw)
        if member is None:
            message = f"{name}: value {raw} is not a member of enum {typedef.name}"
            if self.options.strict_enums:
                raise DecodeError(message, name, offset)
            state.warnings.append(message)

        return Result(FieldKind.ENUM, name, offset, size, typedef.name,
                      member.name if member else None, comment, raw)

    def _decode_bitfield(self, type_ref: TypeRef, name: str, state: _DecodeState,
                         comment: Optional[str]) -> Result:
        """First declared member takes the lowest bits of the base value."""
        offset = state.stream.position
        typedef = self._lookup(type_ref.name, BitfieldDef, name, offset)
        value, size = self._read_primitive(typedef.base, state.stream, name)
        raw = self._as_integer(value, name, offset)

        members = ResultScope()
        remaining = raw
        for member in typedef.members:
            mask = (1 << member.width) - 1
            members.add(Result(FieldKind.PRIMITIVE, member.name, offset, size, typedef.base.value,
                               remaining & mask, member.comment))
            remaining >>= member.width

        return Result(FieldKind.BITFIELD, name, offset, size, typedef.name,
                      members, comment, raw)

    def _read_primitive(self, kind: PrimitiveKind, stream: ByteSource,
                        name: str) -> Tuple[Any, int]:
        """Read one primitive; returns (value, size)."""
        encoding = self.options.text_encoding

        if kind == PrimitiveKind.STRING:
            data = stream.read_until_nul(name)
            return data.decode(encoding, errors='replace'), len(data)

        size = primitive_size(kind)
        data = stream.read(size, name)

        if kind == PrimitiveKind.CHAR:
            return data.decode(encoding, errors='replace'), size

        if kind == PrimitiveKind.IPADDRESS:
            return IPv4Address(data), size

        value = struct.unpack(self._byte_order + primitive_format(kind), data)[0]
        if kind == PrimitiveKind.EPOCH:
            return EPOCH_START + timedelta(seconds=value), size
        return value, size

    def _lookup(self, type_name: str, expected: type, name: str, offset: int) -> Any:
        typedef = self.types.get(type_name)
        if not isinstance(typedef, expected):
            raise DecodeError(f"Type {type_name} is not a declared {expected.__name__}",
                              name, offset)
        return typedef

    def _as_integer(self, value: Any, name: str, offset: int) -> int:
        if isinstance(value, (bool, int)):
            return int(value)
        if isinstance(value, float):
            if not math.isfinite(value):
                raise DecodeError(f"Value {value!r} cannot be used as an integer", name, offset)
            return round(value)
        if isinstance(value, str) and len(value) == 1:
            return ord(value)
        if isinstance(value, datetime):
            return int(value.timestamp())
        if isinstance(value, IPv4Address):
            return int(value)
        raise DecodeError(f"Value {value!r} cannot be used as an integer", name, offset)


if __name__ == '__main__':
    # Demo
    from schema_compiler import Schema
    from schema_result import format_tree

    print("=== Binary Interpreter Demo ===\n")

    schema = Schema.from_text("""
        enum Kind : byte { Empty, Text = 5, Blob }
        bitfield Flags : byte { compressed : 1; version : 3; reserved : 4; }
        struct Record { kind : Kind; flags : Flags; length : ushort; data : byte[length]; }
        schema {
            magic : char[4];          // file signature
            count : byte;
            records : Record[count];
        }
    """)

    payload = b'DEMO' + bytes([2]) \
        + bytes([5, 0x13, 2, 0, 0xAA, 0xBB]) \
        + bytes([6, 0x00, 1, 0, 0xCC])

    print(f"Payload: {payload.hex().upper()}")
    print(f"Payload length: {len(payload)} bytes\n")

    result = schema.decode(payload)
    print(format_tree(result.fields))
    print(f"\nBytes consumed: {result.bytes_consumed}")
