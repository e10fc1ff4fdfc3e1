#!/usr/bin/env python3
"""
schema_model.py - Compiled schema model

Type definitions (struct, enum, bitfield) live only in the TypeTable and are
referenced by name from field declarations. Field declarations, control
blocks and expression terms are immutable once the compiler builds them, so
one compiled schema can be shared by any number of decode calls.
"""

from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, Mapping, Optional, Tuple, Union


class PrimitiveKind(Enum):
    BOOL = 'bool'
    BYTE = 'byte'
    SBYTE = 'sbyte'
    USHORT = 'ushort'
    SHORT = 'short'
    UINT = 'uint'
    INT = 'int'
    ULONG = 'ulong'
    LONG = 'long'
    FLOAT = 'float'
    DOUBLE = 'double'
    CHAR = 'char'
    STRING = 'string'
    IPADDRESS = 'ipaddress'
    EPOCH = 'epoch'


# keyword -> (kind, size in bytes, struct format); size 0 = variable length
PRIMITIVES: Dict[str, Tuple[PrimitiveKind, int, Optional[str]]] = {
    'bool': (PrimitiveKind.BOOL, 1, '?'),
    'byte': (PrimitiveKind.BYTE, 1, 'B'),
    'sbyte': (PrimitiveKind.SBYTE, 1, 'b'),
    'ushort': (PrimitiveKind.USHORT, 2, 'H'),
    'short': (PrimitiveKind.SHORT, 2, 'h'),
    'uint': (PrimitiveKind.UINT, 4, 'I'),
    'int': (PrimitiveKind.INT, 4, 'i'),
    'ulong': (PrimitiveKind.ULONG, 8, 'Q'),
    'long': (PrimitiveKind.LONG, 8, 'q'),
    'float': (PrimitiveKind.FLOAT, 4, 'f'),
    'double': (PrimitiveKind.DOUBLE, 8, 'd'),
    'char': (PrimitiveKind.CHAR, 1, None),
    'string': (PrimitiveKind.STRING, 0, None),
    'ipaddress': (PrimitiveKind.IPADDRESS, 4, None),
    'epoch': (PrimitiveKind.EPOCH, 4, 'I'),
}


def lookup_primitive(word: str) -> Optional[PrimitiveKind]:
    """Primitive keywords are matched case-insensitively (IPAddress == ipaddress)."""
    entry = PRIMITIVES.get(word.lower())
    return entry[0] if entry else None


def primitive_size(kind: PrimitiveKind) -> int:
    return PRIMITIVES[kind.value][1]


def primitive_format(kind: PrimitiveKind) -> Optional[str]:
    return PRIMITIVES[kind.value][2]


class FieldKind(Enum):
    PRIMITIVE = 'primitive'
    STRUCT = 'struct'
    ENUM = 'enum'
    BITFIELD = 'bitfield'
    ARRAY = 'array'


class ControlKind(Enum):
    IF = 'if'
    UNLESS = 'unless'
    WHILE = 'while'
    UNTIL = 'until'

    @property
    def is_loop(self) -> bool:
        return self in (ControlKind.WHILE, ControlKind.UNTIL)

    @property
    def negated(self) -> bool:
        return self in (ControlKind.UNLESS, ControlKind.UNTIL)


# =============================================================================
# Expressions
# =============================================================================

class TermKind(Enum):
    NUMBER = 'number'
    OPERATOR = 'operator'
    MACRO = 'macro'
    NAME = 'name'
    CONSTANT = 'constant'


MACROS = ('@eof', '@pos', '@size')

BINARY_OPERATORS = ('+', '-', '*', '/', '=', '!=', '<', '>', '<=', '>=')
UNARY_OPERATORS = ('!', '-')


@dataclass(frozen=True)
class ExprTerm:
    """One typed operand or operator of an expression."""
    kind: TermKind
    text: str
    line: int
    column: int
    value: Optional[int] = None


@dataclass(frozen=True)
class Expression:
    """Flat, already-tokenized expression evaluated at decode time."""
    terms: Tuple[ExprTerm, ...]
    line: int
    column: int

    def __str__(self) -> str:
        return ' '.join(term.text for term in self.terms)


# =============================================================================
# Field declarations
# =============================================================================

@dataclass(frozen=True)
class TypeRef:
    """Reference to a primitive keyword or a declared type name."""
    kind: FieldKind
    name: str
    primitive: Optional[PrimitiveKind] = None

    @property
    def type_name(self) -> str:
        return self.primitive.value if self.primitive else self.name


@dataclass(frozen=True)
class FieldDecl:
    """A named field; an array when ``length`` is set."""
    name: str
    type_ref: TypeRef
    line: int
    column: int
    length: Optional[Expression] = None
    comment: Optional[str] = None

    @property
    def is_array(self) -> bool:
        return self.length is not None

    @property
    def kind(self) -> FieldKind:
        return FieldKind.ARRAY if self.is_array else self.type_ref.kind

    @property
    def type_name(self) -> str:
        if self.is_array:
            return f"{self.type_ref.type_name}[]"
        return self.type_ref.type_name


@dataclass(frozen=True)
class ControlBlock:
    """if / unless / while / until block with its nested body."""
    control: ControlKind
    condition: Expression
    body: Tuple['BodyNode', ...]
    line: int
    column: int

    @property
    def label(self) -> str:
        return f"{self.control.value}@{self.line}:{self.column}"


BodyNode = Union[FieldDecl, ControlBlock]


# =============================================================================
# Type definitions
# =============================================================================

@dataclass(frozen=True)
class StructDef:
    name: str
    body: Tuple[BodyNode, ...]
    line: int = 0
    column: int = 0


@dataclass(frozen=True)
class EnumMember:
    name: str
    value: int


@dataclass(frozen=True)
class EnumDef:
    name: str
    base: PrimitiveKind
    members: Tuple[EnumMember, ...]
    line: int = 0
    column: int = 0

    def member_for(self, value: int) -> Optional[EnumMember]:
        """First member declared with ``value``, if any."""
        for member in self.members:
            if member.value == value:
                return member
        return None

    def value_of(self, name: str) -> Optional[int]:
        for member in self.members:
            if member.name == name:
                return member.value
        return None


@dataclass(frozen=True)
class BitfieldMember:
    name: str
    width: int
    comment: Optional[str] = None


@dataclass(frozen=True)
class BitfieldDef:
    name: str
    base: PrimitiveKind
    members: Tuple[BitfieldMember, ...]
    line: int = 0
    column: int = 0


TypeDef = Union[StructDef, EnumDef, BitfieldDef]

KIND_BY_DEFINITION = {
    StructDef: FieldKind.STRUCT,
    EnumDef: FieldKind.ENUM,
    BitfieldDef: FieldKind.BITFIELD,
}


class TypeTable(Mapping[str, TypeDef]):
    """
    Name -> definition mapping owned by one compile.

    Struct names are reserved before their body is parsed so a struct may
    refer to itself; the table is frozen once compilation succeeds.
    """

    def __init__(self):
        self._types: Dict[str, TypeDef] = OrderedDict()
        self._reserved: Dict[str, FieldKind] = {}
        self._frozen = False

    def __getitem__(self, name: str) -> TypeDef:
        return self._types[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._types)

    def __len__(self) -> int:
        return len(self._types)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def kind_of(self, name: str) -> Optional[FieldKind]:
        """Field kind a reference to ``name`` produces, or None if unknown."""
        if name in self._types:
            return KIND_BY_DEFINITION[type(self._types[name])]
        return self._reserved.get(name)

    def declares(self, name: str) -> bool:
        return name in self._types or name in self._reserved

    def reserve(self, name: str, kind: FieldKind) -> None:
        self._check_mutable()
        self._reserved[name] = kind

    def define(self, typedef: TypeDef) -> None:
        self._check_mutable()
        self._reserved.pop(typedef.name, None)
        self._types[typedef.name] = typedef

    def freeze(self) -> None:
        self._reserved.clear()
        self._frozen = True

    def _check_mutable(self) -> None:
        if self._frozen:
            raise TypeError("type table is read-only after compilation")
