#!/usr/bin/env python3
"""
schema_compiler.py - Recursive-descent compiler for binary format schemas

Compiles schema source into a Schema: a read-only type table (struct, enum
and bitfield definitions by name) plus the field list of the ``schema``
block, which is the decode root.

Usage:
    from schema_compiler import Schema

    schema = Schema.from_file('formats/archive.bfs')
    result = schema.decode(open('archive.bin', 'rb').read())
    print(result.data)

Grammar:
    decl         := include | structDef | enumDef | bitfieldDef | schemaDef
    include      := "include" (STRING | WORD) ";"
    structDef    := "struct" WORD body
    schemaDef    := "schema" body
    body         := "{" (fieldDecl | controlBlock)* "}"
    fieldDecl    := WORD ("," WORD)* ":" TYPE ("[" expr "]")? ";"
    controlBlock := ("if" | "unless" | "while" | "until") "(" expr ")" body
    enumDef      := "enum" WORD ":" PRIMITIVE "{" (WORD ("=" NUMBER)? ","?)* "}"
    bitfieldDef  := "bitfield" WORD ":" PRIMITIVE "{" (WORD ":" NUMBER ";")* "}"

A comment directly after a field declaration (or bitfield member) becomes
that field's documentation. Compilation is all-or-nothing: the first error
raises and no partial schema is returned.
"""

import dataclasses
import re
from collections import deque
from pathlib import Path
from typing import Any, BinaryIO, Deque, Dict, Iterator, List, Optional, Set, Tuple, Union

from schema_errors import IncludeError, SchemaSyntaxError, UnknownTypeError
from schema_lexer import Token, TokenKind, parse_number, tokenize
from schema_model import (
    MACROS, BitfieldDef, BitfieldMember, BodyNode, ControlBlock, ControlKind,
    EnumDef, EnumMember, ExprTerm, Expression, FieldDecl, FieldKind, PrimitiveKind,
    StructDef, TermKind, TypeRef, TypeTable, lookup_primitive,
)
from schema_interpreter import BinaryInterpreter, DecodeResult, DecoderOptions

CONTROL_KEYWORDS = {kind.value: kind for kind in ControlKind}

DECLARATIONS = ('include', 'struct', 'enum', 'bitfield', 'schema')

NAME_PATTERN = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')


class TokenCursor:
    """One-token lookahead over a lazy token stream."""

    def __init__(self, tokens: Iterator[Token]):
        self._tokens = tokens
        self._buffer: Deque[Token] = deque()
        self._end: Optional[Token] = None

    def _fill(self) -> None:
        if self._buffer:
            return
        if self._end is not None:
            self._buffer.append(self._end)
            return
        token = next(self._tokens)
        if token.kind == TokenKind.END:
            self._end = token
        self._buffer.append(token)

    def peek(self, skip_comments: bool = True) -> Token:
        while True:
            self._fill()
            token = self._buffer[0]
            if skip_comments and token.kind == TokenKind.COMMENT:
                self._buffer.popleft()
                continue
            return token

    def next(self, skip_comments: bool = True) -> Token:
        token = self.peek(skip_comments)
        self._buffer.popleft()
        return token


class Schema:
    """
    Compiled schema: the type table plus the root field list.

    Immutable after compilation; one instance may decode any number of
    inputs, including concurrently.
    """

    def __init__(self, types: TypeTable, root: Optional[Tuple[BodyNode, ...]],
                 source: Optional[str] = None):
        self.types = types
        self.root = root
        self.source = source

    @classmethod
    def from_text(cls, text: str, base_dir: Union[str, Path, None] = None) -> 'Schema':
        return compile_schema(text, base_dir)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> 'Schema':
        return compile_file(path)

    @property
    def has_root(self) -> bool:
        return self.root is not None

    def decode(self, data: Union[bytes, bytearray, memoryview, BinaryIO],
               options: Optional[DecoderOptions] = None) -> DecodeResult:
        """Decode ``data`` from its current position; raises SchemaError on failure."""
        return BinaryInterpreter(self.types, self.root, options).decode(data)

    def __repr__(self) -> str:
        return f"Schema(types={list(self.types)}, fields={len(self.root or ())}, source={self.source!r})"


class SchemaCompiler:
    """
    Compiles one top-level schema (and everything it includes).

    The type table belongs to this compiler and is frozen when compile()
    returns; create a new compiler for each schema.
    """

    def __init__(self, base_dir: Union[str, Path, None] = None):
        self.types = TypeTable()
        self.base_dir = Path(base_dir) if base_dir is not None else Path.cwd()
        self._cursor: Optional[TokenCursor] = None
        self._directory = self.base_dir
        self._root: Optional[Tuple[BodyNode, ...]] = None
        self._active: List[Path] = []
        self._included: Set[Path] = set()

    def compile(self, text: str, path: Union[str, Path, None] = None) -> Schema:
        source = None
        if path is not None:
            resolved = Path(path).resolve()
            self._directory = resolved.parent
            self._active.append(resolved)
            self._included.add(resolved)
            source = str(path)

        self._cursor = TokenCursor(tokenize(text))
        self._read_declarations(is_root=True)
        self.types.freeze()
        return Schema(self.types, self._root, source)

    # -------------------------------------------------------------------------
    # Token helpers
    # -------------------------------------------------------------------------

    def _error(self, expected: str, token: Token) -> SchemaSyntaxError:
        return SchemaSyntaxError(expected, token.describe(), token.line, token.column)

    def _expect_punct(self, char: str) -> Token:
        token = self._cursor.next()
        if not token.is_punct(char):
            raise self._error(f"[{char}]", token)
        return token

    def _expect_name(self, what: str) -> Token:
        token = self._cursor.next()
        if token.kind != TokenKind.WORD or not NAME_PATTERN.match(token.text):
            raise self._error(what, token)
        return token

    def _expect_number(self) -> int:
        token = self._cursor.next()
        if token.kind != TokenKind.NUMBER:
            raise self._error("numerical value", token)
        return parse_number(token.text)

    # -------------------------------------------------------------------------
    # Top level
    # -------------------------------------------------------------------------

    def _read_declarations(self, is_root: bool) -> None:
        while True:
            token = self._cursor.next()
            if token.kind == TokenKind.END:
                return
            if token.kind != TokenKind.WORD or token.text not in DECLARATIONS:
                raise self._error("[include, struct, enum, bitfield, schema]", token)

            if token.text == 'include':
                self._read_include()
            elif token.text == 'struct':
                self._read_struct()
            elif token.text == 'enum':
                self._read_enum()
            elif token.text == 'bitfield':
                self._read_bitfield()
            else:
                self._read_schema(token, is_root)

    def _read_include(self) -> None:
        token = self._cursor.next()
        if token.kind == TokenKind.STRING:
            name = token.text[1:-1]
        elif token.kind == TokenKind.WORD:
            name = token.text
        else:
            raise self._error("include path", token)
        self._expect_punct(';')

        path = (self._directory / name).resolve()
        if path in self._active:
            raise IncludeError(str(path), token.line, token.column,
                               f"({token.line}:{token.column}) circular include: {name}")
        if path in self._included:
            return
        if not path.is_file():
            raise IncludeError(str(path), token.line, token.column)
        try:
            text = path.read_text()
        except (OSError, UnicodeDecodeError) as e:
            raise IncludeError(str(path), token.line, token.column,
                               f"({token.line}:{token.column}) couldn't read include file {path}: {e}")

        saved_cursor, saved_directory = self._cursor, self._directory
        self._cursor = TokenCursor(tokenize(text))
        self._directory = path.parent
        self._active.append(path)
        self._included.add(path)
        try:
            self._read_declarations(is_root=False)
        finally:
            self._active.pop()
            self._cursor, self._directory = saved_cursor, saved_directory

    def _declare_name(self) -> Token:
        token = self._expect_name("type name")
        if self.types.declares(token.text) or lookup_primitive(token.text):
            raise SchemaSyntaxError(
                "unique type name", token.describe(), token.line, token.column,
                f"({token.line}:{token.column}) type [{token.text}] is already declared")
        return token

    def _read_struct(self) -> None:
        name = self._declare_name()
        self.types.reserve(name.text, FieldKind.STRUCT)
        body = self._read_body()
        self.types.define(StructDef(name.text, body, name.line, name.column))

    def _read_schema(self, keyword: Token, is_root: bool) -> None:
        body = self._read_body()
        if not is_root:
            # schema blocks of included files are parsed but not used
            return
        if self._root is not None:
            raise SchemaSyntaxError(
                "a single schema block", keyword.describe(), keyword.line, keyword.column,
                f"({keyword.line}:{keyword.column}) schema block declared twice")
        self._root = body

    def _read_base_type(self) -> PrimitiveKind:
        token = self._cursor.next()
        primitive = lookup_primitive(token.text) if token.kind == TokenKind.WORD else None
        if primitive is None:
            raise self._error("primitive base type", token)
        return primitive

    def _read_enum(self) -> None:
        name = self._declare_name()
        self._expect_punct(':')
        base = self._read_base_type()
        self._expect_punct('{')

        members: List[EnumMember] = []
        value = 0
        token = self._cursor.next()
        while not token.is_punct('}'):
            if token.kind != TokenKind.WORD or not NAME_PATTERN.match(token.text):
                raise self._error("enum member name", token)
            member = token.text

            token = self._cursor.next()
            if token.is_operator('='):
                if self._cursor.peek().is_operator('-'):
                    self._cursor.next()
                    value = -self._expect_number()
                else:
                    value = self._expect_number()
                token = self._cursor.next()

            members.append(EnumMember(member, value))
            value += 1

            if token.is_punct(','):
                token = self._cursor.next()
            elif not token.is_punct('}'):
                raise self._error("[,] or [}]", token)

        self.types.define(EnumDef(name.text, base, tuple(members), name.line, name.column))

    def _read_bitfield(self) -> None:
        name = self._declare_name()
        self._expect_punct(':')
        base = self._read_base_type()
        self._expect_punct('{')

        members: List[BitfieldMember] = []
        awaiting_comment = False
        while True:
            token = self._cursor.next(skip_comments=False)
            if token.kind == TokenKind.COMMENT:
                if awaiting_comment:
                    members[-1] = dataclasses.replace(members[-1], comment=token.comment_text)
                    awaiting_comment = False
                continue
            if token.is_punct('}'):
                break
            if token.kind != TokenKind.WORD or not NAME_PATTERN.match(token.text):
                raise self._error("bitfield member name", token)

            self._expect_punct(':')
            width = self._expect_number()
            self._expect_punct(';')
            members.append(BitfieldMember(token.text, width))
            awaiting_comment = True

        self.types.define(BitfieldDef(name.text, base, tuple(members), name.line, name.column))

    # -------------------------------------------------------------------------
    # Bodies
    # -------------------------------------------------------------------------

    def _read_body(self) -> Tuple[BodyNode, ...]:
        self._expect_punct('{')

        nodes: List[BodyNode] = []
        pending: List[int] = []
        while True:
            token = self._cursor.next(skip_comments=False)
            if token.kind == TokenKind.COMMENT:
                for index in pending:
                    nodes[index] = dataclasses.replace(nodes[index], comment=token.comment_text)
                pending = []
                continue
            pending = []

            if token.is_punct('}'):
                break
            if token.kind != TokenKind.WORD:
                raise self._error("identifier or [}]", token)

            if token.text in CONTROL_KEYWORDS:
                nodes.append(self._read_control(token))
                continue

            for decl in self._read_field_decl(token):
                pending.append(len(nodes))
                nodes.append(decl)

        return tuple(nodes)

    def _read_control(self, keyword: Token) -> ControlBlock:
        self._expect_punct('(')
        condition = self._read_expression(')')
        body = self._read_body()
        return ControlBlock(CONTROL_KEYWORDS[keyword.text], condition, body,
                            keyword.line, keyword.column)

    def _read_field_decl(self, first: Token) -> List[FieldDecl]:
        if not NAME_PATTERN.match(first.text):
            raise self._error("field name", first)

        names = [first]
        while True:
            token = self._cursor.next()
            if token.is_punct(':'):
                break
            if not token.is_punct(','):
                raise self._error("[,] or [:]", token)
            names.append(self._expect_name("field name"))

        type_token = self._cursor.next()
        if type_token.kind != TokenKind.WORD:
            raise self._error("type identifier", type_token)
        type_ref = self._resolve_type(type_token)

        length = None
        token = self._cursor.next()
        if token.is_punct('['):
            length = self._read_expression(']')
            token = self._cursor.next()
        if not token.is_punct(';'):
            raise self._error("[;]", token)

        return [FieldDecl(name.text, type_ref, name.line, name.column, length)
                for name in names]

    def _resolve_type(self, token: Token) -> TypeRef:
        """Primitive keyword first, then the type table."""
        primitive = lookup_primitive(token.text)
        if primitive is not None:
            return TypeRef(FieldKind.PRIMITIVE, primitive.value, primitive)

        kind = self.types.kind_of(token.text)
        if kind is None:
            raise UnknownTypeError(token.text, token.line, token.column)
        return TypeRef(kind, token.text)

    # -------------------------------------------------------------------------
    # Expressions
    # -------------------------------------------------------------------------

    def _read_expression(self, closer: str) -> Expression:
        start = self._cursor.peek()
        terms: List[ExprTerm] = []
        while True:
            token = self._cursor.next()
            if token.is_punct(closer):
                break
            terms.append(self._read_term(token, closer))

        if not terms:
            raise self._error("expression", start)
        return Expression(tuple(terms), start.line, start.column)

    def _read_term(self, token: Token, closer: str) -> ExprTerm:
        if token.kind == TokenKind.NUMBER:
            return ExprTerm(TermKind.NUMBER, token.text, token.line, token.column,
                            parse_number(token.text))
        if token.kind == TokenKind.OPERATOR:
            return ExprTerm(TermKind.OPERATOR, token.text, token.line, token.column)
        if token.kind == TokenKind.WORD:
            if token.text.startswith('@'):
                if token.text not in MACROS:
                    raise self._error("[@eof, @pos, @size]", token)
                return ExprTerm(TermKind.MACRO, token.text, token.line, token.column)
            if '.' in token.text:
                return ExprTerm(TermKind.CONSTANT, token.text, token.line, token.column)
            return ExprTerm(TermKind.NAME, token.text, token.line, token.column)
        raise self._error(f"expression or [{closer}]", token)


def compile_schema(text: str, base_dir: Union[str, Path, None] = None) -> Schema:
    """Compile schema source; includes resolve against ``base_dir`` (default: cwd)."""
    return SchemaCompiler(base_dir).compile(text)


def compile_file(path: Union[str, Path]) -> Schema:
    """Compile a schema file; includes resolve against the file's directory."""
    path = Path(path)
    return SchemaCompiler(path.parent).compile(path.read_text(), path)


def decode_payload(schema_text: str, data: bytes,
                   options: Optional[DecoderOptions] = None) -> Dict[str, Any]:
    """Convenience function: compile ``schema_text`` and decode ``data`` to plain values."""
    return compile_schema(schema_text).decode(data, options).data
