#!/usr/bin/env python3
"""
schema_lexer.py - Tokenizer for binary format schema source

Splits schema text into typed tokens with 1-based line/column positions.
Comments are returned as tokens (not dropped) so the compiler can attach
them to the preceding declaration as documentation.

Usage:
    from schema_lexer import tokenize

    for token in tokenize(text):
        print(token)

Token kinds:
    WORD         identifiers, keywords, @macros, dotted names (Color.Red)
    NUMBER       decimal or 0x-prefixed hexadecimal integers
    STRING       double-quoted text (include paths)
    PUNCTUATION  { } ( ) [ ] , ; :
    OPERATOR     = != < > <= >= + - * / !
    COMMENT      // line and /* block */ comments
    END          end of input (always the last token)
"""

import re
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Iterator

from schema_errors import LexicalError


class TokenKind(Enum):
    WORD = 'word'
    NUMBER = 'number'
    STRING = 'string'
    PUNCTUATION = 'punctuation'
    OPERATOR = 'operator'
    COMMENT = 'comment'
    END = 'end'


@dataclass(frozen=True)
class Token:
    """A single lexical token."""
    kind: TokenKind
    text: str
    line: int
    column: int

    def is_punct(self, char: str) -> bool:
        return self.kind == TokenKind.PUNCTUATION and self.text == char

    def is_operator(self, op: str) -> bool:
        return self.kind == TokenKind.OPERATOR and self.text == op

    def is_word(self, word: str) -> bool:
        return self.kind == TokenKind.WORD and self.text == word

    @property
    def comment_text(self) -> str:
        """Comment body without the // or /* */ markers."""
        if self.text.startswith('//'):
            return self.text[2:].strip()
        return self.text[2:-2].strip()

    def describe(self) -> str:
        """Short form used in syntax error messages."""
        if self.kind == TokenKind.END:
            return 'end of input'
        return f"[{self.text}]"

    def __str__(self) -> str:
        return f"{self.line}:{self.column} {self.kind.name} {self.text!r}"


IDENT = r'[A-Za-z_][A-Za-z0-9_]*'

TOKEN_SPECIFICATION = [
    ('NEWLINE', r'\n'),
    ('SKIP', r'[ \t\r\f\v]+'),
    ('BLOCK_COMMENT', r'/\*.*?\*/'),
    ('OPEN_COMMENT', r'/\*'),
    ('LINE_COMMENT', r'//[^\n]*'),
    ('NUMBER', r'0[xX][0-9a-fA-F]+|[0-9]+'),
    ('WORD', rf'@?{IDENT}(?:\.{IDENT})*'),
    ('STRING', r'"[^"\n]*"'),
    ('OPERATOR', r'!=|<=|>=|[=<>+\-*/!]'),
    ('PUNCTUATION', r'[{}()\[\],;:]'),
    ('MISMATCH', r'.'),
]

TOKEN_REGEX = re.compile(
    '|'.join(f'(?P<{name}>{pattern})' for name, pattern in TOKEN_SPECIFICATION),
    re.DOTALL,
)

KIND_BY_GROUP = {
    'BLOCK_COMMENT': TokenKind.COMMENT,
    'LINE_COMMENT': TokenKind.COMMENT,
    'NUMBER': TokenKind.NUMBER,
    'WORD': TokenKind.WORD,
    'STRING': TokenKind.STRING,
    'OPERATOR': TokenKind.OPERATOR,
    'PUNCTUATION': TokenKind.PUNCTUATION,
}


def tokenize(text: str) -> Iterator[Token]:
    """
    Lazily tokenize schema source.

    Raises:
        LexicalError: on a character that starts no token, or an
            unterminated block comment.
    """
    line = 1
    line_start = 0
    pos = 0

    for match in TOKEN_REGEX.finditer(text):
        group = match.lastgroup
        value = match.group()
        pos = match.start()
        column = pos - line_start + 1

        if group == 'NEWLINE':
            line += 1
            line_start = match.end()
            continue
        if group == 'SKIP':
            continue
        if group == 'MISMATCH':
            raise LexicalError(value, line, column)
        if group == 'OPEN_COMMENT':
            raise LexicalError(value, line, column,
                               f"({line}:{column}) unterminated block comment")

        yield Token(KIND_BY_GROUP[group], value, line, column)

        # Block comments may span lines
        newlines = value.count('\n')
        if newlines:
            line += newlines
            line_start = match.start() + value.rindex('\n') + 1

    yield Token(TokenKind.END, '', line, len(text) - line_start + 1)


def parse_number(text: str) -> int:
    """Convert a NUMBER token's text to int (decimal or 0x hex)."""
    if text[:2] in ('0x', '0X'):
        return int(text[2:], 16)
    return int(text, 10)


if __name__ == '__main__':
    source = open(sys.argv[1]).read() if len(sys.argv) > 1 else sys.stdin.read()
    for token in tokenize(source):
        print(token)
