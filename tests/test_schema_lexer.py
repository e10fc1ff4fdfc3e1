"""
Tests for the schema tokenizer.

Covers token kinds, 1-based line/column tracking (including across block
comments) and lexical errors.
"""

import pytest
import sys
from pathlib import Path

# Add tools to path
sys.path.insert(0, str(Path(__file__).parent.parent / 'tools'))

from schema_errors import LexicalError, SchemaError
from schema_lexer import Token, TokenKind, parse_number, tokenize


def kinds(text):
    return [t.kind for t in tokenize(text)]


def texts(text):
    return [t.text for t in tokenize(text) if t.kind != TokenKind.END]


class TestTokenKinds:
    """Each lexical class maps to its token kind."""

    def test_field_declaration(self):
        assert kinds("a : byte;") == [
            TokenKind.WORD, TokenKind.PUNCTUATION, TokenKind.WORD,
            TokenKind.PUNCTUATION, TokenKind.END,
        ]

    def test_no_whitespace_needed(self):
        assert texts("a:byte[n*2];") == ['a', ':', 'byte', '[', 'n', '*', '2', ']', ';']

    def test_numbers(self):
        tokens = list(tokenize("42 0x1F 0XfF"))
        assert [t.kind for t in tokens[:3]] == [TokenKind.NUMBER] * 3
        assert [parse_number(t.text) for t in tokens[:3]] == [42, 31, 255]

    def test_dotted_constant_is_one_word(self):
        tokens = list(tokenize("Color.Red"))
        assert tokens[0] == Token(TokenKind.WORD, 'Color.Red', 1, 1)

    def test_macro_is_word(self):
        tokens = list(tokenize("@eof @pos @size"))
        assert [t.text for t in tokens[:3]] == ['@eof', '@pos', '@size']
        assert all(t.kind == TokenKind.WORD for t in tokens[:3])

    def test_two_character_operators(self):
        assert texts("a != b <= c >= d") == ['a', '!=', 'b', '<=', 'c', '>=', 'd']

    def test_single_character_operators(self):
        tokens = list(tokenize("= < > + - * / !"))
        assert all(t.kind == TokenKind.OPERATOR for t in tokens[:-1])

    def test_punctuation(self):
        tokens = list(tokenize("{}()[],;:"))
        assert all(t.kind == TokenKind.PUNCTUATION for t in tokens[:-1])
        assert len(tokens) == 10

    def test_negative_number_is_operator_then_number(self):
        assert kinds("-1")[:2] == [TokenKind.OPERATOR, TokenKind.NUMBER]

    def test_quoted_string(self):
        tokens = list(tokenize('include "lib/common.bfs";'))
        assert tokens[1].kind == TokenKind.STRING
        assert tokens[1].text == '"lib/common.bfs"'


class TestComments:
    """Comments are tokens so they can be attached as documentation."""

    def test_line_comment(self):
        tokens = list(tokenize("a : byte; // the answer"))
        comment = tokens[4]
        assert comment.kind == TokenKind.COMMENT
        assert comment.comment_text == 'the answer'

    def test_block_comment(self):
        tokens = list(tokenize("/* header\n   block */"))
        assert tokens[0].kind == TokenKind.COMMENT
        assert tokens[0].comment_text == 'header\n   block'

    def test_block_comment_advances_line(self):
        tokens = list(tokenize("/* a\n b */ x"))
        assert tokens[1].text == 'x'
        assert (tokens[1].line, tokens[1].column) == (2, 7)

    def test_slash_is_still_division(self):
        assert texts("a / b") == ['a', '/', 'b']


class TestPositions:
    """Line and column are 1-based."""

    def test_first_token(self):
        token = next(tokenize("schema"))
        assert (token.line, token.column) == (1, 1)

    def test_second_line(self):
        tokens = list(tokenize("schema {\n  a : byte;\n}"))
        a = tokens[2]
        assert a.text == 'a'
        assert (a.line, a.column) == (2, 3)
        closing = tokens[-2]
        assert closing.text == '}'
        assert (closing.line, closing.column) == (3, 1)

    def test_end_token_always_last(self):
        tokens = list(tokenize(""))
        assert len(tokens) == 1
        assert tokens[0].kind == TokenKind.END
        assert tokens[0].describe() == 'end of input'

    def test_describe_wraps_text(self):
        assert next(tokenize("struct")).describe() == '[struct]'


class TestLexicalErrors:
    """Characters that start no token fail with their position."""

    def test_unexpected_character(self):
        with pytest.raises(LexicalError) as exc_info:
            list(tokenize("a $"))
        err = exc_info.value
        assert err.character == '$'
        assert (err.line, err.column) == (1, 3)
        assert '(1:3)' in str(err)

    def test_unexpected_character_on_later_line(self):
        with pytest.raises(LexicalError) as exc_info:
            list(tokenize("a : byte;\nb : byte; #"))
        assert (exc_info.value.line, exc_info.value.column) == (2, 11)

    def test_unterminated_block_comment(self):
        with pytest.raises(LexicalError, match="unterminated block comment"):
            list(tokenize("a : byte; /* never closed"))

    def test_lexical_error_is_value_error(self):
        with pytest.raises(ValueError):
            list(tokenize("%"))
        assert issubclass(LexicalError, SchemaError)

    def test_tokens_before_error_are_yielded(self):
        stream = tokenize("a ?")
        assert next(stream).text == 'a'
        with pytest.raises(LexicalError):
            next(stream)
