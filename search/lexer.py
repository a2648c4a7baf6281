"""Tokenizer for the search language."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator, List, Optional, Tuple

from errors import SearchError


class TokenKind(Enum):
    FIELD = "field"
    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    TRUE = "true"
    FALSE = "false"
    DATE = "date"
    AND = "and"
    OR = "or"
    MINUS = "-"
    EQUAL = "="
    GREATER_THAN = ">"
    GREATER_THAN_EQUAL = ">="
    LESS_THAN = "<"
    LESS_THAN_EQUAL = "<="
    COLON = ":"
    TILDE = "~"
    LEFT_PAREN = "("
    RIGHT_PAREN = ")"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    span: Tuple[int, int]
    # Unescaped text for fields, strings and dates; the number for numbers
    value: Any = None


COMPARISON_KINDS = {
    TokenKind.EQUAL,
    TokenKind.TILDE,
    TokenKind.GREATER_THAN,
    TokenKind.GREATER_THAN_EQUAL,
    TokenKind.LESS_THAN,
    TokenKind.LESS_THAN_EQUAL,
    TokenKind.COLON,
}
_NO_IMPLIED_AND_AFTER = {TokenKind.AND, TokenKind.OR, TokenKind.MINUS, TokenKind.LEFT_PAREN}
_KEYWORDS = {
    "and": TokenKind.AND,
    "AND": TokenKind.AND,
    "or": TokenKind.OR,
    "OR": TokenKind.OR,
    "true": TokenKind.TRUE,
    "false": TokenKind.FALSE,
}
_SINGLE_CHAR = {
    "(": TokenKind.LEFT_PAREN,
    ")": TokenKind.RIGHT_PAREN,
    "=": TokenKind.EQUAL,
    ":": TokenKind.COLON,
    "~": TokenKind.TILDE,
}
_FIELD_FOLLOWERS = "=<>~:"


def _is_word_char(ch: str) -> bool:
    return ch.isalnum() or ch in "._-"


class Lexer:
    """Split a query into tokens.

    With `normalize` (the default), a bare string `x` becomes `"" ~ x` and an
    `and` is inserted between adjacent expressions.
    """

    def __init__(self, text: str, normalize: bool = True):
        self.text = text
        self.normalize = normalize
        self.pos = 0

    def tokenize(self) -> List[Token]:
        tokens: List[Token] = []
        for token in self._raw_tokens():
            if self.normalize:
                tokens.extend(self._normalized(token, tokens[-1] if tokens else None))
            else:
                tokens.append(token)
        return tokens

    def _normalized(self, token: Token, previous: Optional[Token]) -> List[Token]:
        at = (token.span[0], token.span[0])
        out = [token]
        if token.kind == TokenKind.STRING and (
            previous is None or previous.kind not in COMPARISON_KINDS
        ):
            out = [Token(TokenKind.FIELD, at, ""), Token(TokenKind.TILDE, at), token]
        if (
            out[0].kind in (TokenKind.FIELD, TokenKind.LEFT_PAREN, TokenKind.MINUS)
            and previous is not None
            and previous.kind not in _NO_IMPLIED_AND_AFTER
        ):
            out.insert(0, Token(TokenKind.AND, at))
        return out

    def _peek(self, offset: int = 0) -> str:
        index = self.pos + offset
        return self.text[index] if index < len(self.text) else ""

    def _raw_tokens(self) -> Iterator[Token]:
        text = self.text
        while True:
            while self.pos < len(text) and text[self.pos].isspace():
                self.pos += 1
            if self.pos >= len(text):
                return
            start = self.pos
            ch = text[start]
            if ch in _SINGLE_CHAR:
                self.pos += 1
                yield Token(_SINGLE_CHAR[ch], (start, self.pos))
            elif ch in "<>":
                self.pos += 1
                if self._peek() == "=":
                    self.pos += 1
                    kind = TokenKind.LESS_THAN_EQUAL if ch == "<" else TokenKind.GREATER_THAN_EQUAL
                else:
                    kind = TokenKind.LESS_THAN if ch == "<" else TokenKind.GREATER_THAN
                yield Token(kind, (start, self.pos))
            elif ch == '"':
                self.pos += 1
                yield self._string(start, raw=False)
            elif ch == "#" and self._peek(1) == '"':
                self.pos += 2
                yield self._string(start, raw=True)
            elif ch.isdigit() or ch == "-":
                yield self._date_or_number(start)
            elif ch.isalnum() or ch in "._":
                while self.pos < len(text) and _is_word_char(text[self.pos]):
                    self.pos += 1
                word = text[start:self.pos]
                if word in _KEYWORDS:
                    yield Token(_KEYWORDS[word], (start, self.pos), word)
                elif self._peek() and self._peek() in _FIELD_FOLLOWERS:
                    yield Token(TokenKind.FIELD, (start, self.pos), word)
                else:
                    yield Token(TokenKind.STRING, (start, self.pos), word)
            else:
                raise SearchError(f"Unexpected character `{ch}`.", (start, start + 1))

    def _string(self, start: int, raw: bool) -> Token:
        """Read a `"..."` or `#"..."#` string. A backslash escapes the next character."""
        content_start = self.pos
        chars: List[str] = []
        while self.pos < len(self.text):
            ch = self.text[self.pos]
            self.pos += 1
            if ch == '"':
                if not raw:
                    return Token(TokenKind.STRING, (content_start, self.pos - 1), "".join(chars))
                if self._peek() == "#":
                    self.pos += 1
                    return Token(TokenKind.STRING, (content_start, self.pos - 2), "".join(chars))
                chars.append(ch)
            elif ch == "\\":
                if self.pos < len(self.text):
                    chars.append(self.text[self.pos])
                    self.pos += 1
            else:
                chars.append(ch)
        raise SearchError("Unterminated string.", (start, len(self.text)))

    def _eat_digits(self) -> None:
        while self._peek().isdigit():
            self.pos += 1

    def _date_or_number(self, start: int) -> Token:
        self.pos += 1
        if self.text[start] == "-":
            if not self._peek().isdigit():
                return Token(TokenKind.MINUS, (start, self.pos))
        self._eat_digits()
        if self._peek() == "-" and self._peek(1).isdigit():
            self.pos += 1
            self._eat_digits()
            if self._peek() != "-":
                raise SearchError("Invalid date.", (start, self.pos))
            self.pos += 1
            self._eat_digits()
            if self._peek() == "T":
                self.pos += 1
                self._eat_digits()
                if self._peek() == ":":
                    self.pos += 1
                    self._eat_digits()
                    if self._peek() == ":":
                        self.pos += 1
                        self._eat_digits()
                        if self._peek() == "Z":
                            self.pos += 1
            return Token(TokenKind.DATE, (start, self.pos), self.text[start:self.pos])
        if self._peek() == ".":
            self.pos += 1
            self._eat_digits()
            return Token(TokenKind.FLOAT, (start, self.pos), float(self.text[start:self.pos]))
        return Token(TokenKind.INTEGER, (start, self.pos), int(self.text[start:self.pos]))


def extract_tag_dependencies(query: str) -> List[str]:
    """Every tag name compared against in `query`, for example `A` in `tag="A"`."""
    tokens = Lexer(query).tokenize()
    names = []
    for field, _, value in zip(tokens, tokens[1:], tokens[2:]):
        if field.kind == TokenKind.FIELD and field.value == "tag" and value.kind == TokenKind.STRING:
            names.append(value.value)
    return names
