"""Pratt parser turning search tokens into a token tree."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional, Tuple, Union

from errors import SearchError
from .lexer import Lexer, Token, TokenKind


class Op(str, Enum):
    AND = "and"
    OR = "or"
    EQUAL = "="
    GREATER_THAN = ">"
    GREATER_THAN_EQUAL = ">="
    LESS_THAN = "<"
    LESS_THAN_EQUAL = "<="
    COLON = ":"
    TILDE = "~"
    MINUS = "-"
    GROUP = "()"

    @property
    def is_comparison(self) -> bool:
        return self in COMPARISON_OPS


COMPARISON_OPS = {
    Op.EQUAL,
    Op.GREATER_THAN,
    Op.GREATER_THAN_EQUAL,
    Op.LESS_THAN,
    Op.LESS_THAN_EQUAL,
    Op.TILDE,
}


class AtomKind(Enum):
    FIELD = "field"
    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    DATETIME = "datetime"
    NIL = "nil"


@dataclass(frozen=True)
class Atom:
    kind: AtomKind
    value: Any = None
    span: Tuple[int, int] = (0, 0)

    def __str__(self) -> str:
        if self.kind == AtomKind.NIL:
            return "nil"
        if self.kind == AtomKind.STRING:
            return '"' + self.value.replace('"', '\\"') + '"'
        if self.kind == AtomKind.BOOLEAN:
            return "true" if self.value else "false"
        return str(self.value)


@dataclass(frozen=True)
class Cons:
    op: Op
    args: Tuple["TokenTree", ...]
    span: Tuple[int, int] = (0, 0)

    def __str__(self) -> str:
        return f"({self.op.value} {' '.join(str(arg) for arg in self.args)})"


TokenTree = Union[Atom, Cons]
NIL = Atom(AtomKind.NIL)

# (left, right) binding powers
_INFIX = {
    TokenKind.AND: (Op.AND, (3, 4)),
    TokenKind.OR: (Op.OR, (3, 4)),
    TokenKind.GREATER_THAN: (Op.GREATER_THAN, (6, 5)),
    TokenKind.GREATER_THAN_EQUAL: (Op.GREATER_THAN_EQUAL, (6, 5)),
    TokenKind.LESS_THAN: (Op.LESS_THAN, (6, 5)),
    TokenKind.LESS_THAN_EQUAL: (Op.LESS_THAN_EQUAL, (6, 5)),
    TokenKind.COLON: (Op.COLON, (9, 8)),
    TokenKind.EQUAL: (Op.EQUAL, (11, 10)),
    TokenKind.TILDE: (Op.TILDE, (11, 10)),
}
_PREFIX_MINUS_BP = 4


def parse_date(text: str, span: Tuple[int, int]) -> int:
    """Unix seconds for `YYYY-MM-DD` (UTC midnight) or an RFC 3339 timestamp."""
    try:
        if "T" not in text:
            parsed = datetime.strptime(text, "%Y-%m-%d")
        else:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError as exc:
        raise SearchError(f"Invalid date `{text}`.", span) from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())


def _atom(token: Token) -> Atom:
    kind = token.kind
    if kind == TokenKind.STRING:
        return Atom(AtomKind.STRING, token.value, token.span)
    if kind == TokenKind.FIELD:
        return Atom(AtomKind.FIELD, token.value, token.span)
    if kind == TokenKind.INTEGER:
        return Atom(AtomKind.INTEGER, token.value, token.span)
    if kind == TokenKind.FLOAT:
        return Atom(AtomKind.FLOAT, token.value, token.span)
    if kind in (TokenKind.TRUE, TokenKind.FALSE):
        return Atom(AtomKind.BOOLEAN, kind == TokenKind.TRUE, token.span)
    if kind == TokenKind.DATE:
        return Atom(AtomKind.DATETIME, parse_date(token.value, token.span), token.span)
    raise SearchError(f"Expected an expression but found `{kind.value}`.", token.span)


class Parser:
    def __init__(self, text: str):
        self.text = text
        self.tokens: List[Token] = Lexer(text).tokenize()
        self.position = 0

    def peek(self) -> Optional[Token]:
        if self.position < len(self.tokens):
            return self.tokens[self.position]
        return None

    def next(self) -> Optional[Token]:
        token = self.peek()
        if token is not None:
            self.position += 1
        return token

    def parse(self) -> TokenTree:
        tree = self.parse_expression(0)
        leftover = self.peek()
        if leftover is not None:
            raise SearchError(f"Unexpected `{leftover.kind.value}`.", leftover.span)
        return tree

    def parse_expression(self, min_bp: int) -> TokenTree:
        token = self.next()
        if token is None:
            return NIL
        if token.kind == TokenKind.LEFT_PAREN:
            inner = self.parse_expression(0)
            closing = self.next()
            if closing is None or closing.kind != TokenKind.RIGHT_PAREN:
                raise SearchError("Unclosed parenthesis.", token.span)
            lhs: TokenTree = Cons(Op.GROUP, (inner,), (token.span[0], closing.span[1]))
        elif token.kind == TokenKind.MINUS:
            rhs = self.parse_expression(_PREFIX_MINUS_BP)
            lhs = Cons(Op.MINUS, (rhs,), token.span)
        else:
            lhs = _atom(token)

        while True:
            token = self.peek()
            if token is None or token.kind == TokenKind.RIGHT_PAREN:
                break
            if token.kind not in _INFIX:
                raise SearchError("Expected an infix operator.", token.span)
            op, (l_bp, r_bp) = _INFIX[token.kind]
            if l_bp < min_bp:
                break
            self.next()
            rhs = self.parse_expression(r_bp)
            lhs = Cons(op, (lhs, rhs), token.span)
        return lhs


def parse_query(text: str) -> TokenTree:
    """Parse a search query. An empty query gives the nil atom."""
    return Parser(text).parse()
