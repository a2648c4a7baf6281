"""Compile a search tree into one parameterised SQL statement and run it."""
from __future__ import annotations

import sqlite3
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Tuple

from errors import SearchError, StorageError
from models import ReturnType, SpecialState
from .parser import Atom, AtomKind, Cons, Op, TokenTree, parse_query


class FieldType(Enum):
    INTEGER = "integer"
    FLOAT = "float"
    STRING = "string"
    DATETIME = "datetime"
    JSON = "json"
    BOOLEAN = "boolean"
    SPECIAL_STATE = "special state"


@dataclass(frozen=True)
class FieldSpec:
    # `{cmp}` is replaced by the comparison, e.g. `= ?`
    template: str
    type: FieldType
    is_card: bool = False
    takes_path: bool = False


_TAG_TEMPLATE = (
    "(c.id IN (SELECT ct.card_id FROM card_tag ct JOIN tag t ON t.id = ct.tag_id "
    "WHERE t.name {cmp}) OR n.id IN (SELECT nt.note_id FROM note_tag nt "
    "JOIN tag t ON t.id = nt.tag_id WHERE t.name {cmp}))"
)

FIELDS = {
    "": FieldSpec("(n.data {cmp} OR n.keywords {cmp})", FieldType.STRING),
    "data": FieldSpec("n.data {cmp}", FieldType.STRING),
    "id": FieldSpec("n.id {cmp}", FieldType.INTEGER),
    "created_at": FieldSpec("n.created_at {cmp}", FieldType.DATETIME),
    "updated_at": FieldSpec("n.updated_at {cmp}", FieldType.DATETIME),
    "parser_name": FieldSpec(
        "n.parser_id IN (SELECT p.id FROM parser p WHERE p.name {cmp})", FieldType.STRING
    ),
    "tag": FieldSpec(_TAG_TEMPLATE, FieldType.STRING, is_card=True),
    "keyword": FieldSpec("(',' || n.keywords || ',') {cmp}", FieldType.STRING),
    "custom_data": FieldSpec("json_extract(n.custom_data, ?) {cmp}", FieldType.JSON, takes_path=True),
    "linked_to": FieldSpec(
        "EXISTS (SELECT 1 FROM note_link nl WHERE nl.parent_note_id = n.id "
        "AND nl.linked_note_id {cmp})",
        FieldType.INTEGER,
    ),
    "c.id": FieldSpec("c.id {cmp}", FieldType.INTEGER, is_card=True),
    "c.created_at": FieldSpec("c.created_at {cmp}", FieldType.DATETIME, is_card=True),
    "c.updated_at": FieldSpec("c.updated_at {cmp}", FieldType.DATETIME, is_card=True),
    "c.due": FieldSpec("c.due {cmp}", FieldType.DATETIME, is_card=True),
    "c.stability": FieldSpec("c.stability {cmp}", FieldType.FLOAT, is_card=True),
    "c.difficulty": FieldSpec("c.difficulty {cmp}", FieldType.FLOAT, is_card=True),
    "c.desired_retention": FieldSpec("c.desired_retention {cmp}", FieldType.FLOAT, is_card=True),
    "c.state": FieldSpec("c.state {cmp}", FieldType.INTEGER, is_card=True),
    "c.special_state": FieldSpec("c.special_state", FieldType.SPECIAL_STATE, is_card=True),
    "c.suspended": FieldSpec("c.special_state", FieldType.BOOLEAN, is_card=True),
    "c.user_buried": FieldSpec("c.special_state", FieldType.BOOLEAN, is_card=True),
    "c.scheduler_buried": FieldSpec("c.special_state", FieldType.BOOLEAN, is_card=True),
    "c.custom_data": FieldSpec(
        "json_extract(c.custom_data, ?) {cmp}", FieldType.JSON, is_card=True, takes_path=True
    ),
    "c.rated": FieldSpec(
        "EXISTS (SELECT 1 FROM review_log rl WHERE rl.card_id = c.id "
        "AND (? - rl.reviewed_at) / 86400 {cmp})",
        FieldType.INTEGER,
        is_card=True,
    ),
}

_BOOLEAN_STATES = {
    "c.suspended": SpecialState.SUSPENDED,
    "c.user_buried": SpecialState.USER_BURIED,
    "c.scheduler_buried": SpecialState.SCHEDULER_BURIED,
}
_SPECIAL_STATE_NAMES = {
    "suspended": SpecialState.SUSPENDED,
    "user_buried": SpecialState.USER_BURIED,
    "scheduler_buried": SpecialState.SCHEDULER_BURIED,
}
_SQL_OPERATORS = {
    Op.EQUAL: "=",
    Op.GREATER_THAN: ">",
    Op.GREATER_THAN_EQUAL: ">=",
    Op.LESS_THAN: "<",
    Op.LESS_THAN_EQUAL: "<=",
    Op.TILDE: "LIKE",
}
_ACCEPTED_VALUES = {
    FieldType.INTEGER: {AtomKind.INTEGER},
    FieldType.FLOAT: {AtomKind.INTEGER, AtomKind.FLOAT},
    FieldType.DATETIME: {AtomKind.DATETIME, AtomKind.INTEGER},
    FieldType.BOOLEAN: {AtomKind.BOOLEAN},
    FieldType.SPECIAL_STATE: {AtomKind.STRING},
}


def normalize_field_name(name: str) -> str:
    if name.startswith("card."):
        return "c." + name[len("card."):]
    return name


def _rebalance_colon(tree: Cons) -> Cons:
    """`custom_data:"$.a"=1` parses as `(: custom_data (= "$.a" 1))`; lift the comparison."""
    field, rhs = tree.args
    if isinstance(rhs, Cons) and rhs.op.is_comparison and len(rhs.args) == 2:
        path, value = rhs.args
        return Cons(rhs.op, (Cons(Op.COLON, (field, path), tree.span), value), rhs.span)
    return tree


class QueryCompiler:
    """Turns a token tree into a WHERE clause and its bound parameters."""

    def __init__(self, now: int):
        self.now = now
        self.params: List[Any] = []
        self.needs_card = False

    def compile(self, tree: TokenTree) -> Optional[str]:
        if isinstance(tree, Atom) and tree.kind == AtomKind.NIL:
            return None
        return self._clause(tree)

    def _clause(self, tree: TokenTree) -> str:
        if isinstance(tree, Atom):
            if tree.kind == AtomKind.NIL:
                raise SearchError("Missing expression.", tree.span)
            raise SearchError(f"Expected a comparison but found `{tree}`.", tree.span)
        if tree.op in (Op.AND, Op.OR):
            left, right = (self._clause(arg) for arg in tree.args)
            return f"({left} {tree.op.value.upper()} {right})"
        if tree.op == Op.GROUP:
            return f"({self._clause(tree.args[0])})"
        if tree.op == Op.MINUS:
            # A NULL comparison counts as false before negating
            return f"NOT COALESCE(({self._clause(tree.args[0])}), 0)"
        if tree.op == Op.COLON:
            rebalanced = _rebalance_colon(tree)
            if rebalanced is tree:
                raise SearchError("Missing operator.", tree.span)
            return self._clause(rebalanced)
        return self._comparison(tree)

    def _field(self, tree: TokenTree) -> Tuple[str, FieldSpec, Optional[str]]:
        path = None
        if isinstance(tree, Cons) and tree.op == Op.COLON:
            field, path_atom = tree.args
            if not isinstance(path_atom, Atom) or path_atom.kind != AtomKind.STRING:
                raise SearchError("Expected a JSON path after `:`.", tree.span)
            path = path_atom.value
            tree = field
        if not isinstance(tree, Atom) or tree.kind != AtomKind.FIELD:
            raise SearchError(f"Expected a field but found `{tree}`.", getattr(tree, "span", None))
        name = normalize_field_name(tree.value)
        spec = FIELDS.get(name)
        if spec is None:
            raise SearchError(f"Unrecognized field `{tree.value}`.", tree.span)
        if path is not None and not spec.takes_path:
            raise SearchError(f"Field `{tree.value}` does not take an argument.", tree.span)
        if path is None and spec.takes_path:
            raise SearchError(f"Field `{tree.value}` needs a JSON path, e.g. `{tree.value}:\"$.key\"`.",
                              tree.span)
        return name, spec, path

    def _comparison(self, tree: Cons) -> str:
        field_tree, value = tree.args
        name, spec, path = self._field(field_tree)
        if not isinstance(value, Atom) or value.kind in (AtomKind.NIL, AtomKind.FIELD):
            raise SearchError("Expected a value.", tree.span)
        accepted = _ACCEPTED_VALUES.get(spec.type)
        if accepted is not None and value.kind not in accepted:
            raise SearchError(
                f"Field `{name}` expects a {spec.type.value} but found `{value}`.", value.span
            )
        if tree.op == Op.TILDE and spec.type not in (FieldType.STRING, FieldType.JSON):
            raise SearchError(f"`~` only applies to text fields, not `{name}`.", tree.span)
        if spec.type in (FieldType.BOOLEAN, FieldType.SPECIAL_STATE) and tree.op != Op.EQUAL:
            raise SearchError(f"`{name}` only supports `=`.", tree.span)
        if name == "keyword" and tree.op not in (Op.EQUAL, Op.TILDE):
            raise SearchError("`keyword` only supports `=` and `~`.", tree.span)
        self.needs_card = self.needs_card or spec.is_card

        if spec.type == FieldType.BOOLEAN:
            self.params.append(int(_BOOLEAN_STATES[name]))
            if value.value:
                return "c.special_state IS ?"
            return "(c.special_state IS NULL OR c.special_state != ?)"
        if spec.type == FieldType.SPECIAL_STATE:
            if value.value == "none":
                return "c.special_state IS NULL"
            if value.value not in _SPECIAL_STATE_NAMES:
                raise SearchError(
                    f"Unknown special state `{value.value}`. Expected one of "
                    f"{', '.join(list(_SPECIAL_STATE_NAMES) + ['none'])}.",
                    value.span,
                )
            self.params.append(int(_SPECIAL_STATE_NAMES[value.value]))
            return "c.special_state IS ?"

        bound = value.value
        if spec.type == FieldType.STRING and value.kind != AtomKind.STRING:
            bound = str(value)
        comparison = f"{_SQL_OPERATORS[tree.op]} ?"
        if tree.op == Op.TILDE:
            bound = f"%{bound}%"
        elif name == "keyword":
            bound = f"%,{bound},%"
            comparison = "LIKE ?"
        elif name == "c.rated" and tree.op == Op.EQUAL:
            # `c.rated=N`: reviewed within the last N days
            comparison = "< ?"

        if path is not None:
            self.params.append(path)
        if name == "c.rated":
            self.params.append(self.now)
        self.params.extend([bound] * spec.template.count("{cmp}"))
        return spec.template.format(cmp=comparison)


def build_query(query: str, return_type: ReturnType = ReturnType.NOTES,
                now: Optional[int] = None) -> Tuple[str, List[Any]]:
    """SQL selecting the ids matching `query`, with its parameters."""
    compiler = QueryCompiler(int(time.time()) if now is None else now)
    where = compiler.compile(parse_query(query))
    if return_type == ReturnType.CARDS:
        sql = "SELECT DISTINCT c.id FROM card c JOIN note n ON n.id = c.note_id"
        order = "c.id"
    else:
        sql = "SELECT DISTINCT n.id FROM note n"
        if compiler.needs_card:
            sql += " LEFT JOIN card c ON c.note_id = n.id"
        order = "n.id"
    if where:
        sql += f" WHERE {where}"
    return f"{sql} ORDER BY {order}", compiler.params


def evaluate_query(conn: sqlite3.Connection, query: str,
                   return_type: ReturnType = ReturnType.NOTES,
                   now: Optional[int] = None) -> List[int]:
    """Ids of the notes or cards matching `query`, ascending."""
    sql, params = build_query(query, return_type, now)
    try:
        cursor = conn.cursor()
        cursor.execute(sql, params)
        return [row[0] for row in cursor.fetchall()]
    except sqlite3.Error as exc:
        raise StorageError(exc) from exc
