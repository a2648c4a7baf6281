import pytest

from errors import SearchError
from models import CardUpdate, NoteCreate, ReturnType, SpecialState
from search import Lexer, TokenKind, build_query, evaluate_query, extract_tag_dependencies, parse_query
from utils.notes import create_notes
from utils.review import update_card

NOW = 1_700_000_000


def _kinds(query):
    return [token.kind for token in Lexer(query).tokenize()]


def test_bare_string_becomes_text_search():
    assert _kinds("pythagoras") == [TokenKind.FIELD, TokenKind.TILDE, TokenKind.STRING]


def test_adjacent_expressions_are_joined_with_and():
    assert _kinds("tag=math c.stability>=2") == [
        TokenKind.FIELD, TokenKind.EQUAL, TokenKind.STRING, TokenKind.AND,
        TokenKind.FIELD, TokenKind.GREATER_THAN_EQUAL, TokenKind.INTEGER,
    ]


def test_raw_strings_and_escapes():
    tokens = Lexer('#"say "hi""# "a\\"b"').tokenize()

    assert [token.value for token in tokens if token.kind == TokenKind.STRING] == [
        'say "hi"', 'a"b'
    ]


def test_dates_and_numbers():
    tokens = Lexer("c.due<2024-01-05 c.stability>1.5", normalize=False).tokenize()

    assert [token.kind for token in tokens] == [
        TokenKind.FIELD, TokenKind.LESS_THAN, TokenKind.DATE,
        TokenKind.FIELD, TokenKind.GREATER_THAN, TokenKind.FLOAT,
    ]


def test_parse_trees():
    assert str(parse_query("tag=math c.stability>=2")) == (
        '(and (= tag "math") (>= c.stability 2))'
    )
    assert str(parse_query("-c.suspended=true")) == "(- (= c.suspended true))"
    assert str(parse_query("a or b c")) == '(and (or (~  "a") (~  "b")) (~  "c"))'
    assert str(parse_query("(a or b)")) == '(() (or (~  "a") (~  "b")))'
    assert str(parse_query("")) == "nil"


def test_unclosed_parenthesis():
    with pytest.raises(SearchError):
        parse_query("(a or b")


@pytest.mark.parametrize("query", ["tag=", "nope=1", 'c.stability~"x"', "c.suspended>true"])
def test_invalid_queries(query):
    with pytest.raises(SearchError):
        build_query(query)


def test_extract_tag_dependencies():
    assert extract_tag_dependencies('ball tag="A" or tag=B') == ["A", "B"]
    assert extract_tag_dependencies("ball") == []


def test_build_query_binds_values():
    sql, params = build_query("tag=math", ReturnType.CARDS, now=NOW)

    assert sql.startswith("SELECT DISTINCT c.id FROM card c")
    assert params == ["math", "math"]


def test_evaluate_query(conn):
    geometry, algebra = create_notes(conn, [
        NoteCreate(data="a^2 + b^2 = {{c^2}}", parser_name="markdown", tags=["math"],
                   keywords=["pythagoras"]),
        NoteCreate(data="{{x}} = 2 when x + 1 = {{3}}", parser_name="markdown",
                   tags=["math", "algebra"]),
    ], now=NOW)

    assert evaluate_query(conn, "tag=math") == [geometry.id, algebra.id]
    assert evaluate_query(conn, "tag=algebra") == [algebra.id]
    assert evaluate_query(conn, "pythagoras") == [geometry.id]
    assert evaluate_query(conn, "keyword=pythagoras") == [geometry.id]
    assert evaluate_query(conn, "-tag=algebra") == [geometry.id]
    assert evaluate_query(conn, "") == [geometry.id, algebra.id]
    assert len(evaluate_query(conn, "c.state=0", ReturnType.CARDS)) == 3


def test_evaluate_query_special_states(conn):
    create_notes(conn, [
        NoteCreate(data="{{a}} and {{b}}", parser_name="markdown"),
    ], now=NOW)
    first, second = evaluate_query(conn, "", ReturnType.CARDS)
    update_card(conn, [first], CardUpdate(special_state=SpecialState.SUSPENDED), now=NOW)

    assert evaluate_query(conn, "c.suspended=true", ReturnType.CARDS) == [first]
    assert evaluate_query(conn, "c.special_state=none", ReturnType.CARDS) == [second]
    assert evaluate_query(conn, "c.special_state=suspended", ReturnType.CARDS) == [first]


def test_evaluate_query_is_idempotent(conn):
    create_notes(conn, [NoteCreate(data="{{a}} b", parser_name="markdown", tags=["t"])], now=NOW)

    assert evaluate_query(conn, "tag=t c.state=0") == evaluate_query(conn, "tag=t c.state=0")


def test_negated_special_state_keeps_normal_cards(conn):
    create_notes(conn, [
        NoteCreate(data="{{a}} and {{b}}", parser_name="markdown", tags=["math"]),
    ], now=NOW)
    first, second = evaluate_query(conn, "", ReturnType.CARDS)
    update_card(conn, [first], CardUpdate(special_state=SpecialState.SUSPENDED), now=NOW)

    assert evaluate_query(conn, "-c.special_state=suspended", ReturnType.CARDS) == [second]
    assert evaluate_query(conn, "-c.special_state=none", ReturnType.CARDS) == [first]
    assert evaluate_query(conn, "-c.suspended=true", ReturnType.CARDS) == [second]
    assert evaluate_query(conn, "-c.user_buried=true", ReturnType.CARDS) == [first, second]


def test_negated_json_path_on_missing_key(conn):
    create_notes(conn, [
        NoteCreate(data="{{a}} b", parser_name="markdown", custom_data={"source": "book"}),
        NoteCreate(data="{{c}} d", parser_name="markdown"),
    ], now=NOW)

    assert evaluate_query(conn, 'custom_data:"$.source"=book') == [1]
    assert evaluate_query(conn, '-custom_data:"$.source"=book') == [2]


def test_combined_query_against_database(conn):
    create_notes(conn, [
        NoteCreate(data="{{a}} and {{b}}", parser_name="markdown", tags=["math"]),
        NoteCreate(data="{{c}} d", parser_name="markdown", tags=["art"]),
    ], now=NOW)
    update_card(conn, [1], CardUpdate(special_state=SpecialState.SUSPENDED), now=NOW)

    query = "tag=math -c.special_state=suspended c.stability>=0"

    assert evaluate_query(conn, query, ReturnType.CARDS) == [2]
    assert evaluate_query(conn, query) == [1]
