import pytest

from errors import InvalidTagInputError
from models import NoteCreate, NoteUpdate, TagCreate, TagUpdate
from utils.notes import create_notes, update_notes
from utils.tags import (
    create_tag,
    delete_tag,
    get_tag,
    get_tag_by_name,
    list_tags,
    rebuild_tag,
    update_tag,
)

NOW = 1_700_000_000


def _card_ids(conn, tag_id):
    cursor = conn.cursor()
    cursor.execute("SELECT card_id FROM card_tag WHERE tag_id = ? ORDER BY card_id", (tag_id,))
    return [row["card_id"] for row in cursor.fetchall()]


def _notes(conn):
    return create_notes(conn, [
        NoteCreate(data="a^2 + b^2 = {{c^2}}", parser_name="markdown", tags=["math"]),
        NoteCreate(data="The ball is {{red}}", parser_name="markdown", tags=["toys"]),
    ], now=NOW)


def test_filtered_tag_collects_matching_cards(conn):
    _notes(conn)

    tag = create_tag(conn, TagCreate(name="A", query="tag=math"))

    assert tag.is_filtered
    assert _card_ids(conn, tag.id) == [1]


def test_filtered_tag_cannot_depend_on_filtered_tag(conn):
    _notes(conn)
    create_tag(conn, TagCreate(name="A", query="tag=math"))

    with pytest.raises(InvalidTagInputError):
        create_tag(conn, TagCreate(name="B", query='ball tag="A"'))
    assert get_tag_by_name(conn, "B") is None


def test_filtered_tag_cannot_depend_on_itself(conn):
    with pytest.raises(InvalidTagInputError):
        create_tag(conn, TagCreate(name="A", query="tag=A"))


def test_tag_used_by_filtered_tag_cannot_become_filtered(conn):
    _notes(conn)
    create_tag(conn, TagCreate(name="A", query="tag=math"))
    math = get_tag_by_name(conn, "math")

    with pytest.raises(InvalidTagInputError):
        update_tag(conn, math.id, TagUpdate(query="ball"))


def test_duplicate_tag_name_rejected(conn):
    create_tag(conn, TagCreate(name="physics"))

    with pytest.raises(InvalidTagInputError):
        create_tag(conn, TagCreate(name="physics"))


def test_filtered_tag_cannot_be_assigned_to_notes(conn):
    _notes(conn)
    create_tag(conn, TagCreate(name="A", query="tag=math"))

    with pytest.raises(InvalidTagInputError):
        create_notes(conn, [NoteCreate(data="{{x}} y", parser_name="markdown", tags=["A"])])
    with pytest.raises(InvalidTagInputError):
        update_notes(conn, [1], NoteUpdate(tags_to_add=["A"]))


def test_rebuild_picks_up_new_cards(conn):
    _notes(conn)
    tag = create_tag(conn, TagCreate(name="A", query="tag=math"))
    create_notes(conn, [NoteCreate(data="{{1}} + 1 = 2", parser_name="markdown", tags=["math"])],
                 now=NOW)

    assert _card_ids(conn, tag.id) == [1]
    assert rebuild_tag(conn, tag.id) == 2
    assert _card_ids(conn, tag.id) == [1, 3]


def test_rebuild_manual_tag_rejected(conn):
    _notes(conn)
    math = get_tag_by_name(conn, "math")

    with pytest.raises(InvalidTagInputError):
        rebuild_tag(conn, math.id)


def test_update_query_refills_tag(conn):
    _notes(conn)
    tag = create_tag(conn, TagCreate(name="A", query="tag=math"))

    updated = update_tag(conn, tag.id, TagUpdate(query="tag=toys"))

    assert updated.query == "tag=toys"
    assert _card_ids(conn, tag.id) == [2]


def test_clear_query_makes_manual_tag(conn):
    _notes(conn)
    tag = create_tag(conn, TagCreate(name="A", query="tag=math"))

    updated = update_tag(conn, tag.id, TagUpdate(clear_query=True))

    assert not updated.is_filtered
    assert _card_ids(conn, tag.id) == []


def test_rename_and_self_parent(conn):
    tag = create_tag(conn, TagCreate(name="physics"))
    create_tag(conn, TagCreate(name="chemistry"))

    assert update_tag(conn, tag.id, TagUpdate(name="mechanics")).name == "mechanics"
    with pytest.raises(InvalidTagInputError):
        update_tag(conn, tag.id, TagUpdate(name="chemistry"))
    with pytest.raises(InvalidTagInputError):
        update_tag(conn, tag.id, TagUpdate(parent_id=tag.id))


def test_delete_and_list_tags(conn):
    first = create_tag(conn, TagCreate(name="one"))
    second = create_tag(conn, TagCreate(name="two"))

    delete_tag(conn, first.id)

    assert get_tag(conn, first.id) is None
    assert [tag.name for tag in list_tags(conn)] == [second.name]
    assert list_tags(conn, limit=1, page=2) == []
