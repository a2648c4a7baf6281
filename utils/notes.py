"""Create, update, delete and render notes together with their cards, tags and links."""
from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

from Levenshtein import ratio as lev_ratio

from config import get_config_value, load_internal_state, save_internal_state
from db.database import chunked
from errors import CardNotFoundError, InvalidTagInputError, NoteOtherError, StorageError
from models import (
    Card,
    Note,
    NoteCreate,
    NoteLink,
    NoteResponse,
    NoteUpdate,
    SpecialState,
    Tag,
)
from parsers import find_parser
from parsers.cards import CardData, add_order_to_note_data, get_cards, validate_cards
from parsers.match_cards import match_cards
from parsers.render import Renderer, render_note_files
from search import evaluate_query
from utils.dates import now_ts
from utils.tags import delete_empty_tags, rebuild_filtered_tags, upsert_tags

logger = logging.getLogger(__name__)

# Above this many requests, every tag is loaded once instead of per note
BULK_REQUEST_THRESHOLD = 25
KEYWORD_MATCH_THRESHOLD = 0.8

CARD_COLUMNS = (
    "note_id", '"order"', "back_type", "created_at", "updated_at", "due", "stability",
    "difficulty", "desired_retention", "special_state", "state", "custom_data",
)

NotesSelector = Union[str, Sequence[int]]


def _parser_names(conn) -> Dict[int, str]:
    cursor = conn.cursor()
    cursor.execute("SELECT id, name FROM parser")
    return {row["id"]: row["name"] for row in cursor.fetchall()}


def _filtered_tag_names(conn) -> List[str]:
    cursor = conn.cursor()
    cursor.execute("SELECT name FROM tag WHERE query IS NOT NULL")
    return [row["name"] for row in cursor.fetchall()]


def _card_values(card: Card) -> Tuple:
    return (
        card.note_id,
        card.order,
        int(card.back_type),
        card.created_at,
        card.updated_at,
        card.due,
        card.stability,
        card.difficulty,
        card.desired_retention,
        int(card.special_state) if card.special_state is not None else None,
        int(card.state),
        card.custom_data_json(),
    )


def insert_cards(conn, cards: Sequence[Card]) -> None:
    """Insert cards with multi-row statements, chunked below the bind variable limit."""
    cursor = conn.cursor()
    row = "(" + ", ".join("?" * len(CARD_COLUMNS)) + ")"
    for chunk in chunked(cards, len(CARD_COLUMNS)):
        params: List = []
        for card in chunk:
            params.extend(_card_values(card))
        cursor.execute(
            f"INSERT INTO card ({', '.join(CARD_COLUMNS)}) VALUES {', '.join([row] * len(chunk))}",
            params,
        )


def _fetch_note(conn, note_id: int) -> Optional[Note]:
    cursor = conn.cursor()
    cursor.execute("SELECT * FROM note WHERE id = ?", (note_id,))
    row = cursor.fetchone()
    return Note.from_row(row) if row else None


def _note_response(conn, note: Note) -> NoteResponse:
    cursor = conn.cursor()
    cursor.execute("SELECT name FROM parser WHERE id = ?", (note.parser_id,))
    parser_name = cursor.fetchone()["name"]
    cursor.execute(
        """
        SELECT t.name FROM tag t JOIN note_tag nt ON t.id = nt.tag_id
        WHERE nt.note_id = ? AND t.query IS NULL
        ORDER BY t.name
        """,
        (note.id,),
    )
    tags = [row["name"] for row in cursor.fetchall()]
    cursor.execute("SELECT COUNT(*) FROM card WHERE note_id = ?", (note.id,))
    card_count = cursor.fetchone()[0]
    return NoteResponse(
        **note.model_dump(), parser_name=parser_name, tags=tags, card_count=card_count
    )


def _parse_cards(parser, data: str) -> List[CardData]:
    cards = get_cards(parser, data)
    validate_cards(cards)
    if not cards:
        raise CardNotFoundError(data)
    return cards


def _suspended_state(card: CardData, note_suspended: Optional[bool],
                     current: Optional[SpecialState]) -> Optional[SpecialState]:
    """Cloze settings win over the note setting. None leaves the state alone."""
    suspended = card.is_suspended if card.is_suspended is not None else note_suspended
    if suspended:
        return SpecialState.SUSPENDED
    if suspended is False and current == SpecialState.SUSPENDED:
        return None
    return current


def create_notes(conn, requests: Sequence[NoteCreate], now: Optional[int] = None,
                 output_dir: Optional[Path] = None,
                 renderer: Optional[Renderer] = None) -> List[NoteResponse]:
    """Insert notes with one New card per card slot, all in one transaction.

    Missing tags are created. Assigning a filtered tag raises
    InvalidTagInputError and nothing is written.
    """
    now = now_ts() if now is None else now
    responses: List[NoteResponse] = []
    try:
        with conn:
            cursor = conn.cursor()
            parser_ids = {name: parser_id for parser_id, name in _parser_names(conn).items()}
            tag_map: Optional[Dict[str, Tag]] = None
            if len(requests) > BULK_REQUEST_THRESHOLD:
                cursor.execute("SELECT * FROM tag")
                tag_map = {row["name"]: Tag.from_row(row) for row in cursor.fetchall()}

            note_tags: List[Tuple[int, int]] = []
            cards: List[Card] = []
            for request in requests:
                parser = find_parser(request.parser_name)
                data, _ = add_order_to_note_data(parser, request.data)
                card_data = _parse_cards(parser, data)
                cursor.execute(
                    """
                    INSERT INTO note (data, keywords, created_at, updated_at, custom_data, parser_id)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (data, ",".join(request.keywords), now, now,
                     json.dumps(request.custom_data), parser_ids[parser.name]),
                )
                note_id = cursor.lastrowid
                tags = upsert_tags(conn, sorted(set(request.tags)), tag_map)
                note_tags.extend((note_id, tag.id) for tag in tags)
                for order, card in enumerate(card_data, start=1):
                    new_card = Card.new(note_id, order, card.back_type, now)
                    special_state = _suspended_state(card, request.is_suspended, None)
                    cards.append(new_card.model_copy(update={"special_state": special_state}))
                note = Note(
                    id=note_id, data=data, keywords=request.keywords,
                    custom_data=request.custom_data, parser_id=parser_ids[parser.name],
                    created_at=now, updated_at=now,
                )
                responses.append(NoteResponse(
                    **note.model_dump(), parser_name=parser.name,
                    tags=[tag.name for tag in tags], card_count=len(card_data),
                ))

            cursor.executemany(
                "INSERT OR IGNORE INTO note_tag (note_id, tag_id) VALUES (?, ?)", note_tags
            )
            # Cards and note tags must exist before filtered tags are matched
            insert_cards(conn, cards)
            rebuild_filtered_tags(conn)
    except sqlite3.Error as exc:
        raise StorageError(exc) from exc
    logger.info("Created %d notes with %d cards", len(responses), len(cards))

    if output_dir is not None:
        render_notes(conn, output_dir, [r.id for r in responses], renderer=renderer)
    return responses


def _update_cards(conn, note_id: int, old_cards: Sequence[CardData],
                  new_cards: Sequence[CardData], now: int,
                  note_suspended: Optional[bool]) -> None:
    """Move, delete and create card rows so they follow the new note text.

    Moved cards keep their id and review history.
    """
    result = match_cards([card.order for card in old_cards], [card.order for card in new_cards])
    cursor = conn.cursor()
    cursor.execute("SELECT * FROM card WHERE note_id = ?", (note_id,))
    by_order = {row["order"]: Card.from_row(row) for row in cursor.fetchall()}

    targets = dict(result.moves)
    for order, card in enumerate(new_cards, start=1):
        if card.order == order:
            targets[order] = order
    for source, target in targets.items():
        existing = by_order[source]
        new_card = new_cards[target - 1]
        special_state = _suspended_state(new_card, note_suspended, existing.special_state)
        cursor.execute(
            """
            UPDATE card SET "order" = ?, back_type = ?, special_state = ?, updated_at = ?
            WHERE id = ?
            """,
            (target, int(new_card.back_type),
             int(special_state) if special_state is not None else None, now, existing.id),
        )

    cursor.executemany(
        "DELETE FROM card WHERE id = ?",
        [(by_order[order].id,) for order in result.deletes],
    )
    created = []
    for order in result.creates:
        card = new_cards[order - 1]
        new_card = Card.new(note_id, order, card.back_type, now)
        special_state = _suspended_state(card, note_suspended, None)
        created.append(new_card.model_copy(update={"special_state": special_state}))
    insert_cards(conn, created)
    logger.debug(
        "Note %s: %d moved, %d deleted, %d created",
        note_id, len(result.moves), len(result.deletes), len(result.creates),
    )


def _update_note_tags(conn, note_id: int, tags_to_add: Sequence[str],
                      tags_to_remove: Sequence[str]) -> None:
    cursor = conn.cursor()
    removed: List[int] = []
    if "*" in tags_to_remove:
        cursor.execute("SELECT tag_id FROM note_tag WHERE note_id = ?", (note_id,))
        removed = [row["tag_id"] for row in cursor.fetchall()]
        cursor.execute("DELETE FROM note_tag WHERE note_id = ?", (note_id,))
    elif tags_to_remove:
        placeholders = ",".join("?" for _ in tags_to_remove)
        cursor.execute(
            f"""
            SELECT t.id FROM tag t JOIN note_tag nt ON t.id = nt.tag_id
            WHERE nt.note_id = ? AND t.name IN ({placeholders})
            """,
            (note_id, *tags_to_remove),
        )
        removed = [row["id"] for row in cursor.fetchall()]
        cursor.executemany(
            "DELETE FROM note_tag WHERE note_id = ? AND tag_id = ?",
            [(note_id, tag_id) for tag_id in removed],
        )
    if tags_to_add:
        tags = upsert_tags(conn, tags_to_add)
        cursor.executemany(
            "INSERT OR IGNORE INTO note_tag (note_id, tag_id) VALUES (?, ?)",
            [(note_id, tag.id) for tag in tags],
        )
    delete_empty_tags(conn, removed)


def _select_note_ids(conn, selector: NotesSelector) -> List[int]:
    if isinstance(selector, str):
        return evaluate_query(conn, selector)
    return list(selector)


def update_notes(conn, selector: NotesSelector, request: NoteUpdate,
                 now: Optional[int] = None, output_dir: Optional[Path] = None,
                 renderer: Optional[Renderer] = None) -> List[NoteResponse]:
    """Apply `request` to every selected note. `selector` is a query or a list of ids.

    Every note is re-parsed and its cards matched to the old ones, all
    inside one transaction.
    """
    now = now_ts() if now is None else now
    responses: List[NoteResponse] = []
    try:
        with conn:
            filtered = set(_filtered_tag_names(conn))
            for name in list(request.tags_to_add) + list(request.tags_to_remove):
                if name in filtered:
                    raise InvalidTagInputError(
                        f"Cannot manually change filtered tag `{name}`. "
                        "Filtered tags are dynamically assigned."
                    )
            parser_names = _parser_names(conn)
            parser_ids = {name: parser_id for parser_id, name in parser_names.items()}
            cursor = conn.cursor()
            for note_id in _select_note_ids(conn, selector):
                existing = _fetch_note(conn, note_id)
                if existing is None:
                    raise NoteOtherError(f"No note with id {note_id} exists.")
                old_parser = find_parser(parser_names[existing.parser_id])
                new_parser = find_parser(request.parser_name or old_parser.name)
                submitted = request.data if request.data is not None else existing.data
                old_cards = get_cards(old_parser, existing.data)
                new_cards = _parse_cards(new_parser, submitted)
                data, _ = add_order_to_note_data(new_parser, submitted)

                note = existing.model_copy(update={
                    "data": data,
                    "parser_id": parser_ids[new_parser.name],
                    "keywords": request.keywords if request.keywords is not None
                    else existing.keywords,
                    "custom_data": request.custom_data if request.custom_data is not None
                    else existing.custom_data,
                    "updated_at": now,
                })
                cursor.execute(
                    """
                    UPDATE note SET data = ?, keywords = ?, parser_id = ?, custom_data = ?,
                        updated_at = ?
                    WHERE id = ?
                    """,
                    (note.data, ",".join(note.keywords), note.parser_id,
                     json.dumps(note.custom_data), now, note_id),
                )
                _update_cards(conn, note_id, old_cards, new_cards, now, request.is_suspended)
                _update_note_tags(conn, note_id, request.tags_to_add, request.tags_to_remove)
                responses.append(_note_response(conn, note))
            rebuild_filtered_tags(conn)
    except sqlite3.Error as exc:
        raise StorageError(exc) from exc
    logger.info("Updated %d notes", len(responses))

    if output_dir is not None:
        render_notes(conn, output_dir, [r.id for r in responses], renderer=renderer)
    return responses


def delete_notes(conn, note_ids: Sequence[int]) -> None:
    """Delete notes with their cards, links and review logs, then their emptied tags."""
    note_ids = list(note_ids)
    if not note_ids:
        return
    placeholders = ",".join("?" for _ in note_ids)
    try:
        with conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT DISTINCT tag_id FROM note_tag WHERE note_id IN ({placeholders})",
                note_ids,
            )
            tag_ids = [row["tag_id"] for row in cursor.fetchall()]
            cursor.execute(f"DELETE FROM note WHERE id IN ({placeholders})", note_ids)
            delete_empty_tags(conn, tag_ids)
    except sqlite3.Error as exc:
        raise StorageError(exc) from exc
    logger.info("Deleted %d notes", len(note_ids))


def get_note(conn, note_id: int) -> Optional[NoteResponse]:
    note = _fetch_note(conn, note_id)
    return _note_response(conn, note) if note else None


def search_notes(conn, query: str, limit: Optional[int] = None) -> List[NoteResponse]:
    note_ids = evaluate_query(conn, query)
    if limit is not None:
        note_ids = note_ids[:limit]
    return [_note_response(conn, _fetch_note(conn, note_id)) for note_id in note_ids]


def get_keywords(conn) -> List[Tuple[int, str]]:
    """Every `(note_id, keyword)` pair, by note id."""
    cursor = conn.cursor()
    cursor.execute("SELECT id, keywords FROM note WHERE keywords != '' ORDER BY id")
    return [
        (row["id"], keyword)
        for row in cursor.fetchall()
        for keyword in row["keywords"].split(",")
        if keyword
    ]


def match_keyword(searched: str,
                  keywords: Sequence[Tuple[int, str]]) -> Optional[Tuple[int, str]]:
    """Note and keyword a reference points to: an exact match ignoring case, else the closest one.

    >>> match_keyword("Pythagoras", [(1, "pythagoras"), (2, "euclid")])
    (1, 'pythagoras')
    >>> match_keyword("Pythagora", [(1, "Pythagoras")])
    (1, 'Pythagoras')
    >>> match_keyword("Newton", [(1, "Pythagoras")]) is None
    True
    """
    needle = searched.strip().lower()
    for note_id, keyword in keywords:
        if keyword.lower() == needle:
            return note_id, keyword
    scored = [(lev_ratio(needle, keyword.lower()), note_id, keyword) for note_id, keyword in keywords]
    best = max(scored, key=lambda item: item[0], default=None)
    if best is None or best[0] < KEYWORD_MATCH_THRESHOLD:
        return None
    return best[1], best[2]


def _generate_note_links(conn, note: Note, keywords: Sequence[Tuple[int, str]],
                         parser_names: Dict[int, str]) -> List[NoteLink]:
    parser = find_parser(parser_names[note.parser_id])
    links = []
    for order, span in enumerate(parser.get_linked_notes(note.data)):
        searched = span.of(note.data)
        match = match_keyword(searched, keywords)
        links.append(NoteLink(
            parent_note_id=note.id,
            linked_note_id=match[0] if match else None,
            order=order,
            searched_keyword=searched,
            matched_keyword=match[1] if match else None,
        ))
    cursor = conn.cursor()
    cursor.execute("DELETE FROM note_link WHERE parent_note_id = ?", (note.id,))
    cursor.executemany(
        """
        INSERT INTO note_link (parent_note_id, linked_note_id, "order", searched_keyword,
            matched_keyword)
        VALUES (?, ?, ?, ?, ?)
        """,
        [(link.parent_note_id, link.linked_note_id, link.order, link.searched_keyword,
          link.matched_keyword) for link in links],
    )
    return links


def generate_note_links(conn, note_ids: Optional[Sequence[int]] = None) -> Dict[int, List[NoteLink]]:
    """Replace the links of the given notes, or of every note.

    A reference without a close enough keyword is stored with no linked note.
    """
    try:
        with conn:
            cursor = conn.cursor()
            if note_ids is None:
                cursor.execute("SELECT * FROM note ORDER BY id")
                notes = [Note.from_row(row) for row in cursor.fetchall()]
            else:
                notes = [note for note in (_fetch_note(conn, i) for i in note_ids) if note]
            keywords = get_keywords(conn)
            parser_names = _parser_names(conn)
            links = {
                note.id: _generate_note_links(conn, note, keywords, parser_names)
                for note in notes
            }
    except sqlite3.Error as exc:
        raise StorageError(exc) from exc
    if note_ids is None:
        state = load_internal_state()
        state["linked_notes_generated"] = True
        save_internal_state(state)
    return links


def get_note_links(conn, note_id: int) -> List[NoteLink]:
    cursor = conn.cursor()
    cursor.execute(
        'SELECT * FROM note_link WHERE parent_note_id = ? ORDER BY "order"', (note_id,)
    )
    return [NoteLink(**dict(row)) for row in cursor.fetchall()]


def render_notes(conn, output_dir: Optional[Path] = None,
                 note_ids: Optional[Sequence[int]] = None,
                 renderer: Optional[Renderer] = None, include_linked_notes: bool = True,
                 force: bool = False) -> List[Path]:
    """Regenerate links for every note, then write and render the selected notes' files.

    Links are always regenerated for all notes since an edit to one note can
    change which note another note's reference matches best.
    """
    if output_dir is None:
        output_dir = Path(get_config_value("render", "output_dir"))
    if include_linked_notes:
        generate_note_links(conn)
    cursor = conn.cursor()
    if note_ids is None:
        cursor.execute("SELECT * FROM note ORDER BY id")
        notes = [Note.from_row(row) for row in cursor.fetchall()]
    else:
        notes = [note for note in (_fetch_note(conn, i) for i in note_ids) if note]
    parser_names = _parser_names(conn)
    paths = []
    for note in notes:
        response = _note_response(conn, note)
        paths.append(render_note_files(
            find_parser(parser_names[note.parser_id]),
            note.id,
            note.data,
            Path(output_dir),
            keywords=note.keywords,
            tags=response.tags,
            custom_data=note.custom_data,
            renderer=renderer,
            force=force,
        ))
    return paths
