"""Manual and filtered tags.

A tag with a query is a filtered tag: its cards are exactly the cards that
matched the query at the last rebuild. Filtered tags are never assigned by
hand and never depend on another filtered tag.
"""
from __future__ import annotations

import logging
import sqlite3
from typing import Dict, Iterable, List, Optional

from errors import InvalidTagInputError, SearchError, StorageError
from models import ReturnType, Tag, TagCreate, TagUpdate
from search import evaluate_query, extract_tag_dependencies

logger = logging.getLogger(__name__)

TAG_DEFAULT_LIMIT = 100
# Filtered tags are only filled on create, query update and explicit rebuild
AUTOMATIC_REBUILD = False


def _fetch_tag(conn, tag_id: int) -> Optional[Tag]:
    cursor = conn.cursor()
    cursor.execute("SELECT * FROM tag WHERE id = ?", (tag_id,))
    row = cursor.fetchone()
    return Tag.from_row(row) if row else None


def _require_tag(conn, tag_id: int) -> Tag:
    tag = _fetch_tag(conn, tag_id)
    if tag is None:
        raise InvalidTagInputError(f"No tag with id {tag_id} exists.")
    return tag


def _name_taken(conn, name: str, exclude_id: Optional[int] = None) -> bool:
    cursor = conn.cursor()
    cursor.execute(
        "SELECT id FROM tag WHERE name = ? AND id IS NOT ?",
        (name, exclude_id),
    )
    return cursor.fetchone() is not None


def verify_filtered_tag_query(conn, query: str, name: Optional[str] = None) -> None:
    """Reject a query that refers to an existing filtered tag, or to the tag being defined."""
    try:
        dependencies = set(extract_tag_dependencies(query))
    except SearchError as exc:
        raise InvalidTagInputError(str(exc)) from exc
    cursor = conn.cursor()
    cursor.execute("SELECT name FROM tag WHERE query IS NOT NULL")
    filtered_names = {row["name"] for row in cursor.fetchall()}
    if name is not None:
        filtered_names.add(name)
    if dependencies & filtered_names:
        raise InvalidTagInputError(
            "Cannot create a filtered tag that depends on another filtered tag."
        )


def _verify_no_dependents(conn, name: str, tag_id: Optional[int] = None) -> None:
    """A tag that filtered tags already refer to cannot become filtered itself."""
    cursor = conn.cursor()
    cursor.execute(
        "SELECT name, query FROM tag WHERE query IS NOT NULL AND id IS NOT ?",
        (tag_id,),
    )
    for row in cursor.fetchall():
        if name in extract_tag_dependencies(row["query"]):
            raise InvalidTagInputError(
                f"The filtered tag `{row['name']}` depends on `{name}`."
            )


def _clear_filtered_tag(conn, tag_id: int) -> None:
    """Drop the tag's cards and the scheduler data kept for it on those cards."""
    cursor = conn.cursor()
    cursor.execute(
        """
        UPDATE card SET custom_data = json_remove(custom_data, ?)
        WHERE id IN (SELECT card_id FROM card_tag WHERE tag_id = ?)
        """,
        (f'$."{tag_id}"', tag_id),
    )
    cursor.execute("DELETE FROM card_tag WHERE tag_id = ?", (tag_id,))


def _tag_cards_from_query(conn, query: str, tag_id: int) -> int:
    card_ids = evaluate_query(conn, query, ReturnType.CARDS)
    cursor = conn.cursor()
    cursor.executemany(
        "INSERT OR IGNORE INTO card_tag (card_id, tag_id) VALUES (?, ?)",
        [(card_id, tag_id) for card_id in card_ids],
    )
    return len(card_ids)


def upsert_tags(conn, tag_names: Iterable[str],
                tag_map: Optional[Dict[str, Tag]] = None) -> List[Tag]:
    """Tags for `tag_names`, creating missing ones as manual tags.

    Raises InvalidTagInputError when one of them is a filtered tag.
    """
    names = list(dict.fromkeys(tag_names))
    if not names:
        return []
    missing = [name for name in names if tag_map is None or name not in tag_map]
    found: Dict[str, Tag] = {}
    if missing:
        cursor = conn.cursor()
        cursor.executemany(
            "INSERT OR IGNORE INTO tag (name) VALUES (?)",
            [(name,) for name in missing],
        )
        placeholders = ",".join("?" for _ in missing)
        cursor.execute(f"SELECT * FROM tag WHERE name IN ({placeholders})", missing)
        found = {row["name"]: Tag.from_row(row) for row in cursor.fetchall()}
        if tag_map is not None:
            tag_map.update(found)
    tags = [tag_map[name] if tag_map is not None else found[name] for name in names]
    for tag in tags:
        if tag.is_filtered:
            raise InvalidTagInputError(
                f"`{tag.name}` is a filtered tag and cannot be assigned manually."
            )
    return tags


def delete_empty_tags(conn, tag_ids: Iterable[int]) -> None:
    """Delete the auto-delete tags among `tag_ids` that no note or card uses anymore."""
    tag_ids = list(tag_ids)
    if not tag_ids:
        return
    placeholders = ",".join("?" for _ in tag_ids)
    cursor = conn.cursor()
    cursor.execute(
        f"""
        DELETE FROM tag
        WHERE id IN ({placeholders})
        AND auto_delete = 1
        AND NOT EXISTS (SELECT 1 FROM note_tag WHERE note_tag.tag_id = tag.id)
        AND NOT EXISTS (SELECT 1 FROM card_tag WHERE card_tag.tag_id = tag.id)
        """,
        tag_ids,
    )
    if cursor.rowcount:
        logger.info("Deleted %d empty tags", cursor.rowcount)


def create_tag(conn, request: TagCreate) -> Tag:
    try:
        with conn:
            if _name_taken(conn, request.name):
                raise InvalidTagInputError("A tag with this name already exists.")
            if request.query is not None:
                verify_filtered_tag_query(conn, request.query, request.name)
                _verify_no_dependents(conn, request.name)
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO tag (name, description, parent_id, query, auto_delete)
                VALUES (?, ?, ?, ?, ?)
                """,
                (request.name, request.description, request.parent_id, request.query,
                 request.auto_delete),
            )
            tag = Tag(id=cursor.lastrowid, **request.model_dump())
            if tag.parent_id == tag.id:
                raise InvalidTagInputError("Cannot insert tag whose parent id is itself.")
            if tag.is_filtered:
                count = _tag_cards_from_query(conn, tag.query, tag.id)
                logger.info("Filtered tag %s matched %d cards", tag.name, count)
    except sqlite3.Error as exc:
        raise StorageError(exc) from exc
    return tag


def get_tag(conn, tag_id: int) -> Optional[Tag]:
    return _fetch_tag(conn, tag_id)


def get_tag_by_name(conn, name: str) -> Optional[Tag]:
    cursor = conn.cursor()
    cursor.execute("SELECT * FROM tag WHERE name = ?", (name,))
    row = cursor.fetchone()
    return Tag.from_row(row) if row else None


def list_tags(conn, limit: int = TAG_DEFAULT_LIMIT, page: int = 1) -> List[Tag]:
    cursor = conn.cursor()
    cursor.execute(
        "SELECT * FROM tag ORDER BY id LIMIT ? OFFSET ?",
        (limit, (max(page, 1) - 1) * limit),
    )
    return [Tag.from_row(row) for row in cursor.fetchall()]


def update_tag(conn, tag_id: int, request: TagUpdate) -> Tag:
    """Apply the fields that are set. A new query refills the tag."""
    try:
        with conn:
            existing = _require_tag(conn, tag_id)
            updates = request.model_dump(exclude_none=True, exclude={"clear_query"})
            if request.clear_query:
                updates["query"] = None
            tag = existing.model_copy(update=updates)
            if request.name is not None and _name_taken(conn, tag.name, tag_id):
                raise InvalidTagInputError("A tag with this name already exists.")
            if tag.parent_id == tag_id:
                raise InvalidTagInputError("Cannot set a tag as its own parent.")

            cursor = conn.cursor()
            query_changed = tag.query != existing.query
            if query_changed and tag.query is not None:
                verify_filtered_tag_query(conn, tag.query, tag.name)
                _verify_no_dependents(conn, tag.name, tag_id)
                cursor.execute("DELETE FROM note_tag WHERE tag_id = ?", (tag_id,))
            cursor.execute(
                """
                UPDATE tag SET name = ?, description = ?, parent_id = ?, query = ?, auto_delete = ?
                WHERE id = ?
                """,
                (tag.name, tag.description, tag.parent_id, tag.query, tag.auto_delete, tag_id),
            )
            if query_changed:
                _clear_filtered_tag(conn, tag_id)
                if tag.query is not None:
                    _tag_cards_from_query(conn, tag.query, tag_id)
    except sqlite3.Error as exc:
        raise StorageError(exc) from exc
    logger.info("Updated tag %s", tag_id)
    return tag


def delete_tag(conn, tag_id: int) -> None:
    try:
        with conn:
            _clear_filtered_tag(conn, tag_id)
            conn.execute("DELETE FROM tag WHERE id = ?", (tag_id,))
    except sqlite3.Error as exc:
        raise StorageError(exc) from exc


def rebuild_tag(conn, tag_id: int) -> int:
    """Refill a filtered tag from its query. Returns the number of tagged cards."""
    try:
        with conn:
            tag = _require_tag(conn, tag_id)
            if not tag.is_filtered:
                raise InvalidTagInputError("Cannot rebuild a tag that does not have a query.")
            _clear_filtered_tag(conn, tag_id)
            count = _tag_cards_from_query(conn, tag.query, tag_id)
    except sqlite3.Error as exc:
        raise StorageError(exc) from exc
    logger.info("Rebuilt filtered tag %s with %d cards", tag.name, count)
    return count


def rebuild_filtered_tags(conn) -> None:
    """Refill every filtered tag. Only runs when AUTOMATIC_REBUILD is on."""
    if not AUTOMATIC_REBUILD:
        return
    cursor = conn.cursor()
    cursor.execute("SELECT id, query FROM tag WHERE query IS NOT NULL")
    for row in cursor.fetchall():
        _clear_filtered_tag(conn, row["id"])
        _tag_cards_from_query(conn, row["query"], row["id"])
