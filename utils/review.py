"""Study sessions: picking the next card, rating it and the bulk scheduling actions."""
from __future__ import annotations

import json
import logging
import sqlite3
from collections import defaultdict
from typing import Dict, List, Optional, Sequence, Union

from config import SchedulerConfig, load_internal_state, save_internal_state, scheduler_config
from db.database import chunked
from errors import (
    AlreadyBuriedError,
    InvalidCardInputError,
    InvalidTagInputError,
    StorageError,
    SuspendedCardError,
)
from models import (
    BackType,
    Card,
    CardUpdate,
    Rating,
    ReturnType,
    ReviewCard,
    ReviewLog,
    SpecialState,
    State,
    StudyAction,
    StudyActionKind,
    Tag,
)
from parsers import get_output_filename
from parsers.base import CardSide
from schedulers import DEFAULT_SCHEDULER, get_scheduler
from schedulers.base import CardHistory, Scheduler
from search import build_query, evaluate_query
from utils.dates import local_date, local_day_bounds, now_ts
from utils.tags import delete_empty_tags, get_tag, upsert_tags

logger = logging.getLogger(__name__)

CardsSelector = Union[str, Sequence[int]]


def _fetch_card(conn, card_id: int) -> Card:
    cursor = conn.cursor()
    cursor.execute("SELECT * FROM card WHERE id = ?", (card_id,))
    row = cursor.fetchone()
    if row is None:
        raise InvalidCardInputError(f"No card with id {card_id} exists.")
    return Card.from_row(row)


def get_card(conn, card_id: int) -> Optional[Card]:
    cursor = conn.cursor()
    cursor.execute("SELECT * FROM card WHERE id = ?", (card_id,))
    row = cursor.fetchone()
    return Card.from_row(row) if row else None


def get_note_cards(conn, note_id: int) -> List[Card]:
    cursor = conn.cursor()
    cursor.execute('SELECT * FROM card WHERE note_id = ? ORDER BY "order"', (note_id,))
    return [Card.from_row(row) for row in cursor.fetchall()]


def get_review_logs(conn, card_id: int) -> List[ReviewLog]:
    """Review history of a card, oldest first."""
    cursor = conn.cursor()
    cursor.execute(
        "SELECT * FROM review_log WHERE card_id = ? ORDER BY reviewed_at ASC, id ASC",
        (card_id,),
    )
    return [ReviewLog.from_row(row) for row in cursor.fetchall()]


def get_histories(conn, cards: Sequence[Card]) -> List[CardHistory]:
    """Pair every card with its review history, oldest first."""
    grouped: Dict[int, List[ReviewLog]] = defaultdict(list)
    cursor = conn.cursor()
    for chunk in chunked(cards, 1):
        placeholders = ",".join("?" for _ in chunk)
        cursor.execute(
            f"""
            SELECT * FROM review_log WHERE card_id IN ({placeholders})
            ORDER BY reviewed_at ASC, id ASC
            """,
            [card.id for card in chunk],
        )
        for row in cursor.fetchall():
            grouped[row["card_id"]].append(ReviewLog.from_row(row))
    return [(card, grouped[card.id]) for card in cards]


def _select_cards(conn, selector: CardsSelector) -> List[Card]:
    card_ids = (
        evaluate_query(conn, selector, ReturnType.CARDS)
        if isinstance(selector, str) else list(selector)
    )
    return [_fetch_card(conn, card_id) for card_id in card_ids]


def unbury_cards(conn, now: Optional[int] = None) -> bool:
    """Clear buried states the first time this runs on a local day. Returns True if it did."""
    now = now_ts() if now is None else now
    today = local_date(now).isoformat()
    state = load_internal_state()
    if state.get("last_unburied") == today:
        return False
    try:
        with conn:
            cursor = conn.cursor()
            cursor.execute(
                "UPDATE card SET special_state = NULL, updated_at = ? WHERE special_state IN (?, ?)",
                (now, int(SpecialState.USER_BURIED), int(SpecialState.SCHEDULER_BURIED)),
            )
            count = cursor.rowcount
    except sqlite3.Error as exc:
        raise StorageError(exc) from exc
    state["last_unburied"] = today
    save_internal_state(state)
    logger.info("Unburied %d cards", count)
    return True


def new_cards_studied(conn, now: Optional[int] = None) -> int:
    """Distinct cards first studied as New on the local day of `now`."""
    day_start, day_end = local_day_bounds(now)
    cursor = conn.cursor()
    cursor.execute(
        """
        SELECT COUNT(DISTINCT card_id) FROM review_log
        WHERE reviewed_at >= ? AND reviewed_at <= ? AND previous_state = ?
        """,
        (day_start, day_end, int(State.NEW)),
    )
    return cursor.fetchone()[0]


def get_review_card(conn, query: Optional[str] = None, tag_id: Optional[int] = None,
                    now: Optional[int] = None,
                    settings: Optional[SchedulerConfig] = None) -> Optional[ReviewCard]:
    """The next card to study, or None when nothing is due.

    With `tag_id` every card of that filtered tag is studied regardless of
    its due date. Otherwise cards due by the end of the local day are picked,
    New cards only while the daily limit is not reached.
    """
    now = now_ts() if now is None else now
    settings = settings or scheduler_config()
    unbury_cards(conn, now)

    conditions = ["c.special_state IS NULL"]
    params: List = []
    if tag_id is not None:
        tag = get_tag(conn, tag_id)
        if tag is None:
            return None
        if not tag.is_filtered:
            raise InvalidTagInputError("Cannot study a tag that does not have a query.")
        conditions.append("c.id IN (SELECT card_id FROM card_tag WHERE tag_id = ?)")
        params.append(tag_id)
    else:
        _, day_end = local_day_bounds(now)
        conditions.append("c.due <= ?")
        params.append(day_end)
        if new_cards_studied(conn, now) >= settings.new_cards_daily_limit:
            conditions.append("c.state != ?")
            params.append(int(State.NEW))
        if query:
            sql, query_params = build_query(query, ReturnType.NOTES, now)
            conditions.append(f"n.id IN ({sql})")
            params.extend(query_params)

    cursor = conn.cursor()
    try:
        cursor.execute(
            f"""
            SELECT c.*, p.name AS parser_name
            FROM card c
            JOIN note n ON c.note_id = n.id
            JOIN parser p ON n.parser_id = p.id
            WHERE {' AND '.join(conditions)}
            ORDER BY c.due ASC, n.created_at ASC, c.id ASC
            LIMIT 1
            """,
            params,
        )
        row = cursor.fetchone()
    except sqlite3.Error as exc:
        raise StorageError(exc) from exc
    if row is None:
        return None
    data = dict(row)
    parser_name = data.pop("parser_name")
    card = Card.from_row(data)
    if card.back_type == BackType.ONLY_ANSWERED:
        back_file = get_output_filename(card.note_id, card.order, CardSide.BACK)
    else:
        back_file = get_output_filename(card.note_id)
    return ReviewCard(
        card=card,
        parser_name=parser_name,
        front_file=get_output_filename(card.note_id, card.order, CardSide.FRONT),
        back_file=back_file,
    )


def _update_filtered_tag_data(conn, scheduler: Scheduler, tag: Tag, card: Card, rating: int,
                              reviewed_at: int, duration: int) -> Card:
    """Store the filtered-tag scheduler data, or drop the card from the tag when it is done."""
    key = str(tag.id)
    tag_data = dict(card.custom_data.get(key) or {})
    data = scheduler.filtered_tag_schedule(
        tag_data.get(scheduler.name), card, rating, reviewed_at, duration
    )
    custom_data = dict(card.custom_data)
    if data is not None:
        tag_data[scheduler.name] = data
        custom_data[key] = tag_data
    else:
        tag_data.pop(scheduler.name, None)
        if tag_data:
            custom_data[key] = tag_data
        else:
            custom_data.pop(key, None)
        conn.execute("DELETE FROM card_tag WHERE card_id = ? AND tag_id = ?", (card.id, tag.id))
        if tag.auto_delete:
            delete_empty_tags(conn, [tag.id])
        logger.debug("Card %s left filtered tag %s", card.id, tag.name)
    return card.model_copy(update={"custom_data": custom_data})


def rate_card(conn, card_id: int, rating: int, duration: int = 0, tag_id: Optional[int] = None,
              scheduler: Optional[Scheduler] = None, now: Optional[int] = None) -> Card:
    """Schedule a rating and store the review log and the card together.

    The new due date is spread away from the card's siblings.
    """
    scheduler = scheduler or get_scheduler(config=scheduler_config())
    reviewed_at = now_ts() if now is None else now
    try:
        with conn:
            filtered_tag = None
            if tag_id is not None:
                filtered_tag = get_tag(conn, tag_id)
                if filtered_tag is None or not filtered_tag.is_filtered:
                    raise InvalidTagInputError("Supplied tag id is not a filtered tag.")
            card = _fetch_card(conn, card_id)
            if card.special_state == SpecialState.SUSPENDED:
                raise SuspendedCardError()
            if card.special_state in (SpecialState.USER_BURIED, SpecialState.SCHEDULER_BURIED):
                raise AlreadyBuriedError()
            review_logs = get_review_logs(conn, card_id)
            previous = review_logs[-1] if review_logs else None
            updated, review_log = scheduler.schedule(card, previous, rating, reviewed_at, duration)

            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO review_log (card_id, reviewed_at, rating, scheduler_name,
                    scheduled_time, duration, previous_state, custom_data)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (review_log.card_id, review_log.reviewed_at, review_log.rating,
                 review_log.scheduler_name, review_log.scheduled_time, review_log.duration,
                 int(review_log.previous_state), json.dumps(review_log.custom_data)),
            )
            new_log = ReviewLog(id=cursor.lastrowid, **review_log.model_dump())

            siblings = get_histories(
                conn, [c for c in get_note_cards(conn, card.note_id) if c.id != card.id]
            )
            due = scheduler.smart_schedule(updated, review_logs + [new_log], siblings, reviewed_at)
            updated = updated.model_copy(update={"due": due})
            if filtered_tag is not None:
                updated = _update_filtered_tag_data(
                    conn, scheduler, filtered_tag, updated, rating, reviewed_at, duration
                )
            cursor.execute(
                """
                UPDATE card SET due = ?, stability = ?, difficulty = ?, state = ?, updated_at = ?,
                    custom_data = ?
                WHERE id = ?
                """,
                (updated.due, updated.stability, updated.difficulty, int(updated.state),
                 reviewed_at, updated.custom_data_json(), card.id),
            )
    except sqlite3.Error as exc:
        raise StorageError(exc) from exc
    logger.info("Card %s rated %s, next due %s", card_id, Rating(rating).name, updated.due)
    return updated


def bury_card(conn, card_id: int, scheduler: Optional[Scheduler] = None,
              now: Optional[int] = None) -> Card:
    """Hide a card until the next local day. Suspended or buried cards raise."""
    scheduler = scheduler or get_scheduler(config=scheduler_config())
    now = now_ts() if now is None else now
    try:
        with conn:
            buried = scheduler.bury(_fetch_card(conn, card_id))
            conn.execute(
                "UPDATE card SET special_state = ?, updated_at = ? WHERE id = ?",
                (int(buried.special_state), now, card_id),
            )
    except sqlite3.Error as exc:
        raise StorageError(exc) from exc
    return buried.model_copy(update={"updated_at": now})


def flag_card(conn, card_id: int, settings: Optional[SchedulerConfig] = None) -> None:
    """Tag the card's note with the flagged tag, for a later look outside of review."""
    settings = settings or scheduler_config()
    try:
        with conn:
            card = _fetch_card(conn, card_id)
            for tag in upsert_tags(conn, [settings.flagged_tag_name]):
                conn.execute(
                    "INSERT OR IGNORE INTO note_tag (note_id, tag_id) VALUES (?, ?)",
                    (card.note_id, tag.id),
                )
    except sqlite3.Error as exc:
        raise StorageError(exc) from exc


def reschedule_cards(conn, scheduler: Scheduler, query: Optional[str] = None,
                     now: Optional[int] = None) -> List[Card]:
    """Recompute cards from their full history. Defaults to every card without a special state."""
    now = now_ts() if now is None else now
    try:
        with conn:
            if query is not None:
                cards = [c for c in _select_cards(conn, query) if c.special_state is None]
            else:
                cursor = conn.cursor()
                cursor.execute("SELECT * FROM card WHERE special_state IS NULL ORDER BY id")
                cards = [Card.from_row(row) for row in cursor.fetchall()]
            return scheduler.reschedule(conn, get_histories(conn, cards), now)
    except sqlite3.Error as exc:
        raise StorageError(exc) from exc


def submit_study_action(conn, action: StudyAction, scheduler_name: str = DEFAULT_SCHEDULER,
                        settings: Optional[SchedulerConfig] = None,
                        now: Optional[int] = None) -> Optional[str]:
    """Run one study action. Advance and postpone return their retention message."""
    settings = settings or scheduler_config()
    scheduler = get_scheduler(scheduler_name, settings)
    now = now_ts() if now is None else now

    if action.kind == StudyActionKind.RATE:
        if action.card_id is None or action.rating is None:
            raise InvalidCardInputError("Rating a card needs a card id and a rating.")
        rate_card(conn, action.card_id, action.rating, action.duration, action.tag_id,
                  scheduler, now)
        return None
    if action.kind == StudyActionKind.BURY:
        if action.card_id is None:
            raise InvalidCardInputError("Burying a card needs a card id.")
        bury_card(conn, action.card_id, scheduler, now)
        return None
    if action.kind == StudyActionKind.RESCHEDULE:
        cards = reschedule_cards(conn, scheduler, action.query, now)
        return f"Rescheduled {len(cards)} cards."

    try:
        with conn:
            if action.kind == StudyActionKind.ADVANCE:
                count = action.count or scheduler.get_advance_safe_count(conn, now)
                return scheduler.advance(conn, count, now)
            count = action.count or scheduler.get_postpone_safe_count(conn, now)
            return scheduler.postpone(conn, count, now)
    except sqlite3.Error as exc:
        raise StorageError(exc) from exc


def update_card(conn, selector: CardsSelector, request: CardUpdate,
                settings: Optional[SchedulerConfig] = None,
                now: Optional[int] = None) -> List[Card]:
    """Change the desired retention or special state of the selected cards.

    A reviewed card whose desired retention changes is rescheduled from its
    history.
    """
    settings = settings or scheduler_config()
    now = now_ts() if now is None else now
    updated_cards: List[Card] = []
    try:
        with conn:
            for card in _select_cards(conn, selector):
                special_state = card.special_state
                if request.clear_special_state:
                    special_state = None
                elif request.special_state is not None:
                    if request.special_state == SpecialState.USER_BURIED:
                        get_scheduler(config=settings).bury(card)
                    special_state = request.special_state
                updated = card.model_copy(update={
                    "desired_retention": request.desired_retention or card.desired_retention,
                    "special_state": special_state,
                    "updated_at": now,
                })
                conn.execute(
                    """
                    UPDATE card SET desired_retention = ?, special_state = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (updated.desired_retention,
                     int(special_state) if special_state is not None else None, now, card.id),
                )
                retention_changed = abs(updated.desired_retention - card.desired_retention) > 1e-9
                if retention_changed and updated.state != State.NEW:
                    review_logs = get_review_logs(conn, card.id)
                    if review_logs:
                        scheduler = get_scheduler(review_logs[-1].scheduler_name, settings)
                        updated = scheduler.reschedule(conn, [(updated, review_logs)], now)[0]
                updated_cards.append(updated)
    except sqlite3.Error as exc:
        raise StorageError(exc) from exc
    return updated_cards


def get_leeches(conn, scheduler_name: str = DEFAULT_SCHEDULER,
                settings: Optional[SchedulerConfig] = None) -> List[Card]:
    return get_scheduler(scheduler_name, settings or scheduler_config()).get_leeches(conn)
