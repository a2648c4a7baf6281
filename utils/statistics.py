from __future__ import annotations

import sqlite3
from collections import Counter, defaultdict
from datetime import timedelta
from typing import List, Optional, Tuple

from config import SchedulerConfig, scheduler_config
from errors import StorageError
from models import Card, ReturnType, SpecialState, State, Statistics
from schedulers import DEFAULT_SCHEDULER, get_scheduler
from search import build_query
from utils.dates import local_date, local_day_bounds, now_ts

BURIED_STATES = (SpecialState.USER_BURIED, SpecialState.SCHEDULER_BURIED)


def _card_filter(query: Optional[str], now: int) -> Tuple[str, List]:
    if query is None:
        return "1", []
    sql, params = build_query(query, ReturnType.CARDS, now)
    return f"c.id IN ({sql})", params


def get_statistics(conn, query: Optional[str] = None, scheduler_name: str = DEFAULT_SCHEDULER,
                   settings: Optional[SchedulerConfig] = None,
                   now: Optional[int] = None) -> Statistics:
    """Study summary for the local day of `now`, limited to the cards matching `query`.

    New cards count as due today, capped by what is left of the daily
    limit. Overdue cards count as due today and buried cards tomorrow.
    """
    settings = settings or scheduler_config()
    scheduler = get_scheduler(scheduler_name, settings)
    now = now_ts() if now is None else now
    day_start, day_end = local_day_bounds(now)
    where, params = _card_filter(query, now)

    try:
        cursor = conn.cursor()
        cursor.execute(
            f"""
            SELECT rl.card_id, rl.duration, rl.previous_state
            FROM review_log rl JOIN card c ON c.id = rl.card_id
            WHERE rl.reviewed_at >= ? AND rl.reviewed_at <= ? AND {where}
            """,
            [day_start, day_end, *params],
        )
        studied = cursor.fetchall()
        cursor.execute(f"SELECT * FROM card c WHERE {where}", params)
        cards = [Card.from_row(row) for row in cursor.fetchall()]
        advance_safe_count = scheduler.get_advance_safe_count(conn, now)
        postpone_safe_count = scheduler.get_postpone_safe_count(conn, now)
    except sqlite3.Error as exc:
        raise StorageError(exc) from exc

    new_studied = len({row["card_id"] for row in studied if row["previous_state"] == State.NEW})
    today = local_date(now)
    due_by_date = defaultdict(list)
    for card in cards:
        if card.special_state == SpecialState.SUSPENDED:
            continue
        day = today if card.state == State.NEW else max(local_date(card.due), today)
        if day == today and card.special_state in BURIED_STATES:
            day = today + timedelta(days=1)
        due_by_date[day].append(card)

    due_today = Counter(card.state for card in due_by_date.get(today, []))
    if due_today[State.NEW]:
        remaining = max(0, settings.new_cards_daily_limit - new_studied)
        due_today[State.NEW] = min(due_today[State.NEW], remaining)

    return Statistics(
        cards_studied_count=len({row["card_id"] for row in studied}),
        study_time=sum(row["duration"] for row in studied),
        card_count_by_state=Counter(card.state for card in cards),
        due_count_by_state={state: count for state, count in due_today.items() if count},
        due_count_by_date={
            day: len(day_cards) for day, day_cards in sorted(due_by_date.items()) if day > today
        },
        advance_safe_count=advance_safe_count,
        postpone_safe_count=postpone_safe_count,
    )
