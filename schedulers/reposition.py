"""Advance or postpone review cards while keeping retention close to its target."""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from statistics import mean
from typing import List, Optional, Sequence

from models import Card, ReviewLog
from utils.dates import DAY_SECONDS, to_days
from .memory import forgetting_curve

logger = logging.getLogger(__name__)

ADVANCE_SAFETY_THRESHOLD = 0.13
POSTPONE_SAFETY_THRESHOLD = 0.15
# Share of the scheduled interval a postpone is expected to add
POSTPONE_ELAPSED_FACTOR = 0.075


class MoveCardAction(str, Enum):
    ADVANCE = "advance"
    POSTPONE = "postpone"


@dataclass
class CardMove:
    card: Card
    elapsed_days: float
    scheduled_days: Optional[float]
    current_retention: float
    retention_after_postpone: float

    def _odds_ratio(self, retention: float) -> float:
        return (1 / retention - 1) / (1 / self.card.desired_retention - 1)

    def retention_delta(self, action: MoveCardAction) -> float:
        if action == MoveCardAction.ADVANCE:
            return 1 - self._odds_ratio(self.current_retention)
        return self._odds_ratio(self.retention_after_postpone) - 1

    def is_safe(self, action: MoveCardAction) -> bool:
        if action == MoveCardAction.ADVANCE:
            return self.retention_delta(action) < ADVANCE_SAFETY_THRESHOLD
        return self.retention_delta(action) < POSTPONE_SAFETY_THRESHOLD

    def sort_key(self, action: MoveCardAction):
        return self.retention_delta(action), -self.card.stability


def _latest_review_log(conn, card_id: int) -> Optional[ReviewLog]:
    cursor = conn.cursor()
    cursor.execute(
        "SELECT * FROM review_log WHERE card_id = ? ORDER BY reviewed_at DESC, id DESC LIMIT 1",
        (card_id,),
    )
    row = cursor.fetchone()
    return ReviewLog.from_row(row) if row else None


def get_card_moves(conn, cards: Sequence[Card], action: MoveCardAction,
                   requested_date: int) -> List[CardMove]:
    """Retention figures for each card at `requested_date`, safest move first."""
    moves = []
    for card in cards:
        if card.stability <= 0:
            continue
        review_log = _latest_review_log(conn, card.id)
        scheduled_days = to_days(review_log.scheduled_time) if review_log else None
        elapsed_days = 0.0
        if review_log is not None:
            elapsed_days = max(0.0, to_days(requested_date - review_log.reviewed_at))
        postponed_elapsed = 0.0
        if scheduled_days is not None:
            postponed_elapsed = elapsed_days + scheduled_days * POSTPONE_ELAPSED_FACTOR
        moves.append(CardMove(
            card=card,
            elapsed_days=elapsed_days,
            scheduled_days=scheduled_days,
            current_retention=forgetting_curve(elapsed_days, card.stability),
            retention_after_postpone=forgetting_curve(postponed_elapsed, card.stability),
        ))
    moves.sort(key=lambda move: move.sort_key(action))
    return moves


def move_cards(conn, count: int, cards: Sequence[Card], action: MoveCardAction,
               requested_date: int, minimum_interval: timedelta, maximum_interval: timedelta,
               rng: Optional[random.Random] = None) -> str:
    """Move up to `count` cards, safe ones first, padding with the least unsafe.

    Advanced cards become due at `requested_date`. Postponed cards get their
    scheduled interval stretched by 5-10% plus their current delay.
    """
    rng = rng or random.Random()
    moves = get_card_moves(conn, cards, action, requested_date)
    safe = [move for move in moves if move.is_safe(action)]
    unsafe = [move for move in moves if not move.is_safe(action)]
    chosen = (safe + unsafe)[:count]

    minimum_days = minimum_interval.total_seconds() / DAY_SECONDS
    maximum_days = maximum_interval.total_seconds() / DAY_SECONDS
    previous_retentions = []
    new_retentions = []
    cursor = conn.cursor()
    for move in chosen:
        scheduled_days = move.scheduled_days or 0.0
        if action == MoveCardAction.ADVANCE:
            new_due = requested_date
            new_scheduled_days = move.elapsed_days
        else:
            delay_days = move.elapsed_days - scheduled_days if move.scheduled_days is not None else 0.0
            stretched = scheduled_days * (1.05 + 0.05 * rng.random()) + delay_days
            new_scheduled_days = min(max(minimum_days, stretched), maximum_days)
            new_due = requested_date + int(new_scheduled_days * DAY_SECONDS)
        cursor.execute(
            "UPDATE card SET due = ?, updated_at = ? WHERE id = ?",
            (new_due, requested_date, move.card.id),
        )
        previous_retentions.append(forgetting_curve(scheduled_days, move.card.stability))
        new_retentions.append(forgetting_curve(new_scheduled_days, move.card.stability))

    logger.info("%s %d of %d cards (%d safe)", action.value.capitalize(), len(chosen),
                len(moves), len(safe))
    if not previous_retentions:
        return ""
    return (
        "Mean target retention of moved cards: "
        f"{mean(previous_retentions) * 100:.2f}% -> {mean(new_retentions) * 100:.2f}%"
    )
