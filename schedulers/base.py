from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Dict, List, Optional, Sequence, Tuple

from config import SchedulerConfig
from errors import AlreadyBuriedError, SuspendedCardError
from models import BackType, Card, ReviewLog, ReviewLogCreate, SpecialState, State

logger = logging.getLogger(__name__)

CardHistory = Tuple[Card, List[ReviewLog]]


class Scheduler(ABC):
    """A spaced repetition algorithm, selected by `name`.

    Schedulers may keep per-card state in `card.custom_data`. Methods taking
    `conn` run their statements without committing; the caller owns the
    transaction.
    """

    name: str = ""

    def __init__(self, config: Optional[SchedulerConfig] = None):
        self.config = config or SchedulerConfig()

    @abstractmethod
    def get_ratings(self) -> List[Dict[str, Any]]:
        """`[{"id": 1, "description": "Again"}, ...]`"""

    @abstractmethod
    def schedule(self, card: Card, previous_review_log: Optional[ReviewLog], rating: int,
                 reviewed_at: int, duration: int) -> Tuple[Card, ReviewLogCreate]:
        """Apply one rating. Pure: nothing is read from or written to the database."""

    @abstractmethod
    def filtered_tag_schedule(self, data: Optional[Dict[str, Any]], card: Card, rating: int,
                              reviewed_at: int, duration: int) -> Optional[Dict[str, Any]]:
        """New filtered-tag data for the card, or None when it leaves the filtered tag."""

    @abstractmethod
    def get_leeches(self, conn) -> List[Card]:
        pass

    @abstractmethod
    def get_advance_safe_count(self, conn, requested_date: int) -> int:
        pass

    @abstractmethod
    def get_postpone_safe_count(self, conn, requested_date: int) -> int:
        pass

    @abstractmethod
    def advance(self, conn, count: int, requested_date: int) -> str:
        pass

    @abstractmethod
    def postpone(self, conn, count: int, requested_date: int) -> str:
        pass

    @abstractmethod
    def smart_schedule(self, card: Card, review_logs: Sequence[ReviewLog],
                       siblings: Sequence[CardHistory], at: int) -> int:
        """Due date of `card` after spreading it away from its siblings."""

    def bury(self, card: Card) -> Card:
        if card.special_state == SpecialState.SUSPENDED:
            raise SuspendedCardError()
        if card.special_state in (SpecialState.USER_BURIED, SpecialState.SCHEDULER_BURIED):
            raise AlreadyBuriedError()
        return card.model_copy(update={"special_state": SpecialState.USER_BURIED})

    def compute_memory_state(self, review_logs: Sequence[ReviewLog],
                             card: Optional[Card] = None) -> Card:
        """Fold a review history, oldest first, through `schedule` from a new card."""
        logs = sorted(review_logs, key=lambda log: (log.reviewed_at, log.id))
        start = logs[0].reviewed_at if logs else (card.created_at if card else 0)
        if card is None:
            current = Card.new(note_id=0, order=1, back_type=BackType.FULL_NOTE, created_at=start)
        else:
            current = card.model_copy(update={
                "state": State.NEW,
                "stability": 0.0,
                "difficulty": 0.0,
                "due": start,
            })
        previous: Optional[ReviewLog] = None
        for log in logs:
            current, _ = self.schedule(current, previous, log.rating, log.reviewed_at, log.duration)
            previous = log
        return current

    def reschedule(self, conn, cards_with_review_logs: Sequence[CardHistory], at: int) -> List[Card]:
        """Recompute memory states from history, then spread siblings. Returns the updated cards."""
        by_note: Dict[int, List[CardHistory]] = defaultdict(list)
        for card, logs in cards_with_review_logs:
            computed = self.compute_memory_state(logs, card)
            updated = card.model_copy(update={
                "stability": computed.stability,
                "difficulty": computed.difficulty,
                "state": computed.state,
                "due": computed.due if logs else card.due,
                "updated_at": at,
            })
            by_note[card.note_id].append((updated, list(logs)))

        cursor = conn.cursor()
        updated_cards: List[Card] = []
        for note_id in sorted(by_note):
            siblings = sorted(by_note[note_id], key=lambda item: item[0].order)
            # Siblings are placed in order, so earlier ones shape later ones
            for index, (card, logs) in enumerate(siblings):
                due = self.smart_schedule(card, logs, siblings, at)
                card = card.model_copy(update={"due": due})
                siblings[index] = (card, logs)
                cursor.execute(
                    """
                    UPDATE card
                    SET due = ?, stability = ?, difficulty = ?, state = ?, custom_data = ?,
                        updated_at = ?
                    WHERE id = ?
                    """,
                    (card.due, card.stability, card.difficulty, int(card.state),
                     card.custom_data_json(), at, card.id),
                )
                updated_cards.append(card)
        logger.info("Rescheduled %d cards", len(updated_cards))
        return updated_cards
