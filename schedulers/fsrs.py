"""FSRS scheduler with the basic (minute step) learning scheduler."""
from __future__ import annotations

import logging
import math
import random
import sqlite3
from typing import Any, Dict, List, Optional, Sequence, Tuple

from config import SchedulerConfig
from errors import InvalidRatingError, InvalidStateError, StorageError
from models import Card, Rating, ReviewLog, ReviewLogCreate, State
from utils.dates import DAY_SECONDS, local_day_bounds
from . import reposition
from .base import CardHistory, Scheduler
from .disperse import disperse_siblings
from .fuzz import MIN_FUZZ_INTERVAL, get_fuzz_range
from .memory import FsrsParameters, forgetting_curve

logger = logging.getLogger(__name__)

MINUTE = 60
# (again, hard, good) delays while learning
NEW_STEPS = (1 * MINUTE, 5 * MINUTE, 10 * MINUTE)
LEARNING_STEPS = (5 * MINUTE, 10 * MINUTE)
RELEARNING_DELAY = 5 * MINUTE

# Consecutive Good ratings that graduate a card out of a filtered tag
FILTERED_TAG_GOOD_THRESHOLD = 2


class FsrsScheduler(Scheduler):
    name = "fsrs"

    def __init__(self, config: Optional[SchedulerConfig] = None,
                 parameters: Optional[FsrsParameters] = None,
                 rng: Optional[random.Random] = None):
        super().__init__(config)
        self.parameters = parameters or FsrsParameters(
            maximum_interval=self.config.maximum_interval.days
        )
        self.rng = rng or random.Random()

    @property
    def minimum_interval_days(self) -> float:
        return self.config.minimum_interval.total_seconds() / DAY_SECONDS

    @property
    def maximum_interval_days(self) -> float:
        return self.config.maximum_interval.total_seconds() / DAY_SECONDS

    def get_ratings(self) -> List[Dict[str, Any]]:
        return [{"id": int(r), "description": r.name.capitalize()} for r in Rating]

    def next_interval(self, stability: float, desired_retention: float,
                      elapsed_days: float = 0) -> int:
        """Whole days until the next review, fuzzed when `enable_fuzz` is set."""
        interval = self.parameters.raw_interval(stability, desired_retention)
        if self.config.enable_fuzz and interval >= MIN_FUZZ_INTERVAL:
            low, high = get_fuzz_range(
                interval, elapsed_days, self.parameters.maximum_interval, self.minimum_interval_days
            )
            low, high = math.ceil(low), math.floor(high)
            interval = self.rng.randint(low, max(low, high))
        return min(max(round(interval), 1), self.parameters.maximum_interval)

    def schedule(self, card: Card, previous_review_log: Optional[ReviewLog], rating: int,
                 reviewed_at: int, duration: int) -> Tuple[Card, ReviewLogCreate]:
        try:
            state = State(card.state)
        except ValueError as exc:
            raise InvalidStateError(card.state) from exc
        if rating not in Rating._value2member_map_:
            raise InvalidRatingError(rating)
        rating = Rating(rating)
        params = self.parameters
        elapsed_days = 0
        if previous_review_log is not None:
            elapsed_days = max(0, (reviewed_at - previous_review_log.reviewed_at) // DAY_SECONDS)

        if state == State.NEW:
            stability = params.init_stability(rating)
            difficulty = min(max(params.init_difficulty(rating), 1.0), 10.0)
            if rating == Rating.EASY:
                new_state = State.REVIEW
                due = reviewed_at + self.next_interval(
                    stability, card.desired_retention, elapsed_days) * DAY_SECONDS
            else:
                new_state = State.LEARNING
                due = reviewed_at + NEW_STEPS[rating - 1]
        elif state in (State.LEARNING, State.RELEARNING):
            stability = params.next_short_term_stability(card.stability, rating)
            difficulty = params.next_difficulty(card.difficulty, rating)
            if rating in (Rating.AGAIN, Rating.HARD):
                new_state = state
                due = reviewed_at + LEARNING_STEPS[rating - 1]
            else:
                new_state = State.REVIEW
                days = self.next_interval(stability, card.desired_retention, elapsed_days)
                if rating == Rating.EASY:
                    good_stability = params.next_short_term_stability(card.stability, Rating.GOOD)
                    good_days = self.next_interval(
                        good_stability, card.desired_retention, elapsed_days)
                    days = max(days, good_days + 1)
                due = reviewed_at + days * DAY_SECONDS
        else:
            retrievability = forgetting_curve(elapsed_days, card.stability)
            difficulty = params.next_difficulty(card.difficulty, rating)
            if rating == Rating.AGAIN:
                stability = params.next_forget_stability(
                    card.difficulty, card.stability, retrievability)
                new_state = State.RELEARNING
                due = reviewed_at + RELEARNING_DELAY
            else:
                stabilities = {
                    r: params.next_recall_stability(
                        card.difficulty, card.stability, retrievability, r)
                    for r in (Rating.HARD, Rating.GOOD, Rating.EASY)
                }
                hard = self.next_interval(
                    stabilities[Rating.HARD], card.desired_retention, elapsed_days)
                good = self.next_interval(
                    stabilities[Rating.GOOD], card.desired_retention, elapsed_days)
                hard = min(hard, good)
                good = max(good, hard + 1)
                easy = max(
                    self.next_interval(
                        stabilities[Rating.EASY], card.desired_retention, elapsed_days),
                    good + 1,
                )
                stability = stabilities[rating]
                new_state = State.REVIEW
                days = {Rating.HARD: hard, Rating.GOOD: good, Rating.EASY: easy}[rating]
                due = reviewed_at + days * DAY_SECONDS

        new_card = card.model_copy(update={
            "stability": stability,
            "difficulty": difficulty,
            "state": new_state,
            "due": due,
            "updated_at": reviewed_at,
        })
        review_log = ReviewLogCreate(
            card_id=card.id,
            reviewed_at=reviewed_at,
            rating=int(rating),
            scheduler_name=self.name,
            scheduled_time=due - reviewed_at,
            duration=duration,
            previous_state=state,
        )
        return new_card, review_log

    def filtered_tag_schedule(self, data: Optional[Dict[str, Any]], card: Card, rating: int,
                              reviewed_at: int, duration: int) -> Optional[Dict[str, Any]]:
        """Keep a card in a filtered tag until it is rated Easy once or Good twice."""
        if rating not in Rating._value2member_map_:
            raise InvalidRatingError(rating)
        if rating in (Rating.AGAIN, Rating.HARD):
            return {}
        if rating == Rating.EASY:
            return None
        good_count = int((data or {}).get("good", 0)) + 1
        if good_count >= FILTERED_TAG_GOOD_THRESHOLD:
            return None
        return {"good": good_count}

    def get_leeches(self, conn) -> List[Card]:
        cursor = conn.cursor()
        cursor.execute(
            """
            SELECT * FROM card
            WHERE id IN (
                SELECT card_id FROM review_log
                WHERE previous_state = ? AND rating = ?
                GROUP BY card_id
                HAVING COUNT(*) > ?
            )
            AND special_state IS NULL
            ORDER BY due ASC
            """,
            (int(State.REVIEW), int(Rating.AGAIN), self.config.leech_lapses_threshold),
        )
        return [Card.from_row(row) for row in cursor.fetchall()]

    def _review_cards(self, conn, requested_date: int, due_after: bool) -> Tuple[List[Card], int]:
        _, day_end = local_day_bounds(requested_date)
        comparison = ">" if due_after else "<="
        try:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                SELECT * FROM card
                WHERE due {comparison} ? AND state = ? AND special_state IS NULL
                ORDER BY due ASC
                """,
                (day_end, int(State.REVIEW)),
            )
            rows = cursor.fetchall()
        except sqlite3.Error as exc:
            raise StorageError(exc) from exc
        return [Card.from_row(row) for row in rows], day_end

    def get_advance_safe_count(self, conn, requested_date: int) -> int:
        cards, day_end = self._review_cards(conn, requested_date, due_after=True)
        moves = reposition.get_card_moves(conn, cards, reposition.MoveCardAction.ADVANCE, day_end)
        return len([m for m in moves if m.is_safe(reposition.MoveCardAction.ADVANCE)])

    def get_postpone_safe_count(self, conn, requested_date: int) -> int:
        cards, day_end = self._review_cards(conn, requested_date, due_after=False)
        moves = reposition.get_card_moves(conn, cards, reposition.MoveCardAction.POSTPONE, day_end)
        return len([m for m in moves if m.is_safe(reposition.MoveCardAction.POSTPONE)])

    def advance(self, conn, count: int, requested_date: int) -> str:
        cards, day_end = self._review_cards(conn, requested_date, due_after=True)
        return reposition.move_cards(
            conn, count, cards, reposition.MoveCardAction.ADVANCE, day_end,
            self.config.minimum_interval, self.config.maximum_interval, self.rng,
        )

    def postpone(self, conn, count: int, requested_date: int) -> str:
        cards, day_end = self._review_cards(conn, requested_date, due_after=False)
        return reposition.move_cards(
            conn, count, cards, reposition.MoveCardAction.POSTPONE, day_end,
            self.config.minimum_interval, self.config.maximum_interval, self.rng,
        )

    def smart_schedule(self, card: Card, review_logs: Sequence[ReviewLog],
                       siblings: Sequence[CardHistory], at: int) -> int:
        if not review_logs or card.state != State.REVIEW or card.special_state is not None:
            return card.due
        group = [(card, list(review_logs))] + [
            (sibling, list(logs))
            for sibling, logs in siblings
            if sibling.id != card.id
            and sibling.state == State.REVIEW
            and sibling.special_state is None
        ]
        if len(group) == 1:
            return card.due
        dispersed = disperse_siblings(
            group, self.parameters, self.minimum_interval_days, self.maximum_interval_days, now=at
        )
        if dispersed is None:
            return card.due
        due = dict(dispersed)[card.id]
        if due != card.due:
            logger.debug("Card %s moved from %s to %s by sibling dispersion", card.id, card.due, due)
        return due
