import random
from datetime import timedelta

import pytest

from config import SchedulerConfig
from errors import (
    AlreadyBuriedError,
    InvalidRatingError,
    InvalidStateError,
    SchedulerNotFoundError,
    SuspendedCardError,
)
from models import BackType, Card, Rating, ReviewLog, SpecialState, State
from schedulers import DEFAULT_SCHEDULER, get_scheduler
from schedulers.disperse import can_place_points, get_due_range, maximize_siblings_due_gap
from schedulers.fsrs import FsrsScheduler
from schedulers.fuzz import get_fuzz_delta, get_fuzz_range
from schedulers.memory import DECAY, FACTOR
from utils.dates import DAY_SECONDS

NOW = 1_700_000_000


def _new_card(card_id=1, created_at=NOW):
    return Card.new(note_id=1, order=card_id, back_type=BackType.FULL_NOTE, created_at=created_at,
                    card_id=card_id)


def _review(scheduler, card, ratings):
    """Rate `card` at each `(rating, reviewed_at)` and return the card and its logs."""
    logs = []
    for rating, reviewed_at in ratings:
        card, review_log = scheduler.schedule(
            card, logs[-1] if logs else None, rating, reviewed_at, 0
        )
        logs.append(ReviewLog(id=len(logs) + 1, **review_log.model_dump()))
    return card, logs


def test_get_scheduler():
    assert get_scheduler(DEFAULT_SCHEDULER).name == "fsrs"
    with pytest.raises(SchedulerNotFoundError):
        get_scheduler("sm2")


def test_ratings():
    ratings = FsrsScheduler().get_ratings()

    assert [rating["id"] for rating in ratings] == [1, 2, 3, 4]
    assert ratings[0]["description"] == "Again"


def test_new_card_learning_steps():
    scheduler = FsrsScheduler()

    again, log = scheduler.schedule(_new_card(), None, Rating.AGAIN, NOW, 12)

    assert again.state == State.LEARNING
    assert again.due == NOW + 60
    assert log.previous_state == State.NEW
    assert log.scheduled_time == 60
    assert log.duration == 12


def test_easy_graduates_new_card():
    card, _ = FsrsScheduler().schedule(_new_card(), None, Rating.EASY, NOW, 0)

    assert card.state == State.REVIEW
    assert card.due >= NOW + DAY_SECONDS


def test_review_ratings_are_ordered():
    scheduler = FsrsScheduler()
    card, logs = _review(scheduler, _new_card(), [(Rating.GOOD, NOW), (Rating.GOOD, NOW + 600)])
    reviewed_at = card.due

    dues = [
        scheduler.schedule(card, logs[-1], rating, reviewed_at, 0)[0].due
        for rating in (Rating.HARD, Rating.GOOD, Rating.EASY)
    ]

    assert dues[0] < dues[1] < dues[2]
    lapsed, _ = scheduler.schedule(card, logs[-1], Rating.AGAIN, reviewed_at, 0)
    assert lapsed.state == State.RELEARNING


def test_maximum_interval_caps_due():
    scheduler = FsrsScheduler(SchedulerConfig(maximum_interval=timedelta(days=3)))

    card, _ = scheduler.schedule(_new_card(), None, Rating.EASY, NOW, 0)

    assert card.due <= NOW + 3 * DAY_SECONDS


def test_invalid_rating():
    with pytest.raises(InvalidRatingError):
        FsrsScheduler().schedule(_new_card(), None, 5, NOW, 0)


def test_invalid_state():
    card = _new_card().model_copy(update={"state": 7})

    with pytest.raises(InvalidStateError):
        FsrsScheduler().schedule(card, None, Rating.GOOD, NOW, 0)


def test_fuzz_is_deterministic_with_seeded_rng():
    settings = SchedulerConfig(enable_fuzz=True)
    first = FsrsScheduler(settings, rng=random.Random(7))
    second = FsrsScheduler(settings, rng=random.Random(7))

    assert first.schedule(_new_card(), None, Rating.EASY, NOW, 0)[0].due == (
        second.schedule(_new_card(), None, Rating.EASY, NOW, 0)[0].due
    )


def test_fuzzed_interval_stays_in_range():
    scheduler = FsrsScheduler(SchedulerConfig(enable_fuzz=True), rng=random.Random(1))
    # Fifteen days at 90% retention
    stability = 15.0 * FACTOR / (0.9 ** (1 / DECAY) - 1)
    low, high = get_fuzz_range(15.0, 0.0, 180.0, 2.0)

    intervals = {scheduler.next_interval(stability, 0.9) for _ in range(50)}

    assert all(low <= interval <= high for interval in intervals)
    assert len(intervals) > 1


def test_fuzz_delta_grows_with_interval():
    deltas = [get_fuzz_delta(interval) for interval in (1, 3, 10, 30, 100)]

    assert deltas == sorted(deltas)
    assert deltas[0] == 1.0


@pytest.mark.parametrize("interval", [3.0, 10.0, 30.0, 100.0])
def test_fuzz_range_contains_interval(interval):
    low, high = get_fuzz_range(interval, 0.0, 180.0, 2.0)

    assert 2.0 <= low <= interval <= high <= 180.0


def test_fuzz_range_respects_maximum():
    low, high = get_fuzz_range(200.0, 0.0, 180.0, 2.0)

    assert high == 180.0
    assert low <= high


def test_siblings_dispersed_with_gap():
    placed, gap = maximize_siblings_due_gap(
        [("a", (0, 0)), ("b", (0, 2)), ("c", (0, 2))], delta=1
    )

    assert gap == 1
    assert placed == [("a", 0), ("b", 1), ("c", 2)]


def test_points_that_do_not_fit():
    assert can_place_points([(0, 0), (0, 1)], 2) is None
    assert can_place_points([], 5) == []


def test_due_range_of_unreviewed_card_is_its_due():
    card = _new_card()
    scheduler = FsrsScheduler()

    assert get_due_range(card, [], scheduler.parameters, 2, 180, NOW) == (card.due, card.due)


def test_memory_state_recomputed_from_history():
    scheduler = FsrsScheduler()
    ratings = [
        (Rating.GOOD, NOW),
        (Rating.GOOD, NOW + 2 * DAY_SECONDS),
        (Rating.AGAIN, NOW + 5 * DAY_SECONDS),
    ]
    sequential, logs = _review(scheduler, _new_card(), ratings)

    recomputed = scheduler.compute_memory_state(logs)

    assert recomputed.stability == sequential.stability
    assert recomputed.difficulty == sequential.difficulty
    assert recomputed.state == sequential.state
    assert recomputed.due == sequential.due


def test_bury():
    scheduler = FsrsScheduler()

    assert scheduler.bury(_new_card()).special_state == SpecialState.USER_BURIED
    with pytest.raises(SuspendedCardError):
        scheduler.bury(_new_card().model_copy(update={"special_state": SpecialState.SUSPENDED}))
    with pytest.raises(AlreadyBuriedError):
        scheduler.bury(
            _new_card().model_copy(update={"special_state": SpecialState.SCHEDULER_BURIED})
        )


def test_filtered_tag_schedule():
    scheduler = FsrsScheduler()
    card = _new_card()

    assert scheduler.filtered_tag_schedule(None, card, Rating.AGAIN, NOW, 0) == {}
    assert scheduler.filtered_tag_schedule(None, card, Rating.EASY, NOW, 0) is None
    first = scheduler.filtered_tag_schedule(None, card, Rating.GOOD, NOW, 0)
    assert first == {"good": 1}
    assert scheduler.filtered_tag_schedule(first, card, Rating.GOOD, NOW, 0) is None
    assert scheduler.filtered_tag_schedule(first, card, Rating.HARD, NOW, 0) == {}
