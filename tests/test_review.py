from datetime import datetime

import pytest

from config import SchedulerConfig
from errors import (
    AlreadyBuriedError,
    InvalidCardInputError,
    InvalidTagInputError,
    SuspendedCardError,
)
from models import (
    CardUpdate,
    NoteCreate,
    Rating,
    SpecialState,
    State,
    StudyAction,
    StudyActionKind,
    TagCreate,
)
from schedulers.fsrs import FsrsScheduler
from utils.dates import DAY_SECONDS, local_day_bounds
from utils.notes import create_notes, get_note
from utils.review import (
    bury_card,
    flag_card,
    get_card,
    get_leeches,
    get_review_card,
    get_review_logs,
    rate_card,
    submit_study_action,
    update_card,
)
from utils.tags import create_tag, get_tag

# Local noon keeps every review inside one local day
NOW = int(datetime(2024, 1, 10, 12, 0).timestamp())


def _note(conn, data="{{Paris}} is the capital of {{France}}", created_at=NOW, **kwargs):
    (note,) = create_notes(conn, [NoteCreate(data=data, parser_name="markdown", **kwargs)],
                           now=created_at)
    return note


def test_review_card_files(conn, settings):
    _note(conn)

    review = get_review_card(conn, now=NOW, settings=settings)

    assert review.card.id == 1
    assert review.parser_name == "markdown"
    assert review.front_file == "0001-1-front.pdf"
    assert review.back_file == "0001.pdf"


def test_only_answered_card_has_its_own_back(conn, settings):
    _note(conn, data="{{[f:all;b:a]Paris}} is in {{France}}")

    review = get_review_card(conn, now=NOW, settings=settings)

    assert review.back_file == "0001-1-back.pdf"


def test_nothing_to_review(conn, settings):
    assert get_review_card(conn, now=NOW, settings=settings) is None


def test_rate_card_stores_log_and_moves_on(conn, settings):
    _note(conn)
    scheduler = FsrsScheduler(settings)

    card = rate_card(conn, 1, Rating.GOOD, duration=7, scheduler=scheduler, now=NOW)

    assert card.state == State.LEARNING
    assert get_card(conn, 1).due == card.due
    (review_log,) = get_review_logs(conn, 1)
    assert review_log.rating == Rating.GOOD
    assert review_log.duration == 7
    assert review_log.previous_state == State.NEW
    assert get_review_card(conn, now=NOW, settings=settings).card.id == 2


def test_daily_limit_excludes_new_cards(conn):
    settings = SchedulerConfig(new_cards_daily_limit=1)
    _note(conn)
    rate_card(conn, 1, Rating.GOOD, scheduler=FsrsScheduler(settings), now=NOW)

    review = get_review_card(conn, now=NOW, settings=settings)

    assert review.card.id == 1


def test_filtered_tag_study(conn, settings):
    _note(conn, data="a^2 + b^2 = {{c^2}}", tags=["math"])
    _note(conn, data="The ball is {{red}}")
    tag = create_tag(conn, TagCreate(name="Cram", query="tag=math"))
    scheduler = FsrsScheduler(settings)

    review = get_review_card(conn, tag_id=tag.id, now=NOW, settings=settings)
    assert review.card.id == 1
    card = rate_card(conn, 1, Rating.GOOD, tag_id=tag.id, scheduler=scheduler, now=NOW)
    assert card.custom_data == {str(tag.id): {"fsrs": {"good": 1}}}

    card = rate_card(conn, 1, Rating.GOOD, tag_id=tag.id, scheduler=scheduler, now=NOW + 60)
    assert card.custom_data == {}
    assert get_tag(conn, tag.id) is None


def test_manual_tag_cannot_be_studied(conn, settings):
    _note(conn, tags=["geography"])
    cursor = conn.cursor()
    cursor.execute("SELECT id FROM tag WHERE name = 'geography'")
    tag_id = cursor.fetchone()["id"]

    with pytest.raises(InvalidTagInputError):
        get_review_card(conn, tag_id=tag_id, now=NOW, settings=settings)
    with pytest.raises(InvalidTagInputError):
        rate_card(conn, 1, Rating.GOOD, tag_id=tag_id, scheduler=FsrsScheduler(settings), now=NOW)
    assert get_review_logs(conn, 1) == []


def test_rate_suspended_card_rejected(conn, settings):
    _note(conn)
    update_card(conn, [1], CardUpdate(special_state=SpecialState.SUSPENDED), settings=settings,
                now=NOW)

    with pytest.raises(SuspendedCardError):
        rate_card(conn, 1, Rating.GOOD, scheduler=FsrsScheduler(settings), now=NOW)

    assert get_review_logs(conn, 1) == []
    assert get_card(conn, 1).state == State.NEW


def test_rate_buried_card_rejected(conn, settings):
    _note(conn)
    bury_card(conn, 1, FsrsScheduler(settings), now=NOW)

    with pytest.raises(AlreadyBuriedError):
        rate_card(conn, 1, Rating.GOOD, scheduler=FsrsScheduler(settings), now=NOW)

    assert get_review_logs(conn, 1) == []


def test_buried_card_returns_next_day(conn, settings):
    _note(conn)
    assert get_review_card(conn, now=NOW, settings=settings).card.id == 1

    buried = bury_card(conn, 1, FsrsScheduler(settings), now=NOW)

    assert buried.special_state == SpecialState.USER_BURIED
    assert get_review_card(conn, now=NOW, settings=settings).card.id == 2
    assert get_review_card(conn, now=NOW + DAY_SECONDS, settings=settings).card.id == 1
    assert get_card(conn, 1).special_state is None


def test_rate_action_needs_rating(conn, settings):
    _note(conn)

    with pytest.raises(InvalidCardInputError):
        submit_study_action(conn, StudyAction(kind=StudyActionKind.RATE, card_id=1),
                            settings=settings, now=NOW)


def test_rate_action(conn, settings):
    _note(conn)

    result = submit_study_action(
        conn, StudyAction(kind=StudyActionKind.RATE, card_id=1, rating=Rating.EASY),
        settings=settings, now=NOW,
    )

    assert result is None
    assert get_card(conn, 1).state == State.REVIEW


def test_reschedule_action(conn, settings):
    _note(conn)
    rate_card(conn, 1, Rating.EASY, scheduler=FsrsScheduler(settings), now=NOW)

    message = submit_study_action(conn, StudyAction(kind=StudyActionKind.RESCHEDULE),
                                  settings=settings, now=NOW)

    assert message == "Rescheduled 2 cards."


def test_advance_action(conn, settings):
    _note(conn, data="{{Paris}} is in France")
    card = rate_card(conn, 1, Rating.EASY, scheduler=FsrsScheduler(settings), now=NOW)
    _, day_end = local_day_bounds(NOW)
    assert card.due > day_end

    message = submit_study_action(conn, StudyAction(kind=StudyActionKind.ADVANCE, count=1),
                                  settings=settings, now=NOW)

    assert message.startswith("Mean target retention")
    assert get_card(conn, 1).due == day_end


def test_postpone_action(conn, settings):
    reviewed_at = NOW - 60 * DAY_SECONDS
    _note(conn, data="{{Paris}} is in France", created_at=reviewed_at)
    card = rate_card(conn, 1, Rating.EASY, scheduler=FsrsScheduler(settings), now=reviewed_at)
    assert card.due < NOW

    message = submit_study_action(conn, StudyAction(kind=StudyActionKind.POSTPONE, count=1),
                                  settings=settings, now=NOW)

    assert message.startswith("Mean target retention")
    assert get_card(conn, 1).due > NOW


def test_lower_retention_pushes_due_later(conn, settings):
    _note(conn, data="{{Paris}} is in France")
    card = rate_card(conn, 1, Rating.EASY, scheduler=FsrsScheduler(settings), now=NOW)

    (updated,) = update_card(conn, [1], CardUpdate(desired_retention=0.8), settings=settings,
                             now=NOW)

    assert updated.desired_retention == 0.8
    assert updated.due > card.due
    assert get_card(conn, 1).due == updated.due


def test_suspend_and_clear(conn, settings):
    _note(conn)

    update_card(conn, "", CardUpdate(special_state=SpecialState.SUSPENDED), settings=settings,
                now=NOW)
    assert get_review_card(conn, now=NOW, settings=settings) is None

    update_card(conn, [2], CardUpdate(clear_special_state=True), settings=settings, now=NOW)
    assert get_review_card(conn, now=NOW, settings=settings).card.id == 2


def test_flag_card(conn, settings):
    note = _note(conn)

    flag_card(conn, 2, settings)

    assert get_note(conn, note.id).tags == ["flagged"]


def test_leeches(conn):
    settings = SchedulerConfig(leech_lapses_threshold=0)
    _note(conn, data="{{Paris}} is in France")
    scheduler = FsrsScheduler(settings)
    card = rate_card(conn, 1, Rating.EASY, scheduler=scheduler, now=NOW)
    assert get_leeches(conn, settings=settings) == []

    rate_card(conn, 1, Rating.AGAIN, scheduler=scheduler, now=card.due)

    assert [card.id for card in get_leeches(conn, settings=settings)] == [1]
