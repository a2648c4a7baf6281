from datetime import datetime

from config import SchedulerConfig
from models import NoteCreate, Rating, State
from schedulers.fsrs import FsrsScheduler
from utils.dates import local_date
from utils.notes import create_notes
from utils.review import rate_card
from utils.statistics import get_statistics

NOW = int(datetime(2024, 1, 10, 12, 0).timestamp())


def _notes(conn):
    create_notes(conn, [
        NoteCreate(data="{{Paris}} is the capital of France", parser_name="markdown",
                   tags=["geography"]),
        NoteCreate(data="The ball is {{red}}", parser_name="markdown"),
    ], now=NOW)


def test_statistics_after_one_review(conn, settings):
    _notes(conn)
    rate_card(conn, 1, Rating.GOOD, duration=5, scheduler=FsrsScheduler(settings), now=NOW)

    stats = get_statistics(conn, settings=settings, now=NOW)

    assert stats.cards_studied_count == 1
    assert stats.study_time == 5
    assert stats.card_count_by_state == {State.NEW: 1, State.LEARNING: 1}
    assert stats.due_count_by_state == {State.NEW: 1, State.LEARNING: 1}
    assert stats.due_count_by_date == {}
    assert stats.advance_safe_count == 0
    assert stats.postpone_safe_count == 0


def test_new_cards_capped_by_daily_limit(conn):
    settings = SchedulerConfig(new_cards_daily_limit=1)
    _notes(conn)
    rate_card(conn, 1, Rating.GOOD, scheduler=FsrsScheduler(settings), now=NOW)

    stats = get_statistics(conn, settings=settings, now=NOW)

    assert State.NEW not in stats.due_count_by_state


def test_future_reviews_counted_by_date(conn, settings):
    _notes(conn)
    card = rate_card(conn, 1, Rating.EASY, scheduler=FsrsScheduler(settings), now=NOW)

    stats = get_statistics(conn, settings=settings, now=NOW)

    assert stats.due_count_by_date == {local_date(card.due): 1}
    assert stats.due_count_by_state == {State.NEW: 1}


def test_statistics_filtered_by_query(conn, settings):
    _notes(conn)
    rate_card(conn, 2, Rating.GOOD, duration=3, scheduler=FsrsScheduler(settings), now=NOW)

    stats = get_statistics(conn, query="tag=geography", settings=settings, now=NOW)

    assert stats.cards_studied_count == 0
    assert stats.study_time == 0
    assert stats.card_count_by_state == {State.NEW: 1}
