"""Error types raised by the parsers, schedulers, search and storage layers."""
from __future__ import annotations

from typing import List, Optional, Tuple

Span = Tuple[int, int]


class SparesError(Exception):
    """Base class for every error raised by this package."""


# Storage / IO

class StorageError(SparesError):
    def __init__(self, source: Exception):
        super().__init__(f"Database error: {source}")
        self.source = source


class IoError(SparesError):
    def __init__(self, description: str, source: Optional[Exception] = None):
        message = description if source is None else f"{description}: {source}"
        super().__init__(message)
        self.description = description
        self.source = source


class InvalidConfigError(SparesError):
    pass


# Delimiters

class DelimiterError(SparesError):
    message = "Delimiter error."

    def __init__(self, src: str = "", at: Optional[Span] = None):
        super().__init__(self.message)
        self.src = src
        self.at = at


class UnequalMatchesError(DelimiterError):
    message = "Unequal number of start and end delimiters."


class StartMatchNotFoundError(DelimiterError):
    message = "Start delimiter was not found."


class EndMatchNotFoundError(DelimiterError):
    message = "End delimiter was not found."


# Parsers

class ParserError(SparesError):
    pass


class ParserNotFoundError(ParserError):
    def __init__(self, name: str):
        super().__init__(f"No parser named `{name}` was found.")
        self.name = name


class FailedToGuessParserError(ParserError):
    def __init__(self, reason: str):
        super().__init__(f"Failed to guess parser. {reason}")
        self.reason = reason


# Cards

class CardError(SparesError):
    pass


class CardNotFoundError(CardError):
    def __init__(self, src: str = ""):
        super().__init__("No cards were found.")
        self.src = src


class MultipleDuplicateCardsError(CardError):
    def __init__(self, duplicates: List[List[int]]):
        super().__init__(
            "Multiple cards contain the same clozes: "
            + ", ".join(str(group) for group in duplicates)
        )
        self.duplicates = duplicates


class SameGroupingNestedClozesError(CardError):
    def __init__(self, src: str, cloze_1: Span, cloze_2: Span):
        super().__init__("Clozes in the same grouping can not be nested.")
        self.src = src
        self.cloze_1 = cloze_1
        self.cloze_2 = cloze_2


class MissingFieldError(CardError):
    def __init__(self, name: str):
        super().__init__(f"Missing field: {name}.")
        self.name = name


class EmptyCardError(CardError):
    def __init__(self):
        super().__init__("Card is empty.")


class EmptyClozeError(CardError):
    def __init__(self, src: str, at: Span):
        super().__init__("Empty clozes are not allowed.")
        self.src = src
        self.at = at


class InvalidCardSettingsError(CardError):
    def __init__(self, description: str, src: str = "", at: Optional[Span] = None):
        super().__init__(f"Invalid cloze settings. {description}")
        self.description = description
        self.src = src
        self.at = at


class InvalidCardInputError(CardError):
    pass


# Tags

class TagError(SparesError):
    pass


class InvalidTagInputError(TagError):
    pass


# Schedulers

class SchedulerError(SparesError):
    pass


class SchedulerNotFoundError(SchedulerError):
    def __init__(self, name: str):
        super().__init__(f"No scheduler named `{name}` was found.")
        self.name = name


class AlreadyBuriedError(SchedulerError):
    def __init__(self):
        super().__init__("Card is already buried.")


class SuspendedCardError(SchedulerError):
    def __init__(self):
        super().__init__("Cannot bury suspended card.")


class InvalidStateError(SchedulerError):
    def __init__(self, state: int):
        super().__init__(f"Invalid card state `{state}`.")
        self.state = state


class InvalidRatingError(SchedulerError):
    def __init__(self, rating: int):
        super().__init__(f"Invalid rating `{rating}`.")
        self.rating = rating


# Notes

class NoteError(SparesError):
    pass


class NoteSettingsWarning(NoteError):
    """Advisory problem found while reading note settings. Collected, not raised."""

    def __init__(self, description: str, src: str = "", at: Optional[Span] = None):
        super().__init__(description)
        self.description = description
        self.src = src
        self.at = at


class InvalidNoteSettingsError(NoteError):
    def __init__(self, description: str, src: str = "", at: Optional[Span] = None,
                 advice: Optional[str] = None):
        super().__init__(description)
        self.description = description
        self.src = src
        self.at = at
        self.advice = advice


class NoteOtherError(NoteError):
    pass


# Search

class SearchError(SparesError):
    def __init__(self, message: str, span: Optional[Span] = None):
        super().__init__(message)
        self.span = span
