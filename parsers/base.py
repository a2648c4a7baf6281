from __future__ import annotations

import json
import logging
import re
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, List, NamedTuple, Optional, Tuple, Union

from errors import EndMatchNotFoundError, IoError, UnequalMatchesError

logger = logging.getLogger(__name__)

NOTE_START_COMMENT = "spares: note start"
NOTE_END_COMMENT = "spares: note end"


class Span(NamedTuple):
    """Half-open range into a note's text.

    Offsets index the Python string, so they count code points rather than
    UTF-8 bytes and can be used to slice the text directly.
    """

    start: int
    end: int

    def is_empty(self) -> bool:
        return self.start == self.end

    def of(self, text: str) -> str:
        return text[self.start:self.end]


EMPTY_SPAN = Span(0, 0)


def raise_unclosed(text: str, openers: List[Span]) -> None:
    """Raise for cloze start delimiters left without an end delimiter."""
    if len(openers) == 1:
        raise EndMatchNotFoundError(text, openers[0])
    if openers:
        raise UnequalMatchesError(text, openers[0])


@dataclass(frozen=True)
class ClozeMatch:
    start_match: Span
    end_match: Span
    # Empty when the cloze carries no settings
    settings_match: Span = EMPTY_SPAN


class CardSide(str, Enum):
    FRONT = "front"
    BACK = "back"


@dataclass(frozen=True)
class ReadWriteValue:
    """A settings token written one way but accepted under several spellings."""

    write: str
    read: Tuple[str, ...] = ()

    def matches_read(self, value: str) -> bool:
        if not self.read:
            return value == self.write
        return value in self.read


@dataclass(frozen=True)
class NoteSettingsKeys:
    note_id: ReadWriteValue = ReadWriteValue("note-id")
    action: ReadWriteValue = ReadWriteValue("action")
    action_add: ReadWriteValue = ReadWriteValue("add")
    action_update: ReadWriteValue = ReadWriteValue("update")
    action_delete: ReadWriteValue = ReadWriteValue("delete")
    tags: ReadWriteValue = ReadWriteValue("tags", ("tags", "t"))
    keywords: ReadWriteValue = ReadWriteValue("keywords", ("keywords", "k"))
    is_suspended: ReadWriteValue = ReadWriteValue("is-suspended")
    front_conceal: ReadWriteValue = ReadWriteValue("front-conceal")
    back_reveal: ReadWriteValue = ReadWriteValue("back-reveal")
    custom_data: ReadWriteValue = ReadWriteValue("custom-data")
    global_settings_prefix: ReadWriteValue = ReadWriteValue("g-")
    settings_delim: str = ";"
    settings_key_value_delim: str = ":"


@dataclass(frozen=True)
class ClozeSettingsKeys:
    orders: ReadWriteValue = ReadWriteValue("o")
    grouping: ReadWriteValue = ReadWriteValue("g")
    include_reverse: ReadWriteValue = ReadWriteValue("r")
    reverse_only: ReadWriteValue = ReadWriteValue("ro")
    is_suspended: ReadWriteValue = ReadWriteValue("s", ("s", "suspend"))
    hint: ReadWriteValue = ReadWriteValue("h", ("h", "hint"))
    hidden_no_answer: ReadWriteValue = ReadWriteValue("hide", ("hide", "no-answer"))
    front_conceal: ReadWriteValue = ReadWriteValue("f", ("f", "front-conceal"))
    back_reveal: ReadWriteValue = ReadWriteValue("b", ("b", "back-reveal"))


# Cloze replacements

@dataclass(frozen=True)
class ToAnswer:
    hint: Optional[str] = None


@dataclass(frozen=True)
class NotToAnswer:
    pass


@dataclass(frozen=True)
class Reveal:
    text: str


HiddenReplacement = Union[ToAnswer, NotToAnswer]
ClozeReplacement = Union[ToAnswer, NotToAnswer, Reveal]


# Note parts

@dataclass(frozen=True)
class SurroundingData:
    text: str


@dataclass(frozen=True)
class ClozeStart:
    text: str


@dataclass(frozen=True)
class ClozeEnd:
    text: str


@dataclass(frozen=True)
class ClozeData:
    text: str
    replacement: HiddenReplacement


NotePart = Union[SurroundingData, ClozeStart, ClozeEnd, ClozeData]


class Parser(ABC):
    """A note syntax: how clozes, settings and links are written in a file type."""

    name: str = ""
    file_extension: str = ""
    note_settings_keys = NoteSettingsKeys()
    cloze_settings_keys = ClozeSettingsKeys()

    @abstractmethod
    def get_clozes(self, text: str) -> List[ClozeMatch]:
        """All clozes in the text, outer before inner, left to right."""

    @abstractmethod
    def get_linked_notes(self, text: str) -> List[Span]:
        """Spans of the keywords referencing other notes."""

    @abstractmethod
    def get_settings(self, text: str) -> List[Span]:
        """Spans of the bodies of note settings blocks."""

    @abstractmethod
    def construct_cloze(self, settings: str) -> Tuple[str, str]:
        """Opening and closing delimiters for a cloze carrying `settings`."""

    @abstractmethod
    def construct_setting(self, data: str) -> str:
        pass

    @abstractmethod
    def construct_comment(self, data: str) -> str:
        pass

    @abstractmethod
    def construct_cloze_replacement(self, replacement: ClozeReplacement, side: CardSide) -> str:
        pass

    @abstractmethod
    def render_command(self, source: Path, output: Path) -> List[str]:
        """The external command that renders `source` into `output`."""

    card_separator = "\n"

    def get_notes_data(self, text: str) -> List[Span]:
        """Spans of the note bodies between the note start and end comments."""
        start = re.escape(self.construct_comment(NOTE_START_COMMENT))
        end = re.escape(self.construct_comment(NOTE_END_COMMENT).rstrip("\n"))
        pattern = re.compile(f"(?s){start}(.*?)\n{end}")
        return [Span(match.start(1), match.end(1)) for match in pattern.finditer(text)]

    def display_card(self, parts: Iterable[NotePart], side: CardSide) -> str:
        """Text of one side of a card. Delimiters are dropped and clozes replaced."""
        pieces: List[str] = []
        for part in parts:
            if isinstance(part, SurroundingData):
                pieces.append(part.text)
            elif isinstance(part, ClozeData):
                replacement: ClozeReplacement = part.replacement
                if side == CardSide.BACK and isinstance(replacement, ToAnswer):
                    replacement = Reveal(part.text)
                pieces.append(self.construct_cloze_replacement(replacement, side))
        return "".join(pieces)

    def construct_note_file(self, note_id: int, data: str, keywords: List[str],
                            tags: List[str], custom_data: dict) -> str:
        keys = self.note_settings_keys
        kv = keys.settings_key_value_delim
        lines = [
            self.construct_setting(f"{keys.note_id.write}{kv} {note_id}"),
            self.construct_setting(f"{keys.keywords.write}{kv} {', '.join(keywords)}"),
            self.construct_setting(f"{keys.tags.write}{kv} {', '.join(tags)}"),
        ]
        if custom_data:
            lines.append(self.construct_setting(
                f"{keys.custom_data.write}{kv} {json.dumps(custom_data)}"
            ))
        lines.extend([
            "\n",
            self.construct_comment(NOTE_START_COMMENT),
            data,
            "\n",
            self.construct_comment(NOTE_END_COMMENT),
        ])
        return "".join(lines)

    def construct_card_file(self, note_id: int, parts: Iterable[NotePart], side: CardSide,
                            keywords: List[str], tags: List[str]) -> str:
        kv = self.note_settings_keys.settings_key_value_delim
        lines = [f"- note-id{kv} {note_id}"]
        if keywords:
            lines.append(f"- keywords{kv} {', '.join(keywords)}")
        lines.extend([
            f"- tags{kv} {', '.join(tags)}",
            self.card_separator,
            self.display_card(parts, side),
        ])
        return "\n".join(lines)

    def render_file(self, source: Path, output: Path) -> None:
        """Run the external renderer. Failures raise IoError and can be retried."""
        command = self.render_command(source, output)
        logger.debug("Rendering %s with %s", source, command[0])
        try:
            result = subprocess.run(command, capture_output=True, text=True, check=False)
        except OSError as exc:
            raise IoError(f"Failed to run {command[0]} command", exc) from exc
        if result.returncode != 0:
            raise IoError(f"{command[0]} failed to render {source}: {result.stderr.strip()}")
