"""Read notes and their settings blocks out of a note file."""
from __future__ import annotations

import json
import logging
from copy import deepcopy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from errors import (
    CardNotFoundError,
    InvalidNoteSettingsError,
    NoteSettingsWarning,
    SparesError,
)
from .base import Parser, Span
from .cards import add_order_to_note_data, get_cards, note_text, validate_cards
from .clozes import BackReveal, Defaults, FrontConceal, get_settings_pairs, parse_list

logger = logging.getLogger(__name__)

TODO_MARKER = "TODO"


class NoteAction(str, Enum):
    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class NoteImportAction:
    action: NoteAction
    note_id: Optional[int] = None


@dataclass
class NoteSettings:
    action: Optional[NoteAction] = None
    note_id: Optional[int] = None
    tags: List[str] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    is_suspended: bool = False
    front_conceal: FrontConceal = FrontConceal.ONLY_GROUPING
    back_reveal: BackReveal = BackReveal.FULL_NOTE
    custom_data: Dict[str, Any] = field(default_factory=dict)

    def defaults(self) -> Defaults:
        return self.front_conceal, self.back_reveal

    def import_action(self) -> Tuple[NoteImportAction, List[NoteSettingsWarning]]:
        """Resolve the action and note id pair. Raises InvalidNoteSettingsError when unusable."""
        warnings: List[NoteSettingsWarning] = []
        action, note_id = self.action, self.note_id
        if note_id is None:
            if action in (None, NoteAction.ADD):
                return NoteImportAction(NoteAction.ADD), warnings
            verb = "editing" if action == NoteAction.UPDATE else "deleting"
            raise InvalidNoteSettingsError(f"Note id is needed for {verb} a note.")
        if action == NoteAction.ADD:
            warnings.append(NoteSettingsWarning("Note id is not needed for adding a note."))
            return NoteImportAction(NoteAction.ADD), warnings
        if action == NoteAction.DELETE:
            return NoteImportAction(NoteAction.DELETE, note_id), warnings
        return NoteImportAction(NoteAction.UPDATE, note_id), warnings


@dataclass
class ParsedNote:
    span: Span
    settings: NoteSettings
    action: Optional[NoteImportAction] = None
    # None when the note could not be processed
    data: Optional[str] = None
    cards_count: int = 0
    linked_notes: List[str] = field(default_factory=list)
    warnings: List[NoteSettingsWarning] = field(default_factory=list)
    errors: List[SparesError] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def parse_settings_list(current: List[str], value: str, warnings: List[NoteSettingsWarning],
                        sort: bool) -> List[str]:
    """Apply a comma list to `current`. `-x` removes `x` and `-*` clears the list."""
    items = list(current)
    for item in parse_list(value):
        if item == "-*":
            items = []
        elif item.startswith("-"):
            name = item[1:]
            if name in items:
                items.remove(name)
            else:
                warnings.append(NoteSettingsWarning(
                    f"`{name}` can not be removed since it is not present."
                ))
        elif item not in items:
            items.append(item)
    if sort:
        items.sort()
    return items


def apply_note_setting(settings: NoteSettings, key: str, value: str, parser: Parser,
                       warnings: List[NoteSettingsWarning]) -> None:
    keys = parser.note_settings_keys
    if keys.note_id.matches_read(key):
        try:
            settings.note_id = int(value)
        except ValueError as exc:
            raise InvalidNoteSettingsError(f"The note id `{value}` is invalid.") from exc
    elif keys.action.matches_read(key):
        for action, token in (
            (NoteAction.ADD, keys.action_add),
            (NoteAction.UPDATE, keys.action_update),
            (NoteAction.DELETE, keys.action_delete),
        ):
            if token.matches_read(value):
                settings.action = action
                break
        else:
            raise InvalidNoteSettingsError(f"The action `{value}` is not supported.")
    elif keys.tags.matches_read(key):
        settings.tags = parse_settings_list(settings.tags, value, warnings, sort=True)
    elif keys.keywords.matches_read(key):
        settings.keywords = parse_settings_list(settings.keywords, value, warnings, sort=False)
        if TODO_MARKER in settings.keywords:
            warnings.append(NoteSettingsWarning(f"Found `{TODO_MARKER}` in keywords."))
    elif keys.is_suspended.matches_read(key):
        settings.is_suspended = value != "n"
    elif keys.front_conceal.matches_read(key):
        try:
            settings.front_conceal = FrontConceal.parse(value)
        except ValueError as exc:
            raise InvalidNoteSettingsError(f"The front conceal `{value}` is invalid. {exc}") from exc
    elif keys.back_reveal.matches_read(key):
        try:
            settings.back_reveal = BackReveal.parse(value)
        except ValueError as exc:
            raise InvalidNoteSettingsError(f"The back reveal `{value}` is invalid. {exc}") from exc
    elif keys.custom_data.matches_read(key):
        try:
            custom_data = json.loads(value)
        except json.JSONDecodeError as exc:
            raise InvalidNoteSettingsError(
                f"The custom data `{value}` is not valid JSON.",
                advice="Quote keys and strings with double quotes.",
            ) from exc
        if not isinstance(custom_data, dict):
            raise InvalidNoteSettingsError("Custom data must be a JSON object.")
        settings.custom_data.update(custom_data)
    else:
        settings.custom_data[key] = value


def parse_note_settings(text: str, span: Span, parser: Parser, global_settings: NoteSettings,
                        local_pairs: List[Tuple[str, str]],
                        warnings: List[NoteSettingsWarning]) -> None:
    """Apply `g-` prefixed settings to `global_settings` and queue the rest in `local_pairs`.

    Global settings also apply to the note following the block.
    """
    keys = parser.note_settings_keys
    prefix = keys.global_settings_prefix.write
    try:
        pairs = get_settings_pairs(text, span, keys)
    except ValueError as exc:
        raise InvalidNoteSettingsError(str(exc), text, span) from exc
    for key, value in pairs:
        try:
            if key.startswith(prefix):
                apply_note_setting(global_settings, key[len(prefix):], value, parser, warnings)
            else:
                local_pairs.append((key, value))
        except InvalidNoteSettingsError as exc:
            exc.src, exc.at = text, span
            raise


def complete_note(parser: Parser, note: ParsedNote, raw: str) -> None:
    """Strip, order and validate one note's text. Problems are recorded on the note."""
    if TODO_MARKER in raw:
        note.warnings.append(NoteSettingsWarning(f"Found `{TODO_MARKER}` in note."))
    data = raw.strip()
    if note.action.action == NoteAction.DELETE:
        note.data = data
        return
    if note.action.action == NoteAction.ADD:
        data, _ = add_order_to_note_data(parser, data)
    cards = get_cards(parser, data, defaults=note.settings.defaults())
    validate_cards(cards)
    if not cards:
        raise CardNotFoundError(data)
    note.data = note_text(cards[0].parts)
    note.cards_count = len(cards)
    note.linked_notes = [span.of(note.data) for span in parser.get_linked_notes(note.data)]


def get_notes(parser: Parser, text: str) -> List[ParsedNote]:
    """Every note in a note file with its settings, cards count and linked keywords.

    A note that fails keeps its errors and a None `data`; the other notes of
    the file are still processed.
    """
    settings_spans = parser.get_settings(text)
    global_settings = NoteSettings()
    notes: List[ParsedNote] = []
    previous_end = 0
    for note_span in parser.get_notes_data(text):
        warnings: List[NoteSettingsWarning] = []
        errors: List[SparesError] = []
        local_pairs: List[Tuple[str, str]] = []
        for span in settings_spans:
            if previous_end <= span.start and span.end < note_span.start:
                try:
                    parse_note_settings(text, span, parser, global_settings, local_pairs, warnings)
                except InvalidNoteSettingsError as exc:
                    errors.append(exc)
        local = deepcopy(global_settings)
        for key, value in local_pairs:
            try:
                apply_note_setting(local, key, value, parser, warnings)
            except InvalidNoteSettingsError as exc:
                errors.append(exc)

        note = ParsedNote(span=note_span, settings=local, warnings=warnings, errors=errors)
        if not errors:
            try:
                note.action, action_warnings = local.import_action()
                note.warnings.extend(action_warnings)
                complete_note(parser, note, note_span.of(text))
            except SparesError as exc:
                note.data = None
                note.errors.append(exc)
        if note.errors:
            logger.debug("Note at %s has %d errors", note_span, len(note.errors))
        notes.append(note)
        previous_end = note_span.end
    return notes
