"""Build the cards of a note from its clozes."""
from __future__ import annotations

import itertools
from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from errors import (
    EmptyCardError,
    EmptyClozeError,
    InvalidCardInputError,
    InvalidCardSettingsError,
    MissingFieldError,
    MultipleDuplicateCardsError,
    SameGroupingNestedClozesError,
)
from .base import (
    CardSide,
    ClozeData,
    ClozeEnd,
    ClozeStart,
    NotePart,
    NotToAnswer,
    Parser,
    Span,
    SurroundingData,
    ToAnswer,
)
from .clozes import (
    DEFAULTS,
    BackReveal,
    BackType,
    ClozeGrouping,
    ClozeGroupingSettings,
    ClozeSettings,
    Defaults,
    FrontConceal,
    GroupingKind,
    construct_cloze_string,
    parse_card_settings,
)


@dataclass
class ParsedCloze:
    index: int
    start_delim: Span
    end_delim: Span
    settings: ClozeSettings

    @property
    def span(self) -> Span:
        return Span(self.start_delim.start, self.end_delim.end)

    def encloses(self, other: "ParsedCloze") -> bool:
        return (
            self.start_delim.start < other.start_delim.start
            and other.end_delim.end <= self.end_delim.end
        )

    def is_disjoint(self, other: "ParsedCloze") -> bool:
        return (
            other.end_delim.end <= self.start_delim.start
            or other.start_delim.start >= self.end_delim.end
        )


@dataclass
class CardData:
    order: Optional[int]
    grouping: ClozeGrouping
    is_suspended: Optional[bool]
    parts: List[NotePart]
    front_conceal: FrontConceal
    back_reveal: BackReveal
    back_type: BackType


Entry = Tuple[ParsedCloze, ClozeGroupingSettings]
ClozeGroupings = List[Tuple[ParsedCloze, List[ClozeGroupingSettings]]]


def _first_visible(card: Sequence[Entry]) -> Entry:
    return next(entry for entry in card if not entry[1].hidden)


def _parse_clozes(parser: Parser, data: str, defaults: Defaults) -> ClozeGroupings:
    grouping_numbers = itertools.count(1)
    parsed: ClozeGroupings = []
    for index, match in enumerate(parser.get_clozes(data)):
        settings, groupings = parse_card_settings(
            data,
            match.settings_match,
            grouping_numbers,
            parser.note_settings_keys,
            parser.cloze_settings_keys,
            defaults,
        )
        if match.start_match.end == match.end_match.start:
            raise EmptyClozeError(data, (match.start_match.start, match.end_match.end))
        cloze = ParsedCloze(index, match.start_match, match.end_match, settings)
        parsed.append((cloze, groupings))
    return parsed


def group_clozes(parsed: ClozeGroupings, data: str) -> Tuple[List[List[Entry]], int]:
    """Bucket clozes into one card per grouping and validate the buckets.

    Returns the cards and the number of distinct groupings.
    """
    names: List[ClozeGrouping] = []
    for _, groupings in parsed:
        for current in groupings:
            if current.grouping.kind != GroupingKind.ALL and current.grouping not in names:
                names.append(current.grouping)
    if not names:
        names.append(ClozeGrouping.all())

    buckets: Dict[ClozeGrouping, List[Entry]] = {name: [] for name in names}
    for cloze, groupings in parsed:
        own = {current.grouping for current in groupings}
        for current in groupings:
            if current.grouping.kind == GroupingKind.ALL and current.grouping not in buckets:
                for name in names:
                    if name not in own:
                        buckets[name].append((cloze, current.copy(grouping=name)))
            else:
                buckets[current.grouping].append((cloze, current.copy()))
    cards = [card for card in buckets.values() if card]
    for card in cards:
        card.sort(key=lambda entry: entry[0].index)

    for card in cards:
        for (previous, _), (following, _) in zip(card, card[1:]):
            if following.start_delim.start < previous.end_delim.end:
                raise SameGroupingNestedClozesError(data, previous.span, following.span)

    counts = Counter(
        tuple((cloze.index, current.hidden_no_answer) for cloze, current in card)
        for card in cards
    )
    duplicates = [[index for index, _ in key] for key, count in counts.items() if count > 1]
    if duplicates:
        raise MultipleDuplicateCardsError(duplicates)
    return cards, len(names)


def _boil_up(cards: List[List[Entry]], data: str, defaults: Defaults) -> None:
    """Move card level settings found on any cloze of a card to its first cloze."""
    for card in cards:
        default = ClozeGroupingSettings.default(card[0][1].grouping, defaults)
        boiled = default.copy()
        for cloze, current in card:
            if current.hidden:
                continue
            if current.include_forward_card != default.include_forward_card:
                boiled.include_forward_card = current.include_forward_card
                current.include_forward_card = default.include_forward_card
            if current.include_backward_card != default.include_backward_card:
                boiled.include_backward_card = current.include_backward_card
                current.include_backward_card = default.include_backward_card
            if current.is_suspended is not None:
                if boiled.is_suspended is not None and boiled.is_suspended != current.is_suspended:
                    raise InvalidCardSettingsError(
                        f"Conflicting suspend settings in grouping `{current.grouping}`.",
                        data,
                        cloze.span,
                    )
                boiled.is_suspended = current.is_suspended
                current.is_suspended = None
            if current.front_conceal != default.front_conceal:
                boiled.front_conceal = current.front_conceal
                current.front_conceal = default.front_conceal
            if current.back_reveal != default.back_reveal:
                boiled.back_reveal = current.back_reveal
                current.back_reveal = default.back_reveal

        _, first = _first_visible(card)
        first.include_forward_card = boiled.include_forward_card
        first.include_backward_card = boiled.include_backward_card
        first.is_suspended = boiled.is_suspended
        first.front_conceal = boiled.front_conceal
        first.back_reveal = boiled.back_reveal


def _card_views(
    cards: List[List[Entry]], parsed: ClozeGroupings, defaults: Defaults
) -> List[Tuple[FrontConceal, BackReveal]]:
    """Front conceal and back reveal of each card, inheriting from enclosing clozes."""
    explicit_front: Dict[int, FrontConceal] = {}
    explicit_back: Dict[int, BackReveal] = {}
    for cloze, groupings in parsed:
        for current in groupings:
            if current.front_conceal != defaults[0]:
                explicit_front.setdefault(cloze.index, current.front_conceal)
            if current.back_reveal != defaults[1]:
                explicit_back.setdefault(cloze.index, current.back_reveal)

    def inherit(card: List[Entry], explicit: Dict[int, object], own, default):
        if own != default:
            return own
        for cloze, current in card:
            if current.hidden:
                continue
            ancestors = [
                other for other, _ in parsed
                if other.index in explicit and other.encloses(cloze)
            ]
            if ancestors:
                nearest = max(ancestors, key=lambda other: other.start_delim.start)
                return explicit[nearest.index]
        return own

    views = []
    for card in cards:
        _, first = _first_visible(card)
        views.append((
            inherit(card, explicit_front, first.front_conceal, defaults[0]),
            inherit(card, explicit_back, first.back_reveal, defaults[1]),
        ))
    return views


def _apply_conceal_and_reveal(
    cards: List[List[Entry]],
    views: List[Tuple[FrontConceal, BackReveal]],
    parsed: ClozeGroupings,
    defaults: Defaults,
) -> None:
    """Add the clozes of other groupings as hidden clozes where a card asks for it."""
    for card, (front_conceal, back_reveal) in zip(cards, views):
        if (front_conceal != FrontConceal.ALL_GROUPINGS
                and back_reveal != BackReveal.ONLY_ANSWERED):
            continue
        members = [cloze for cloze, _ in card]
        member_indices = {cloze.index for cloze in members}
        candidates = [
            cloze for cloze, _ in parsed
            if cloze.index not in member_indices
            and all(member.is_disjoint(cloze) for member in members)
        ]
        outermost = [
            cloze for cloze in candidates
            if not any(other.encloses(cloze) for other in candidates)
        ]
        hidden = ClozeGroupingSettings.default(card[0][1].grouping, defaults)
        hidden.hidden_no_answer = True
        hidden.hidden = True
        card.extend((cloze, hidden.copy()) for cloze in outermost)
        card.sort(key=lambda entry: entry[0].index)


def _add_orders(cards: List[List[Entry]]) -> None:
    """Number cards sequentially through `o` on the first cloze of each card."""
    seen = set()
    current_order = 1
    for card in cards:
        cloze, _ = _first_visible(card)
        if cloze.index in seen:
            continue
        for other in cards:
            other_cloze, settings = _first_visible(other)
            if other_cloze.index != cloze.index:
                continue
            count = 2 if settings.include_forward_card and settings.include_backward_card else 1
            settings.orders = list(range(current_order, current_order + count))
            current_order += count
        seen.add(cloze.index)


def _rewrite_delimiters(
    cards: List[List[Entry]], data: str, parser: Parser, defaults: Defaults
) -> str:
    """Write the canonical settings string into every cloze and shift the offsets."""
    edits: List[Tuple[Span, str]] = []
    clozes: Dict[int, ParsedCloze] = {}
    for card in cards:
        for cloze, _ in card:
            if cloze.index in clozes:
                continue
            clozes[cloze.index] = cloze
            groupings = [
                current for other in cards for other_cloze, current in other
                if other_cloze.index == cloze.index
            ]
            settings_string = construct_cloze_string(
                cloze.settings,
                groupings,
                parser.cloze_settings_keys,
                parser.note_settings_keys,
                defaults,
            )
            prefix, suffix = parser.construct_cloze(settings_string)
            edits.append((cloze.start_delim, prefix))
            edits.append((cloze.end_delim, suffix))

    edits.sort(key=lambda edit: edit[0].start)
    pieces: List[str] = []
    moved: Dict[Span, Span] = {}
    cursor = shift = 0
    for span, text in edits:
        pieces.append(data[cursor:span.start])
        pieces.append(text)
        moved[span] = Span(span.start + shift, span.start + shift + len(text))
        shift += len(text) - (span.end - span.start)
        cursor = span.end
    pieces.append(data[cursor:])

    for cloze in clozes.values():
        cloze.start_delim = moved[cloze.start_delim]
        cloze.end_delim = moved[cloze.end_delim]
    return "".join(pieces)


def _card_parts(card: List[Entry], data: str, hint: Optional[str], reverse: bool) -> List[NotePart]:
    def hide(text: str, hidden: bool) -> NotePart:
        return ClozeData(text, NotToAnswer() if hidden else ToAnswer(hint))

    def show(text: str, hidden: bool) -> NotePart:
        return SurroundingData(text)

    outside, inside = (hide, show) if reverse else (show, hide)
    parts: List[NotePart] = []
    for i, (cloze, current) in enumerate(card):
        hidden = current.hidden_no_answer
        if i == 0 and cloze.start_delim.start > 0:
            parts.append(outside(data[:cloze.start_delim.start], hidden))
        parts.append(ClozeStart(cloze.start_delim.of(data)))
        parts.append(inside(data[cloze.start_delim.end:cloze.end_delim.start], hidden))
        parts.append(ClozeEnd(cloze.end_delim.of(data)))
        end = card[i + 1][0].start_delim.start if i + 1 < len(card) else len(data)
        if cloze.end_delim.end < end:
            parts.append(outside(data[cloze.end_delim.end:end], hidden))
    return parts


def get_cards(
    parser: Parser,
    data: str,
    add_order: bool = False,
    defaults: Defaults = DEFAULTS,
) -> List[CardData]:
    """Cards of a note, in the order their orders are assigned.

    The parts of every card span the whole note text, with every cloze
    rewritten to its canonical settings string. With `add_order` the first
    cloze of each card also receives sequential `o` orders.
    """
    parsed = _parse_clozes(parser, data, defaults)
    if not parsed:
        return []
    cards_raw, groupings_count = group_clozes(parsed, data)
    _boil_up(cards_raw, data, defaults)
    views = _card_views(cards_raw, parsed, defaults)
    _apply_conceal_and_reveal(cards_raw, views, parsed, defaults)
    if add_order:
        _add_orders(cards_raw)
    data = _rewrite_delimiters(cards_raw, data, parser, defaults)

    cards: List[CardData] = []
    for card, (front_conceal, back_reveal) in zip(cards_raw, views):
        first_cloze, first = _first_visible(card)
        orders = iter(first.orders or [])
        directions = []
        if first.include_forward_card:
            directions.append(False)
        if first.include_backward_card:
            directions.append(True)
        for reverse in directions:
            parts = _card_parts(card, data, first_cloze.settings.hint, reverse)
            replacements = [part.replacement for part in parts if isinstance(part, ClozeData)]
            if replacements and all(isinstance(r, NotToAnswer) for r in replacements):
                raise InvalidCardInputError(
                    f"All clozes cannot be hidden. See grouping `{first.grouping}`."
                )
            if (front_conceal == FrontConceal.ONLY_GROUPING
                    and back_reveal == BackReveal.ONLY_ANSWERED
                    and groupings_count > 1):
                raise InvalidCardInputError(
                    "The front and back cannot both be set to `OnlyGrouping` if there is more "
                    "than 1 grouping. This would mean the other groupings are visible on the "
                    "front, but hidden on the back, even though they are not tested. Either "
                    "change `front_conceal`, change `back_reveal`, or remove a grouping."
                )
            cards.append(CardData(
                order=next(orders, None),
                grouping=first.grouping,
                is_suspended=first.is_suspended,
                parts=parts,
                front_conceal=front_conceal,
                back_reveal=back_reveal,
                back_type=BackType.from_back_reveal(back_reveal, groupings_count),
            ))
    return cards


def note_text(parts: Sequence[NotePart]) -> str:
    """The note text a card was built from."""
    return "".join(part.text for part in parts)


def add_order_to_note_data(parser: Parser, data: str) -> Tuple[str, int]:
    cards = get_cards(parser, data, add_order=True)
    if not cards:
        return data, 0
    return note_text(cards[0].parts), len(cards)


def validate_cards(cards: Sequence[CardData]) -> None:
    for card in cards:
        if not card.parts:
            raise EmptyCardError()
        if not any(isinstance(part, SurroundingData) for part in card.parts):
            raise MissingFieldError("Surrounding data")
        if not any(isinstance(part, ClozeData) for part in card.parts):
            raise MissingFieldError("Cloze")


def render_card_side(parser: Parser, card: CardData, side: CardSide) -> str:
    return parser.display_card(card.parts, side)
