"""Cloze settings strings: parsing them into groupings and writing them back."""
from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum, IntEnum
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple, TypeVar, Union

from errors import InvalidCardSettingsError
from .base import ClozeSettingsKeys, NoteSettingsKeys, Span

T = TypeVar("T")
Pair = Tuple[str, str]

ALL_GROUPINGS_VALUE = "*"


class FrontConceal(str, Enum):
    ONLY_GROUPING = ""
    ALL_GROUPINGS = "all"

    @classmethod
    def parse(cls, value: str) -> "FrontConceal":
        for member in cls:
            if member.value == value:
                return member
        raise ValueError(f"expected one of {[m.value for m in cls]}")


class BackReveal(str, Enum):
    FULL_NOTE = "n"
    ONLY_ANSWERED = "a"

    @classmethod
    def parse(cls, value: str) -> "BackReveal":
        if value == cls.FULL_NOTE.value:
            return cls.FULL_NOTE
        if value in (cls.ONLY_ANSWERED.value, "answered"):
            return cls.ONLY_ANSWERED
        raise ValueError("expected one of ['n', 'a', 'answered']")


class BackType(IntEnum):
    FULL_NOTE = 1
    ONLY_ANSWERED = 2

    @classmethod
    def from_back_reveal(cls, back_reveal: BackReveal, groupings_count: int) -> "BackType":
        # With a single grouping the answered clozes are the whole note
        if back_reveal == BackReveal.ONLY_ANSWERED and groupings_count != 1:
            return cls.ONLY_ANSWERED
        return cls.FULL_NOTE


Defaults = Tuple[FrontConceal, BackReveal]
DEFAULTS: Defaults = (FrontConceal.ONLY_GROUPING, BackReveal.FULL_NOTE)


class GroupingKind(str, Enum):
    ALL = "all"
    AUTO = "auto"
    CUSTOM = "custom"


@dataclass(frozen=True)
class ClozeGrouping:
    kind: GroupingKind
    value: Union[int, str, None] = None

    @classmethod
    def all(cls) -> "ClozeGrouping":
        return cls(GroupingKind.ALL)

    @classmethod
    def auto(cls, number: int) -> "ClozeGrouping":
        return cls(GroupingKind.AUTO, number)

    @classmethod
    def custom(cls, name: str) -> "ClozeGrouping":
        return cls(GroupingKind.CUSTOM, name)

    def __str__(self) -> str:
        if self.kind == GroupingKind.ALL:
            return ALL_GROUPINGS_VALUE
        if self.kind == GroupingKind.AUTO:
            return ""
        return str(self.value)


@dataclass
class ClozeSettings:
    """Settings that belong to the cloze rather than to one of its groupings."""

    hint: Optional[str] = None
    all_groupings: bool = False


@dataclass
class ClozeGroupingSettings:
    grouping: ClozeGrouping
    orders: Optional[List[int]] = None
    include_forward_card: bool = True
    include_backward_card: bool = False
    # None leaves an existing card's suspension untouched on update
    is_suspended: Optional[bool] = None
    hidden_no_answer: bool = False
    front_conceal: FrontConceal = FrontConceal.ONLY_GROUPING
    back_reveal: BackReveal = BackReveal.FULL_NOTE
    # Added by conceal/reveal, never serialized
    hidden: bool = False

    @classmethod
    def default(cls, grouping: ClozeGrouping, defaults: Defaults = DEFAULTS) -> "ClozeGroupingSettings":
        front_conceal, back_reveal = defaults
        return cls(grouping=grouping, front_conceal=front_conceal, back_reveal=back_reveal)

    def copy(self, **changes) -> "ClozeGroupingSettings":
        if self.orders is not None and "orders" not in changes:
            changes["orders"] = list(self.orders)
        return replace(self, **changes)


def get_settings_pairs(text: str, span: Span, keys: NoteSettingsKeys) -> List[Pair]:
    """Split `key:value;key:value` into trimmed pairs. Raises ValueError for malformed entries."""
    pairs: List[Pair] = []
    for entry in span.of(text).split(keys.settings_delim):
        if not entry.strip():
            continue
        parts = [part.strip() for part in entry.split(keys.settings_key_value_delim, 1)]
        if len(parts) != 2:
            raise ValueError(
                f"Found {len(parts)} parts when processing settings. Expected 2 parts."
            )
        pairs.append((parts[0], parts[1]))
    return pairs


def parse_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def split_following(items: Sequence[T], is_head: Callable[[T], bool]) -> List[List[T]]:
    """Split into runs where each matching item starts a new run. A leading run may lack a head."""
    runs: List[List[T]] = []
    for item in items:
        if is_head(item) or not runs:
            runs.append([item])
        else:
            runs[-1].append(item)
    return runs


def parse_grouping(value: str) -> List[ClozeGrouping]:
    values = [item.strip() for item in value.split(",")]
    if ALL_GROUPINGS_VALUE in values:
        return [ClozeGrouping.all()]
    return [ClozeGrouping.custom(item) for item in values]


def _parse_grouping_settings(
    pairs: List[Pair],
    settings: ClozeSettings,
    keys: ClozeSettingsKeys,
    defaults: Defaults,
    text: str,
    span: Span,
) -> ClozeGroupingSettings:
    def invalid(description: str) -> InvalidCardSettingsError:
        return InvalidCardSettingsError(description, text, span)

    include_reverse = reverse_only = False
    # The real grouping is filled in by the caller
    current = ClozeGroupingSettings.default(ClozeGrouping.all(), defaults)
    for key, value in pairs:
        if keys.include_reverse.matches_read(key):
            include_reverse = True
        elif keys.reverse_only.matches_read(key):
            reverse_only = True
        elif keys.is_suspended.matches_read(key):
            current.is_suspended = value != "n"
        elif keys.hint.matches_read(key):
            settings.hint = value
        elif keys.hidden_no_answer.matches_read(key):
            current.hidden_no_answer = value != "n"
        elif keys.front_conceal.matches_read(key):
            try:
                current.front_conceal = FrontConceal.parse(value)
            except ValueError as exc:
                raise invalid(f"The front conceal `{value}` is invalid. Error: {exc}") from exc
        elif keys.back_reveal.matches_read(key):
            try:
                current.back_reveal = BackReveal.parse(value)
            except ValueError as exc:
                raise invalid(f"The back reveal `{value}` is invalid. Error: {exc}") from exc
        elif keys.orders.matches_read(key):
            orders = []
            for item in value.split(","):
                try:
                    orders.append(int(item.strip()))
                except ValueError as exc:
                    raise invalid(f"The card order `{item}` is invalid. Error: {exc}") from exc
                if orders[-1] < 1:
                    raise invalid(f"The card order `{item}` is invalid. Error: must be positive")
            current.orders = orders
        else:
            raise invalid(f"The key `{key}` is not supported.")

    if include_reverse and reverse_only:
        raise invalid("`include reverse` and `reverse only` are mutually exclusive settings.")
    if include_reverse:
        current.include_backward_card = True
    elif reverse_only:
        current.include_forward_card = False
        current.include_backward_card = True
    return current


def parse_card_settings(
    text: str,
    span: Span,
    grouping_numbers: Iterator[int],
    note_keys: NoteSettingsKeys,
    keys: ClozeSettingsKeys,
    defaults: Defaults = DEFAULTS,
) -> Tuple[ClozeSettings, List[ClozeGroupingSettings]]:
    """Parse one cloze's settings string into its own settings and one entry per grouping.

    Settings following a `g` key belong to that grouping. Settings before the
    first `g` key apply to every grouping of the cloze. A cloze without any
    grouping gets an automatic one drawn from `grouping_numbers`.
    """
    try:
        pairs = get_settings_pairs(text, span, note_keys)
    except ValueError as exc:
        raise InvalidCardSettingsError(str(exc), text, span) from exc

    settings = ClozeSettings()
    is_grouping = lambda pair: keys.grouping.matches_read(pair[0])  # noqa: E731
    local_groups = [
        grouping
        for pair in pairs if is_grouping(pair)
        for grouping in parse_grouping(pair[1])
    ]
    runs = split_following(pairs, is_grouping)
    local_settings: Optional[List[Pair]] = None
    if runs and not is_grouping(runs[0][0]):
        local_settings = runs.pop(0)
        if not local_groups:
            local_groups.append(ClozeGrouping.auto(next(grouping_numbers)))
    if any(grouping.kind == GroupingKind.ALL for grouping in local_groups):
        settings.all_groupings = True

    grouped: Dict[ClozeGrouping, List[Pair]] = {}
    for run in runs:
        for grouping in parse_grouping(run[0][1]):
            grouped.setdefault(grouping, []).extend(run[1:])
    if local_settings is not None:
        for grouping in local_groups:
            grouped.setdefault(grouping, []).extend(local_settings)

    all_grouping_settings: List[ClozeGroupingSettings] = []
    for grouping, grouping_pairs in grouped.items():
        current = _parse_grouping_settings(grouping_pairs, settings, keys, defaults, text, span)
        current.grouping = grouping
        all_grouping_settings.append(current)
    if not all_grouping_settings:
        all_grouping_settings.append(
            ClozeGroupingSettings.default(ClozeGrouping.auto(next(grouping_numbers)), defaults)
        )
    return settings, all_grouping_settings


def construct_cloze_string(
    settings: ClozeSettings,
    grouping_settings: Sequence[ClozeGroupingSettings],
    keys: ClozeSettingsKeys,
    note_keys: NoteSettingsKeys,
    defaults: Defaults = DEFAULTS,
) -> str:
    """Serialize settings back to the canonical string. Suspension is never written."""
    kv = note_keys.settings_key_value_delim
    delim = note_keys.settings_delim
    parts: List[str] = []
    if settings.hint is not None:
        parts.append(f"{keys.hint.write}{kv}{settings.hint}")

    default = ClozeGroupingSettings.default(ClozeGrouping.all(), defaults)
    all_grouping_parts: List[str] = []
    only_groups: List[ClozeGrouping] = []
    if settings.all_groupings:
        all_grouping_parts.append(f"{keys.grouping.write}{kv}{ClozeGrouping.all()}")
    visible = [current for current in grouping_settings if not current.hidden]
    for index, current in enumerate(visible):
        grouping_parts: List[str] = []
        write_grouping = current.grouping.kind != GroupingKind.AUTO
        if write_grouping:
            grouping_parts.append(f"{keys.grouping.write}{kv}{current.grouping}")
        if current.orders is not None:
            orders = ",".join(str(order) for order in current.orders)
            grouping_parts.append(f"{keys.orders.write}{kv}{orders}")
        if current.include_forward_card and current.include_backward_card:
            grouping_parts.append(f"{keys.include_reverse.write}{kv}")
        if not current.include_forward_card and current.include_backward_card:
            grouping_parts.append(f"{keys.reverse_only.write}{kv}")
        if current.hidden_no_answer != default.hidden_no_answer:
            grouping_parts.append(f"{keys.hidden_no_answer.write}{kv}")
        if current.front_conceal != default.front_conceal:
            grouping_parts.append(f"{keys.front_conceal.write}{kv}{current.front_conceal.value}")
        if current.back_reveal != default.back_reveal:
            grouping_parts.append(f"{keys.back_reveal.write}{kv}{current.back_reveal.value}")

        # Bare groupings collapse into a single `g:a,b`
        if write_grouping and len(grouping_parts) == 1:
            if not settings.all_groupings:
                only_groups.append(current.grouping)
            grouping_parts = []
        is_last = index == len(visible) - 1
        if ((write_grouping and len(grouping_parts) > 1) or is_last) and only_groups:
            groups = ",".join(str(grouping) for grouping in only_groups)
            all_grouping_parts.append(f"{keys.grouping.write}{kv}{groups}")
            only_groups = []
        if grouping_parts:
            all_grouping_parts.append(delim.join(grouping_parts))
    if all_grouping_parts:
        parts.append(f"{delim} ".join(all_grouping_parts))
    return delim.join(parts)
