from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from errors import InvalidCardInputError


@dataclass
class MatchCardsResult:
    # (current order, new order)
    moves: List[Tuple[int, int]] = field(default_factory=list)
    deletes: List[int] = field(default_factory=list)
    creates: List[int] = field(default_factory=list)


def _join(orders: Sequence[Optional[int]]) -> str:
    return ", ".join(str(order) for order in orders if order is not None)


def match_cards(old: Sequence[Optional[int]], new: Sequence[Optional[int]]) -> MatchCardsResult:
    """Work out how the cards of a note moved when its text changed.

    `old` holds the current orders, always `1..N`. `new` holds, for each
    card of the edited note, the current order of the card it continues or
    None for a card that did not exist. Matched cards keep their rows and
    review history.

    >>> match_cards([1, 2, 3, 4], [1, 3, None, None, None, 2])
    MatchCardsResult(moves=[(3, 2), (2, 6)], deletes=[4], creates=[3, 4, 5])
    """
    if any(order is None for order in old):
        raise InvalidCardInputError(
            "Current cards do not all contain order. Current data is incorrect. "
            f"Found `{_join(old)}`"
        )
    expected = list(range(1, len(old) + 1))
    if list(old) != expected:
        raise InvalidCardInputError(
            f"Current cards do not all contain their expected order. Found orders `{_join(old)}` "
            f"when expecting sequential orders `{_join(expected)}`"
        )
    referenced = [order for order in new if order is not None]
    if any(not 1 <= order <= len(old) for order in referenced):
        raise InvalidCardInputError(
            "New cards do not all contain a valid order. They must all be within the range "
            f"[1, {len(old)}] (inclusive), but the new cards have order `{_join(new)}`."
        )
    if len(set(referenced)) != len(referenced):
        raise InvalidCardInputError(
            f"New cards reference the same card more than once: `{_join(new)}`."
        )

    result = MatchCardsResult()
    unchanged: List[int] = []
    padded = list(old) + [None] * max(0, len(new) - len(old))
    for new_index, (old_order, new_order) in enumerate(zip(padded, new), start=1):
        if old_order is not None and new_order is not None:
            if old_order == new_order:
                unchanged.append(old_order)
            else:
                result.moves.append((new_order, old_order))
        elif old_order is None and new_order is None:
            result.creates.append(new_index)
        elif new_order is not None:
            result.moves.append((new_order, new_index))
        else:
            result.creates.append(old_order)

    kept = {source for source, _ in result.moves} | set(unchanged)
    result.deletes = [order for order in old if order not in kept]
    return result
