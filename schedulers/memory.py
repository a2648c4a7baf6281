"""FSRS-5 memory model.

Stability is in days, difficulty in `[1, 10]`. Retrievability after `t` days
follows the power forgetting curve `(1 + FACTOR * t / S) ** DECAY`.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Tuple

from models import Rating

DEFAULT_WEIGHTS = (
    0.4072, 1.1829, 3.1262, 15.4722, 7.2102, 0.5316, 1.0651, 0.0234, 1.616, 0.1544,
    1.0824, 1.9813, 0.0953, 0.2975, 2.2042, 0.2407, 2.9466, 0.5034, 0.6567,
)
DECAY = -0.5
FACTOR = 19 / 81


def forgetting_curve(elapsed_days: float, stability: float) -> float:
    return (1 + FACTOR * elapsed_days / stability) ** DECAY


@dataclass(frozen=True)
class FsrsParameters:
    w: Tuple[float, ...] = DEFAULT_WEIGHTS
    maximum_interval: int = 36500

    def init_stability(self, rating: int) -> float:
        return max(self.w[rating - 1], 0.1)

    def init_difficulty(self, rating: int) -> float:
        return self.w[4] - math.exp(self.w[5] * (rating - 1)) + 1

    def next_difficulty(self, difficulty: float, rating: int) -> float:
        delta = -self.w[6] * (rating - 3)
        damped = difficulty + delta * (10 - difficulty) / 9
        reverted = self.w[7] * self.init_difficulty(Rating.EASY) + (1 - self.w[7]) * damped
        return min(max(reverted, 1.0), 10.0)

    def next_recall_stability(self, difficulty: float, stability: float, retrievability: float,
                              rating: int) -> float:
        hard_penalty = self.w[15] if rating == Rating.HARD else 1.0
        easy_bonus = self.w[16] if rating == Rating.EASY else 1.0
        return stability * (
            1
            + math.exp(self.w[8])
            * (11 - difficulty)
            * stability ** -self.w[9]
            * (math.exp((1 - retrievability) * self.w[10]) - 1)
            * hard_penalty
            * easy_bonus
        )

    def next_forget_stability(self, difficulty: float, stability: float,
                              retrievability: float) -> float:
        return (
            self.w[11]
            * difficulty ** -self.w[12]
            * ((stability + 1) ** self.w[13] - 1)
            * math.exp((1 - retrievability) * self.w[14])
        )

    def next_short_term_stability(self, stability: float, rating: int) -> float:
        return stability * math.exp(self.w[17] * (rating - 3 + self.w[18]))

    def raw_interval(self, stability: float, desired_retention: float) -> float:
        """Days until retrievability falls to `desired_retention`."""
        return stability / FACTOR * (desired_retention ** (1 / DECAY) - 1)


