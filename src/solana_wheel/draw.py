from __future__ import annotations

import logging
import random
from collections import deque
from typing import Deque, Iterable, List, Optional, Sequence, Tuple, TypeVar

from .project_constants import WINNER_COOLDOWN_SPINS

log = logging.getLogger(__name__)

# Anything with `address` and `amount` attributes (holders.Segment in practice)
C = TypeVar("C")


class InvalidInput(ValueError):
    pass


class WeightedSelector:
    """
    Draws one candidate with probability proportional to its amount.

    Recent winners are kept on a FIFO cooldown queue and skipped by the
    next draws. When the cooldown would exclude every candidate the
    exclusion is ignored for that draw and the queue is cleared.
    """

    def __init__(
        self,
        cooldown_size: int = WINNER_COOLDOWN_SPINS,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.cooldown_size = cooldown_size
        self.rng = rng or random.Random()
        self._recent: Deque[str] = deque()

    @property
    def cooldown(self) -> Tuple[str, ...]:
        return tuple(self._recent)

    def select(self, candidates: Sequence[C], excluded: Iterable[str] = ()) -> C:
        if not candidates:
            raise InvalidInput("No candidates to draw from.")

        blocked = set(excluded) | set(self._recent)
        eligible: List[C] = [c for c in candidates if c.address not in blocked]
        if not eligible:
            log.warning(
                "All %d candidates on cooldown/excluded; ignoring exclusions for this draw",
                len(candidates),
            )
            self._recent.clear()
            eligible = list(candidates)

        total_weight = sum(int(c.amount) for c in eligible)
        if total_weight <= 0:
            raise InvalidInput("Total weight is zero; draw undefined.")

        r = self.rng.uniform(0, total_weight)
        winner = None
        cumulative = 0
        for c in eligible:
            cumulative += int(c.amount)
            if r <= cumulative:
                winner = c
                break
        if winner is None:
            # r landed past the last boundary (float rounding)
            winner = eligible[-1]

        self._recent.append(winner.address)
        while len(self._recent) > self.cooldown_size:
            self._recent.popleft()

        log.debug(
            "Drew %s (r=%.2f of %d); cooldown for next %d spins",
            winner.address,
            r,
            total_weight,
            self.cooldown_size,
        )
        return winner


def winning_degree(
    percentages: Sequence[float],
    winner_index: int,
    rng: Optional[random.Random] = None,
) -> float:
    """
    Where the wheel should stop: the center of the winner's arc (arcs laid
    out clockwise from 0 in segment order) plus a cosmetic offset that stays
    within 60% of the arc around its center.
    """
    if not percentages or winner_index < 0 or winner_index >= len(percentages):
        return 0.0

    start = sum(percentages[:winner_index]) / 100 * 360
    size = percentages[winner_index] / 100 * 360
    center = start + size / 2
    offset = ((rng or random).random() - 0.5) * size * 0.6
    return center + offset
