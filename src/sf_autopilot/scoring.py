from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Protocol, Sequence, TypeVar

from .config import MissionStrategy


RATE_SENTINEL = 2**63 - 1
RATE_SCALE = 1_000_000

SMART_GOLD_WEIGHT = 0.4
SMART_XP_WEIGHT = 0.4
SMART_SPEED_WEIGHT = 0.2
SMART_COST_PENALTY = 0.15


class MissionLike(Protocol):
    @property
    def duration_seconds(self) -> int: ...

    @property
    def minutes(self) -> int: ...

    @property
    def gold(self) -> int: ...

    @property
    def xp(self) -> int: ...

    @property
    def mushrooms(self) -> int: ...


T = TypeVar("T", bound=MissionLike)


@dataclass(frozen=True)
class ScoredMission:
    index: int
    score: float


def scaled_rate(value: int, minutes: int) -> int:
    if minutes <= 0:
        return RATE_SENTINEL
    return min(RATE_SENTINEL, (int(value) * RATE_SCALE) // int(minutes))


def _per_minute(value: int, minutes: int) -> float:
    if minutes <= 0:
        return math.inf
    return float(value) / float(minutes)


def _normalized(rate: float, best: float) -> float:
    if best <= 0.0:
        return 0.0
    if math.isinf(best):
        return 1.0 if math.isinf(rate) else 0.0
    return rate / best


def smart_scores(candidates: Sequence[MissionLike]) -> list[float]:
    gold_rates = [_per_minute(item.gold, item.minutes) for item in candidates]
    xp_rates = [_per_minute(item.xp, item.minutes) for item in candidates]
    best_gold = max(gold_rates, default=0.0)
    best_xp = max(xp_rates, default=0.0)
    scores: list[float] = []
    for item, gold_rate, xp_rate in zip(candidates, gold_rates, xp_rates):
        speed = 1.0 / float(max(item.minutes, 1))
        score = (
            SMART_GOLD_WEIGHT * _normalized(gold_rate, best_gold)
            + SMART_XP_WEIGHT * _normalized(xp_rate, best_xp)
            + SMART_SPEED_WEIGHT * speed
        )
        if item.mushrooms > 0:
            score -= SMART_COST_PENALTY
        scores.append(score)
    return scores


def score_missions(candidates: Sequence[T], strategy: MissionStrategy) -> list[ScoredMission]:
    """Rank free candidates best first; indexes refer to the input sequence."""
    free = [(idx, item) for idx, item in enumerate(candidates) if item.mushrooms == 0]
    if not free:
        return []

    if strategy == MissionStrategy.SHORTEST:
        ranked = sorted(free, key=lambda pair: (pair[1].mushrooms, pair[1].duration_seconds, -pair[1].gold))
        return [ScoredMission(index=idx, score=-float(item.duration_seconds)) for idx, item in ranked]
    if strategy == MissionStrategy.MOST_GOLD:
        ranked = sorted(free, key=lambda pair: -pair[1].gold)
        return [ScoredMission(index=idx, score=float(item.gold)) for idx, item in ranked]
    if strategy in (MissionStrategy.BEST_GOLD_PER_MINUTE, MissionStrategy.BEST_XP_PER_MINUTE):
        attr = "gold" if strategy == MissionStrategy.BEST_GOLD_PER_MINUTE else "xp"
        rates = [(idx, scaled_rate(getattr(item, attr), item.minutes)) for idx, item in free]
        ranked_rates = sorted(rates, key=lambda pair: -pair[1])
        return [ScoredMission(index=idx, score=float(rate)) for idx, rate in ranked_rates]

    scores = smart_scores([item for _, item in free])
    scored = [ScoredMission(index=idx, score=score) for (idx, _), score in zip(free, scores)]
    return sorted(scored, key=lambda item: -item.score)


def pick_mission(candidates: Sequence[T], strategy: MissionStrategy) -> T | None:
    ranked = score_missions(candidates, strategy)
    if not ranked:
        return None
    return candidates[ranked[0].index]
