"""
Retention scoring for Current-tier candidates.

score = w_r*recency + w_f*frequency + w_u*priority + w_d*dependency - w_s*size

Pure functions: equal inputs always give equal scores. Ranking breaks score
ties by ascending item id so packing never depends on input order.
"""

import math
from typing import Iterable, Optional

from .config import ScoringWeights
from .models import MemoryItem
from .token_budget import TokenCounter, count_tokens

RECENCY_DECAY = 0.35
FREQUENCY_SATURATION = 5
SIZE_SATURATION = 200


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def score_item(
    item: MemoryItem,
    turn: int,
    weights: ScoringWeights,
    current_ids: Iterable[str] = (),
    counter: TokenCounter = count_tokens,
) -> float:
    recency = math.exp(-RECENCY_DECAY * max(0, turn - item.last_touched_turn))
    frequency = _clamp(item.frequency / FREQUENCY_SATURATION)
    priority = _clamp(item.user_priority)
    if item.dependencies:
        deps = set(item.dependencies)
        dependency = _clamp(len(deps & set(current_ids)) / len(deps))
    else:
        dependency = 0.0
    size_penalty = _clamp(counter(item.content) / SIZE_SATURATION)

    return (
        weights.recency * recency
        + weights.frequency * frequency
        + weights.user_priority * priority
        + weights.dependency * dependency
        - weights.size * size_penalty
    )


def rank_items(
    items: list[MemoryItem],
    turn: int,
    weights: ScoringWeights,
    counter: TokenCounter = count_tokens,
    current_ids: Optional[Iterable[str]] = None,
) -> list[MemoryItem]:
    """
    Sort by score descending, then id ascending.

    Dependencies are resolved against ``current_ids`` (the ids held in Current
    when scoring starts); without it, against the ranked items themselves.
    """
    ids = set(current_ids) if current_ids is not None else {item.id for item in items}
    scored = [(score_item(item, turn, weights, ids, counter), item) for item in items]
    scored.sort(key=lambda pair: (-pair[0], pair[1].id))
    return [item for _, item in scored]
