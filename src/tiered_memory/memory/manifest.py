"""
Episode manifest builder.

Compresses all items evicted from Current in one turn into a single archival
record for the Old tier.
"""

import hashlib
import re
from typing import Optional

from .models import Aggressiveness, EpisodeManifest, MemoryItem, Tier
from .token_budget import TokenCounter, count_tokens, truncate_to_tokens
from .trimmer import BudgetedTrimmer

_URL_RE = re.compile(r"https?://[^\s<>\"'()\[\]]+")


def _make_id(turn: int, source_ids: list[str]) -> str:
    """Deterministic manifest id from the turn and evicted item ids."""
    h = hashlib.sha256(f"{turn}:{','.join(source_ids)}".encode()).hexdigest()[:16]
    return f"ep-{h}"


def _derive_topic(tags: list[str], turn: int) -> str:
    topical = [t for t in tags if not t.startswith("turn:")]
    if topical:
        return ", ".join(topical[:3])
    return f"turn {turn} evictions"


def build_manifest(
    evicted: list[MemoryItem],
    turn: int,
    trimmer: BudgetedTrimmer,
    now: float,
    topic_hint: Optional[str] = None,
    counter: TokenCounter = count_tokens,
    max_tokens: int = 256,
    hint_count: int = 8,
) -> EpisodeManifest:
    """
    Build one manifest from every item evicted this turn.

    The summary is the evicted content joined in eviction order and compressed
    to ``max_tokens`` through the trim operator (tier OLD, aggressiveness high).
    """
    if not evicted:
        raise ValueError("build_manifest needs at least one evicted item")

    source_ids = [item.id for item in evicted]
    content = "\n\n".join(item.content for item in evicted)
    size_estimate = sum(counter(item.content) for item in evicted)

    draft = MemoryItem(id=f"episode-{turn}", content=content)
    compressed = trimmer.trim([draft], max_tokens, Tier.OLD, Aggressiveness.HIGH)
    if compressed:
        summary = compressed[0].content
    else:
        summary = truncate_to_tokens(content, max_tokens, counter)

    tags = sorted(set().union(*(item.tags for item in evicted)))
    links = sorted({url for item in evicted for url in _URL_RE.findall(item.content)})

    return EpisodeManifest(
        id=_make_id(turn, source_ids),
        topic=topic_hint or _derive_topic(tags, turn),
        date_range=(
            min(item.created_at for item in evicted),
            max(item.last_touched_at for item in evicted),
        ),
        summary=summary,
        tags=tags,
        links=links,
        rehydration_hints=tags[:hint_count],
        size_estimate=size_estimate,
        source_ids=source_ids,
        turn=turn,
        created_at=now,
        updated_at=now,
    )
