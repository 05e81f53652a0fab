"""
Tier manager: runs one conversation turn over the New / Current / Old tiers.

Per turn:
  1. advance the turn counter
  2. ingest the user message and tool outputs into New
  3. trim New to its budget
  4. optionally rehydrate archived manifests into New
  5-7. score previous Current + New and pack the best into Current
  8. trim Current if packing was bypassed and it overflows
  9-10. archive everything that fell out of Current as one manifest
  11-12. commit and render the prompt fragment

The manager owns collaborators (token counter, trim function, clock) but no
session data. Every operation takes a ``SessionState`` and returns a new one;
the input state is never mutated. Callers must not run two turns on the same
session concurrently.
"""

import copy
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Optional

from .config import Budgets, InvalidConfiguration, MemoryConfig, ScoringWeights
from .ingest import normalize_block
from .manifest import build_manifest
from .models import Aggressiveness, EpisodeManifest, MemoryItem, SessionState, Tier
from .retriever import ArchiveRetriever
from .scorer import rank_items
from .token_budget import TokenCounter, count_tokens, total_tokens
from .trimmer import BudgetedTrimmer, TrimFunction

logger = logging.getLogger(__name__)

REHYDRATED_TAG = "rehydrated"


@dataclass
class TurnRequest:
    """Inputs of one turn."""

    user_message: Any = None
    tool_outputs: list = field(default_factory=list)
    query: str = ""
    pull_from_archive: bool = False
    k: int = 0  # 0 = MemoryConfig.recall_top_k
    topic_hint: Optional[str] = None
    # Keep every candidate instead of score-packing; Current is then trimmed
    bypass_packing: bool = False


def _clamp_priority(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def _working_copy(state: SessionState) -> SessionState:
    """Copy of ``state`` that is safe to edit. Archived manifests are append-only and shared."""
    new, current = copy.deepcopy((state.new, state.current))
    return replace(state, new=new, current=current, old=list(state.old))


def check_invariants(state: SessionState, counter: TokenCounter = count_tokens) -> list[str]:
    """Return a description of every violated session invariant."""
    problems = []
    new_tokens = total_tokens(state.new, counter)
    if new_tokens > state.budgets.new:
        problems.append(f"New holds {new_tokens} tokens, budget {state.budgets.new}")
    current_tokens = total_tokens(state.current, counter)
    if current_tokens > state.budgets.current:
        problems.append(f"Current holds {current_tokens} tokens, budget {state.budgets.current}")
    for name, items in (("New", state.new), ("Current", state.current)):
        ids = [item.id for item in items]
        if len(ids) != len(set(ids)):
            problems.append(f"{name} contains duplicate ids")
    for item in (*state.new, *state.current):
        if item.last_touched_turn > state.turn:
            problems.append(
                f"item {item.id} touched at turn {item.last_touched_turn} > {state.turn}"
            )
    return problems


def render(state: SessionState) -> str:
    """Current contents, then New contents, blank-line separated."""
    return "\n\n".join(item.content for item in (*state.current, *state.new) if item.content)


class TierManager:
    """
    Stateless engine for tiered working memory.

    Usage:
        manager = TierManager(config, trim_fn=LLMTrimFunction(llm))
        state = manager.initialize(Budgets.from_tiers(new=500, current=2000))
        state, fragment = manager.turn(state, TurnRequest(user_message="hi"))
    """

    def __init__(
        self,
        config: Optional[MemoryConfig] = None,
        tokenizer: Optional[TokenCounter] = None,
        trim_fn: Optional[TrimFunction] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.config = config or MemoryConfig()
        self._count = tokenizer or count_tokens
        self._clock = clock or time.time
        self.trimmer = BudgetedTrimmer(
            trim_fn=trim_fn,
            counter=self._count,
            timeout=self.config.trim_timeout,
            workers=self.config.trim_workers,
        )

    # ── Public operations ──

    def initialize(
        self,
        budgets: Budgets,
        weights: Optional[ScoringWeights] = None,
        ttl: Optional[int] = None,
    ) -> SessionState:
        """Create an empty session. Raises InvalidConfiguration on bad input."""
        if not isinstance(budgets, Budgets):
            raise InvalidConfiguration(f"budgets must be Budgets, got {type(budgets).__name__}")
        budgets.validate()
        weights = (weights or self.config.weights).validate()
        ttl = self.config.ttl_turns if ttl is None else ttl
        if not isinstance(ttl, int) or ttl < 0:
            raise InvalidConfiguration(f"ttl must be a non-negative int, got {ttl!r}")

        logger.info(
            "Initialized memory session: new=%d current=%d reserve=%d ttl=%d",
            budgets.new, budgets.current, budgets.system_reserve, ttl,
        )
        return SessionState(budgets=budgets, weights=weights, ttl=ttl)

    def turn(self, state: SessionState, request: TurnRequest) -> tuple[SessionState, str]:
        """Run one turn. Returns (new state, prompt fragment). Never raises on trim failures."""
        state = _working_copy(state)
        state.turn += 1
        turn = state.turn
        now = self._clock()
        budgets = state.budgets
        previous_current = state.current

        # Ingest + trim New
        new_items = self._ingest(request, turn, now, previous_current)
        new_items = self.trimmer.trim(new_items, budgets.new, Tier.NEW, Aggressiveness.HIGH)

        # Rehydrate
        if request.pull_from_archive and request.query and request.query.strip():
            recalled = self._rehydrate(state, request, turn, now)
            if recalled is not None:
                new_items = self.trimmer.trim(
                    [*new_items, recalled], budgets.new, Tier.NEW, Aggressiveness.HIGH
                )

        # Score and pack Current
        candidates = self._candidates(previous_current, new_items, turn, state.ttl)
        ranked = rank_items(
            candidates, turn, state.weights, self._count,
            current_ids=[item.id for item in previous_current],
        )
        if request.bypass_packing:
            packed = ranked
            if total_tokens(packed, self._count) > budgets.current:
                packed = self.trimmer.trim(
                    packed, budgets.current, Tier.CURRENT, Aggressiveness.LOW
                )
        else:
            packed = self._pack(ranked, budgets.current)

        # Evict to Old
        kept_ids = {item.id for item in packed}
        evicted = [item for item in previous_current if item.id not in kept_ids]
        if evicted:
            manifest = build_manifest(
                evicted,
                turn=turn,
                trimmer=self.trimmer,
                now=now,
                topic_hint=request.topic_hint,
                counter=self._count,
                max_tokens=self.config.manifest_max_tokens,
                hint_count=self.config.rehydration_hint_count,
            )
            state.old.append(manifest)
            logger.info(
                "Turn %d: evicted %d items (%d tokens) into manifest %s",
                turn, len(evicted), manifest.size_estimate, manifest.id,
            )

        state.new = new_items
        state.current = packed

        for problem in check_invariants(state, self._count):
            logger.error("Turn %d invariant violated: %s", turn, problem)
        if self.config.archive_warn_size and len(state.old) > self.config.archive_warn_size:
            logger.warning(
                "Archive holds %d manifests (warn size %d); retrieval cost grows linearly",
                len(state.old), self.config.archive_warn_size,
            )

        logger.info(
            "Turn %d: New=%d items/%d tokens, Current=%d items/%d tokens, Old=%d manifests",
            turn,
            len(state.new), total_tokens(state.new, self._count),
            len(state.current), total_tokens(state.current, self._count),
            len(state.old),
        )
        return state, render(state)

    def pin(
        self, state: SessionState, item_id: str, priority: float = 1.0
    ) -> tuple[SessionState, bool]:
        """Raise an item's priority (max-merge, clamped to [0, 1]). Returns (state, found)."""
        if state.find(item_id) is None:
            logger.debug("pin: no item %s", item_id)
            return state, False
        state = _working_copy(state)
        value = _clamp_priority(priority)
        for item in (*state.new, *state.current):
            if item.id == item_id:
                item.user_priority = max(item.user_priority, value)
        return state, True

    def unpin(self, state: SessionState, item_id: str) -> tuple[SessionState, bool]:
        """Reset an item's priority to 0. Returns (state, found)."""
        if state.find(item_id) is None:
            logger.debug("unpin: no item %s", item_id)
            return state, False
        state = _working_copy(state)
        for item in (*state.new, *state.current):
            if item.id == item_id:
                item.user_priority = 0.0
        return state, True

    def retrieve(self, state: SessionState, query: str, k: int) -> list[EpisodeManifest]:
        return ArchiveRetriever(state.old).search(query, k)

    @staticmethod
    def export_state(state: SessionState) -> dict:
        return state.to_dict()

    @staticmethod
    def load_state(record: dict) -> SessionState:
        return SessionState.from_dict(record)

    def close(self):
        self.trimmer.close()

    # ── Turn steps ──

    def _ingest(
        self,
        request: TurnRequest,
        turn: int,
        now: float,
        previous_current: list[MemoryItem],
    ) -> list[MemoryItem]:
        prior = {item.id: item for item in previous_current}
        raw = [("user", request.user_message)]
        raw.extend(("tool", output) for output in request.tool_outputs or [])

        items: list[MemoryItem] = []
        seen: set[str] = set()
        tool_index = 0
        for source, value in raw:
            block = normalize_block(value)
            if source == "tool":
                tool_index += 1
            if block is None:
                continue

            default_id = f"t{turn}-user" if source == "user" else f"t{turn}-tool{tool_index}"
            item_id = str(block["id"] or default_id)
            if item_id in seen:
                logger.warning("Turn %d: duplicate block id %s ignored", turn, item_id)
                continue
            seen.add(item_id)

            tags = {source, f"turn:{turn}", *block["tags"]}
            if request.topic_hint:
                tags.add(request.topic_hint)
            priority = block["priority"]
            item = MemoryItem(
                id=item_id,
                content=block["content"],
                tags=tags,
                user_priority=_clamp_priority(
                    self.config.default_priority if priority is None else priority
                ),
                dependencies=list(block["dependencies"]),
                created_at=now,
                last_touched_at=now,
                last_touched_turn=turn,
                frequency=1,
            )

            earlier = prior.get(item_id)
            if earlier is not None:
                # Re-ingestion of something still in the working set
                item.frequency = earlier.frequency + 1
                item.created_at = earlier.created_at
                item.user_priority = max(item.user_priority, earlier.user_priority)
                item.tags |= earlier.tags
            items.append(item)
        return items

    def _rehydrate(
        self,
        state: SessionState,
        request: TurnRequest,
        turn: int,
        now: float,
    ) -> Optional[MemoryItem]:
        k = request.k or self.config.recall_top_k
        manifests = ArchiveRetriever(state.old).search(request.query, k)
        if not manifests:
            logger.debug("Turn %d: no archived manifest matches %r", turn, request.query)
            return None

        logger.info(
            "Turn %d: rehydrating %d manifests for %r", turn, len(manifests), request.query
        )
        content = "\n\n".join(f"[Recalled: {m.topic}] {m.summary}" for m in manifests)
        tags = {REHYDRATED_TAG, f"turn:{turn}"}
        if request.topic_hint:
            tags.add(request.topic_hint)
        return MemoryItem(
            id=f"t{turn}-rehydrated",
            content=content,
            tags=tags,
            user_priority=_clamp_priority(self.config.default_priority),
            created_at=now,
            last_touched_at=now,
            last_touched_turn=turn,
            frequency=1,
            trim_notes=[f"recalled {', '.join(m.id for m in manifests)}"],
        )

    @staticmethod
    def _candidates(
        previous_current: list[MemoryItem],
        new_items: list[MemoryItem],
        turn: int,
        ttl: int,
    ) -> list[MemoryItem]:
        merged: dict[str, MemoryItem] = {}
        for item in previous_current:
            merged[item.id] = item
        for item in new_items:
            merged[item.id] = item
        return [
            item for item in merged.values()
            if item.pinned or turn - item.last_touched_turn <= ttl
        ]

    def _pack(self, ranked: list[MemoryItem], budget: int) -> list[MemoryItem]:
        packed = []
        running = 0
        for item in ranked:
            size = self._count(item.content)
            if running + size > budget:
                break
            packed.append(item)
            running += size
        return packed
