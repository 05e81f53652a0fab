"""
Budgeted trimming for memory tiers.

Wraps an external, fallible trim function (usually an LLM call) with a
deterministic fallback and an iterative shrink strategy that guarantees the
trimmed items fit a token budget:

  - Pass 1: shrink the largest items first, each by about half the overshoot
  - Pass 2: scale every remaining item down by budget / total
  - Pass 3: walk largest first, keep each item that still fits, drop the rest

Every response from the trim function is normalized at the boundary into a
``TrimSuccess`` or ``TrimFailure``. A failure (exception, timeout, malformed
or oversized response) is always handled by truncating to the first
``target`` whitespace units, which cannot fail.
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional, Union

from .ingest import message_text
from .models import Aggressiveness, MemoryItem, Tier
from .token_budget import TokenCounter, count_tokens, truncate_to_tokens

logger = logging.getLogger(__name__)

TRIM_SYSTEM_PROMPT = """You compress working memory for a conversational agent.
Rewrite the content you are given so that it uses at most the requested number of words.
Keep names, numbers, identifiers, file paths, URLs, decisions and open questions.
Drop greetings, repetition and reasoning that led nowhere.
Output ONLY the compressed text in the same language as the input. Do NOT use markdown headers."""

TIER_GUIDANCE = {
    Tier.NEW: "This is fresh input from the current turn. Preserve the user's request verbatim where possible.",
    Tier.CURRENT: "This is short-horizon working context. Preserve facts the next few turns are likely to need.",
    Tier.OLD: "This is an archive summary of evicted context. Write a dense summary of topics, decisions and outcomes.",
}

AGGRESSIVENESS_GUIDANCE = {
    Aggressiveness.LOW: "Remove only clearly redundant text.",
    Aggressiveness.HIGH: "Compress hard; a terse note is acceptable.",
}

# (system_instructions, user_instructions, target_tokens, tier, aggressiveness)
TrimFunction = Callable[[str, str, int, str, str], Any]


class ExternalServiceFailure(RuntimeError):
    """A trim or retrieval collaborator failed, timed out or answered garbage."""


@dataclass(frozen=True)
class TrimSuccess:
    text: str
    notes: tuple[str, ...] = ()


@dataclass(frozen=True)
class TrimFailure:
    reason: str


TrimOutcome = Union[TrimSuccess, TrimFailure]


def normalize_trim_response(response: Any) -> TrimOutcome:
    """
    Normalize whatever a trim function returned into one result type.

    Accepted shapes: ``str``, ``(text, notes)``, ``{"text": ..., "notes": [...]}``
    and message objects with a ``content`` attribute (LangChain ``AIMessage``).
    """
    text = None
    notes: Any = ()

    if isinstance(response, str):
        text = response
    elif isinstance(response, (tuple, list)) and len(response) == 2 and isinstance(response[0], str):
        text, notes = response
    elif isinstance(response, dict):
        if isinstance(response.get("text"), str):
            text = response["text"]
            notes = response.get("notes") or ()
    elif hasattr(response, "content"):
        text = message_text(response)

    if text is None:
        return TrimFailure(f"unparsable response of type {type(response).__name__}")
    if not text.strip():
        return TrimFailure("empty response")

    if isinstance(notes, str):
        notes = (notes,)
    try:
        notes = tuple(str(n) for n in notes)
    except TypeError:
        return TrimFailure(f"unparsable notes of type {type(notes).__name__}")
    return TrimSuccess(text=text.strip(), notes=notes)


def build_instructions(
    content: str,
    target_tokens: int,
    tier: Tier,
    aggressiveness: Aggressiveness,
) -> tuple[str, str]:
    """Build (system_instructions, user_instructions) for one trim request."""
    system = "\n".join([
        TRIM_SYSTEM_PROMPT,
        TIER_GUIDANCE[tier],
        AGGRESSIVENESS_GUIDANCE[aggressiveness],
    ])
    user = f"Maximum length: {target_tokens} words.\n\n{content}"
    return system, user


class LLMTrimFunction:
    """Trim function backed by a LangChain chat model."""

    def __init__(self, llm):
        self._llm = llm

    def __call__(
        self,
        system_instructions: str,
        user_instructions: str,
        target_tokens: int,
        tier: str,
        aggressiveness: str,
    ) -> tuple[str, list[str]]:
        response = self._llm.invoke([
            {"role": "system", "content": system_instructions},
            {"role": "user", "content": user_instructions},
        ])
        text = message_text(response) if hasattr(response, "content") else str(response)
        if not text.strip():
            raise ExternalServiceFailure("model returned an empty completion")
        return text, [f"llm trim to {target_tokens} ({tier}/{aggressiveness})"]


class BudgetedTrimmer:
    """
    Budgeted trim operator.

    Usage:
        trimmer = BudgetedTrimmer(trim_fn=LLMTrimFunction(llm), timeout=30)
        items = trimmer.trim(items, budget=500, tier=Tier.NEW,
                             aggressiveness=Aggressiveness.HIGH)
    """

    def __init__(
        self,
        trim_fn: Optional[TrimFunction] = None,
        counter: TokenCounter = count_tokens,
        timeout: Optional[float] = None,
        workers: int = 1,
    ):
        self._trim_fn = trim_fn
        self._count = counter
        self._timeout = timeout if timeout and timeout > 0 else None
        self._workers = max(1, workers)
        self._call_pool: Optional[ThreadPoolExecutor] = None
        if self._timeout is not None and trim_fn is not None:
            self._call_pool = ThreadPoolExecutor(
                max_workers=self._workers + 1,
                thread_name_prefix="trim",
            )

    def close(self):
        if self._call_pool is not None:
            self._call_pool.shutdown(wait=False)
            self._call_pool = None

    # ── Trim function boundary ──

    def call(
        self,
        content: str,
        target: int,
        tier: Tier,
        aggressiveness: Aggressiveness,
    ) -> TrimOutcome:
        """Invoke the trim function once. Never raises."""
        if self._trim_fn is None:
            return TrimFailure("no trim function configured")

        system, user = build_instructions(content, target, tier, aggressiveness)
        args = (system, user, target, tier.value, aggressiveness.value)
        try:
            if self._timeout is None:
                response = self._trim_fn(*args)
            else:
                future = self._call_pool.submit(self._trim_fn, *args)
                try:
                    response = future.result(timeout=self._timeout)
                except FutureTimeout:
                    future.cancel()
                    return TrimFailure(f"timed out after {self._timeout}s")
        except Exception as e:
            return TrimFailure(f"{type(e).__name__}: {e}")
        return normalize_trim_response(response)

    def shrink(
        self,
        content: str,
        target: int,
        tier: Tier,
        aggressiveness: Aggressiveness,
    ) -> tuple[str, list[str]]:
        """Shrink one piece of content towards ``target``. Returns (text, notes)."""
        size = self._count(content)
        outcome = self.call(content, target, tier, aggressiveness)

        if isinstance(outcome, TrimSuccess):
            produced = self._count(outcome.text)
            if produced <= size:
                return outcome.text, list(outcome.notes)
            outcome = TrimFailure(f"response grew from {size} to {produced} tokens")

        if self._trim_fn is not None:
            logger.warning(
                "Trim function failed (%s), truncating %d -> %d tokens",
                outcome.reason, size, target,
            )
        text = truncate_to_tokens(content, target, self._count)
        return text, [f"truncated {size} -> {self._count(text)} tokens ({outcome.reason})"]

    def _shrink_item(
        self,
        item: MemoryItem,
        target: int,
        tier: Tier,
        aggressiveness: Aggressiveness,
    ) -> MemoryItem:
        text, notes = self.shrink(item.content, target, tier, aggressiveness)
        return replace(item, content=text, trim_notes=[*item.trim_notes, *notes])

    # ── Operator ──

    def trim(
        self,
        items: list[MemoryItem],
        budget: int,
        tier: Tier,
        aggressiveness: Aggressiveness,
    ) -> list[MemoryItem]:
        """
        Return items whose total token count is <= budget.

        Items already within budget are returned unchanged. The output keeps
        the input order; items may be shortened or, as a last resort, dropped.
        """
        sizes = [self._count(item.content) for item in items]
        total = sum(sizes)
        if total <= budget:
            return list(items)

        logger.debug(
            "Trimming %d %s items: %d tokens -> budget %d",
            len(items), tier.value, total, budget,
        )
        # Largest first; ties keep their original order
        order = sorted(range(len(items)), key=lambda i: (-sizes[i], i))
        working = list(items)

        # Pass 1: cut each large item by half the remaining overshoot
        for idx in order:
            if total <= budget:
                break
            overshoot = total - budget
            target = max(1, sizes[idx] - max(1, overshoot // 2))
            if sizes[idx] <= target:
                continue
            working[idx] = self._shrink_item(working[idx], target, tier, aggressiveness)
            new_size = self._count(working[idx].content)
            total += new_size - sizes[idx]
            sizes[idx] = new_size

        # Pass 2: proportional scale-down; calls are independent of each other
        if total > budget:
            ratio = budget / total
            targets = {idx: max(1, math.floor(sizes[idx] * ratio)) for idx in order}
            pending = [idx for idx in order if sizes[idx] > targets[idx]]

            def run(idx: int) -> MemoryItem:
                return self._shrink_item(working[idx], targets[idx], tier, aggressiveness)

            if self._workers > 1 and len(pending) > 1:
                with ThreadPoolExecutor(max_workers=self._workers) as pool:
                    results = list(pool.map(run, pending))
            else:
                results = [run(idx) for idx in pending]

            for idx, trimmed in zip(pending, results):
                working[idx] = trimmed
                sizes[idx] = self._count(trimmed.content)
            total = sum(sizes)

        # Pass 3: largest first, keep each item that still fits
        if total > budget:
            keep = set()
            running = 0
            for idx in order:
                if running + sizes[idx] > budget:
                    continue
                keep.add(idx)
                running += sizes[idx]
            dropped = [working[idx].id for idx in order if idx not in keep]
            logger.warning(
                "Dropped %d %s items that could not be shrunk into %d tokens: %s",
                len(dropped), tier.value, budget, dropped,
            )
            working = [item for idx, item in enumerate(working) if idx in keep]

        return working
