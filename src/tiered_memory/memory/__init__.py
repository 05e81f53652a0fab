"""
Three-tier working memory with a token-budgeted engine.

Each turn partitions context into:

- New: fresh inputs of the turn (user message, tool outputs), trimmed to B_N
- Current: the short-horizon working set, score-packed into B_C
- Old: an append-only archive of episode manifests summarizing evictions

Trimming goes through an external, fallible trim function (usually an LLM)
wrapped with a deterministic truncation fallback, so budgets hold even when
the model call fails. Archived manifests can be pulled back into New by
keyword query (rehydration).
"""

from .config import Budgets, InvalidConfiguration, MemoryConfig, ScoringWeights
from .manager import TierManager, TurnRequest, check_invariants, render
from .models import Aggressiveness, EpisodeManifest, MemoryItem, SessionState, Tier
from .retriever import ArchiveRetriever
from .session import MemorySession
from .store import SessionStore
from .token_budget import calculate_budgets, count_tokens, truncate_to_tokens
from .trimmer import (
    BudgetedTrimmer,
    ExternalServiceFailure,
    LLMTrimFunction,
    TrimFailure,
    TrimSuccess,
)

__all__ = [
    "Aggressiveness",
    "ArchiveRetriever",
    "Budgets",
    "BudgetedTrimmer",
    "EpisodeManifest",
    "ExternalServiceFailure",
    "InvalidConfiguration",
    "LLMTrimFunction",
    "MemoryConfig",
    "MemoryItem",
    "MemorySession",
    "ScoringWeights",
    "SessionState",
    "SessionStore",
    "Tier",
    "TierManager",
    "TrimFailure",
    "TrimSuccess",
    "TurnRequest",
    "calculate_budgets",
    "check_invariants",
    "count_tokens",
    "render",
    "truncate_to_tokens",
]
