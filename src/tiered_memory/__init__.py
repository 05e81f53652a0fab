"""
Tiered context memory for multi-turn agents.
"""

from .memory import (
    Budgets,
    InvalidConfiguration,
    MemoryConfig,
    MemorySession,
    ScoringWeights,
    SessionState,
    TierManager,
    TurnRequest,
)

__all__ = [
    "Budgets",
    "InvalidConfiguration",
    "MemoryConfig",
    "MemorySession",
    "ScoringWeights",
    "SessionState",
    "TierManager",
    "TurnRequest",
]
