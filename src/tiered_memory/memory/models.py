"""
Data model for the tiered memory engine.

All records serialize to plain JSON-compatible dicts so a session can be
exported, stored by a collaborator and reloaded verbatim.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .config import Budgets, InvalidConfiguration, ScoringWeights


class Tier(str, Enum):
    NEW = "new"
    CURRENT = "current"
    OLD = "old"


class Aggressiveness(str, Enum):
    LOW = "low"
    HIGH = "high"


@dataclass
class MemoryItem:
    """One unit of working memory (a user message, a tool output, a recall)."""

    id: str
    content: str
    tags: set[str] = field(default_factory=set)
    user_priority: float = 0.0
    dependencies: list[str] = field(default_factory=list)
    created_at: float = 0.0
    last_touched_at: float = 0.0
    last_touched_turn: int = 0
    frequency: int = 1
    trim_notes: list[str] = field(default_factory=list)

    @property
    def pinned(self) -> bool:
        return self.user_priority >= 1.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "tags": sorted(self.tags),
            "user_priority": self.user_priority,
            "dependencies": list(self.dependencies),
            "created_at": self.created_at,
            "last_touched_at": self.last_touched_at,
            "last_touched_turn": self.last_touched_turn,
            "frequency": self.frequency,
            "trim_notes": list(self.trim_notes),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MemoryItem":
        return cls(
            id=data["id"],
            content=data["content"],
            tags=set(data.get("tags", [])),
            user_priority=float(data.get("user_priority", 0.0)),
            dependencies=list(data.get("dependencies", [])),
            created_at=float(data.get("created_at", 0.0)),
            last_touched_at=float(data.get("last_touched_at", 0.0)),
            last_touched_turn=int(data.get("last_touched_turn", 0)),
            frequency=int(data.get("frequency", 1)),
            trim_notes=list(data.get("trim_notes", [])),
        )


@dataclass
class EpisodeManifest:
    """Compact archival record replacing the raw content evicted in one turn."""

    id: str
    topic: str
    date_range: tuple[float, float]
    summary: str
    tags: list[str] = field(default_factory=list)
    links: list[str] = field(default_factory=list)
    rehydration_hints: list[str] = field(default_factory=list)
    size_estimate: int = 0
    source_ids: list[str] = field(default_factory=list)
    turn: int = 0
    created_at: float = 0.0
    updated_at: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "topic": self.topic,
            "date_range": list(self.date_range),
            "summary": self.summary,
            "tags": list(self.tags),
            "links": list(self.links),
            "rehydration_hints": list(self.rehydration_hints),
            "size_estimate": self.size_estimate,
            "source_ids": list(self.source_ids),
            "turn": self.turn,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EpisodeManifest":
        start, end = data.get("date_range", (0.0, 0.0))
        return cls(
            id=data["id"],
            topic=data.get("topic", ""),
            date_range=(float(start), float(end)),
            summary=data.get("summary", ""),
            tags=list(data.get("tags", [])),
            links=list(data.get("links", [])),
            rehydration_hints=list(data.get("rehydration_hints", [])),
            size_estimate=int(data.get("size_estimate", 0)),
            source_ids=list(data.get("source_ids", [])),
            turn=int(data.get("turn", 0)),
            created_at=float(data.get("created_at", 0.0)),
            updated_at=float(data.get("updated_at", 0.0)),
        )


@dataclass
class SessionState:
    """
    Everything the engine knows about one conversation.

    This value is the sole input and output of every engine operation; the
    engine itself keeps no per-session state.
    """

    budgets: Budgets
    weights: ScoringWeights = field(default_factory=ScoringWeights)
    ttl: int = 6
    turn: int = 0
    new: list[MemoryItem] = field(default_factory=list)
    current: list[MemoryItem] = field(default_factory=list)
    old: list[EpisodeManifest] = field(default_factory=list)

    def find(self, item_id: str) -> MemoryItem | None:
        for item in self.current:
            if item.id == item_id:
                return item
        for item in self.new:
            if item.id == item_id:
                return item
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "turn": self.turn,
            "budgets": {
                "total": self.budgets.total,
                "new": self.budgets.new,
                "current": self.budgets.current,
                "system_reserve": self.budgets.system_reserve,
            },
            "weights": {
                "recency": self.weights.recency,
                "frequency": self.weights.frequency,
                "user_priority": self.weights.user_priority,
                "dependency": self.weights.dependency,
                "size": self.weights.size,
            },
            "ttl": self.ttl,
            "new": [item.to_dict() for item in self.new],
            "current": [item.to_dict() for item in self.current],
            "old": [manifest.to_dict() for manifest in self.old],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionState":
        try:
            budgets = Budgets(**data["budgets"]).validate()
            weights = ScoringWeights(**data.get("weights", {})).validate()
        except (KeyError, TypeError) as e:
            raise InvalidConfiguration(f"malformed session record: {e}") from e
        ttl = int(data.get("ttl", 6))
        if ttl < 0:
            raise InvalidConfiguration(f"ttl must be non-negative, got {ttl}")
        return cls(
            budgets=budgets,
            weights=weights,
            ttl=ttl,
            turn=int(data.get("turn", 0)),
            new=[MemoryItem.from_dict(d) for d in data.get("new", [])],
            current=[MemoryItem.from_dict(d) for d in data.get("current", [])],
            old=[EpisodeManifest.from_dict(d) for d in data.get("old", [])],
        )
