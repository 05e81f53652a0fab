"""
Memory configuration, budgets, scoring weights and model context window mappings.
"""

import os
from dataclasses import asdict, dataclass, field


class InvalidConfiguration(ValueError):
    """Raised when budgets, weights or TTL are unusable. Fatal at initialization."""


# Model → context window size (tokens)
MODEL_CONTEXT_WINDOWS: dict[str, int] = {
    # Anthropic
    "claude-sonnet-4-5-20250929": 200_000,
    "claude-sonnet-4-20250514": 200_000,
    "claude-opus-4-20250514": 200_000,
    "claude-3-5-sonnet": 200_000,
    "claude-3-haiku": 200_000,
    # OpenAI compatible
    "gpt-4o": 128_000,
    "gpt-4o-mini": 128_000,
    "gpt-4-turbo": 128_000,
    # DeepSeek
    "deepseek-chat": 64_000,
    "deepseek-reasoner": 64_000,
    # GLM
    "glm-4": 128_000,
    "glm-4-flash": 128_000,
}

DEFAULT_CONTEXT_WINDOW = 128_000


@dataclass(frozen=True)
class Budgets:
    """Hard token ceilings per tier. new + current + system_reserve == total."""

    total: int
    new: int
    current: int
    system_reserve: int

    def validate(self) -> "Budgets":
        for name, value in asdict(self).items():
            if not isinstance(value, int) or isinstance(value, bool):
                raise InvalidConfiguration(f"budget '{name}' must be an int, got {value!r}")
            if value < 0:
                raise InvalidConfiguration(f"budget '{name}' must be non-negative, got {value}")
        if self.new + self.current + self.system_reserve != self.total:
            raise InvalidConfiguration(
                f"budgets do not sum: new({self.new}) + current({self.current}) + "
                f"system_reserve({self.system_reserve}) != total({self.total})"
            )
        return self

    @classmethod
    def from_tiers(cls, new: int, current: int, system_reserve: int = 0) -> "Budgets":
        return cls(
            total=new + current + system_reserve,
            new=new,
            current=current,
            system_reserve=system_reserve,
        ).validate()


@dataclass(frozen=True)
class ScoringWeights:
    """Retention score weights. The size weight is always subtracted."""

    recency: float = 1.0
    frequency: float = 0.5
    user_priority: float = 1.0
    dependency: float = 0.5
    size: float = 0.25

    def validate(self) -> "ScoringWeights":
        for name, value in asdict(self).items():
            if value < 0:
                raise InvalidConfiguration(f"weight '{name}' must be non-negative, got {value}")
        return self


@dataclass
class MemoryConfig:
    """Configuration for the tiered memory engine."""

    # Context window (0 = auto-detect from model name)
    context_window: int = 0

    # Budget ratios of the usable window; the remainder is the system reserve
    new_ratio: float = 0.25
    current_ratio: float = 0.55

    # Safety margin (reserve this fraction of the window)
    safety_margin: float = 0.10

    # Turns an unpinned item may go untouched before it can leave Current
    ttl_turns: int = 6

    # Rehydration
    recall_top_k: int = 3

    # Trim function calls
    trim_timeout: float = 30.0  # seconds, 0 = no timeout
    trim_workers: int = 1  # >1 issues independent pass-2 trims concurrently

    # Old tier
    manifest_max_tokens: int = 256
    rehydration_hint_count: int = 8
    archive_warn_size: int = 500  # log a warning every turn past this many manifests

    # Ingestion
    default_priority: float = 0.0

    weights: ScoringWeights = field(default_factory=ScoringWeights)

    @classmethod
    def from_env(cls) -> "MemoryConfig":
        """Load configuration from environment variables."""
        defaults = ScoringWeights()
        weights = ScoringWeights(
            recency=float(os.getenv("MEMORY_WEIGHT_RECENCY", str(defaults.recency))),
            frequency=float(os.getenv("MEMORY_WEIGHT_FREQUENCY", str(defaults.frequency))),
            user_priority=float(
                os.getenv("MEMORY_WEIGHT_PRIORITY", str(defaults.user_priority))
            ),
            dependency=float(os.getenv("MEMORY_WEIGHT_DEPENDENCY", str(defaults.dependency))),
            size=float(os.getenv("MEMORY_WEIGHT_SIZE", str(defaults.size))),
        )
        return cls(
            context_window=int(os.getenv("MEMORY_CONTEXT_WINDOW", "0")),
            new_ratio=float(os.getenv("MEMORY_NEW_RATIO", "0.25")),
            current_ratio=float(os.getenv("MEMORY_CURRENT_RATIO", "0.55")),
            safety_margin=float(os.getenv("MEMORY_SAFETY_MARGIN", "0.10")),
            ttl_turns=int(os.getenv("MEMORY_TTL_TURNS", "6")),
            recall_top_k=int(os.getenv("MEMORY_RECALL_TOP_K", "3")),
            trim_timeout=float(os.getenv("MEMORY_TRIM_TIMEOUT", "30")),
            trim_workers=int(os.getenv("MEMORY_TRIM_WORKERS", "1")),
            manifest_max_tokens=int(os.getenv("MEMORY_MANIFEST_MAX_TOKENS", "256")),
            archive_warn_size=int(os.getenv("MEMORY_ARCHIVE_WARN_SIZE", "500")),
            weights=weights,
        )

    def get_context_window(self, model_name: str) -> int:
        """Resolve context window size from config or model name."""
        if self.context_window > 0:
            return self.context_window
        # Try exact match first, then prefix match
        if model_name in MODEL_CONTEXT_WINDOWS:
            return MODEL_CONTEXT_WINDOWS[model_name]
        for key, size in MODEL_CONTEXT_WINDOWS.items():
            if model_name and (model_name.startswith(key) or key.startswith(model_name)):
                return size
        return DEFAULT_CONTEXT_WINDOW
