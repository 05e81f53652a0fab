"""
Shared pytest setup.

Puts ``src`` on sys.path so tests can import the package without installing
it, and provides deterministic engine fixtures.
"""

import sys
from pathlib import Path

import pytest

# Make src/ importable without installing
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from tiered_memory.memory import MemoryConfig, TierManager  # noqa: E402

FIXED_NOW = 1_700_000_000.0


def words(count: int, prefix: str = "w") -> str:
    """A text of exactly ``count`` whitespace tokens."""
    return " ".join(f"{prefix}{i}" for i in range(count))


def first_half(system, user, target, tier, aggressiveness):
    """Deterministic stand-in for an LLM trim: keep the first ``target`` words."""
    body = user.split("\n\n", 1)[1]
    return " ".join(body.split()[:target]), [f"half:{tier}"]


@pytest.fixture
def config():
    return MemoryConfig(trim_timeout=0)


@pytest.fixture
def make_manager(config):
    def _make(trim_fn=None, tokenizer=None, **overrides):
        cfg = config
        if overrides:
            cfg = MemoryConfig(**{**config.__dict__, **overrides})
        return TierManager(cfg, tokenizer=tokenizer, trim_fn=trim_fn, clock=lambda: FIXED_NOW)

    return _make
