"""
Wiring for agents: builds a memory session from environment configuration.

- Trim function: a LangChain chat model (same credentials as the agent), or
  none at all, in which case trimming is pure deterministic truncation
- Budgets: derived from the model's context window and the system prompt
- Persistence: PostgreSQL when DATABASE_URL is set, otherwise in-process only
"""

import logging
import os
import warnings
from typing import Optional

from dotenv import load_dotenv
from langchain.chat_models import init_chat_model

from .memory import (
    LLMTrimFunction,
    MemoryConfig,
    MemorySession,
    SessionStore,
    TierManager,
    calculate_budgets,
    count_tokens,
)
from .memory.store import connect

logger = logging.getLogger(__name__)


# .env overrides the process environment, matching the agent's own loading
load_dotenv(override=True)


DEFAULT_MODEL = "claude-sonnet-4-5-20250929"
TRIM_MAX_TOKENS = 2000
TRIM_TEMPERATURE = 0.0


def get_credentials() -> tuple[str | None, str | None]:
    """
    Resolve API credentials.

    Generic variables win over Anthropic-specific ones:
    - API key: API_KEY > ANTHROPIC_API_KEY > ANTHROPIC_AUTH_TOKEN
    - Base URL: API_BASE_URL > ANTHROPIC_BASE_URL

    Returns:
        (api_key, base_url)
    """
    api_key = (
        os.getenv("API_KEY")
        or os.getenv("ANTHROPIC_API_KEY")
        or os.getenv("ANTHROPIC_AUTH_TOKEN")
    )
    base_url = os.getenv("API_BASE_URL") or os.getenv("ANTHROPIC_BASE_URL")
    return api_key, base_url


def check_api_credentials() -> bool:
    api_key, _ = get_credentials()
    return api_key is not None


def resolve_model_name(model_name: Optional[str] = None) -> str:
    return model_name or os.getenv("CLAUDE_MODEL", DEFAULT_MODEL)


def create_trim_llm(model_name: Optional[str] = None):
    """Create a low-temperature chat model for trimming and summarizing."""
    api_key, base_url = get_credentials()
    init_kwargs = {"temperature": TRIM_TEMPERATURE, "max_tokens": TRIM_MAX_TOKENS}
    if api_key:
        init_kwargs["api_key"] = api_key
    if base_url:
        init_kwargs["base_url"] = base_url

    provider_kwargs = {}
    model_provider = os.getenv("MODEL_PROVIDER")
    if model_provider:
        provider_kwargs["model_provider"] = model_provider

    return init_chat_model(
        resolve_model_name(model_name),
        **provider_kwargs,
        **init_kwargs,
    )


def create_trim_function(model_name: Optional[str] = None) -> Optional[LLMTrimFunction]:
    """LLM trim function, or None when no model can be created."""
    if not check_api_credentials():
        logger.info("No API credentials configured, memory trimming will truncate")
        return None
    try:
        return LLMTrimFunction(create_trim_llm(model_name))
    except Exception as e:
        logger.warning("Failed to create trim LLM: %s", e)
        return None


def create_session_store() -> Optional[SessionStore]:
    """
    PostgreSQL-backed store when DATABASE_URL is set.

    Falls back to no persistence (sessions live in process memory only).
    """
    db_url = os.getenv("DATABASE_URL")
    if not db_url:
        return None
    try:
        return SessionStore(connect(db_url))
    except Exception as e:
        warnings.warn(
            f"Failed to connect memory store to PostgreSQL: {e}. "
            "Memory sessions will not be persisted."
        )
        return None


def create_memory_session(
    session_id: str = "default",
    model_name: Optional[str] = None,
    system_prompt: str = "",
    config: Optional[MemoryConfig] = None,
    store: Optional[SessionStore] = None,
) -> MemorySession:
    """Build a ready-to-use memory session for one conversation."""
    config = config or MemoryConfig.from_env()
    model = resolve_model_name(model_name)
    budgets = calculate_budgets(config, model, count_tokens(system_prompt))
    manager = TierManager(config, trim_fn=create_trim_function(model))
    if store is None:
        store = create_session_store()
    logger.info(
        "Memory session %s for %s: new=%d current=%d reserve=%d",
        session_id, model, budgets.new, budgets.current, budgets.system_reserve,
    )
    return MemorySession(manager, budgets, session_id=session_id, store=store)
