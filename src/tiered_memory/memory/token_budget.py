"""
Token counting and budget allocation for the tiered memory engine.

The default counter treats every whitespace-delimited unit as one token.
Truncation always works in the counter's own units so that the deterministic
fallback can never overshoot the target it was given.
"""

from typing import Callable

from .config import Budgets, InvalidConfiguration, MemoryConfig

TokenCounter = Callable[[str], int]


def count_tokens(text: str) -> int:
    """Whitespace token count."""
    if not text:
        return 0
    return len(text.split())


def total_tokens(items, counter: TokenCounter = count_tokens) -> int:
    """Sum of token counts over anything with a ``content`` attribute."""
    return sum(counter(item.content) for item in items)


def truncate_to_tokens(text: str, target: int, counter: TokenCounter = count_tokens) -> str:
    """
    Keep the longest prefix of whitespace units whose count is <= target.

    Never raises and never returns more than ``target`` tokens as measured by
    ``counter``.
    """
    if target <= 0 or not text:
        return ""
    words = text.split()
    if counter is count_tokens:
        return " ".join(words[:target])

    # Custom counters may weigh a word as several tokens: binary search the
    # longest prefix that still fits.
    lo, hi = 0, len(words)
    while lo < hi:
        mid = (lo + hi + 1) // 2
        if counter(" ".join(words[:mid])) <= target:
            lo = mid
        else:
            hi = mid - 1
    return " ".join(words[:lo])


def calculate_budgets(
    config: MemoryConfig,
    model_name: str,
    system_prompt_tokens: int = 0,
) -> Budgets:
    """
    Derive tier budgets from the model's context window.

    Available = context_window * (1 - safety_margin) - system_prompt - output_reserve
    New and Current get their ratio of Available; everything else is the
    system reserve, so the three always sum to the full window.
    """
    if config.new_ratio < 0 or config.current_ratio < 0:
        raise InvalidConfiguration("tier ratios must be non-negative")
    if config.new_ratio + config.current_ratio > 1.0:
        raise InvalidConfiguration(
            f"new_ratio + current_ratio must not exceed 1.0, got "
            f"{config.new_ratio + config.current_ratio:.2f}"
        )

    context_window = config.get_context_window(model_name)

    # Reserve space for safety margin and output (20% for output, capped at 16k)
    usable = int(context_window * (1 - config.safety_margin))
    output_reserve = min(int(context_window * 0.2), 16000)
    available = max(usable - system_prompt_tokens - output_reserve, 0)

    new = int(available * config.new_ratio)
    current = int(available * config.current_ratio)
    return Budgets(
        total=context_window,
        new=new,
        current=current,
        system_reserve=context_window - new - current,
    ).validate()
