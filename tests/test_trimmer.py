"""
Tests for the trim function boundary and the budgeted trim operator.
"""

import time
from unittest.mock import MagicMock

import pytest
from langchain_core.messages import AIMessage

from tiered_memory.memory.models import Aggressiveness, MemoryItem, Tier
from tiered_memory.memory.token_budget import count_tokens
from tiered_memory.memory.trimmer import (
    BudgetedTrimmer,
    ExternalServiceFailure,
    LLMTrimFunction,
    TrimFailure,
    TrimSuccess,
    build_instructions,
    normalize_trim_response,
)

from conftest import first_half, words


def _items(*sizes):
    items = []
    for i, size in enumerate(sizes):
        item_id = chr(ord("a") + i)
        items.append(MemoryItem(id=item_id, content=words(size, prefix=item_id)))
    return items


def _total(items):
    return sum(count_tokens(i.content) for i in items)


# ── Response Normalization Tests ──


class TestNormalizeTrimResponse:
    def test_plain_text(self):
        assert normalize_trim_response("short") == TrimSuccess("short")

    def test_tuple_with_notes(self):
        assert normalize_trim_response(("short", ["n1", "n2"])) == TrimSuccess("short", ("n1", "n2"))

    def test_tuple_with_single_note(self):
        assert normalize_trim_response(("short", "n1")) == TrimSuccess("short", ("n1",))

    def test_mapping(self):
        result = normalize_trim_response({"text": " short ", "notes": ["n1"]})
        assert result == TrimSuccess("short", ("n1",))

    def test_ai_message(self):
        result = normalize_trim_response(AIMessage(content=[
            {"type": "thinking", "thinking": "hmm"},
            {"type": "text", "text": "short"},
        ]))
        assert result == TrimSuccess("short")

    def test_unparsable(self):
        result = normalize_trim_response(42)
        assert isinstance(result, TrimFailure)
        assert "int" in result.reason

    def test_mapping_without_text(self):
        assert isinstance(normalize_trim_response({"summary": "x"}), TrimFailure)

    def test_empty_text(self):
        assert normalize_trim_response("   ") == TrimFailure("empty response")


class TestInstructions:
    def test_tier_and_target_in_prompts(self):
        system, user = build_instructions("body text", 12, Tier.OLD, Aggressiveness.HIGH)
        assert "archive" in system
        assert "Compress hard" in system
        assert user.startswith("Maximum length: 12 words.")
        assert user.endswith("body text")


# ── LLM Trim Function Tests ──


class TestLLMTrimFunction:
    def test_invokes_model_with_instructions(self):
        mock_llm = MagicMock()
        mock_llm.invoke.return_value = AIMessage(content="compressed")
        trim_fn = LLMTrimFunction(mock_llm)
        text, notes = trim_fn("sys", "usr", 5, "new", "high")
        assert text == "compressed"
        assert notes == ["llm trim to 5 (new/high)"]
        mock_llm.invoke.assert_called_once_with([
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "usr"},
        ])

    def test_empty_completion_raises(self):
        mock_llm = MagicMock()
        mock_llm.invoke.return_value = AIMessage(content="")
        with pytest.raises(ExternalServiceFailure):
            LLMTrimFunction(mock_llm)("sys", "usr", 5, "new", "high")

    def test_failure_becomes_fallback(self):
        mock_llm = MagicMock()
        mock_llm.invoke.side_effect = ConnectionError("unreachable")
        trimmer = BudgetedTrimmer(trim_fn=LLMTrimFunction(mock_llm))
        text, notes = trimmer.shrink(words(10), 4, Tier.NEW, Aggressiveness.HIGH)
        assert text == words(4)
        assert "ConnectionError" in notes[0]


# ── Boundary Tests ──


class TestTrimCall:
    def test_no_trim_function(self):
        outcome = BudgetedTrimmer().call("a b c", 1, Tier.NEW, Aggressiveness.HIGH)
        assert outcome == TrimFailure("no trim function configured")

    def test_exception_becomes_failure(self):
        trim_fn = MagicMock(side_effect=RuntimeError("boom"))
        outcome = BudgetedTrimmer(trim_fn=trim_fn).call("a b c", 1, Tier.NEW, Aggressiveness.HIGH)
        assert outcome == TrimFailure("RuntimeError: boom")

    def test_receives_plain_tier_values(self):
        trim_fn = MagicMock(return_value="a")
        BudgetedTrimmer(trim_fn=trim_fn).call("a b c", 1, Tier.CURRENT, Aggressiveness.LOW)
        args = trim_fn.call_args.args
        assert args[2:] == (1, "current", "low")

    def test_timeout_becomes_failure(self):
        def slow(*args):
            time.sleep(0.5)
            return "a"

        trimmer = BudgetedTrimmer(trim_fn=slow, timeout=0.05)
        try:
            outcome = trimmer.call("a b c", 1, Tier.NEW, Aggressiveness.HIGH)
        finally:
            trimmer.close()
        assert isinstance(outcome, TrimFailure)
        assert "timed out" in outcome.reason

    def test_grown_response_falls_back(self):
        trim_fn = MagicMock(return_value=words(50))
        text, notes = BudgetedTrimmer(trim_fn=trim_fn).shrink(
            words(10), 5, Tier.NEW, Aggressiveness.HIGH
        )
        assert text == words(5)
        assert "grew" in notes[0]

    def test_success_keeps_notes(self):
        trimmer = BudgetedTrimmer(trim_fn=first_half)
        text, notes = trimmer.shrink(words(10), 5, Tier.NEW, Aggressiveness.HIGH)
        assert text == words(5)
        assert notes == ["half:new"]


# ── Operator Tests ──


class TestBudgetedTrim:
    def test_within_budget_unchanged(self):
        trim_fn = MagicMock()
        items = _items(10, 20)
        result = BudgetedTrimmer(trim_fn=trim_fn).trim(items, 30, Tier.NEW, Aggressiveness.HIGH)
        assert result == items
        assert all(r is i for r, i in zip(result, items))
        trim_fn.assert_not_called()

    def test_fits_budget_with_fallback_only(self):
        items = _items(50, 40, 5)
        result = BudgetedTrimmer().trim(items, 20, Tier.NEW, Aggressiveness.HIGH)
        assert _total(result) <= 20
        assert [i.id for i in result] == [i.id for i in items if i.id in {r.id for r in result}]

    def test_fits_budget_when_trim_always_fails(self):
        trim_fn = MagicMock(side_effect=TimeoutError("slow"))
        items = _items(50, 40)
        result = BudgetedTrimmer(trim_fn=trim_fn).trim(items, 20, Tier.NEW, Aggressiveness.HIGH)
        assert _total(result) <= 20
        assert trim_fn.called
        assert all("TimeoutError" in note for item in result for note in item.trim_notes)

    def test_largest_item_trimmed_first(self):
        def halve(system, user, target, tier, aggressiveness):
            body = user.split("\n\n", 1)[1].split()
            return " ".join(body[: len(body) // 2]), ["halved"]

        trim_fn = MagicMock(side_effect=halve)
        items = _items(4, 30)
        result = BudgetedTrimmer(trim_fn=trim_fn).trim(items, 30, Tier.NEW, Aggressiveness.HIGH)
        # Halving the 30-token item is enough; the small one is never touched
        assert trim_fn.call_count == 1
        assert result[0] is items[0]
        assert count_tokens(result[1].content) == 15
        assert result[1].trim_notes == ["halved"]

    def test_input_not_mutated(self):
        items = _items(50)
        original = items[0].content
        BudgetedTrimmer().trim(items, 10, Tier.NEW, Aggressiveness.HIGH)
        assert items[0].content == original
        assert items[0].trim_notes == []

    def test_final_guard_drops_items_that_do_not_fit(self):
        # A trim function that makes no progress forces the final guard
        def no_progress(system, user, target, tier, aggressiveness):
            return user.split("\n\n", 1)[1]

        items = _items(6, 5, 4)
        result = BudgetedTrimmer(trim_fn=no_progress).trim(items, 8, Tier.CURRENT, Aggressiveness.LOW)
        assert [i.id for i in result] == ["a"]
        assert _total(result) <= 8

    def test_final_guard_keeps_smaller_item_after_misfit(self):
        def no_progress(system, user, target, tier, aggressiveness):
            return user.split("\n\n", 1)[1]

        items = _items(50, 10)
        result = BudgetedTrimmer(trim_fn=no_progress).trim(items, 30, Tier.NEW, Aggressiveness.HIGH)
        assert [i.id for i in result] == ["b"]
        assert result[0].content == items[1].content

    def test_zero_budget_drops_everything(self):
        result = BudgetedTrimmer().trim(_items(3, 2), 0, Tier.NEW, Aggressiveness.HIGH)
        assert result == []

    def test_concurrent_matches_sequential(self):
        items = _items(40, 35, 30, 25)
        sequential = BudgetedTrimmer(trim_fn=first_half).trim(items, 30, Tier.NEW, Aggressiveness.HIGH)
        concurrent = BudgetedTrimmer(trim_fn=first_half, workers=4).trim(
            items, 30, Tier.NEW, Aggressiveness.HIGH
        )
        assert concurrent == sequential
        assert _total(concurrent) <= 30

    def test_deterministic(self):
        items = _items(40, 35, 30, 25)
        trimmer = BudgetedTrimmer()
        assert trimmer.trim(items, 37, Tier.NEW, Aggressiveness.HIGH) == trimmer.trim(
            items, 37, Tier.NEW, Aggressiveness.HIGH
        )
