"""Tests for the time-gap, context-window and semantic relevance signals."""

from __future__ import annotations

import math
from datetime import timedelta

import pytest

from conftest import NOW, FakeScorer, build_conversation
from session_routing.core.interfaces import CharacterTokenEstimator
from session_routing.core.signals import (
    ContextMonitor,
    SemanticRelevanceAnalyzer,
    TimeGapEvaluator,
    infer_task_type,
    utc_now,
)
from session_routing.models import (
    ContextBand,
    Conversation,
    Message,
    MessageRole,
    RouterConfig,
    Severity,
    TaskType,
)


HOUR = timedelta(hours=1)


# =============================================================================
# Time gap
# =============================================================================

class TestTimeGapEvaluator:
    @pytest.fixture
    def evaluator(self):
        return TimeGapEvaluator()

    def evaluate(self, evaluator, gap, config, task_type=TaskType.GENERAL, open_question=False):
        return evaluator.evaluate(NOW - gap, NOW, task_type, open_question, config)

    def test_short_gap_is_nothing(self, evaluator, config):
        signal = self.evaluate(evaluator, timedelta(minutes=30), config)
        assert signal.severity is Severity.NONE
        assert signal.reinject_context is False
        assert not signal.fired

    def test_reinject_band(self, evaluator, config):
        signal = self.evaluate(evaluator, 2 * HOUR, config)
        assert signal.severity is Severity.NONE
        assert signal.reinject_context is True

    def test_medium_band(self, evaluator, config):
        signal = self.evaluate(evaluator, 5 * HOUR, config)
        assert signal.severity is Severity.MEDIUM
        assert signal.fired

    def test_exactly_24_hours_is_not_high(self, evaluator, config):
        signal = self.evaluate(evaluator, 24 * HOUR, config)
        assert signal.severity is Severity.MEDIUM

    def test_one_second_past_24_hours_is_high(self, evaluator, config):
        signal = self.evaluate(evaluator, 24 * HOUR + timedelta(seconds=1), config)
        assert signal.severity is Severity.HIGH
        assert signal.gap_seconds == 24 * 3600 + 1

    def test_coding_doubles_thresholds(self, evaluator, config):
        signal = self.evaluate(evaluator, 24 * HOUR + timedelta(seconds=1), config, task_type=TaskType.CODING)
        assert signal.severity is Severity.MEDIUM

        signal = self.evaluate(evaluator, 6 * HOUR, config, task_type=TaskType.DEBUGGING)
        assert signal.severity is Severity.NONE

    def test_open_question_lowers_high_to_medium(self, evaluator, config):
        signal = self.evaluate(evaluator, 30 * HOUR, config, open_question=True)
        assert signal.severity is Severity.MEDIUM
        assert signal.reinject_context is True

    def test_open_question_lowers_medium_to_reinjection(self, evaluator, config):
        signal = self.evaluate(evaluator, 5 * HOUR, config, open_question=True)
        assert signal.severity is Severity.NONE
        assert signal.reinject_context is True

    def test_clock_skew_is_clamped(self, evaluator, config):
        signal = evaluator.evaluate(NOW + HOUR, NOW, TaskType.GENERAL, False, config)
        assert signal.gap_seconds == 0.0
        assert signal.severity is Severity.NONE

    def test_empty_conversation(self, evaluator, config):
        signal = evaluator.evaluate_conversation(Conversation(id="empty"), NOW, config)
        assert signal.severity is Severity.NONE
        assert signal.gap_seconds == 0.0

    def test_naive_timestamps_are_treated_as_utc(self, evaluator, config):
        naive_last = (NOW - 25 * HOUR).replace(tzinfo=None)
        signal = evaluator.evaluate(naive_last, NOW, TaskType.GENERAL, False, config)
        assert signal.severity is Severity.HIGH

    def test_default_timestamp_is_a_zero_gap(self, evaluator, config):
        conversation = Conversation(id="fresh", messages=[Message(MessageRole.USER, "hello")])
        signal = evaluator.evaluate_conversation(conversation, utc_now(), config)
        assert signal.gap_seconds < 60
        assert signal.severity is Severity.NONE
        assert signal.reinject_context is False

    def test_evaluate_conversation_uses_last_question(self, evaluator, config):
        conversation = build_conversation(
            [(MessageRole.USER, "hi"), (MessageRole.ASSISTANT, "Which file do you want to open?")],
            last_at=NOW - 30 * HOUR,
        )
        signal = evaluator.evaluate_conversation(conversation, NOW, config)
        assert signal.open_question is True
        assert signal.severity is Severity.MEDIUM


class TestInferTaskType:
    def test_debugging(self):
        conversation = build_conversation([(MessageRole.USER, "Traceback (most recent call last): ...")])
        assert infer_task_type(conversation) is TaskType.DEBUGGING

    def test_coding(self):
        conversation = build_conversation([(MessageRole.USER, "def parse(line):\n    return line.split()")])
        assert infer_task_type(conversation) is TaskType.CODING

    def test_general(self):
        conversation = build_conversation([(MessageRole.USER, "Recommend a novel for the weekend")])
        assert infer_task_type(conversation) is TaskType.GENERAL

    def test_terror_is_not_an_error(self):
        conversation = build_conversation([(MessageRole.USER, "A film about terror and suspense")])
        assert infer_task_type(conversation) is TaskType.GENERAL

    @pytest.mark.parametrize("content", [
        "There's a bug in my garden, is it harmful?",
        "I need to debug my sleep schedule",
        "The only error: I forgot the eggs",
        "from now on let's plan the trip",
    ])
    def test_casual_mentions_stay_general(self, content):
        conversation = build_conversation([(MessageRole.USER, content)])
        assert infer_task_type(conversation) is TaskType.GENERAL

    def test_exception_line(self):
        conversation = build_conversation([
            (MessageRole.USER, "It fails"),
            (MessageRole.ASSISTANT, "The log says:\nKeyError: 'name'"),
        ])
        assert infer_task_type(conversation) is TaskType.DEBUGGING

    def test_import_line(self):
        conversation = build_conversation([(MessageRole.USER, "from pathlib import Path\nwhat next?")])
        assert infer_task_type(conversation) is TaskType.CODING

    def test_explicit_task_type_wins(self):
        conversation = build_conversation([(MessageRole.USER, "hello")], task_type=TaskType.CODING)
        assert infer_task_type(conversation) is TaskType.CODING


# =============================================================================
# Context window
# =============================================================================

def _sized_conversation(tokens, max_tokens=1000, count=1):
    per_message = tokens // count
    messages = [
        Message(MessageRole.USER, "x", NOW - timedelta(minutes=count - i), token_estimate=per_message)
        for i in range(count)
    ]
    return Conversation(id="sized", messages=messages, model_max_tokens=max_tokens)


class TestContextMonitor:
    @pytest.fixture
    def monitor(self):
        return ContextMonitor(CharacterTokenEstimator())

    def test_normal(self, monitor, config):
        signal = monitor.evaluate(_sized_conversation(100), config)
        assert signal.band is ContextBand.NORMAL
        assert signal.utilization == pytest.approx(0.1)
        assert not signal.fired

    def test_warning(self, monitor, config):
        assert monitor.evaluate(_sized_conversation(600), config).band is ContextBand.WARNING

    def test_just_below_critical(self, monitor, config):
        assert monitor.evaluate(_sized_conversation(799), config).band is ContextBand.WARNING

    def test_critical_boundary_is_inclusive(self, monitor, config):
        signal = monitor.evaluate(_sized_conversation(800), config)
        assert signal.band is ContextBand.CRITICAL
        assert signal.severity is Severity.HIGH

    def test_emergency_boundary_is_inclusive(self, monitor, config):
        signal = monitor.evaluate(_sized_conversation(950), config)
        assert signal.band is ContextBand.EMERGENCY
        assert signal.severity is Severity.CRITICAL

    def test_utilization_is_clamped(self, monitor, config):
        signal = monitor.evaluate(_sized_conversation(5000), config)
        assert signal.utilization == 1.0
        assert signal.total_tokens == 5000

    def test_pending_message_counts(self, monitor, config):
        conversation = _sized_conversation(790)
        signal = monitor.evaluate(conversation, config, pending_message="x" * 40)
        assert signal.total_tokens == 800
        assert signal.band is ContextBand.CRITICAL

    def test_unknown_max_tokens_uses_default(self, monitor):
        config = RouterConfig(default_model_max_tokens=200)
        signal = monitor.evaluate(_sized_conversation(100, max_tokens=0), config)
        assert signal.utilization == pytest.approx(0.5)

    def test_long_conversation_hint(self, monitor, config):
        signal = monitor.evaluate(_sized_conversation(51, count=51), config)
        assert signal.long_conversation is True
        assert monitor.evaluate(_sized_conversation(50, count=50), config).long_conversation is False

    def test_estimates_when_message_has_no_count(self, monitor, config):
        conversation = build_conversation([(MessageRole.USER, "a" * 400)], model_max_tokens=1000)
        assert monitor.evaluate(conversation, config).total_tokens == 100


class TestCharacterTokenEstimator:
    def test_latin(self):
        assert CharacterTokenEstimator().estimate("abcdefgh") == 2

    def test_cjk(self):
        assert CharacterTokenEstimator().estimate("新对话开始") == math.ceil(5 * 0.75)

    def test_mixed_rounds_up(self):
        assert CharacterTokenEstimator().estimate("hi 你好") == math.ceil(3 / 4 + 2 * 0.75)

    def test_minimum_one_token(self):
        assert CharacterTokenEstimator().estimate("a") == 1
        assert CharacterTokenEstimator().estimate("") == 0


# =============================================================================
# Semantic relevance
# =============================================================================

class TestSemanticRelevanceAnalyzer:
    @pytest.mark.asyncio
    async def test_returns_similarity(self, healthy_conversation, config):
        analyzer = SemanticRelevanceAnalyzer(FakeScorer(similarity=0.82))
        signal = await analyzer.score("and with a tab separator?", healthy_conversation, config)
        assert signal.available
        assert signal.similarity == pytest.approx(0.82)
        assert signal.related
        assert signal.severity is Severity.NONE

    @pytest.mark.asyncio
    async def test_low_similarity_is_unrelated(self, healthy_conversation, config):
        analyzer = SemanticRelevanceAnalyzer(FakeScorer(similarity=0.1))
        signal = await analyzer.score("banana bread recipe", healthy_conversation, config)
        assert signal.unrelated
        assert signal.severity is Severity.HIGH

    @pytest.mark.asyncio
    async def test_summary_is_preferred_reference(self, config):
        scorer = FakeScorer()
        conversation = build_conversation([(MessageRole.USER, "hello")], summary="Topics: pandas")
        await SemanticRelevanceAnalyzer(scorer).score("more pandas", conversation, config)
        assert scorer.calls == [("more pandas", "Topics: pandas")]

    @pytest.mark.asyncio
    async def test_no_scorer(self, healthy_conversation, config):
        signal = await SemanticRelevanceAnalyzer().score("anything", healthy_conversation, config)
        assert not signal.available
        assert not signal.fired

    @pytest.mark.asyncio
    async def test_timeout(self, healthy_conversation):
        config = RouterConfig(semantic_timeout_ms=10)
        analyzer = SemanticRelevanceAnalyzer(FakeScorer(delay=1.0))
        signal = await analyzer.score("anything", healthy_conversation, config)
        assert not signal.available
        assert signal.error == "timeout"

    @pytest.mark.asyncio
    async def test_scorer_error(self, healthy_conversation, config):
        analyzer = SemanticRelevanceAnalyzer(FakeScorer(error=RuntimeError("boom")))
        signal = await analyzer.score("anything", healthy_conversation, config)
        assert not signal.available
        assert "boom" in signal.error

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", [1.5, -0.1, float("nan")])
    async def test_out_of_range_scores_are_rejected(self, value, healthy_conversation, config):
        analyzer = SemanticRelevanceAnalyzer(FakeScorer(similarity=value))
        signal = await analyzer.score("anything", healthy_conversation, config)
        assert not signal.available

    @pytest.mark.asyncio
    async def test_empty_conversation(self, config):
        analyzer = SemanticRelevanceAnalyzer(FakeScorer())
        signal = await analyzer.score("anything", Conversation(id="empty"), config)
        assert not signal.available
