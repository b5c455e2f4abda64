"""Tests for the conversation health assessor."""

from __future__ import annotations

import pytest

from conftest import ERROR_LOOP_TURNS, HEALTHY_TURNS, FakeContradictionClassifier, build_conversation
from session_routing.core.health import ConversationHealthAssessor, error_signature, recent_window
from session_routing.models import MessageRole, RouterConfig


class TestErrorSignature:
    def test_numbers_and_paths_are_masked(self):
        first = error_signature("FileNotFoundError: /tmp/a/data.csv missing at line 3")
        second = error_signature("FileNotFoundError: /home/u/other.csv missing at line 91")
        assert first == second
        assert first.startswith("filenotfounderror")

    def test_different_errors_differ(self):
        assert error_signature("KeyError: 'name'") != error_signature("ValueError: bad value")

    def test_chinese_error(self):
        assert error_signature("运行时报错，提示内存不足") != ""

    def test_no_error(self):
        assert error_signature("Everything works now.") == ""


class TestErrorLoop:
    def test_repeated_error_is_a_loop(self, error_loop_conversation):
        loop, signature = ConversationHealthAssessor.detect_error_loop(error_loop_conversation.messages, 3)
        assert loop is True
        assert "typeerror" in signature

    def test_below_threshold(self, error_loop_conversation):
        loop, _ = ConversationHealthAssessor.detect_error_loop(error_loop_conversation.messages[-4:], 3)
        assert loop is False

    def test_resolved_error_breaks_the_loop(self):
        conversation = build_conversation(ERROR_LOOP_TURNS + [
            (MessageRole.USER, "That fixed it"),
            (MessageRole.ASSISTANT, "Great, you can now run the full test suite."),
        ])
        loop, _ = ConversationHealthAssessor.detect_error_loop(conversation.messages, 3)
        assert loop is False


class TestFrustration:
    @pytest.mark.parametrize("reply", ["不对", "错了，还是不行", "no", "Wrong!", "still not working"])
    def test_short_negative_reply(self, reply, healthy_conversation, config):
        assert ConversationHealthAssessor.detect_frustration(healthy_conversation.messages, config, reply)

    def test_long_reply_is_not_frustration(self, healthy_conversation, config):
        reply = "no, I meant that I want to load only the first three columns of the file"
        assert not ConversationHealthAssessor.detect_frustration(healthy_conversation.messages, config, reply)

    def test_marker_inside_word_does_not_count(self, healthy_conversation, config):
        assert not ConversationHealthAssessor.detect_frustration(healthy_conversation.messages, config, "I know")

    def test_requires_a_preceding_ai_answer(self, config):
        conversation = build_conversation([(MessageRole.USER, "hello")])
        assert not ConversationHealthAssessor.detect_frustration(conversation.messages, config, "no")

    def test_uses_last_user_message_without_pending(self, config):
        conversation = build_conversation(HEALTHY_TURNS + [(MessageRole.USER, "没用")])
        assert ConversationHealthAssessor.detect_frustration(conversation.messages, config)


class TestDeadEnd:
    def test_flat_statement_is_a_dead_end(self):
        conversation = build_conversation([(MessageRole.USER, "hi"), (MessageRole.ASSISTANT, "Done.")])
        assert ConversationHealthAssessor.detect_dead_end(conversation.messages)

    def test_question_is_not_a_dead_end(self):
        conversation = build_conversation([(MessageRole.ASSISTANT, "Which version are you on？")])
        assert not ConversationHealthAssessor.detect_dead_end(conversation.messages)

    def test_options_are_not_a_dead_end(self):
        conversation = build_conversation([(MessageRole.ASSISTANT, "Possible causes:\n1. encoding\n2. delimiter")])
        assert not ConversationHealthAssessor.detect_dead_end(conversation.messages)

    def test_instructions_are_not_a_dead_end(self, healthy_conversation):
        assert not ConversationHealthAssessor.detect_dead_end(healthy_conversation.messages)


class TestAssess:
    @pytest.mark.asyncio
    async def test_healthy(self, healthy_conversation, config):
        report = await ConversationHealthAssessor().assess(healthy_conversation.messages, config, "thanks, and tsv?")
        assert not report.unhealthy

    @pytest.mark.asyncio
    async def test_error_loop_is_unhealthy(self, error_loop_conversation, config):
        report = await ConversationHealthAssessor().assess(error_loop_conversation.messages, config)
        assert report.error_loop
        assert report.unhealthy

    @pytest.mark.asyncio
    async def test_dead_end_only_counts_when_configured(self):
        conversation = build_conversation([(MessageRole.USER, "hi"), (MessageRole.ASSISTANT, "Done.")])

        report = await ConversationHealthAssessor().assess(conversation.messages, RouterConfig())
        assert report.dead_end and not report.unhealthy

        strict = RouterConfig(dead_end_counts_as_unhealthy=True)
        report = await ConversationHealthAssessor().assess(conversation.messages, strict)
        assert report.unhealthy

    @pytest.mark.asyncio
    async def test_contradiction(self, config):
        conversation = build_conversation([
            (MessageRole.ASSISTANT, "You can use read_csv with sep=';'."),
            (MessageRole.USER, "ok"),
            (MessageRole.ASSISTANT, "You can not pass sep to read_csv, use delimiter instead."),
        ])
        classifier = FakeContradictionClassifier(verdict=True)
        report = await ConversationHealthAssessor(classifier).assess(conversation.messages, config)
        assert report.contradiction
        assert report.unhealthy
        assert classifier.calls == 1

    @pytest.mark.asyncio
    async def test_contradiction_classifier_failure_is_ignored(self, config):
        conversation = build_conversation([
            (MessageRole.ASSISTANT, "You can use read_csv."),
            (MessageRole.ASSISTANT, "You can use read_table."),
        ])
        classifier = FakeContradictionClassifier(error=RuntimeError("model down"))
        report = await ConversationHealthAssessor(classifier).assess(conversation.messages, config)
        assert not report.contradiction


def test_recent_window():
    conversation = build_conversation(HEALTHY_TURNS * 3)
    assert len(recent_window(conversation.messages, 4)) == 4
    assert recent_window(conversation.messages, 0) == []
