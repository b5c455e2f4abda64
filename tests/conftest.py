"""Shared pytest fixtures for the session routing tests.

Provides:
- A fixed decision time and a conversation builder with UTC timestamps
- Fake collaborators (scorer, summarizer, classifiers, chat model, store)
- A fully wired rule-based aggregator
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence, Tuple

import pytest

from session_routing.core import (
    ConversationHealthAssessor,
    DecisionAggregator,
    InMemorySessionStore,
    IntentDetector,
    SemanticRelevanceAnalyzer,
)
from session_routing.models import Conversation, Message, MessageRole, RouterConfig
from session_routing.utils import DecisionLogger


NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


# -----------------------------------------------------------------------------
# Fake collaborators
# -----------------------------------------------------------------------------

class FakeScorer:
    """Semantic scorer returning a fixed similarity, optionally after a delay."""

    def __init__(self, similarity: float = 0.9, delay: float = 0.0, error: Optional[Exception] = None):
        self.similarity = similarity
        self.delay = delay
        self.error = error
        self.calls: List[Tuple[str, str]] = []

    async def score(self, text: str, reference_summary: str) -> float:
        self.calls.append((text, reference_summary))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.similarity


class FakeSummarizer:
    def __init__(self, summary: str = "Topics: pandas csv loading", error: Optional[Exception] = None,
                 delay: float = 0.0):
        self.summary = summary
        self.error = error
        self.delay = delay
        self.calls: List[str] = []

    async def summarize(self, transcript: str) -> str:
        self.calls.append(transcript)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.summary


class FakeIntentClassifier:
    def __init__(self, label: Optional[str] = None, error: Optional[Exception] = None, delay: float = 0.0):
        self.label = label
        self.error = error
        self.delay = delay

    async def classify(self, message: str) -> Optional[str]:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.label


class FakeContradictionClassifier:
    def __init__(self, verdict: bool = False, error: Optional[Exception] = None):
        self.verdict = verdict
        self.error = error
        self.calls = 0

    async def contradicts(self, first: str, second: str) -> bool:
        self.calls += 1
        if self.error:
            raise self.error
        return self.verdict


class FakeChatClient:
    """Decision model / chat client returning canned replies."""

    def __init__(self, reply: str = "", error: Optional[Exception] = None, delay: float = 0.0):
        self.reply = reply
        self.error = error
        self.delay = delay
        self.prompts: List[Tuple[str, str]] = []

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        self.prompts.append((system_prompt, user_prompt))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.reply


class FailingStore(InMemorySessionStore):
    """In-memory store whose writes (and optionally reads) fail."""

    def __init__(self, fail_reads: bool = False):
        super().__init__()
        self.fail_reads = fail_reads

    def create_session(self, parent_id=None, carry_over_message=None, idempotency_key=None) -> str:
        raise RuntimeError("database is locked")

    def get_conversation(self, conversation_id: str) -> Conversation:
        if self.fail_reads:
            raise ConnectionError("store unreachable")
        return super().get_conversation(conversation_id)


# -----------------------------------------------------------------------------
# Builders
# -----------------------------------------------------------------------------

def build_conversation(turns: Sequence[Tuple[MessageRole, str]], conversation_id: str = "conv-1",
                       last_at: datetime = NOW - timedelta(minutes=1), spacing: timedelta = timedelta(seconds=30),
                       **kwargs) -> Conversation:
    """Build a conversation whose last message was sent at `last_at`."""
    count = len(turns)
    messages = tuple(
        Message(role=role, content=content, timestamp=last_at - spacing * (count - 1 - i))
        for i, (role, content) in enumerate(turns)
    )
    kwargs.setdefault("model_max_tokens", 8192)
    return Conversation(id=conversation_id, messages=messages, **kwargs)


HEALTHY_TURNS = [
    (MessageRole.USER, "How do I read a csv file with pandas?"),
    (MessageRole.ASSISTANT, "You can use pandas.read_csv('data.csv') and then call head() to inspect it."),
]

ERROR_LOOP_TURNS = [
    (MessageRole.USER, "My script crashes"),
    (MessageRole.ASSISTANT, "Try casting first. Your log shows:\nTypeError: unsupported operand at line 12"),
    (MessageRole.USER, "Same thing"),
    (MessageRole.ASSISTANT, "Try int() around it. The log now shows:\nTypeError: unsupported operand at line 14"),
    (MessageRole.USER, "Again"),
    (MessageRole.ASSISTANT, "Try float() instead. It still shows:\nTypeError: unsupported operand at line 19"),
]


# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def config() -> RouterConfig:
    return RouterConfig()


@pytest.fixture
def healthy_conversation() -> Conversation:
    return build_conversation(HEALTHY_TURNS)


@pytest.fixture
def error_loop_conversation() -> Conversation:
    return build_conversation(ERROR_LOOP_TURNS)


@pytest.fixture
def decision_logger() -> DecisionLogger:
    return DecisionLogger(max_history=100)


@pytest.fixture
def summarizer() -> FakeSummarizer:
    return FakeSummarizer()


@pytest.fixture
def make_aggregator(decision_logger, summarizer):
    """Factory building a rule-based aggregator around the given fakes."""

    def _make(scorer: Optional[FakeScorer] = None, summarizer_override=summarizer,
              intent_classifier: Optional[FakeIntentClassifier] = None,
              contradiction_classifier: Optional[FakeContradictionClassifier] = None) -> DecisionAggregator:
        return DecisionAggregator(
            intent_detector=IntentDetector(intent_classifier),
            semantic_analyzer=SemanticRelevanceAnalyzer(scorer if scorer is not None else FakeScorer()),
            health_assessor=ConversationHealthAssessor(contradiction_classifier),
            summarizer=summarizer_override,
            decision_logger=decision_logger,
        )

    return _make


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()
