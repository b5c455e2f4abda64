"""
Time-gap, context-window and semantic relevance signals.
"""

import asyncio
import math
import re
from datetime import datetime, timezone
from typing import Optional

from ..models import (
    ContextBand, ContextSignal, Conversation, RouterConfig, SemanticSignal,
    Severity, TaskType, TimeGapSignal, as_utc,
)
from ..utils import get_logger
from .interfaces import SemanticScorer, TokenEstimator


SECONDS_PER_HOUR = 3600.0

# Number of trailing messages used as the reference when no summary exists
SEMANTIC_REFERENCE_MESSAGES = 6
SEMANTIC_REFERENCE_CHARS = 4000

_DEBUGGING_PATTERNS = [
    re.compile(r'\btraceback \(most recent call last\)', re.IGNORECASE),
    re.compile(r'^\s*[A-Z]\w*(Error|Exception):', re.MULTILINE),
    re.compile(r'\bstack\s*trace\b', re.IGNORECASE),
    re.compile(r'\bsegmentation fault\b|\bcore dumped\b', re.IGNORECASE),
    re.compile(r'报错|堆栈'),
]

_CODING_PATTERNS = [
    re.compile(r'```'),
    re.compile(r'\bdef\s+\w+\s*\('),
    re.compile(r'\bclass\s+\w+\s*[(:]'),
    re.compile(r'\bfunction\s+\w+\s*\('),
    re.compile(r'^\s*(import\s+[\w.]+|from\s+[\w.]+\s+import\b)', re.MULTILINE),
    re.compile(r'代码|函数|编程'),
]


def infer_task_type(conversation: Conversation, limit: int = 10) -> TaskType:
    """
    Infer coding/debugging work from the recent transcript.

    An explicit task type on the snapshot always wins.
    """
    if conversation.task_type is not TaskType.GENERAL:
        return conversation.task_type

    # Message bodies only; the role prefixes would break line anchors
    recent = "\n".join(m.content for m in conversation.messages[-limit:])
    if not recent:
        return TaskType.GENERAL

    if any(pattern.search(recent) for pattern in _DEBUGGING_PATTERNS):
        return TaskType.DEBUGGING
    if any(pattern.search(recent) for pattern in _CODING_PATTERNS):
        return TaskType.CODING
    return TaskType.GENERAL


class TimeGapEvaluator:
    """
    Maps the elapsed time since the last message to a severity.

    Bands (upper edges inclusive, so a gap equal to a threshold stays in the
    lower band): up to the re-injection threshold nothing happens, up to the
    prompt threshold context re-injection is recommended, up to the new-session
    threshold severity is medium, beyond it high. Coding and debugging double
    the prompt and new-session thresholds; an unanswered question lowers the
    result one level.
    """

    def __init__(self):
        self.logger = get_logger(__name__)

    def evaluate(self, last_message_timestamp: Optional[datetime], now: datetime,
                 task_type: TaskType, last_message_is_open_question: bool,
                 config: RouterConfig) -> TimeGapSignal:
        if last_message_timestamp is None:
            return TimeGapSignal(task_type=task_type, open_question=last_message_is_open_question)

        gap_seconds = max((as_utc(now) - as_utc(last_message_timestamp)).total_seconds(), 0.0)

        factor = 2.0 if task_type in (TaskType.CODING, TaskType.DEBUGGING) else 1.0
        reinject_limit = config.time_gap_reinject_hours * SECONDS_PER_HOUR
        prompt_limit = config.time_gap_prompt_hours * SECONDS_PER_HOUR * factor
        new_session_limit = config.time_gap_new_session_hours * SECONDS_PER_HOUR * factor

        reinject = False
        if gap_seconds > new_session_limit:
            severity = Severity.HIGH
        elif gap_seconds > prompt_limit:
            severity = Severity.MEDIUM
        else:
            severity = Severity.NONE
            reinject = gap_seconds > reinject_limit

        if last_message_is_open_question and severity is not Severity.NONE:
            severity = severity.lowered()
            if severity is Severity.LOW:
                severity = Severity.NONE
            reinject = True

        return TimeGapSignal(
            gap_seconds=gap_seconds,
            severity=severity,
            reinject_context=reinject,
            open_question=last_message_is_open_question,
            task_type=task_type,
        )

    def evaluate_conversation(self, conversation: Conversation, now: datetime,
                              config: RouterConfig) -> TimeGapSignal:
        """Evaluate the gap between the snapshot's last message and `now`."""
        last = conversation.last_message
        return self.evaluate(
            last.timestamp if last else None,
            now,
            infer_task_type(conversation),
            bool(last and last.is_question),
            config,
        )


class ContextMonitor:
    """
    Estimates context-window utilization from the transcript.

    Band lower bounds are inclusive: a utilization equal to the critical
    threshold is critical, equal to the emergency threshold is emergency.
    """

    def __init__(self, token_estimator: TokenEstimator):
        self.token_estimator = token_estimator
        self.logger = get_logger(__name__)

    def evaluate(self, conversation: Conversation, config: RouterConfig,
                 pending_message: str = "") -> ContextSignal:
        total_tokens = sum(
            message.token_estimate if message.token_estimate is not None
            else self.token_estimator.estimate(message.content)
            for message in conversation.messages
        )
        if pending_message:
            total_tokens += self.token_estimator.estimate(pending_message)

        max_tokens = conversation.model_max_tokens
        if max_tokens <= 0:
            max_tokens = config.default_model_max_tokens

        utilization = min(max(total_tokens / max_tokens, 0.0), 1.0)

        return ContextSignal(
            utilization=utilization,
            band=self.classify(utilization, config),
            total_tokens=total_tokens,
            long_conversation=len(conversation.messages) > config.long_conversation_messages,
        )

    @staticmethod
    def classify(utilization: float, config: RouterConfig) -> ContextBand:
        if utilization >= config.context_emergency_pct:
            return ContextBand.EMERGENCY
        if utilization >= config.context_critical_pct:
            return ContextBand.CRITICAL
        if utilization >= config.context_warning_pct:
            return ContextBand.WARNING
        return ContextBand.NORMAL


class SemanticRelevanceAnalyzer:
    """
    Bounded-timeout adapter over an external similarity scorer.

    Timeouts, errors and out-of-range scores all yield an unavailable signal;
    this analyzer never raises.
    """

    def __init__(self, scorer: Optional[SemanticScorer] = None):
        self.scorer = scorer
        self.logger = get_logger(__name__)

    async def score(self, message: str, conversation: Conversation,
                    config: RouterConfig) -> SemanticSignal:
        thresholds = {
            "low_threshold": config.semantic_low_threshold,
            "high_threshold": config.semantic_threshold,
        }

        if self.scorer is None:
            return SemanticSignal(error="no scorer configured", **thresholds)

        reference = self.reference_text(conversation)
        if not reference or not message.strip():
            return SemanticSignal(error="nothing to compare", **thresholds)

        try:
            similarity = await asyncio.wait_for(
                self.scorer.score(message, reference),
                timeout=config.semantic_timeout_ms / 1000.0,
            )
        except asyncio.TimeoutError:
            return SemanticSignal(error="timeout", **thresholds)
        except Exception as e:
            return SemanticSignal(error=f"{type(e).__name__}: {str(e)}", **thresholds)

        try:
            similarity = float(similarity)
        except (TypeError, ValueError):
            return SemanticSignal(error=f"non-numeric score {similarity!r}", **thresholds)

        if math.isnan(similarity) or not 0.0 <= similarity <= 1.0:
            return SemanticSignal(error=f"score out of range: {similarity}", **thresholds)

        return SemanticSignal(similarity=similarity, **thresholds)

    @staticmethod
    def reference_text(conversation: Conversation) -> str:
        if conversation.summary.strip():
            return conversation.summary
        return conversation.transcript(limit=SEMANTIC_REFERENCE_MESSAGES)[-SEMANTIC_REFERENCE_CHARS:]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
