"""
Decision Aggregator: reduces all signals to one RouteResult.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

from ..models import (
    ContextBand, ContextSignal, Conversation, HealthSignal, IntentSignal,
    RouteDecisionType, RouteResult, RouterConfig, SemanticSignal, Severity,
    SignalResult, TimeGapSignal,
)
from ..utils import DecisionLogger, get_logger
from ..utils.error_handling import AggregationTimeoutError
from .health import ConversationHealthAssessor, recent_window
from .intent import IntentDetector
from .interfaces import CharacterTokenEstimator, Summarizer
from .signals import (
    ContextMonitor, SemanticRelevanceAnalyzer, TimeGapEvaluator, utc_now,
)


EXPLICIT_INTENT_CONFIDENCE = 0.95
CONTEXT_EMERGENCY_CONFIDENCE = 0.9
CONTEXT_CRITICAL_CONFIDENCE = 0.85
LOW_SIMILARITY_UNHEALTHY_CONFIDENCE = 0.8
LOW_SIMILARITY_CONFIDENCE = 0.7
LONG_GAP_CONFIDENCE = 0.6
MEDIUM_GAP_CONFIDENCE = 0.5
UNHEALTHY_CONFIDENCE = 0.55
DEFAULT_CONFIDENCE = 0.9

# Messages handed to the health assessor
HEALTH_WINDOW_MESSAGES = 20

CARRY_OVER_FALLBACK_HEADER = "Previous conversation excerpt (summary unavailable):\n"


@dataclass
class DecisionTrace:
    """A RouteResult plus the evaluation details the router logs."""
    result: RouteResult
    signals: List[SignalResult] = field(default_factory=list)
    degraded: List[str] = field(default_factory=list)
    carry_over_fallback: bool = False
    context: Optional[ContextSignal] = None
    strategy: str = "rules"


def fired_signals(signals: List[SignalResult]) -> frozenset:
    return frozenset(signal.signal_name.value for signal in signals if signal.fired)


class DecisionAggregator:
    """
    Rule-based routing strategy.

    Signals are evaluated in a fixed priority order and the first conclusive
    one decides; lower-priority signals only break ties:

    1. explicit intent                     -> NewSession 0.95
    2. context emergency                   -> NewSession 0.9 (with carry-over)
    3. context critical                    -> NewSession 0.85 (with carry-over)
    4. low similarity + unhealthy/healthy  -> NewSession 0.8 / PromptUser 0.7
    5. ambiguous similarity + gap high/med -> PromptUser 0.6 / 0.5
    6. unhealthy conversation              -> PromptUser 0.55
    7. otherwise                           -> Continue 0.9

    Intent and time gap form the synchronous fast path. Context is checked
    next; the semantic and health signals then run concurrently under one
    timeout, and anything still pending at the deadline is cancelled and
    treated as unavailable.
    """

    name = "rules"

    def __init__(self, intent_detector: Optional[IntentDetector] = None,
                 time_gap_evaluator: Optional[TimeGapEvaluator] = None,
                 context_monitor: Optional[ContextMonitor] = None,
                 semantic_analyzer: Optional[SemanticRelevanceAnalyzer] = None,
                 health_assessor: Optional[ConversationHealthAssessor] = None,
                 summarizer: Optional[Summarizer] = None,
                 decision_logger: Optional[DecisionLogger] = None):
        self.logger = get_logger(__name__)

        self.intent_detector = intent_detector or IntentDetector()
        self.time_gap_evaluator = time_gap_evaluator or TimeGapEvaluator()
        self.context_monitor = context_monitor or ContextMonitor(CharacterTokenEstimator())
        self.semantic_analyzer = semantic_analyzer or SemanticRelevanceAnalyzer()
        self.health_assessor = health_assessor or ConversationHealthAssessor()
        self.summarizer = summarizer
        self.decision_logger = decision_logger or DecisionLogger()

    async def aggregate(self, message: str, conversation: Conversation, config: RouterConfig,
                        now: Optional[datetime] = None) -> RouteResult:
        """
        Decide how `message` should be routed against `conversation`.

        Args:
            message: The incoming user message
            conversation: Read-only snapshot of the current session
            config: Router configuration for this call
            now: Decision time (defaults to the current time)

        Returns:
            RouteResult with every field populated
        """
        trace = await self.evaluate(message, conversation, config, now)
        return trace.result

    async def evaluate(self, message: str, conversation: Conversation, config: RouterConfig,
                       now: Optional[datetime] = None) -> DecisionTrace:
        """Like aggregate(), but also returns the signals and degradations."""
        now = now or utc_now()
        trace = DecisionTrace(result=RouteResult(RouteDecisionType.CONTINUE, DEFAULT_CONFIDENCE))

        # Fast path: explicit intent always comes first
        intent = await self.detect_intent(message, config)
        trace.signals.append(intent)
        if intent.fired:
            trace.result = RouteResult(
                decision=RouteDecisionType.NEW_SESSION,
                confidence=EXPLICIT_INTENT_CONFIDENCE,
                reason=f"explicit intent: {intent.match.keyword}",
                signals_fired=fired_signals(trace.signals),
            )
            return trace

        time_gap = self.time_gap_evaluator.evaluate_conversation(conversation, now, config)
        trace.signals.append(time_gap)

        context = self.context_monitor.evaluate(conversation, config, pending_message=message)
        trace.signals.append(context)
        trace.context = context

        if context.band in (ContextBand.EMERGENCY, ContextBand.CRITICAL):
            emergency = context.band is ContextBand.EMERGENCY
            carry_over, fallback = await self.build_carry_over(conversation, config, trace.degraded)
            trace.carry_over_fallback = fallback
            trace.result = RouteResult(
                decision=RouteDecisionType.NEW_SESSION,
                confidence=CONTEXT_EMERGENCY_CONFIDENCE if emergency else CONTEXT_CRITICAL_CONFIDENCE,
                reason="context emergency" if emergency else "context critical",
                summary_carry_over=carry_over,
                signals_fired=fired_signals(trace.signals),
            )
            return trace

        # Slow path
        semantic, health = await self.evaluate_slow_path(message, conversation, config, trace.degraded)
        trace.signals.extend([semantic, health])

        trace.result = self.decide(time_gap, semantic, health, fired_signals(trace.signals))
        return trace

    async def detect_intent(self, message: str, config: RouterConfig) -> IntentSignal:
        match = await self.intent_detector.detect_async(
            message, config, timeout=config.semantic_timeout_ms / 1000.0
        )
        return IntentSignal(match=match)

    async def evaluate_slow_path(self, message: str, conversation: Conversation,
                                 config: RouterConfig,
                                 degraded: List[str]) -> Tuple[SemanticSignal, HealthSignal]:
        """Run semantic scoring and health assessment concurrently under one deadline."""
        semantic_task = asyncio.ensure_future(
            self.semantic_analyzer.score(message, conversation, config)
        )
        health_task = asyncio.ensure_future(
            self.health_assessor.assess(
                recent_window(conversation.messages, HEALTH_WINDOW_MESSAGES), config, pending_message=message
            )
        )

        done, pending = await asyncio.wait(
            {semantic_task, health_task}, timeout=config.slow_path_timeout_ms / 1000.0
        )
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        thresholds = {
            "low_threshold": config.semantic_low_threshold,
            "high_threshold": config.semantic_threshold,
        }
        if semantic_task in done and semantic_task.exception() is None:
            semantic = semantic_task.result()
        elif semantic_task in done:
            semantic = SemanticSignal(error=str(semantic_task.exception()), **thresholds)
        else:
            semantic = SemanticSignal(error="aggregation timeout", **thresholds)
        if not semantic.available:
            self._degrade(degraded, "semantic", semantic.error)

        health = HealthSignal()
        if health_task in done:
            if health_task.exception() is not None:
                self._degrade(degraded, "health", str(health_task.exception()))
            else:
                health = HealthSignal(report=health_task.result())
        else:
            self._degrade(degraded, "health", "aggregation timeout")

        if pending:
            names = [name for name, task in (("semantic", semantic_task), ("health", health_task))
                     if task in pending]
            self.decision_logger.log_error(AggregationTimeoutError(
                f"Slow path exceeded {config.slow_path_timeout_ms}ms; "
                f"{len(pending)} signal(s) treated as unavailable",
                pending_signals=names,
            ), {"conversation_id": conversation.id})

        return semantic, health

    @staticmethod
    def decide(time_gap: TimeGapSignal, semantic: SemanticSignal, health: HealthSignal,
               signals_fired: frozenset) -> RouteResult:
        """Apply rules 4-7 of the decision matrix."""
        if semantic.unrelated:
            if health.unhealthy:
                return RouteResult(
                    decision=RouteDecisionType.NEW_SESSION,
                    confidence=LOW_SIMILARITY_UNHEALTHY_CONFIDENCE,
                    reason="low semantic similarity, unhealthy conversation",
                    signals_fired=signals_fired,
                )
            return RouteResult(
                decision=RouteDecisionType.PROMPT_USER,
                confidence=LOW_SIMILARITY_CONFIDENCE,
                reason="low semantic similarity",
                signals_fired=signals_fired,
            )

        if not semantic.related:
            if time_gap.severity is Severity.HIGH:
                return RouteResult(
                    decision=RouteDecisionType.PROMPT_USER,
                    confidence=LONG_GAP_CONFIDENCE,
                    reason="long time gap",
                    signals_fired=signals_fired,
                )
            if time_gap.severity is Severity.MEDIUM:
                return RouteResult(
                    decision=RouteDecisionType.PROMPT_USER,
                    confidence=MEDIUM_GAP_CONFIDENCE,
                    reason="time gap",
                    signals_fired=signals_fired,
                )

        if health.unhealthy:
            return RouteResult(
                decision=RouteDecisionType.PROMPT_USER,
                confidence=UNHEALTHY_CONFIDENCE,
                reason="unhealthy conversation",
                signals_fired=signals_fired,
            )

        return RouteResult(
            decision=RouteDecisionType.CONTINUE,
            confidence=DEFAULT_CONFIDENCE,
            reason="all signals normal",
            signals_fired=signals_fired,
        )

    async def build_carry_over(self, conversation: Conversation, config: RouterConfig,
                               degraded: Optional[List[str]] = None) -> Tuple[str, bool]:
        """
        Summarize the conversation for the next session.

        Returns:
            (carry-over text, True if the raw-transcript fallback was used)
        """
        degraded = degraded if degraded is not None else []
        transcript = conversation.transcript()
        if not transcript:
            return "", False

        if self.summarizer is not None:
            try:
                summary = await asyncio.wait_for(
                    self.summarizer.summarize(transcript),
                    timeout=config.summary_timeout_ms / 1000.0,
                )
                if summary and summary.strip():
                    return summary.strip(), False
                self._degrade(degraded, "summarizer", "empty summary")
            except asyncio.TimeoutError:
                self._degrade(degraded, "summarizer", "timeout")
            except Exception as e:
                self._degrade(degraded, "summarizer", f"{type(e).__name__}: {str(e)}")
        else:
            self._degrade(degraded, "summarizer", "no summarizer configured")

        excerpt = transcript[-config.carry_over_fallback_chars:] if config.carry_over_fallback_chars else ""
        return (CARRY_OVER_FALLBACK_HEADER + excerpt) if excerpt else "", True

    def _degrade(self, degraded: List[str], signal_name: str, reason: str) -> None:
        degraded.append(signal_name)
        self.decision_logger.log_degradation(signal_name, reason)
