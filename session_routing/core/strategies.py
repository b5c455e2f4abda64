"""
Routing strategies: the rule-based aggregator and a model-judged alternative.
"""

import asyncio
from datetime import datetime
from typing import Optional, Protocol

from ..models import (
    ContextBand, Conversation, RouteDecisionType, RouteResult, RouterConfig,
)
from ..utils import get_logger
from ..utils.error_handling import SignalUnavailableError
from .aggregator import DecisionAggregator, DecisionTrace, fired_signals
from .interfaces import ChatClient, parse_json_object
from .signals import utc_now


# Only explicit intent may reach 0.95
MODEL_CONFIDENCE_CAP = 0.94

# Transcript excerpt handed to the decision model
MODEL_TRANSCRIPT_MESSAGES = 12
MODEL_TRANSCRIPT_CHARS = 6000


class RoutingStrategy(Protocol):
    name: str

    async def evaluate(self, message: str, conversation: Conversation, config: RouterConfig,
                       now: Optional[datetime] = None) -> DecisionTrace:
        ...

    async def aggregate(self, message: str, conversation: Conversation, config: RouterConfig,
                        now: Optional[datetime] = None) -> RouteResult:
        ...


DECISION_SYSTEM_PROMPT = """You route chat messages between conversation sessions.

Given the recent conversation, session statistics and the user's new message, choose one decision:
- "continue": the message belongs to the current session
- "new_session": the message starts an unrelated topic; the old session should be closed
- "fork": the message is a tangent that deserves its own linked session
- "prompt_user": you are unsure and the user should be asked

Answer with JSON only: {"decision": "<one of the above>", "confidence": <0.0-1.0>, "reason": "<short reason>"}"""


class ModelJudgedStrategy:
    """
    Lets a language model pick the route.

    Explicit intent and a context emergency are still decided by the rules
    before the model is consulted, and model confidence is capped below the
    explicit-intent level. Any model failure, timeout or malformed answer falls
    back to the rule-based aggregator.
    """

    name = "model"

    def __init__(self, decision_model: ChatClient, fallback: Optional[DecisionAggregator] = None,
                 timeout_ms: int = 1500):
        self.decision_model = decision_model
        self.fallback = fallback or DecisionAggregator()
        self.timeout_ms = timeout_ms
        self.logger = get_logger(__name__)

    async def aggregate(self, message: str, conversation: Conversation, config: RouterConfig,
                        now: Optional[datetime] = None) -> RouteResult:
        trace = await self.evaluate(message, conversation, config, now)
        return trace.result

    async def evaluate(self, message: str, conversation: Conversation, config: RouterConfig,
                       now: Optional[datetime] = None) -> DecisionTrace:
        now = now or utc_now()

        intent = await self.fallback.detect_intent(message, config)
        if intent.fired:
            return await self.fallback.evaluate(message, conversation, config, now)

        time_gap = self.fallback.time_gap_evaluator.evaluate_conversation(conversation, now, config)
        context = self.fallback.context_monitor.evaluate(conversation, config, pending_message=message)
        if context.band is ContextBand.EMERGENCY:
            return await self.fallback.evaluate(message, conversation, config, now)

        prompt = self.build_prompt(message, conversation, time_gap.gap_seconds, context.utilization)
        try:
            reply = await asyncio.wait_for(
                self.decision_model.complete(DECISION_SYSTEM_PROMPT, prompt),
                timeout=self.timeout_ms / 1000.0,
            )
            decision, confidence, reason = self.parse_decision(reply)
        except asyncio.TimeoutError:
            self.fallback.decision_logger.log_degradation("decision_model", "timeout")
            return await self.fallback.evaluate(message, conversation, config, now)
        except Exception as e:
            self.fallback.decision_logger.log_degradation(
                "decision_model", f"{type(e).__name__}: {str(e)}"
            )
            return await self.fallback.evaluate(message, conversation, config, now)

        signals = [intent, time_gap, context]
        trace = DecisionTrace(
            result=RouteResult(decision, confidence),
            signals=signals,
            context=context,
            strategy=self.name,
        )

        carry_over = ""
        if decision in (RouteDecisionType.NEW_SESSION, RouteDecisionType.FORK):
            carry_over, trace.carry_over_fallback = await self.fallback.build_carry_over(
                conversation, config, trace.degraded
            )

        trace.result = RouteResult(
            decision=decision,
            confidence=confidence,
            reason=f"model: {reason}" if reason else "model decision",
            summary_carry_over=carry_over,
            signals_fired=fired_signals(signals),
        )
        self.logger.debug(f"Model judged {decision.value} ({confidence:.2f})")
        return trace

    @staticmethod
    def build_prompt(message: str, conversation: Conversation, gap_seconds: float,
                     utilization: float) -> str:
        transcript = conversation.transcript(limit=MODEL_TRANSCRIPT_MESSAGES)[-MODEL_TRANSCRIPT_CHARS:]
        lines = [
            f"Hours since last message: {gap_seconds / 3600.0:.1f}",
            f"Context window used: {utilization:.0%}",
        ]
        if conversation.summary:
            lines.append(f"Session summary:\n{conversation.summary}")
        lines.append(f"Recent conversation:\n{transcript or '(empty)'}")
        lines.append(f"New message:\n{message}")
        return "\n\n".join(lines)

    @staticmethod
    def parse_decision(reply: str):
        """
        Validate a model reply.

        Returns:
            (RouteDecisionType, capped confidence, reason)

        Raises:
            SignalUnavailableError: If the reply is not a usable decision
        """
        answer = parse_json_object(reply)

        try:
            decision = RouteDecisionType(str(answer.get("decision", "")).strip().lower())
        except ValueError:
            raise SignalUnavailableError(
                f"Model returned unknown decision: {answer.get('decision')!r}", signal_name="decision_model"
            )

        try:
            confidence = float(answer.get("confidence"))
        except (TypeError, ValueError):
            raise SignalUnavailableError(
                f"Model returned non-numeric confidence: {answer.get('confidence')!r}",
                signal_name="decision_model"
            )
        if confidence != confidence:
            raise SignalUnavailableError("Model returned NaN confidence", signal_name="decision_model")

        confidence = min(max(confidence, 0.0), MODEL_CONFIDENCE_CAP)
        return decision, confidence, str(answer.get("reason") or "").strip()
