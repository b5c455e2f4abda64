"""
Session Router: the per-message routing endpoint.
"""

import asyncio
import dataclasses
import time
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Set

from ..models import (
    ContextBand, Conversation, DecisionRecord, PromptChoice, RouteDecisionType,
    RouteResult, RouterConfig,
)
from ..utils import ConfigManager, DecisionLogger, get_logger, handle_error
from ..utils.error_handling import StoreError
from .aggregator import DEFAULT_CONFIDENCE, DecisionAggregator, DecisionTrace
from .interfaces import SessionStore
from .lifecycle import SessionLifecycleManager
from .signals import utc_now
from .strategies import RoutingStrategy


MESSAGE_PREVIEW_CHARS = 50


class SessionRouter:
    """
    Routes each incoming message to the current session, a new session, a fork,
    or a user prompt.

    Loads the conversation snapshot, lets the routing strategy decide, applies
    the lifecycle transition through the store and records the outcome. Store
    failures never escape: a snapshot that cannot be loaded fails open to
    Continue and a failed transition is reported in `lifecycle_error`. Only an
    invalid configuration raises.
    """

    def __init__(self, store: SessionStore,
                 aggregator: Optional[DecisionAggregator] = None,
                 strategy: Optional[RoutingStrategy] = None,
                 lifecycle: Optional[SessionLifecycleManager] = None,
                 decision_logger: Optional[DecisionLogger] = None,
                 config: Optional[RouterConfig] = None):
        self.logger = get_logger(__name__)

        self.config = config or RouterConfig()
        ConfigManager.validate_router_config(self.config)

        self.store = store
        self.decision_logger = decision_logger or DecisionLogger()
        self.aggregator = aggregator or DecisionAggregator(decision_logger=self.decision_logger)
        self.strategy = strategy or self.aggregator
        self.lifecycle = lifecycle or SessionLifecycleManager(self.config.idempotency_bucket_seconds)

        # Background summarization tasks, kept referenced until they finish
        self._background_tasks: Set[asyncio.Task] = set()

        self.logger.info(f"SessionRouter initialized with {self.strategy.name} strategy")

    async def route(self, message: str, conversation_id: str,
                    config_override: Optional[Mapping[str, Any]] = None,
                    now: Optional[datetime] = None) -> RouteResult:
        """
        Route one message.

        Args:
            message: The incoming user message
            conversation_id: Id of the session the message was sent to
            config_override: Partial RouterConfig values for this call only
            now: Decision time (defaults to the current time)

        Returns:
            RouteResult with `session_id` set to the session the message belongs to

        Raises:
            ConfigurationError: If the override produces an invalid configuration
        """
        start_time = time.perf_counter()
        config = ConfigManager.merge_overrides(self.config, config_override)
        now = now or utc_now()

        self.logger.debug(f"Routing message for {conversation_id}: {message[:MESSAGE_PREVIEW_CHARS]}...")

        try:
            conversation = self.store.get_conversation(conversation_id)
        except Exception as e:
            error = handle_error(e, self.decision_logger, {"conversation_id": conversation_id})
            result = RouteResult(
                decision=RouteDecisionType.CONTINUE,
                confidence=DEFAULT_CONFIDENCE,
                reason="conversation unavailable, continuing",
                session_id=conversation_id,
                lifecycle_error=str(error),
            )
            self._record(message, conversation_id, result, DecisionTrace(result=result), start_time)
            return result

        try:
            trace = await self.strategy.evaluate(message, conversation, config, now)
        except Exception as e:
            error = handle_error(e, self.decision_logger, {"conversation_id": conversation_id})
            result = RouteResult(
                decision=RouteDecisionType.CONTINUE,
                confidence=DEFAULT_CONFIDENCE,
                reason=f"routing failed, continuing: {str(error)}",
                session_id=conversation_id,
            )
            self._record(message, conversation_id, result, DecisionTrace(result=result), start_time)
            return result

        result = self._apply(trace.result, conversation, now)
        self._record(message, conversation_id, result, trace, start_time)

        if trace.context is not None:
            if trace.context.long_conversation:
                self.logger.info(
                    f"Conversation {conversation_id} has more than "
                    f"{config.long_conversation_messages} messages"
                )
            if (trace.context.band is ContextBand.WARNING
                    and result.decision is RouteDecisionType.CONTINUE):
                self._schedule_summary(conversation, config)

        return result

    async def resolve_prompt(self, result: RouteResult, conversation_id: str, choice: PromptChoice,
                             now: Optional[datetime] = None) -> RouteResult:
        """
        Apply the user's answer to a PromptUser decision.

        Args:
            result: The PromptUser result returned by route()
            conversation_id: Id of the session the prompt was raised for
            choice: What the user picked
            now: Decision time (defaults to the current time)

        Returns:
            The resolved RouteResult with `session_id` set

        Raises:
            ValueError: If `result` is not a PromptUser decision
        """
        if result.decision is not RouteDecisionType.PROMPT_USER:
            raise ValueError(f"Only prompt_user decisions can be resolved, got {result.decision.value}")

        start_time = time.perf_counter()
        now = now or utc_now()

        try:
            conversation = self.store.get_conversation(conversation_id)
        except Exception as e:
            error = handle_error(e, self.decision_logger, {"conversation_id": conversation_id})
            return dataclasses.replace(result, session_id=conversation_id, lifecycle_error=str(error))

        trace = DecisionTrace(result=result)
        if choice is not PromptChoice.CONTINUE and not result.summary_carry_over:
            carry_over, trace.carry_over_fallback = await self.aggregator.build_carry_over(
                conversation, self.config, trace.degraded
            )
            result = dataclasses.replace(result, summary_carry_over=carry_over)

        try:
            resolved = self.lifecycle.resolve_prompt(result, conversation, self.store, choice, now)
        except StoreError as e:
            self.decision_logger.log_error(e, {"conversation_id": conversation_id})
            resolved = RouteResult(
                decision=RouteDecisionType(choice.value),
                confidence=result.confidence,
                reason=f"user chose {choice.value} ({result.reason})",
                summary_carry_over=result.summary_carry_over,
                signals_fired=result.signals_fired,
                session_id=conversation_id,
                lifecycle_error=str(e),
            )

        trace.result = resolved
        self._record("", conversation_id, resolved, trace, start_time, user_override=True)
        return resolved

    def _apply(self, result: RouteResult, conversation: Conversation, now: datetime) -> RouteResult:
        try:
            session_id = self.lifecycle.apply(result, conversation, self.store, now)
        except StoreError as e:
            self.decision_logger.log_error(e, {"conversation_id": conversation.id})
            return dataclasses.replace(result, session_id=conversation.id, lifecycle_error=str(e))
        return dataclasses.replace(result, session_id=session_id)

    def _record(self, message: str, conversation_id: str, result: RouteResult, trace: DecisionTrace,
                start_time: float, user_override: bool = False) -> None:
        self.decision_logger.log_decision(DecisionRecord(
            message_preview=message[:MESSAGE_PREVIEW_CHARS],
            decision=result.decision.value,
            confidence=result.confidence,
            signals_fired=tuple(sorted(result.signals_fired)),
            user_override=user_override,
            latency_ms=(time.perf_counter() - start_time) * 1000.0,
            conversation_id=conversation_id,
            reason=result.reason,
            degraded=tuple(trace.degraded),
            carry_over_fallback=trace.carry_over_fallback,
            long_conversation=bool(trace.context and trace.context.long_conversation),
            metadata={
                "strategy": trace.strategy,
                "session_id": result.session_id,
                "lifecycle_error": result.lifecycle_error,
            },
        ))

    def _schedule_summary(self, conversation: Conversation, config: RouterConfig) -> None:
        if self.aggregator.summarizer is None:
            return
        task = asyncio.ensure_future(self._refresh_summary(conversation, config))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _refresh_summary(self, conversation: Conversation, config: RouterConfig) -> None:
        try:
            summary = await asyncio.wait_for(
                self.aggregator.summarizer.summarize(conversation.transcript()),
                timeout=config.summary_timeout_ms / 1000.0,
            )
            if summary and summary.strip():
                self.store.update_summary(conversation.id, summary.strip())
                self.logger.info(f"Rolling summary updated for {conversation.id}")
        except asyncio.TimeoutError:
            self.decision_logger.log_degradation("summarizer", "background summary timeout")
        except Exception as e:
            self.decision_logger.log_degradation("summarizer", f"background summary failed: {str(e)}")

    async def wait_for_background_tasks(self) -> None:
        """Wait for pending background summaries (used on shutdown and in tests)."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    def get_statistics(self) -> Dict[str, Any]:
        """Get decision statistics for threshold tuning."""
        stats = self.decision_logger.get_statistics()
        stats['strategy'] = self.strategy.name
        stats['pending_background_tasks'] = len(self._background_tasks)
        return stats

    def get_recent_decisions(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Get recent decision records for debugging and analysis."""
        return self.decision_logger.get_recent_decisions(limit)

    def clear_decision_log(self) -> None:
        self.decision_logger.clear()
