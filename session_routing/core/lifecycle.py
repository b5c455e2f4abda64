"""
Session Lifecycle Manager: performs the state transition a decision requires.
"""

import dataclasses
import hashlib
from datetime import datetime, timezone
from typing import Optional

from ..models import (
    Conversation, PromptChoice, RouteDecisionType, RouteResult, SessionState, as_utc,
)
from ..utils import get_logger
from ..utils.error_handling import StoreError
from .interfaces import SessionStore


# A confirmed choice stays below explicit intent, the only path allowed 0.95
USER_CHOICE_CONFIDENCE = 0.94


class SessionLifecycleManager:
    """
    Applies routing decisions to the session store.

    NewSession archives the old session, Fork pauses it; both create a child
    whose `parent_session_id` points back. Session creation carries an
    idempotency key derived from (conversation id, reason, time bucket), so a
    retry with the same decision and snapshot returns the same child instead of
    creating a second one.
    """

    def __init__(self, idempotency_bucket_seconds: int = 60):
        self.idempotency_bucket_seconds = idempotency_bucket_seconds
        self.logger = get_logger(__name__)

    def apply(self, result: RouteResult, conversation: Conversation, store: SessionStore,
              now: Optional[datetime] = None) -> str:
        """
        Perform the transition required by `result`.

        Args:
            result: The routing decision
            conversation: Snapshot the decision was made on
            store: Session store to mutate
            now: Decision time used for the idempotency bucket

        Returns:
            The id of the session the next message belongs to

        Raises:
            StoreError: If the store rejects the creation or state update
        """
        if result.decision in (RouteDecisionType.CONTINUE, RouteDecisionType.PROMPT_USER):
            return conversation.id

        key = self.idempotency_key(conversation.id, result.reason, now or datetime.now(timezone.utc))

        # A retry sees the snapshot after the first transition
        if conversation.state is not SessionState.ACTIVE:
            try:
                existing = store.find_session(key)
            except StoreError:
                raise
            except Exception as e:
                raise StoreError(f"Idempotency lookup failed: {str(e)}", session_id=conversation.id)
            if existing:
                self.logger.info(f"Replayed {result.decision.value} for {conversation.id}, child {existing}")
                return existing

        if conversation.state is SessionState.ARCHIVED:
            raise StoreError(
                f"Session {conversation.id} is archived and cannot be transitioned again",
                session_id=conversation.id
            )

        new_state = (
            SessionState.ARCHIVED if result.decision is RouteDecisionType.NEW_SESSION
            else SessionState.PAUSED
        )

        try:
            new_id = store.create_session(
                parent_id=conversation.id,
                carry_over_message=result.summary_carry_over or None,
                idempotency_key=key,
            )
            store.set_session_state(conversation.id, new_state)
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(f"Session transition failed: {str(e)}", session_id=conversation.id)

        self.logger.info(
            f"Session {conversation.id} -> {new_state.value}, "
            f"{result.decision.value} child {new_id} created"
        )
        return new_id

    def resolve_prompt(self, result: RouteResult, conversation: Conversation, store: SessionStore,
                       choice: PromptChoice, now: Optional[datetime] = None) -> RouteResult:
        """
        Turn a PromptUser decision into the user's choice and apply it.

        Returns:
            The resolved RouteResult with `session_id` set
        """
        if result.decision is not RouteDecisionType.PROMPT_USER:
            raise ValueError(f"Only prompt_user decisions can be resolved, got {result.decision.value}")

        resolved = RouteResult(
            decision={
                PromptChoice.CONTINUE: RouteDecisionType.CONTINUE,
                PromptChoice.NEW_SESSION: RouteDecisionType.NEW_SESSION,
                PromptChoice.FORK: RouteDecisionType.FORK,
            }[choice],
            confidence=USER_CHOICE_CONFIDENCE if choice is not PromptChoice.CONTINUE else result.confidence,
            reason=f"user chose {choice.value} ({result.reason})",
            summary_carry_over=result.summary_carry_over,
            signals_fired=result.signals_fired,
        )
        session_id = self.apply(resolved, conversation, store, now)
        return dataclasses.replace(resolved, session_id=session_id)

    def idempotency_key(self, conversation_id: str, reason: str, now: datetime) -> str:
        bucket = int(as_utc(now).timestamp() // self.idempotency_bucket_seconds)
        digest = hashlib.sha256(reason.encode("utf-8")).hexdigest()[:16]
        return f"{conversation_id}:{digest}:{bucket}"
