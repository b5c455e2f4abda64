"""
Core data models for conversation snapshots, signals and routing results.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Any, Optional, Tuple, FrozenSet, Union
from .enums import (
    ContextBand, MessageRole, RouteDecisionType, SessionState, Severity,
    SignalName, TaskType,
)


@dataclass(frozen=True)
class Message:
    """A single conversation message. Immutable once appended."""
    role: MessageRole
    content: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    token_estimate: Optional[int] = None

    @property
    def is_question(self) -> bool:
        return self.content.rstrip().endswith(("?", "？"))


@dataclass(frozen=True)
class Conversation:
    """Read-only snapshot of a session supplied by the host application."""
    id: str
    messages: Tuple[Message, ...] = ()
    model_max_tokens: int = 0
    parent_session_id: Optional[str] = None
    summary: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    state: SessionState = SessionState.ACTIVE
    task_type: TaskType = TaskType.GENERAL

    def __post_init__(self):
        # Accept any sequence but store a tuple so the snapshot stays immutable
        if not isinstance(self.messages, tuple):
            object.__setattr__(self, "messages", tuple(self.messages))
        for previous, current in zip(self.messages, self.messages[1:]):
            if as_utc(current.timestamp) < as_utc(previous.timestamp):
                raise ValueError(
                    f"Messages in conversation {self.id} are not ordered by timestamp"
                )

    @property
    def last_message(self) -> Optional[Message]:
        return self.messages[-1] if self.messages else None

    def transcript(self, limit: Optional[int] = None) -> str:
        """Render the (optionally truncated to the last `limit`) messages as text."""
        messages = self.messages[-limit:] if limit else self.messages
        return "\n".join(f"{m.role.value}: {m.content}" for m in messages)


def as_utc(timestamp: datetime) -> datetime:
    """Treat naive datetimes as UTC so naive and aware values can be compared."""
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc)


@dataclass(frozen=True)
class IntentMatch:
    """An explicit new-session phrase found in a message."""
    keyword: str
    locale: str
    tier: str  # "exact", "fuzzy" or "semantic"
    distance: int = 0


@dataclass(frozen=True)
class HealthReport:
    """Findings of the conversation health assessor."""
    error_loop: bool = False
    frustration: bool = False
    contradiction: bool = False
    dead_end: bool = False
    dead_end_counts: bool = False
    error_signature: str = ""

    @property
    def unhealthy(self) -> bool:
        return (
            self.error_loop or self.frustration or self.contradiction
            or (self.dead_end and self.dead_end_counts)
        )


# Signal results form a closed union: every evaluator returns exactly one of
# the frozen dataclasses below and the aggregator reads their severities.

@dataclass(frozen=True)
class IntentSignal:
    match: Optional[IntentMatch] = None
    signal_name: SignalName = field(default=SignalName.INTENT, init=False)

    @property
    def fired(self) -> bool:
        return self.match is not None

    @property
    def severity(self) -> Severity:
        return Severity.CRITICAL if self.match else Severity.NONE

    @property
    def detail(self) -> Dict[str, Any]:
        if not self.match:
            return {}
        return {"keyword": self.match.keyword, "locale": self.match.locale, "tier": self.match.tier}


@dataclass(frozen=True)
class TimeGapSignal:
    gap_seconds: float = 0.0
    severity: Severity = Severity.NONE
    reinject_context: bool = False
    open_question: bool = False
    task_type: TaskType = TaskType.GENERAL
    signal_name: SignalName = field(default=SignalName.TIME_GAP, init=False)

    @property
    def fired(self) -> bool:
        return self.severity is not Severity.NONE

    @property
    def detail(self) -> Dict[str, Any]:
        return {
            "gap_hours": round(self.gap_seconds / 3600.0, 2),
            "reinject_context": self.reinject_context,
            "open_question": self.open_question,
            "task_type": self.task_type.value,
        }


@dataclass(frozen=True)
class ContextSignal:
    utilization: float = 0.0
    band: ContextBand = ContextBand.NORMAL
    total_tokens: int = 0
    long_conversation: bool = False
    signal_name: SignalName = field(default=SignalName.CONTEXT, init=False)

    @property
    def severity(self) -> Severity:
        return {
            ContextBand.NORMAL: Severity.NONE,
            ContextBand.WARNING: Severity.LOW,
            ContextBand.CRITICAL: Severity.HIGH,
            ContextBand.EMERGENCY: Severity.CRITICAL,
        }[self.band]

    @property
    def fired(self) -> bool:
        return self.band is not ContextBand.NORMAL

    @property
    def detail(self) -> Dict[str, Any]:
        return {
            "utilization": round(self.utilization, 4),
            "band": self.band.value,
            "total_tokens": self.total_tokens,
            "long_conversation": self.long_conversation,
        }


@dataclass(frozen=True)
class SemanticSignal:
    similarity: Optional[float] = None
    low_threshold: float = 0.3
    high_threshold: float = 0.7
    error: str = ""
    signal_name: SignalName = field(default=SignalName.SEMANTIC, init=False)

    @property
    def available(self) -> bool:
        return self.similarity is not None

    @property
    def unrelated(self) -> bool:
        return self.similarity is not None and self.similarity < self.low_threshold

    @property
    def related(self) -> bool:
        return self.similarity is not None and self.similarity > self.high_threshold

    @property
    def severity(self) -> Severity:
        if self.unrelated:
            return Severity.HIGH
        if self.available and not self.related:
            return Severity.LOW
        return Severity.NONE

    @property
    def fired(self) -> bool:
        return self.severity is not Severity.NONE

    @property
    def detail(self) -> Dict[str, Any]:
        return {"similarity": self.similarity, "error": self.error}


@dataclass(frozen=True)
class HealthSignal:
    report: Optional[HealthReport] = None
    signal_name: SignalName = field(default=SignalName.HEALTH, init=False)

    @property
    def available(self) -> bool:
        return self.report is not None

    @property
    def unhealthy(self) -> bool:
        return self.report is not None and self.report.unhealthy

    @property
    def severity(self) -> Severity:
        if self.report is None:
            return Severity.NONE
        if self.report.error_loop:
            return Severity.HIGH
        if self.report.unhealthy:
            return Severity.MEDIUM
        if self.report.dead_end:
            return Severity.LOW
        return Severity.NONE

    @property
    def fired(self) -> bool:
        return self.severity is not Severity.NONE

    @property
    def detail(self) -> Dict[str, Any]:
        if self.report is None:
            return {}
        return {
            "error_loop": self.report.error_loop,
            "frustration": self.report.frustration,
            "contradiction": self.report.contradiction,
            "dead_end": self.report.dead_end,
        }


SignalResult = Union[IntentSignal, TimeGapSignal, ContextSignal, SemanticSignal, HealthSignal]


@dataclass(frozen=True)
class RouteResult:
    """The engine's externally visible routing decision."""
    decision: RouteDecisionType
    confidence: float
    reason: str = ""
    summary_carry_over: str = ""
    signals_fired: FrozenSet[str] = frozenset()
    session_id: str = ""
    lifecycle_error: str = ""

    def __post_init__(self):
        if not isinstance(self.decision, RouteDecisionType):
            raise ValueError(f"Unknown routing decision: {self.decision!r}")
        object.__setattr__(self, "confidence", min(max(float(self.confidence), 0.0), 1.0))
        object.__setattr__(self, "reason", self.reason or "")
        object.__setattr__(self, "summary_carry_over", self.summary_carry_over or "")
        object.__setattr__(self, "signals_fired", frozenset(self.signals_fired))
        object.__setattr__(self, "session_id", self.session_id or "")
        object.__setattr__(self, "lifecycle_error", self.lifecycle_error or "")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "decision": self.decision.value,
            "confidence": self.confidence,
            "reason": self.reason,
            "summary_carry_over": self.summary_carry_over,
            "signals_fired": sorted(self.signals_fired),
            "session_id": self.session_id,
            "lifecycle_error": self.lifecycle_error,
        }


@dataclass
class DecisionRecord:
    """Observability record written once per routing call."""
    message_preview: str
    decision: str
    confidence: float
    signals_fired: Tuple[str, ...]
    user_override: bool = False
    latency_ms: float = 0.0
    conversation_id: str = ""
    reason: str = ""
    degraded: Tuple[str, ...] = ()
    carry_over_fallback: bool = False
    long_conversation: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message_preview": self.message_preview,
            "decision": self.decision,
            "confidence": self.confidence,
            "signals_fired": list(self.signals_fired),
            "user_override": self.user_override,
            "latency_ms": round(self.latency_ms, 3),
            "conversation_id": self.conversation_id,
            "reason": self.reason,
            "degraded": list(self.degraded),
            "carry_over_fallback": self.carry_over_fallback,
            "long_conversation": self.long_conversation,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }
