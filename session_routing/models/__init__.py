"""
Core data models for the Session Routing Engine.
"""

from .core import (
    Message,
    Conversation,
    IntentMatch,
    HealthReport,
    IntentSignal,
    TimeGapSignal,
    ContextSignal,
    SemanticSignal,
    HealthSignal,
    SignalResult,
    RouteResult,
    DecisionRecord,
    as_utc,
)

from .config import (
    RouterConfig,
    SystemConfig,
    OpenAIConfig,
    LocalLLMConfig,
    LoggingConfig,
    DEFAULT_INTENT_KEYWORDS,
    DEFAULT_FRUSTRATION_MARKERS,
)

from .enums import (
    RouteDecisionType,
    Severity,
    SignalName,
    SessionState,
    MessageRole,
    TaskType,
    ContextBand,
    PromptChoice,
)

__all__ = [
    # Core models
    "Message",
    "Conversation",
    "IntentMatch",
    "HealthReport",
    "IntentSignal",
    "TimeGapSignal",
    "ContextSignal",
    "SemanticSignal",
    "HealthSignal",
    "SignalResult",
    "RouteResult",
    "DecisionRecord",
    "as_utc",
    # Configuration models
    "RouterConfig",
    "SystemConfig",
    "OpenAIConfig",
    "LocalLLMConfig",
    "LoggingConfig",
    "DEFAULT_INTENT_KEYWORDS",
    "DEFAULT_FRUSTRATION_MARKERS",
    # Enums
    "RouteDecisionType",
    "Severity",
    "SignalName",
    "SessionState",
    "MessageRole",
    "TaskType",
    "ContextBand",
    "PromptChoice",
]
