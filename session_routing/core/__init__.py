"""
Core components of the Session Routing Engine.
"""

from .router import SessionRouter
from .aggregator import DecisionAggregator, DecisionTrace
from .strategies import ModelJudgedStrategy, RoutingStrategy
from .lifecycle import SessionLifecycleManager
from .intent import IntentDetector
from .signals import TimeGapEvaluator, ContextMonitor, SemanticRelevanceAnalyzer
from .health import ConversationHealthAssessor
from .interfaces import (
    CharacterTokenEstimator,
    InMemorySessionStore,
    LLMContradictionClassifier,
    LLMIntentClassifier,
    LLMSummarizer,
    OllamaChatClient,
    OpenAIChatClient,
    OpenAIEmbeddingScorer,
)

__all__ = [
    "SessionRouter",
    "DecisionAggregator",
    "DecisionTrace",
    "ModelJudgedStrategy",
    "RoutingStrategy",
    "SessionLifecycleManager",
    "IntentDetector",
    "TimeGapEvaluator",
    "ContextMonitor",
    "SemanticRelevanceAnalyzer",
    "ConversationHealthAssessor",
    "CharacterTokenEstimator",
    "InMemorySessionStore",
    "LLMContradictionClassifier",
    "LLMIntentClassifier",
    "LLMSummarizer",
    "OllamaChatClient",
    "OpenAIChatClient",
    "OpenAIEmbeddingScorer",
]
