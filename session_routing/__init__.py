"""
Session Routing Engine

Decides, for each incoming chat message, whether it continues the current
session, starts a new one, forks a linked child session, or needs the user
to confirm, and performs the resulting session lifecycle transition.
"""

__version__ = "0.1.0"
__author__ = "Session Routing Engine"

from .models import (
    Message,
    Conversation,
    RouteResult,
    RouteDecisionType,
    PromptChoice,
    RouterConfig,
    SystemConfig,
)
from .core import SessionRouter, DecisionAggregator, ModelJudgedStrategy, InMemorySessionStore

__all__ = [
    "Message",
    "Conversation",
    "RouteResult",
    "RouteDecisionType",
    "PromptChoice",
    "RouterConfig",
    "SystemConfig",
    "SessionRouter",
    "DecisionAggregator",
    "ModelJudgedStrategy",
    "InMemorySessionStore",
]
