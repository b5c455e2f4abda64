"""
Enumerations for the Session Routing Engine.
"""

from enum import Enum


class RouteDecisionType(Enum):
    """Possible outcomes of a routing decision."""
    CONTINUE = "continue"
    NEW_SESSION = "new_session"
    FORK = "fork"
    PROMPT_USER = "prompt_user"


class Severity(Enum):
    """Ordered severity of a single signal."""
    NONE = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    def __lt__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.value < other.value

    def __le__(self, other):
        if not isinstance(other, Severity):
            return NotImplemented
        return self.value <= other.value

    def lowered(self) -> "Severity":
        """Return the next lower severity (NONE stays NONE)."""
        return Severity(max(self.value - 1, 0))


class SignalName(Enum):
    """Names of the signals consumed by the aggregator."""
    INTENT = "intent"
    TIME_GAP = "time_gap"
    CONTEXT = "context"
    SEMANTIC = "semantic"
    HEALTH = "health"


class SessionState(Enum):
    """Lifecycle states of a session."""
    NEW = "new"
    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"


class MessageRole(Enum):
    """Author of a conversation message."""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class TaskType(Enum):
    """Kind of work a conversation is about."""
    GENERAL = "general"
    CODING = "coding"
    DEBUGGING = "debugging"


class ContextBand(Enum):
    """Context-window utilization bands."""
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"
    EMERGENCY = "emergency"


class PromptChoice(Enum):
    """User's answer to a PromptUser confirmation."""
    CONTINUE = "continue"
    NEW_SESSION = "new_session"
    FORK = "fork"
