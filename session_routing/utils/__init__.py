"""
Utility modules for the Session Routing Engine.
"""

from .logging import setup_logging, get_logger, DecisionLogger
from .config_manager import ConfigManager
from .error_handling import (
    SessionRoutingError,
    ConfigurationError,
    SignalUnavailableError,
    StoreError,
    SessionGraphError,
    AggregationTimeoutError,
    handle_error,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "DecisionLogger",
    "ConfigManager",
    "SessionRoutingError",
    "ConfigurationError",
    "SignalUnavailableError",
    "StoreError",
    "SessionGraphError",
    "AggregationTimeoutError",
    "handle_error",
]
