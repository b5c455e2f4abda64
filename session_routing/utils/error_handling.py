"""
Error handling utilities and custom exceptions for the Session Routing Engine.
"""

from typing import Optional, Dict, Any


class SessionRoutingError(Exception):
    """Base exception for all Session Routing Engine errors."""

    def __init__(self, message: str, error_code: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}


class ConfigurationError(SessionRoutingError):
    """Raised when configuration values are malformed (fatal at load time)."""

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        super().__init__(message, error_code="CONFIG_INVALID", **kwargs)
        self.config_key = config_key


class SignalUnavailableError(SessionRoutingError):
    """Raised when a signal's external collaborator times out or fails."""

    def __init__(self, message: str, signal_name: Optional[str] = None, **kwargs):
        super().__init__(message, error_code="SIGNAL_UNAVAILABLE", **kwargs)
        self.signal_name = signal_name


class StoreError(SessionRoutingError):
    """Raised when the session store cannot create or update a session."""

    def __init__(self, message: str, session_id: Optional[str] = None, **kwargs):
        kwargs.setdefault("error_code", "STORE_FAILURE")
        super().__init__(message, **kwargs)
        self.session_id = session_id


class SessionGraphError(StoreError):
    """Raised when a parent link would make a session its own ancestor."""

    def __init__(self, message: str, session_id: Optional[str] = None, **kwargs):
        super().__init__(message, session_id=session_id, error_code="SESSION_GRAPH", **kwargs)


class AggregationTimeoutError(SessionRoutingError):
    """Raised when the slow-path join exceeds its overall bound."""

    def __init__(self, message: str, pending_signals: Optional[list] = None, **kwargs):
        super().__init__(message, error_code="AGGREGATION_TIMEOUT", **kwargs)
        self.pending_signals = pending_signals or []


def handle_error(error: Exception, logger=None, context: Optional[Dict[str, Any]] = None) -> SessionRoutingError:
    """
    Convert generic exceptions to SessionRoutingError instances.

    Args:
        error: The original exception
        logger: Optional DecisionLogger for error reporting
        context: Additional context information

    Returns:
        SessionRoutingError instance
    """
    if isinstance(error, SessionRoutingError):
        routing_error = error
    elif isinstance(error, (ValueError, TypeError)):
        routing_error = ConfigurationError(str(error), context=context)
    elif isinstance(error, TimeoutError):
        routing_error = SignalUnavailableError(f"Operation timed out: {str(error) or type(error).__name__}", context=context)
    elif isinstance(error, ConnectionError):
        routing_error = SignalUnavailableError(str(error), context=context)
    else:
        routing_error = SessionRoutingError(str(error), context=context)

    if logger:
        logger.log_error(routing_error, context)

    return routing_error
