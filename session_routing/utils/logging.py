"""
Logging utilities for the Session Routing Engine.
"""

import json
import logging
import logging.handlers
import sys
import threading
from collections import Counter, deque
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional

from ..models.config import LoggingConfig
from ..models.core import DecisionRecord


def setup_logging(config: LoggingConfig, debug_mode: bool = False) -> None:
    """
    Set up logging configuration for the system.

    Args:
        config: Logging configuration settings
        debug_mode: Log at DEBUG regardless of the configured level
    """
    level = logging.DEBUG if debug_mode else config.level
    root_logger = logging.getLogger("session_routing")
    root_logger.setLevel(level)

    # Clear any existing handlers
    root_logger.handlers.clear()

    formatter = logging.Formatter(config.format)

    if config.enable_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    # File handler with rotation
    if config.enable_file and config.file_path:
        file_path = Path(config.file_path)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            filename=config.file_path,
            maxBytes=config.max_file_size_mb * 1024 * 1024,
            backupCount=config.backup_count,
            encoding='utf-8'
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Prevent propagation to avoid duplicate logs
    root_logger.propagate = False


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a specific module.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    if name.startswith("session_routing"):
        return logging.getLogger(name)
    return logging.getLogger(f"session_routing.{name}")


class DecisionLogger:
    """
    Write-only recorder for routing decisions and degradation events.

    Every record goes to the `session_routing.decisions` logger with structured
    `extra` data, into a bounded in-memory history used for statistics, and,
    when `jsonl_path` is set, appended as one JSON line for offline threshold
    tuning. Recording never raises.
    """

    def __init__(self, name: str = "decisions", jsonl_path: Optional[str] = None,
                 max_history: int = 1000):
        self.logger = get_logger(name)
        self.jsonl_path = jsonl_path
        self._history: Deque[DecisionRecord] = deque(maxlen=max_history)
        self._lock = threading.Lock()
        self._degradations: Counter = Counter()

    @classmethod
    def from_config(cls, config: LoggingConfig) -> "DecisionLogger":
        return cls(jsonl_path=config.decision_log_path, max_history=config.max_decision_history)

    def log_decision(self, record: DecisionRecord) -> None:
        """Record a routing decision. Fire-and-forget."""
        try:
            data = record.to_dict()
            with self._lock:
                self._history.append(record)

            self.logger.info(
                f"Routing decision: {record.decision} "
                f"(confidence: {record.confidence:.2f}, reason: {record.reason}, "
                f"latency: {record.latency_ms:.1f}ms)",
                extra={
                    "event_type": "routing_decision",
                    "data": data
                }
            )

            if self.jsonl_path:
                self._append_jsonl(data)

        except Exception as e:
            self.logger.error(f"Failed to record routing decision: {str(e)}")

    def log_degradation(self, signal_name: str, reason: str, context: Optional[dict] = None) -> None:
        """Log a signal that was excluded from aggregation."""
        with self._lock:
            self._degradations[signal_name] += 1
        self.logger.warning(
            f"Signal degraded: {signal_name} ({reason})",
            extra={
                "event_type": "degradation",
                "signal_name": signal_name,
                "reason": reason,
                "context": context or {}
            }
        )

    def log_error(self, error: Exception, context: Optional[dict] = None) -> None:
        """Log an error with optional context."""
        self.logger.error(
            f"Error occurred: {str(error)}",
            extra={
                "event_type": "error",
                "error_type": type(error).__name__,
                "context": context or {}
            },
            exc_info=error if error.__traceback__ is not None else None
        )

    def get_recent_decisions(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Get recent decision records for debugging and analysis."""
        with self._lock:
            recent = list(self._history)[-limit:] if limit > 0 else []
        return [record.to_dict() for record in recent]

    def get_statistics(self) -> Dict[str, Any]:
        """Aggregate the in-memory history into tuning statistics."""
        with self._lock:
            history = list(self._history)
            degradations = dict(self._degradations)

        total = len(history)
        decisions = Counter(record.decision for record in history)
        signals = Counter(name for record in history for name in record.signals_fired)

        stats = {
            'total_decisions': total,
            'decision_counts': dict(decisions),
            'signal_counts': dict(signals),
            'user_overrides': sum(1 for record in history if record.user_override),
            'carry_over_fallbacks': sum(1 for record in history if record.carry_over_fallback),
            'degradations': degradations,
            'avg_latency_ms': (sum(record.latency_ms for record in history) / total) if total else 0.0,
            'avg_confidence': (sum(record.confidence for record in history) / total) if total else 0.0,
        }

        if total > 0:
            stats['decision_percentages'] = {
                decision: count / total * 100 for decision, count in decisions.items()
            }

        return stats

    def clear(self) -> None:
        """Clear the in-memory decision history."""
        with self._lock:
            self._history.clear()
            self._degradations.clear()
        self.logger.info("Decision history cleared")

    def _append_jsonl(self, data: Dict[str, Any]) -> None:
        path = Path(self.jsonl_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            with open(path, 'a', encoding='utf-8') as f:
                f.write(json.dumps(data, ensure_ascii=False, default=str) + "\n")
