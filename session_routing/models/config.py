"""
Configuration models for the Session Routing Engine.
"""

from dataclasses import dataclass, field
from typing import Dict, Any, Optional, Tuple
import logging


DEFAULT_INTENT_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "zh": (
        "新对话", "新会话", "换个话题", "重新开始", "新的问题",
        "不说这个了", "换一个", "另一个话题", "从头开始",
    ),
    "en": (
        "new chat", "new conversation", "new topic", "start over",
        "fresh start", "different subject", "switch topic", "change the subject",
    ),
}

DEFAULT_FRUSTRATION_MARKERS: Dict[str, Tuple[str, ...]] = {
    "zh": ("不对", "错了", "不是这个", "还是不行", "没用", "不行"),
    "en": (
        "no", "wrong", "not this", "still not working", "doesn't work",
        "does not work", "useless", "that's not it",
    ),
}


@dataclass(frozen=True)
class RouterConfig:
    """
    Thresholds and keyword lists for one routing decision.

    Instances are immutable; per-user overrides produce a new value through
    ConfigManager.merge_overrides.
    """
    semantic_threshold: float = 0.7
    semantic_low_threshold: float = 0.3
    context_warning_pct: float = 0.6
    context_critical_pct: float = 0.8
    context_emergency_pct: float = 0.95
    time_gap_reinject_hours: float = 1.0
    time_gap_prompt_hours: float = 4.0
    time_gap_new_session_hours: float = 24.0
    intent_keywords: Dict[str, Tuple[str, ...]] = field(
        default_factory=lambda: dict(DEFAULT_INTENT_KEYWORDS)
    )
    fuzzy_edit_distance_max: int = 2
    health_error_repeat_threshold: int = 3
    frustration_max_length: int = 40
    frustration_markers: Dict[str, Tuple[str, ...]] = field(
        default_factory=lambda: dict(DEFAULT_FRUSTRATION_MARKERS)
    )
    contradiction_window: int = 5
    dead_end_counts_as_unhealthy: bool = False
    semantic_timeout_ms: int = 200
    slow_path_timeout_ms: int = 250
    summary_timeout_ms: int = 2000
    carry_over_fallback_chars: int = 1500
    idempotency_bucket_seconds: int = 60
    default_model_max_tokens: int = 8192
    long_conversation_messages: int = 50


@dataclass
class OpenAIConfig:
    """Configuration for the OpenAI-backed collaborators."""
    api_key: str = ""
    base_url: Optional[str] = None
    chat_model: str = "gpt-4o-mini"
    embedding_model: str = "text-embedding-3-small"
    temperature: float = 0.0
    max_tokens: int = 600
    timeout_seconds: float = 10.0


@dataclass
class LocalLLMConfig:
    """Configuration for a local Ollama server."""
    model_path: str = "qwen2.5:7b"
    base_url: str = "http://localhost:11434"
    max_context_length: int = 4096
    temperature: float = 0.0
    timeout_seconds: int = 30


@dataclass
class LoggingConfig:
    """Configuration for system logging."""
    level: int = logging.INFO
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file_path: Optional[str] = "session_routing.log"
    max_file_size_mb: int = 100
    backup_count: int = 5
    enable_console: bool = True
    enable_file: bool = True
    decision_log_path: Optional[str] = None
    max_decision_history: int = 1000


@dataclass
class SystemConfig:
    """Main system configuration."""
    router_config: RouterConfig = field(default_factory=RouterConfig)
    openai_config: OpenAIConfig = field(default_factory=OpenAIConfig)
    local_llm_config: LocalLLMConfig = field(default_factory=LocalLLMConfig)
    logging_config: LoggingConfig = field(default_factory=LoggingConfig)
    user_overrides: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    debug_mode: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)
