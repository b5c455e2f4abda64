"""
Configuration management for the Session Routing Engine.
"""

import dataclasses
import json
import os
from pathlib import Path
from typing import Optional, Dict, Any, Mapping
import logging

from ..models.config import (
    SystemConfig, RouterConfig, LocalLLMConfig, OpenAIConfig, LoggingConfig
)
from .error_handling import ConfigurationError


_ROUTER_FIELDS = {f.name for f in dataclasses.fields(RouterConfig)}
_KEYWORD_FIELDS = ("intent_keywords", "frustration_markers")


class ConfigManager:
    """
    Manages system configuration loading, validation, and per-user overrides.
    """

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or "session_routing.json"
        self._config: Optional[SystemConfig] = None
        self.logger = logging.getLogger(__name__)

    def load_config(self) -> SystemConfig:
        """
        Load configuration from file or create default configuration.

        Returns:
            SystemConfig instance

        Raises:
            ConfigurationError: If configuration loading or validation fails
        """
        try:
            if Path(self.config_path).exists():
                with open(self.config_path, 'r', encoding='utf-8') as f:
                    config_data = json.load(f)
                config = self.dict_to_config(config_data)
                self.logger.info(f"Configuration loaded from {self.config_path}")
            else:
                config = SystemConfig()
                self.logger.info("Default configuration created")

            self._apply_environment(config)
            self.validate_config(config)
            self._config = config
            return config

        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Failed to load configuration: {str(e)}")

    def save_config(self, config: Optional[SystemConfig] = None) -> None:
        """
        Save configuration to file.

        Args:
            config: Configuration to save (uses current config if None)

        Raises:
            ConfigurationError: If configuration saving fails
        """
        try:
            config_to_save = config or self._config
            if not config_to_save:
                raise ConfigurationError("No configuration to save")

            config_dict = self.config_to_dict(config_to_save)

            # Ensure directory exists
            Path(self.config_path).parent.mkdir(parents=True, exist_ok=True)

            with open(self.config_path, 'w', encoding='utf-8') as f:
                json.dump(config_dict, f, indent=2, ensure_ascii=False, default=str)

            self.logger.info(f"Configuration saved to {self.config_path}")

        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Failed to save configuration: {str(e)}")

    def get_config(self) -> SystemConfig:
        """
        Get current configuration, loading if necessary.

        Returns:
            SystemConfig instance
        """
        if self._config is None:
            self._config = self.load_config()
        return self._config

    def update_config(self, updates: Dict[str, Any]) -> SystemConfig:
        """
        Update configuration with new values.

        Args:
            updates: Dictionary of configuration updates

        Returns:
            Updated SystemConfig instance
        """
        current_config = self.get_config()
        config_dict = self.config_to_dict(current_config)

        self._deep_update(config_dict, updates)

        updated_config = self.dict_to_config(config_dict)
        self.validate_config(updated_config)

        self._config = updated_config
        self.save_config()

        return updated_config

    def router_config_for(self, user_id: Optional[str] = None) -> RouterConfig:
        """Return the router config with the user's stored overrides applied."""
        config = self.get_config()
        overrides = config.user_overrides.get(user_id or "", {})
        return self.merge_overrides(config.router_config, overrides)

    @classmethod
    def merge_overrides(cls, base: RouterConfig, overrides: Optional[Mapping[str, Any]]) -> RouterConfig:
        """
        Shallow-merge a partial router config over `base`.

        Args:
            base: Configuration to start from (not modified)
            overrides: Partial mapping of RouterConfig field names to values

        Returns:
            A new, validated RouterConfig

        Raises:
            ConfigurationError: On unknown keys or invalid resulting values
        """
        if not overrides:
            return base

        unknown = set(overrides) - _ROUTER_FIELDS
        if unknown:
            raise ConfigurationError(
                f"Unknown router configuration keys: {', '.join(sorted(unknown))}",
                config_key=sorted(unknown)[0]
            )

        values = dict(overrides)
        for key in _KEYWORD_FIELDS:
            if key in values:
                values[key] = cls._normalize_keyword_map(key, values[key])

        merged = dataclasses.replace(base, **values)
        cls.validate_router_config(merged)
        return merged

    def validate_config(self, config: SystemConfig) -> None:
        """
        Validate configuration settings.

        Args:
            config: Configuration to validate

        Raises:
            ConfigurationError: If validation fails
        """
        if config.openai_config.api_key and not config.openai_config.api_key.startswith('sk-'):
            self.logger.warning("OpenAI API key format may be invalid")

        if config.openai_config.timeout_seconds <= 0:
            raise ConfigurationError("OpenAI timeout must be positive", config_key="timeout_seconds")

        if config.local_llm_config.timeout_seconds <= 0:
            raise ConfigurationError("Local LLM timeout must be positive", config_key="timeout_seconds")

        self.validate_router_config(config.router_config)

        for user_id, overrides in config.user_overrides.items():
            try:
                self.merge_overrides(config.router_config, overrides)
            except ConfigurationError as e:
                raise ConfigurationError(
                    f"Invalid overrides for user {user_id}: {e.message}", config_key=e.config_key
                )

    @staticmethod
    def validate_router_config(config: RouterConfig) -> None:
        """
        Validate router thresholds and keyword lists.

        Raises:
            ConfigurationError: If any value is out of range
        """
        for key in ("semantic_threshold", "semantic_low_threshold", "context_warning_pct",
                    "context_critical_pct", "context_emergency_pct"):
            value = getattr(config, key)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0 <= value <= 1:
                raise ConfigurationError(f"{key} must be between 0 and 1, got {value!r}", config_key=key)

        if config.semantic_low_threshold > config.semantic_threshold:
            raise ConfigurationError(
                "semantic_low_threshold must not exceed semantic_threshold",
                config_key="semantic_low_threshold"
            )

        if not config.context_warning_pct <= config.context_critical_pct <= config.context_emergency_pct:
            raise ConfigurationError(
                "Context thresholds must satisfy warning <= critical <= emergency",
                config_key="context_critical_pct"
            )

        for key in ("time_gap_reinject_hours", "time_gap_prompt_hours", "time_gap_new_session_hours"):
            value = getattr(config, key)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                raise ConfigurationError(f"{key} must be a non-negative number, got {value!r}", config_key=key)

        if not config.time_gap_reinject_hours <= config.time_gap_prompt_hours <= config.time_gap_new_session_hours:
            raise ConfigurationError(
                "Time gap thresholds must satisfy reinject <= prompt <= new_session",
                config_key="time_gap_prompt_hours"
            )

        for key in ("fuzzy_edit_distance_max", "carry_over_fallback_chars", "long_conversation_messages"):
            value = getattr(config, key)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ConfigurationError(f"{key} must be a non-negative integer, got {value!r}", config_key=key)

        for key in ("health_error_repeat_threshold", "frustration_max_length", "contradiction_window",
                    "semantic_timeout_ms", "slow_path_timeout_ms", "summary_timeout_ms",
                    "idempotency_bucket_seconds", "default_model_max_tokens"):
            value = getattr(config, key)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ConfigurationError(f"{key} must be a positive integer, got {value!r}", config_key=key)

        if not config.intent_keywords or not any(config.intent_keywords.values()):
            raise ConfigurationError("At least one intent keyword is required", config_key="intent_keywords")

        for key in _KEYWORD_FIELDS:
            for locale, keywords in getattr(config, key).items():
                if any(not isinstance(k, str) or not k.strip() for k in keywords):
                    raise ConfigurationError(
                        f"{key}[{locale}] contains an empty or non-string entry", config_key=key
                    )

    def dict_to_config(self, config_dict: Dict[str, Any]) -> SystemConfig:
        """Convert dictionary to SystemConfig object."""
        try:
            router_values = dict(config_dict.get('router_config', {}))
            for key in _KEYWORD_FIELDS:
                if key in router_values:
                    router_values[key] = self._normalize_keyword_map(key, router_values[key])

            return SystemConfig(
                router_config=RouterConfig(**router_values),
                openai_config=OpenAIConfig(**config_dict.get('openai_config', {})),
                local_llm_config=LocalLLMConfig(**config_dict.get('local_llm_config', {})),
                logging_config=LoggingConfig(**config_dict.get('logging_config', {})),
                user_overrides=config_dict.get('user_overrides', {}),
                debug_mode=config_dict.get('debug_mode', False),
                metadata=config_dict.get('metadata', {})
            )
        except TypeError as e:
            raise ConfigurationError(f"Malformed configuration: {str(e)}")

    def config_to_dict(self, config: SystemConfig) -> Dict[str, Any]:
        """Convert SystemConfig object to dictionary."""
        router_dict = dataclasses.asdict(config.router_config)
        for key in _KEYWORD_FIELDS:
            router_dict[key] = {locale: list(words) for locale, words in router_dict[key].items()}

        return {
            'router_config': router_dict,
            'openai_config': {**config.openai_config.__dict__, 'api_key': ''},
            'local_llm_config': config.local_llm_config.__dict__,
            'logging_config': config.logging_config.__dict__,
            'user_overrides': config.user_overrides,
            'debug_mode': config.debug_mode,
            'metadata': config.metadata
        }

    def _apply_environment(self, config: SystemConfig) -> None:
        """Fill secrets that are not stored in the config file."""
        if not config.openai_config.api_key:
            config.openai_config.api_key = os.environ.get("OPENAI_API_KEY", "")

    @staticmethod
    def _normalize_keyword_map(key: str, value: Any) -> Dict[str, tuple]:
        if not isinstance(value, Mapping):
            raise ConfigurationError(f"{key} must map locales to keyword lists", config_key=key)
        normalized = {}
        for locale, words in value.items():
            if isinstance(words, str) or not hasattr(words, '__iter__'):
                raise ConfigurationError(f"{key}[{locale}] must be a list of strings", config_key=key)
            normalized[str(locale)] = tuple(words)
        return normalized

    def _deep_update(self, base_dict: Dict[str, Any], updates: Dict[str, Any]) -> None:
        """Recursively update nested dictionary."""
        for key, value in updates.items():
            if key in base_dict and isinstance(base_dict[key], dict) and isinstance(value, dict):
                self._deep_update(base_dict[key], value)
            else:
                base_dict[key] = value
