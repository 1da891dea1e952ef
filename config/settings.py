"""
Configuration management module with environment variable support, validation, and singleton pattern.

This module provides a centralized configuration system that:
- Loads settings from environment variables using python-dotenv
- Validates configuration values with descriptive error messages
- Supports different environments (dev, test, prod)
- Implements singleton pattern for consistent configuration access
- Provides type-annotated properties with sensible defaults

Config Schema:
    ENVIRONMENT (str): Application environment (dev, test, prod)
    LOG_LEVEL (str): Logging level (DEBUG, INFO, WARNING, ERROR)
    USE_LOGURU (bool): Route logging through loguru instead of plain logging
    STORAGE_BACKEND (str): Durable key-value store ("memory" or "file")
    STORAGE_PATH (str): Path of the JSON file used by the file store
    STORAGE_QUOTA_BYTES (int): Optional byte quota for the store (0 = unlimited)
    MAX_EVENTS (int): Newest analytics events kept in the durable log
    RETENTION_DAYS (int): Analytics retention window in days
    BATCH_DELAY_MS (int): Delay before buffered analytics events are flushed
    CACHE_TTL_SECONDS (int): Lifetime of a cached suggestion list
    MAX_CACHE_SIZE (int): Maximum number of cached suggestion lists
    SEMANTIC_BACKEND (str): Semantic suggestion collaborator ("static" or "openai")
    OPENAI_API_KEY (str): API key for the OpenAI-compatible semantic backend
    SEMANTIC_MODEL (str): Chat model used by the semantic backend
    SUGGESTION_TABLES_PATH (str): YAML file with the static trending/semantic tables
"""

import os
from pathlib import Path
from typing import Optional, Literal

from dotenv import load_dotenv


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""
    pass


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ('true', '1', 'yes', 'on')


class Config:
    """
    Singleton configuration class that manages application settings.

    Loads configuration from environment variables and provides validation
    with descriptive error messages for missing or invalid values.
    """

    _instance: Optional['Config'] = None
    _initialized: bool = False

    def __new__(cls) -> 'Config':
        """Implement singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        """Initialize configuration if not already done."""
        if not self._initialized:
            self._load_environment()
            self._initialized = True

    def _load_environment(self) -> None:
        """Load environment variables from .env file if available."""
        # Try to load from .env file in project root
        env_path = Path(__file__).parent.parent / ".env"
        if env_path.exists():
            load_dotenv(env_path)

    def _positive_int(self, name: str, default: str, allow_zero: bool = False) -> int:
        try:
            value = int(os.getenv(name, default))
            if value < 0 or (value == 0 and not allow_zero):
                raise ValueError(f"{name} must be {'non-negative' if allow_zero else 'positive'}")
            return value
        except ValueError as e:
            raise ConfigurationError(f"Invalid {name}: {e}")

    @property
    def ENVIRONMENT(self) -> Literal['dev', 'test', 'prod']:
        """Application environment."""
        env = os.getenv('ENVIRONMENT', 'dev').lower()
        if env not in ('dev', 'test', 'prod'):
            raise ConfigurationError(f"ENVIRONMENT must be one of 'dev', 'test', 'prod', got '{env}'")
        return env  # type: ignore

    @property
    def LOG_LEVEL(self) -> str:
        """Logging level."""
        level = os.getenv('LOG_LEVEL', 'INFO').upper()
        valid_levels = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')
        if level not in valid_levels:
            raise ConfigurationError(f"LOG_LEVEL must be one of {valid_levels}, got '{level}'")
        return level

    @property
    def USE_LOGURU(self) -> bool:
        """Whether to use loguru for structured logging instead of standard logging."""
        return _env_flag('USE_LOGURU', 'true')

    # Storage Configuration
    @property
    def STORAGE_BACKEND(self) -> Literal['memory', 'file']:
        """Durable key-value store backing analytics and privacy settings."""
        backend = os.getenv('STORAGE_BACKEND', 'file').lower()
        if backend not in ('memory', 'file'):
            raise ConfigurationError(f"STORAGE_BACKEND must be one of 'memory', 'file', got '{backend}'")
        return backend  # type: ignore

    @property
    def STORAGE_PATH(self) -> str:
        """Path to the JSON file used by the file store."""
        return os.getenv('STORAGE_PATH', './data/search_intel.json')

    @property
    def STORAGE_QUOTA_BYTES(self) -> Optional[int]:
        """Byte quota of the durable store, None when unlimited."""
        value = self._positive_int('STORAGE_QUOTA_BYTES', '0', allow_zero=True)
        return value or None

    # Analytics Configuration
    @property
    def MAX_EVENTS(self) -> int:
        """Newest analytics events kept in the durable log."""
        return self._positive_int('MAX_EVENTS', '1000')

    @property
    def RETENTION_DAYS(self) -> int:
        """Analytics retention window in days."""
        return self._positive_int('RETENTION_DAYS', '30')

    @property
    def BATCH_DELAY_MS(self) -> int:
        """Delay before buffered analytics events are written."""
        return self._positive_int('BATCH_DELAY_MS', '100', allow_zero=True)

    # Suggestion Configuration
    @property
    def CACHE_TTL_SECONDS(self) -> int:
        """Lifetime of a cached suggestion list."""
        return self._positive_int('CACHE_TTL_SECONDS', '300')

    @property
    def MAX_CACHE_SIZE(self) -> int:
        """Maximum number of cached suggestion lists."""
        return self._positive_int('MAX_CACHE_SIZE', '100')

    @property
    def SEMANTIC_BACKEND(self) -> Literal['static', 'openai']:
        """Collaborator used for AI semantic suggestions."""
        backend = os.getenv('SEMANTIC_BACKEND', 'static').lower()
        if backend not in ('static', 'openai'):
            raise ConfigurationError(f"SEMANTIC_BACKEND must be one of 'static', 'openai', got '{backend}'")
        return backend  # type: ignore

    @property
    def OPENAI_API_KEY(self) -> str:
        """API key for OpenAI service."""
        return os.getenv('OPENAI_API_KEY', '')

    @property
    def OPENAI_BASE_URL(self) -> Optional[str]:
        """Base URL for OpenAI API (for proxy or alternative endpoints)."""
        return os.getenv('OPENAI_BASE_URL', None)

    @property
    def SEMANTIC_MODEL(self) -> str:
        """Chat model asked for related queries."""
        return os.getenv('SEMANTIC_MODEL', 'gpt-4o-mini')

    @property
    def SUGGESTION_TABLES_PATH(self) -> str:
        """YAML file holding the static trending and semantic tables."""
        default = Path(__file__).parent / 'suggestion_tables.yaml'
        return os.getenv('SUGGESTION_TABLES_PATH', str(default))

    # System Components Configuration
    @property
    def ENABLE_PROMETHEUS_METRICS(self) -> bool:
        """Whether to enable Prometheus metrics collection."""
        return _env_flag('ENABLE_PROMETHEUS_METRICS', 'true')

    @property
    def ENABLE_RATE_LIMITING(self) -> bool:
        """Whether to enable request rate limiting."""
        return _env_flag('ENABLE_RATE_LIMITING', 'true')

    @property
    def RATE_LIMIT_REQUESTS(self) -> int:
        """Maximum requests per time window for rate limiting."""
        return self._positive_int('RATE_LIMIT_REQUESTS', '100')

    @property
    def RATE_LIMIT_WINDOW(self) -> int:
        """Time window in seconds for rate limiting."""
        return self._positive_int('RATE_LIMIT_WINDOW', '60')

    @property
    def TIMEOUT_SECONDS(self) -> int:
        """Request timeout in seconds."""
        return self._positive_int('TIMEOUT_SECONDS', '30')

    @property
    def ENABLE_RETRY_LOGIC(self) -> bool:
        """Whether to enable tenacity-based retry logic for resilient operations."""
        return _env_flag('ENABLE_RETRY_LOGIC', 'true')

    def validate(self) -> None:
        """
        Validate all configuration values.

        Raises:
            ConfigurationError: If any configuration is missing or invalid.
        """
        errors = []

        checked = (
            'ENVIRONMENT', 'LOG_LEVEL', 'STORAGE_BACKEND', 'STORAGE_QUOTA_BYTES',
            'MAX_EVENTS', 'RETENTION_DAYS', 'BATCH_DELAY_MS', 'CACHE_TTL_SECONDS',
            'MAX_CACHE_SIZE', 'SEMANTIC_BACKEND', 'RATE_LIMIT_REQUESTS',
            'RATE_LIMIT_WINDOW', 'TIMEOUT_SECONDS',
        )
        for name in checked:
            try:
                getattr(self, name)
            except ConfigurationError as e:
                errors.append(str(e))

        # The OpenAI backend cannot run without a key
        try:
            if self.SEMANTIC_BACKEND == 'openai' and not self.OPENAI_API_KEY.strip():
                errors.append("OPENAI_API_KEY is required when SEMANTIC_BACKEND is 'openai'")
        except ConfigurationError:
            pass

        # Validate storage path
        try:
            if self.STORAGE_BACKEND == 'file':
                storage_dir = Path(self.STORAGE_PATH).parent
                if not storage_dir.exists():
                    try:
                        storage_dir.mkdir(parents=True, exist_ok=True)
                    except (OSError, PermissionError) as e:
                        errors.append(f"Cannot create directory for STORAGE_PATH '{self.STORAGE_PATH}': {e}")
        except ConfigurationError:
            pass

        if errors:
            error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors)
            raise ConfigurationError(error_msg)

    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.ENVIRONMENT == 'dev'

    def is_test(self) -> bool:
        """Check if running in test environment."""
        return self.ENVIRONMENT == 'test'

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT == 'prod'

    def to_dict(self) -> dict:
        """
        Convert configuration to dictionary for debugging.

        Note: Sensitive values (API keys) are masked.
        """
        return {
            'ENVIRONMENT': self.ENVIRONMENT,
            'LOG_LEVEL': self.LOG_LEVEL,
            'USE_LOGURU': self.USE_LOGURU,
            'STORAGE_BACKEND': self.STORAGE_BACKEND,
            'STORAGE_PATH': self.STORAGE_PATH,
            'STORAGE_QUOTA_BYTES': self.STORAGE_QUOTA_BYTES,
            'MAX_EVENTS': self.MAX_EVENTS,
            'RETENTION_DAYS': self.RETENTION_DAYS,
            'BATCH_DELAY_MS': self.BATCH_DELAY_MS,
            'CACHE_TTL_SECONDS': self.CACHE_TTL_SECONDS,
            'MAX_CACHE_SIZE': self.MAX_CACHE_SIZE,
            'SEMANTIC_BACKEND': self.SEMANTIC_BACKEND,
            'OPENAI_API_KEY': '***' if self.OPENAI_API_KEY else '',
            'OPENAI_BASE_URL': self.OPENAI_BASE_URL,
            'SEMANTIC_MODEL': self.SEMANTIC_MODEL,
            'SUGGESTION_TABLES_PATH': self.SUGGESTION_TABLES_PATH,
            'ENABLE_PROMETHEUS_METRICS': self.ENABLE_PROMETHEUS_METRICS,
            'ENABLE_RATE_LIMITING': self.ENABLE_RATE_LIMITING,
            'RATE_LIMIT_REQUESTS': self.RATE_LIMIT_REQUESTS,
            'RATE_LIMIT_WINDOW': self.RATE_LIMIT_WINDOW,
            'TIMEOUT_SECONDS': self.TIMEOUT_SECONDS,
            'ENABLE_RETRY_LOGIC': self.ENABLE_RETRY_LOGIC,
        }

    def __repr__(self) -> str:
        """String representation of configuration."""
        config_dict = self.to_dict()
        return f"Config({', '.join(f'{k}={v}' for k, v in config_dict.items())})"


# Global configuration instance
config = Config()
