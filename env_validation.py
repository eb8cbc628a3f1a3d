"""Environment variable validation and management."""

import os
import logging
from typing import Dict

logger = logging.getLogger(__name__)

DEFAULT_AI_BACKEND_URL = "http://localhost:3002/api/v1"
DEFAULT_AI_EVALUATOR_TIMEOUT = 10.0
DEFAULT_SELECTOR_MAX_WORKERS = 4


class EnvironmentConfigError(Exception):
    """Raised when environment variables are missing or invalid."""
    pass


def validate_environment() -> None:
    """Validate the engine's environment variables.

    Raises EnvironmentConfigError if validation fails.
    """
    defaults = {
        "AI_BACKEND_URL": DEFAULT_AI_BACKEND_URL,
    }

    # Apply defaults before validation so dependent modules see consistent values.
    for var, value in defaults.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    url = os.getenv("AI_BACKEND_URL", "")
    if not (url.startswith("http://") or url.startswith("https://")):
        raise EnvironmentConfigError(f"Invalid URL format for AI_BACKEND_URL: {url}")

    if ai_evaluator_timeout() <= 0:
        raise EnvironmentConfigError("AI_EVALUATOR_TIMEOUT must be positive")
    if selector_max_workers() <= 0:
        raise EnvironmentConfigError("TOPIC_SELECTOR_MAX_WORKERS must be positive")

    optional_vars: Dict[str, str] = {
        "ENABLE_AI_EVALUATOR": "Toggle for the remote explanation evaluator",
    }
    for var, description in optional_vars.items():
        if not os.getenv(var):
            logger.debug("Optional environment variable not set: %s (%s)", var, description)


def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on", "enabled"}


def get_env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise EnvironmentConfigError(f"{name} must be numeric, got '{raw}'") from exc


def get_env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise EnvironmentConfigError(f"{name} must be an integer, got '{raw}'") from exc


def ai_backend_url() -> str:
    return (os.getenv("AI_BACKEND_URL") or DEFAULT_AI_BACKEND_URL).rstrip("/")


def ai_evaluator_timeout() -> float:
    return get_env_float("AI_EVALUATOR_TIMEOUT", DEFAULT_AI_EVALUATOR_TIMEOUT)


def ai_evaluator_enabled() -> bool:
    return get_env_bool("ENABLE_AI_EVALUATOR", True)


def selector_max_workers() -> int:
    return get_env_int("TOPIC_SELECTOR_MAX_WORKERS", DEFAULT_SELECTOR_MAX_WORKERS)
