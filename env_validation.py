"""Environment variable validation and management."""

import os
import logging

logger = logging.getLogger(__name__)

SUPPORTED_LOCALES = frozenset({"it", "en", "de", "fr", "es"})


class EnvironmentError(Exception):
    """Raised when an environment variable holds an invalid value."""
    pass


def validate_environment() -> None:
    """Validate and default the application's environment variables.

    Raises EnvironmentError if validation fails.
    """
    defaults = {
        "DB_PATH": os.getenv("DB_PATH") or "data.db",
        "DEFAULT_LOCALE": os.getenv("DEFAULT_LOCALE") or "it",
        "SUMMARY_RPC_TIMEOUT": os.getenv("SUMMARY_RPC_TIMEOUT") or "5",
        "CODE_VALIDATION_LIMIT": os.getenv("CODE_VALIDATION_LIMIT") or "10",
        "CODE_VALIDATION_WINDOW": os.getenv("CODE_VALIDATION_WINDOW") or "60",
    }

    # Apply defaults before validation so dependent modules see consistent values.
    for var, value in defaults.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    optional_vars = {
        "SUMMARY_RPC_URL": "Base URL of the precomputed dashboard summary functions",
        "SUMMARY_RPC_KEY": "API key for the precomputed dashboard summary functions",
    }

    url_vars = {"SUMMARY_RPC_URL"}
    for var in url_vars:
        value = os.getenv(var)
        if value and not (value.startswith("http://") or value.startswith("https://")):
            raise EnvironmentError(f"Invalid URL format for {var}: {value}")

    locale = os.getenv("DEFAULT_LOCALE", "it").strip().lower()
    if locale not in SUPPORTED_LOCALES:
        raise EnvironmentError(
            f"Unsupported DEFAULT_LOCALE '{locale}' (expected one of {', '.join(sorted(SUPPORTED_LOCALES))})"
        )

    for var in ("SUMMARY_RPC_TIMEOUT", "CODE_VALIDATION_LIMIT", "CODE_VALIDATION_WINDOW"):
        raw = os.getenv(var)
        try:
            number = float(raw)
        except (TypeError, ValueError):
            raise EnvironmentError(f"{var} must be numeric, got '{raw}'") from None
        if number <= 0:
            raise EnvironmentError(f"{var} must be positive, got '{raw}'")

    for var, description in optional_vars.items():
        if not os.getenv(var):
            logger.warning("Optional environment variable not set: %s (%s)", var, description)


def get_env_int(name: str, default: int) -> int:
    """Get integer value from environment variable, falling back on bad input."""
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(float(value))
    except ValueError:
        logger.warning("Environment variable %s=%r is not a number; using %s", name, value, default)
        return default


def get_env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning("Environment variable %s=%r is not a number; using %s", name, value, default)
        return default
