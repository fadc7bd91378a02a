"""
Environment variable helpers with whitespace sanitization.
"""
import os
from typing import Optional


def get_env_str(
    name: str,
    default: Optional[str] = None,
    required: bool = False,
    strip: bool = True
) -> Optional[str]:
    """
    Read an environment variable, stripping surrounding whitespace by default.

    Copy-pasted secrets (GELATO_API_KEY, FULFILLMENT_OPS_TOKEN) frequently
    pick up a trailing space or newline, which then fails auth upstream.

    Args:
        name: Environment variable name
        default: Returned when the variable is unset or blank after stripping
        required: Raise ValueError instead of returning the default
        strip: Strip leading/trailing whitespace (default: True)

    Raises:
        ValueError: If required=True and the value is missing or blank
    """
    value = os.getenv(name)

    if value is None:
        if required:
            raise ValueError(
                f"Required environment variable '{name}' is not set. "
                f"Please add it to your .env file or environment."
            )
        return default

    if strip:
        value = value.strip()

    if not value:
        if required:
            raise ValueError(
                f"Required environment variable '{name}' is empty (or whitespace-only). "
                f"Please set a valid value in your .env file or environment."
            )
        return default

    return value


def get_env_bool(name: str, default: bool = False) -> bool:
    """
    Read a boolean environment variable.

    Truthy values: "1", "true", "yes", "on" (case-insensitive).
    Anything else that is non-empty is False; unset/blank returns the default.
    """
    value = os.getenv(name, "").strip().lower()

    if not value:
        return default

    return value in ("1", "true", "yes", "on")


def get_env_int(name: str, default: int) -> int:
    """Read an integer environment variable, falling back to default on blank or garbage."""
    value = os.getenv(name, "").strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default
