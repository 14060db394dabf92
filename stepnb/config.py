"""
Settings read from the environment.
"""

import os
from dataclasses import dataclass


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}") from None


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Library settings.

    Attributes:
        indent: JSON indent used when writing notebooks
        validate: Run nbformat schema validation before every save
        nbformat_minor: Minor format version given to new notebooks
    """
    indent: int = 1
    validate: bool = False
    nbformat_minor: int = 2


def load_settings() -> Settings:
    """Build Settings from STEPNB_* environment variables."""
    return Settings(
        indent=_env_int("STEPNB_INDENT", 1),
        validate=_env_flag("STEPNB_VALIDATE"),
        nbformat_minor=_env_int("STEPNB_NBFORMAT_MINOR", 2),
    )
