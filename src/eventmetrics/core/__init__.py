"""Settings loaded from the environment."""

from .config import AppConfig

__all__ = ["AppConfig"]
