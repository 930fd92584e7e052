"""Replica connections and caching primitives."""

from __future__ import annotations

from .cache import TTLCache
from .replicas import ReplicasClient

__all__ = ["ReplicasClient", "TTLCache"]
