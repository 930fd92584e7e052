"""Wikimedia pageviews API client."""

from .client import PageviewsClient

__all__ = ["PageviewsClient"]
