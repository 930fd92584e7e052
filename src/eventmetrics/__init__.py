"""Event metrics: statistics pipeline and job scheduler for editing events."""

__version__ = "0.1.0"
