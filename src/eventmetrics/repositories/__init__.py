"""Replica queries and application database access."""
