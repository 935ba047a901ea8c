"""Durable background task queue for photo processing jobs."""

__version__ = "0.1.0"
