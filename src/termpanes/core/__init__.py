"""Core utilities shared by every module."""

from .ids import new_id, short_id

__all__ = ["new_id", "short_id"]
