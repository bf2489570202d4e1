"""Utility helpers for reusable functionality."""

from .shutdown import wait_for_shutdown

__all__ = ["wait_for_shutdown"]
