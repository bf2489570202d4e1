"""Notification handlers and the registry resolving them by kind."""

from .base import NotificationHandler
from .email import EmailHandler
from .registry import HandlerFactory, HandlerRegistry

__all__ = [
    "EmailHandler",
    "HandlerFactory",
    "HandlerRegistry",
    "NotificationHandler",
]
