"""Notification publishing helpers for the infrastructure layer."""

from .publisher import NotificationPublisher, serialize_notification

__all__ = ["NotificationPublisher", "serialize_notification"]
