"""DeX notification service.

Routes notification requests published by background jobs to delivery
channels through a Redis Streams broker.
"""

__version__ = "1.0.0"
