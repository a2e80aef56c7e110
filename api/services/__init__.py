"""API Services Package."""

from api.services.publishers import PublisherRegistry

__all__ = [
    "PublisherRegistry",
]
