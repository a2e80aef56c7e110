"""API Routes Package."""

from api.routes import health, events, journals, transactions, metrics

__all__ = [
    "health",
    "events",
    "journals",
    "transactions",
    "metrics",
]
