"""Observability helpers for the connector.

Structured JSON logging, context variables carried through async calls, and
in-process counters and histograms.
"""

__all__ = [
    "metrics",
    "logger",
    "context",
]
