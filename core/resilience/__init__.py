"""
VIP Pricing Core Resilience — Fault Tolerance Primitives.

- DeadLetterQueue: capture and replay failed access log writes
"""
from core.resilience.dlq import (
    DeadLetter,
    DeadLetterQueue,
    DLQStats,
    DLQStatus,
)

__all__ = [
    "DeadLetter",
    "DeadLetterQueue",
    "DLQStats",
    "DLQStatus",
]
