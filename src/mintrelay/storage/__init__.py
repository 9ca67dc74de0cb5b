"""Relayer storage.

Durable idempotency state for relayed messages.
"""

from .store import IdempotencyStore, MessageStatus, StoreConfig, run_blocking

__all__ = [
    "IdempotencyStore",
    "MessageStatus",
    "StoreConfig",
    "run_blocking",
]
