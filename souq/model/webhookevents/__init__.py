from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
import redis.asyncio as redis

from ...config import (
    WEBHOOK_EVENTS_BACKEND as BACKEND,  # 'pg' | 'redis'
    WEBHOOK_EVENT_TTL_SECONDS,
)
from ._postgres import WebhookEventStore as PgWebhookEventStore
from ._redis import WebhookEventStore as RedisWebhookEventStore


# Factory keeps server.py simple and constructor-agnostic:
def new_store(*, db: Optional[AsyncSession] = None,
              r: Optional[redis.Redis] = None,
              ttl_seconds: int = WEBHOOK_EVENT_TTL_SECONDS):
    if BACKEND == "redis":
        if r is None:
            raise RuntimeError(
                "WebhookEventStore(redis) requires r=redis.Redis"
            )
        return RedisWebhookEventStore(r=r, ttl_seconds=ttl_seconds)
    if db is None:
        raise RuntimeError("WebhookEventStore(pg) requires db=AsyncSession")
    return PgWebhookEventStore(db=db)


__all__ = [
    "PgWebhookEventStore", "RedisWebhookEventStore", "new_store", "BACKEND",
]
