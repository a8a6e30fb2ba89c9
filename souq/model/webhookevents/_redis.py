from __future__ import annotations
import redis.asyncio as redis


# ---- keys
def k_event(event_id: str) -> str: return f"whevt:{event_id}"


class WebhookEventStore:
    def __init__(self, r: redis.Redis, ttl_seconds: int) -> None:
        self.r = r
        self.ttl = ttl_seconds

    async def mark_event_seen(self, event_id: str) -> bool:
        # NX gate; True if new (not seen), False if already seen
        if not event_id:
            return True
        ok = await self.r.set(k_event(event_id), "1", nx=True, ex=self.ttl)
        return bool(ok)

    async def forget_event(self, event_id: str) -> None:
        await self.r.delete(k_event(event_id))
