from __future__ import annotations
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ...helpers import now_ts


class WebhookEventStore:
    """Seen-event ledger in the webhook_events_seen table."""

    def __init__(self, *, db: AsyncSession) -> None:
        self.db = db

    async def mark_event_seen(self, event_id: str) -> bool:
        # True if new (not seen before), False if it was already recorded
        if not event_id:
            return True
        result = await self.db.execute(text("""
            INSERT INTO webhook_events_seen(event_id, created_at)
            VALUES (:event_id, :created_at)
            ON CONFLICT (event_id) DO NOTHING
        """), {"event_id": event_id, "created_at": now_ts()})
        await self.db.commit()
        return result.rowcount == 1

    async def forget_event(self, event_id: str) -> None:
        # lets the provider's retry through after a failed dispatch
        await self.db.execute(
            text("DELETE FROM webhook_events_seen WHERE event_id = :event_id"),
            {"event_id": event_id},
        )
        await self.db.commit()
