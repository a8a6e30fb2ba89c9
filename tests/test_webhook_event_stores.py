"""Seen-event ledgers: PostgreSQL table and Redis keys."""

from souq.model.webhookevents import PgWebhookEventStore, RedisWebhookEventStore
from souq.model.webhookevents._redis import k_event


class FakeRedis:
    """Just SET NX EX and DEL."""

    def __init__(self):
        self.data = {}
        self.ttls = {}

    async def set(self, key, value, nx=False, ex=None):
        if nx and key in self.data:
            return None
        self.data[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, key):
        return 1 if self.data.pop(key, None) is not None else 0


async def test_pg_store_marks_once(test_db):
    store = PgWebhookEventStore(db=test_db)
    assert await store.mark_event_seen("evt_1") is True
    assert await store.mark_event_seen("evt_1") is False
    assert await store.mark_event_seen("evt_2") is True


async def test_pg_store_forget_allows_retry(test_db):
    store = PgWebhookEventStore(db=test_db)
    await store.mark_event_seen("evt_1")
    await store.forget_event("evt_1")
    assert await store.mark_event_seen("evt_1") is True


async def test_events_without_id_are_never_deduplicated(test_db):
    store = PgWebhookEventStore(db=test_db)
    assert await store.mark_event_seen("") is True
    assert await store.mark_event_seen("") is True


async def test_redis_store_marks_once_with_ttl():
    r = FakeRedis()
    store = RedisWebhookEventStore(r=r, ttl_seconds=60)
    assert await store.mark_event_seen("evt_1") is True
    assert await store.mark_event_seen("evt_1") is False
    assert r.ttls[k_event("evt_1")] == 60


async def test_redis_store_forget():
    r = FakeRedis()
    store = RedisWebhookEventStore(r=r, ttl_seconds=60)
    await store.mark_event_seen("evt_1")
    await store.forget_event("evt_1")
    assert k_event("evt_1") not in r.data
    assert await store.mark_event_seen("evt_1") is True
