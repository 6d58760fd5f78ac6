"""Tests for the Redis delivery queue and reset-token store, backed by fakeredis."""

import asyncio
from collections.abc import Callable
from datetime import timedelta

from fakeredis import aioredis
import pytest

from nutriplan.auth.reset_tokens import ResetTokenEntry, RedisPasswordResetTokenStore
from nutriplan.models.common import utc_now
from nutriplan.services.notifications.queue import RedisDeliveryQueue, _now_ms


@pytest.fixture
def redis_client() -> aioredis.FakeRedis:
    return aioredis.FakeRedis(decode_responses=True)


@pytest.fixture
def redis_queue(redis_client) -> RedisDeliveryQueue:
    return RedisDeliveryQueue(redis_client, concurrency=1, poll_interval=0.01)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            msg = "condition not met in time"
            raise AssertionError(msg)
        await asyncio.sleep(0.01)


class TestRedisDeliveryQueue:
    @pytest.mark.asyncio
    async def test_enqueue_is_idempotent_by_job_id(self, redis_queue):
        assert await redis_queue.enqueue("job-1") is True
        assert await redis_queue.enqueue("job-1") is False

        assert (await redis_queue.stats()).waiting == 1

    @pytest.mark.asyncio
    async def test_lower_priority_number_runs_first(self, redis_queue):
        handled: list[str] = []

        async def handler(job_id: str) -> None:
            handled.append(job_id)

        await redis_queue.enqueue("low", priority=4)
        await redis_queue.enqueue("urgent", priority=1)
        await redis_queue.enqueue("normal", priority=3)

        await redis_queue.start(handler)
        await wait_until(lambda: len(handled) == 3)
        await redis_queue.stop()

        assert handled == ["urgent", "normal", "low"]

    @pytest.mark.asyncio
    async def test_delayed_job_is_held_back(self, redis_queue):
        await redis_queue.enqueue("later", delay_ms=60_000)

        stats = await redis_queue.stats()
        assert stats.delayed == 1
        assert stats.waiting == 0

    @pytest.mark.asyncio
    async def test_finished_job_id_can_be_enqueued_again(self, redis_queue):
        handled: list[str] = []

        async def handler(job_id: str) -> None:
            handled.append(job_id)

        await redis_queue.enqueue("job-1")
        await redis_queue.start(handler)
        await wait_until(lambda: handled == ["job-1"])
        await redis_queue.stop()

        assert (await redis_queue.stats()).completed == 1
        assert await redis_queue.enqueue("job-1") is True


class TestLeaseReclaim:
    """Jobs left behind by a crashed worker go back on the ready set."""

    @pytest.mark.asyncio
    async def test_expired_lease_is_reclaimed(self, redis_client, redis_queue):
        await redis_queue.enqueue("job-1")
        # Crashed worker: popped and leased, never finished
        await redis_client.zpopmin("nutriplan:queue:ready", 1)
        await redis_client.zadd("nutriplan:queue:active", {"job-1": _now_ms() - 1})

        assert await redis_queue.reclaim_expired() == 1

        stats = await redis_queue.stats()
        assert stats.active == 0
        assert stats.waiting == 1

    @pytest.mark.asyncio
    async def test_live_lease_is_left_alone(self, redis_client, redis_queue):
        await redis_queue.enqueue("job-1")
        await redis_client.zpopmin("nutriplan:queue:ready", 1)
        await redis_client.zadd("nutriplan:queue:active", {"job-1": _now_ms() + 60_000})

        assert await redis_queue.reclaim_expired() == 0
        assert (await redis_queue.stats()).active == 1

    @pytest.mark.asyncio
    async def test_popped_but_unleased_job_is_reclaimed(self, redis_client):
        queue = RedisDeliveryQueue(redis_client, lease_ms=0)
        await queue.enqueue("job-1")
        await redis_client.zpopmin("nutriplan:queue:ready", 1)

        assert await queue.reclaim_expired() == 1
        assert (await queue.stats()).waiting == 1

    @pytest.mark.asyncio
    async def test_reclaimed_job_runs_and_frees_its_id(self, redis_client, redis_queue):
        handled: list[str] = []

        async def handler(job_id: str) -> None:
            handled.append(job_id)

        await redis_queue.enqueue("n1")
        await redis_client.zpopmin("nutriplan:queue:ready", 1)
        await redis_client.zadd("nutriplan:queue:active", {"n1": _now_ms() - 1})
        assert await redis_queue.enqueue("n1") is False

        await redis_queue.start(handler)
        await wait_until(lambda: handled == ["n1"])
        await redis_queue.stop()

        assert await redis_queue.enqueue("n1") is True


class TestRedisResetTokenStore:
    @pytest.fixture
    def token_store(self, redis_client) -> RedisPasswordResetTokenStore:
        return RedisPasswordResetTokenStore(redis_client)

    @pytest.fixture
    def entry(self) -> ResetTokenEntry:
        now = utc_now()
        return ResetTokenEntry("token-1", now + timedelta(hours=1), now)

    @pytest.mark.asyncio
    async def test_put_and_get_round_trip(self, token_store, entry):
        await token_store.put("user-1", entry)

        stored = await token_store.get("user-1")

        assert stored.token == "token-1"
        assert stored.used is False

    @pytest.mark.asyncio
    async def test_mark_used_consumes_once(self, token_store, entry):
        await token_store.put("user-1", entry)

        assert await token_store.mark_used("user-1", "token-1") is True
        assert await token_store.mark_used("user-1", "token-1") is False
        assert (await token_store.get("user-1")).used is True

    @pytest.mark.asyncio
    async def test_concurrent_mark_used_has_one_winner(self, token_store, entry):
        await token_store.put("user-1", entry)

        results = await asyncio.gather(
            *(token_store.mark_used("user-1", "token-1") for _ in range(5))
        )

        assert results.count(True) == 1

    @pytest.mark.asyncio
    async def test_wrong_token_is_not_consumed(self, token_store, entry):
        await token_store.put("user-1", entry)

        assert await token_store.mark_used("user-1", "other") is False
        assert await token_store.mark_used("nobody", "token-1") is False

    @pytest.mark.asyncio
    async def test_entry_keeps_its_expiry_after_use(self, redis_client, token_store, entry):
        await token_store.put("user-1", entry)
        await token_store.mark_used("user-1", "token-1")

        assert await redis_client.pttl("nutriplan:reset:user-1") > 0
