"""Delivery queue implementations.

Both queues key jobs by id, hold delayed jobs until they become eligible and
hand eligible jobs to the handler lowest priority number first, oldest
eligibility first, with at most ``concurrency`` handlers running.
"""

import asyncio
import heapq
import itertools
import json
import logging
import time

import redis.asyncio as redis

from nutriplan.core.config import Settings
from nutriplan.core.exceptions import QueueError
from nutriplan.ports.queue_ports import IDeliveryQueue, JobHandler, QueueStats

logger = logging.getLogger(__name__)

# Ready-set score is priority * PRIORITY_SCALE + eligible epoch ms
PRIORITY_SCALE = 10**13


def _now_ms() -> int:
    return int(time.time() * 1000)


class InMemoryDeliveryQueue(IDeliveryQueue):
    """Single-process queue backed by two heaps."""

    def __init__(self, concurrency: int = 10) -> None:
        if concurrency < 1:
            msg = "concurrency must be at least 1"
            raise ValueError(msg)
        self.concurrency = concurrency
        # (eligible_ms, seq, priority, job_id)
        self._delayed: list[tuple[int, int, int, str]] = []
        # (priority, eligible_ms, seq, job_id)
        self._ready: list[tuple[int, int, int, str]] = []
        self._known: set[str] = set()
        self._active: set[str] = set()
        self._completed = 0
        self._failed = 0
        self._seq = itertools.count()
        self._semaphore = asyncio.Semaphore(concurrency)
        self._wakeup = asyncio.Event()
        self._handler: JobHandler | None = None
        self._runner: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    async def enqueue(self, job_id: str, *, delay_ms: int = 0, priority: int = 3) -> bool:
        if job_id in self._known:
            logger.debug("Job %s already queued, skipping", job_id)
            return False
        self._known.add(job_id)
        eligible = _now_ms() + max(0, delay_ms)
        seq = next(self._seq)
        if delay_ms > 0:
            heapq.heappush(self._delayed, (eligible, seq, priority, job_id))
        else:
            heapq.heappush(self._ready, (priority, eligible, seq, job_id))
        self._wakeup.set()
        return True

    def _promote_due(self) -> None:
        now = _now_ms()
        while self._delayed and self._delayed[0][0] <= now:
            eligible, seq, priority, job_id = heapq.heappop(self._delayed)
            heapq.heappush(self._ready, (priority, eligible, seq, job_id))

    def _next_wait(self) -> float | None:
        if not self._delayed:
            return None
        return max(0.0, (self._delayed[0][0] - _now_ms()) / 1000)

    async def start(self, handler: JobHandler) -> None:
        if self._runner is not None:
            return
        self._handler = handler
        self._runner = asyncio.create_task(self._run(), name="delivery-queue")
        logger.info("In-memory delivery queue started (concurrency=%d)", self.concurrency)

    async def _run(self) -> None:
        while True:
            self._wakeup.clear()
            self._promote_due()
            while self._ready:
                await self._semaphore.acquire()
                _, _, _, job_id = heapq.heappop(self._ready)
                self._active.add(job_id)
                task = asyncio.create_task(self._execute(job_id))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
                self._promote_due()
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self._next_wait())
            except TimeoutError:
                pass

    async def _execute(self, job_id: str) -> None:
        try:
            assert self._handler is not None
            await self._handler(job_id)
            self._completed += 1
        except Exception:
            self._failed += 1
            logger.exception("Delivery job %s failed", job_id)
        finally:
            self._active.discard(job_id)
            self._known.discard(job_id)
            self._semaphore.release()
            self._wakeup.set()

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait until no job is ready or active. Delayed jobs are not awaited."""
        deadline = time.monotonic() + timeout
        while self._ready or self._active:
            if time.monotonic() > deadline:
                msg = "Timed out waiting for the delivery queue to drain"
                raise QueueError(msg)
            await asyncio.sleep(0.01)

    async def stop(self) -> None:
        if self._runner is not None:
            self._runner.cancel()
            try:
                await self._runner
            except asyncio.CancelledError:
                pass
            self._runner = None
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.info("In-memory delivery queue stopped")

    async def stats(self) -> QueueStats:
        return QueueStats(
            waiting=len(self._ready),
            delayed=len(self._delayed),
            active=len(self._active),
            completed=self._completed,
            failed=self._failed,
        )


class RedisDeliveryQueue(IDeliveryQueue):
    """Redis-backed queue shared by every process pointed at the same prefix.

    Keys: ``jobs`` hash of job metadata (``HSETNX`` makes enqueue idempotent),
    ``delayed`` zset scored by eligible time, ``ready`` zset scored by
    priority then eligible time, ``active`` zset scored by lease expiry and
    ``counters`` hash.

    A running job holds a lease of ``lease_ms``. Jobs whose lease ran out, and
    jobs a dead worker popped from ``ready`` before leasing them, are put back
    on ``ready`` by ``reclaim_expired`` so their ``jobs`` entry never blocks a
    later enqueue of the same id.
    """

    def __init__(
        self,
        client: redis.Redis,
        *,
        concurrency: int = 10,
        key_prefix: str = "nutriplan:queue:",
        poll_interval: float = 0.2,
        lease_ms: int = 300_000,
        reclaim_interval: float = 5.0,
    ) -> None:
        self._redis = client
        self.concurrency = concurrency
        self.key_prefix = key_prefix
        self.poll_interval = poll_interval
        self.lease_ms = lease_ms
        self.reclaim_interval = reclaim_interval
        self._last_reclaim: float | None = None
        self._semaphore = asyncio.Semaphore(concurrency)
        self._handler: JobHandler | None = None
        self._runner: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    @classmethod
    def from_url(cls, redis_url: str, **kwargs: object) -> "RedisDeliveryQueue":
        return cls(redis.from_url(redis_url, decode_responses=True), **kwargs)

    def _key(self, name: str) -> str:
        return f"{self.key_prefix}{name}"

    async def enqueue(self, job_id: str, *, delay_ms: int = 0, priority: int = 3) -> bool:
        eligible = _now_ms() + max(0, delay_ms)
        meta = json.dumps({"priority": priority, "eligible_ms": eligible})
        try:
            if not await self._redis.hsetnx(self._key("jobs"), job_id, meta):
                logger.debug("Job %s already queued, skipping", job_id)
                return False
            if delay_ms > 0:
                await self._redis.zadd(self._key("delayed"), {job_id: eligible})
            else:
                await self._redis.zadd(
                    self._key("ready"), {job_id: priority * PRIORITY_SCALE + eligible}
                )
        except redis.RedisError as e:
            raise QueueError(f"Failed to enqueue job {job_id}: {e}") from e
        return True

    async def _promote_due(self) -> None:
        due = await self._redis.zrangebyscore(self._key("delayed"), "-inf", _now_ms())
        for job_id in due:
            # Only the poller whose ZREM succeeds moves the job
            if not await self._redis.zrem(self._key("delayed"), job_id):
                continue
            raw = await self._redis.hget(self._key("jobs"), job_id)
            if raw is None:
                continue
            meta = json.loads(raw)
            await self._redis.zadd(
                self._key("ready"),
                {job_id: meta["priority"] * PRIORITY_SCALE + meta["eligible_ms"]},
            )

    async def _make_ready(self, job_id: str) -> bool:
        raw = await self._redis.hget(self._key("jobs"), job_id)
        if raw is None:
            return False
        meta = json.loads(raw)
        added = await self._redis.zadd(
            self._key("ready"),
            {job_id: meta["priority"] * PRIORITY_SCALE + meta["eligible_ms"]},
            nx=True,
        )
        return bool(added)

    async def _is_tracked(self, job_id: str) -> bool:
        async with self._redis.pipeline(transaction=False) as pipe:
            pipe.zscore(self._key("ready"), job_id)
            pipe.zscore(self._key("delayed"), job_id)
            pipe.zscore(self._key("active"), job_id)
            scores = await pipe.execute()
        return any(score is not None for score in scores)

    async def reclaim_expired(self) -> int:
        """Put jobs abandoned by dead workers back on the ready set."""
        now = _now_ms()
        reclaimed: list[str] = []
        expired = await self._redis.zrangebyscore(self._key("active"), "-inf", now)
        for job_id in expired:
            # Only the poller whose ZREM succeeds reclaims the job
            if not await self._redis.zrem(self._key("active"), job_id):
                continue
            if await self._make_ready(job_id):
                reclaimed.append(job_id)

        # Popped from ready but never leased
        jobs = await self._redis.hgetall(self._key("jobs"))
        for job_id, raw in jobs.items():
            if json.loads(raw)["eligible_ms"] + self.lease_ms > now:
                continue
            if not await self._is_tracked(job_id) and await self._make_ready(job_id):
                reclaimed.append(job_id)

        if reclaimed:
            await self._redis.hincrby(self._key("counters"), "reclaimed", len(reclaimed))
            logger.warning("Reclaimed %d abandoned delivery jobs", len(reclaimed))
        return len(reclaimed)

    async def _reclaim_if_due(self) -> None:
        clock = time.monotonic()
        last = self._last_reclaim
        if last is not None and clock - last < self.reclaim_interval:
            return
        self._last_reclaim = clock
        await self.reclaim_expired()

    async def start(self, handler: JobHandler) -> None:
        if self._runner is not None:
            return
        self._handler = handler
        self._runner = asyncio.create_task(self._run(), name="redis-delivery-queue")
        logger.info("Redis delivery queue started (concurrency=%d)", self.concurrency)

    async def _run(self) -> None:
        while True:
            try:
                await self._reclaim_if_due()
                await self._promote_due()
                while not self._semaphore.locked():
                    popped = await self._redis.zpopmin(self._key("ready"), 1)
                    if not popped:
                        break
                    job_id, _ = popped[0]
                    await self._semaphore.acquire()
                    await self._redis.zadd(
                        self._key("active"), {job_id: _now_ms() + self.lease_ms}
                    )
                    task = asyncio.create_task(self._execute(job_id))
                    self._tasks.add(task)
                    task.add_done_callback(self._tasks.discard)
            except redis.RedisError:
                logger.exception("Delivery queue poll failed")
            await asyncio.sleep(self.poll_interval)

    async def _execute(self, job_id: str) -> None:
        outcome = "completed"
        try:
            assert self._handler is not None
            await self._handler(job_id)
        except Exception:
            outcome = "failed"
            logger.exception("Delivery job %s failed", job_id)
        finally:
            try:
                async with self._redis.pipeline(transaction=True) as pipe:
                    pipe.zrem(self._key("active"), job_id)
                    pipe.hdel(self._key("jobs"), job_id)
                    pipe.hincrby(self._key("counters"), outcome, 1)
                    await pipe.execute()
            except redis.RedisError:
                logger.exception("Failed to record completion of job %s", job_id)
            self._semaphore.release()

    async def stop(self) -> None:
        if self._runner is not None:
            self._runner.cancel()
            try:
                await self._runner
            except asyncio.CancelledError:
                pass
            self._runner = None
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.info("Redis delivery queue stopped")

    async def stats(self) -> QueueStats:
        async with self._redis.pipeline(transaction=False) as pipe:
            pipe.zcard(self._key("ready"))
            pipe.zcard(self._key("delayed"))
            pipe.zcard(self._key("active"))
            pipe.hmget(self._key("counters"), "completed", "failed")
            waiting, delayed, active, counters = await pipe.execute()
        completed, failed = counters
        return QueueStats(
            waiting=waiting,
            delayed=delayed,
            active=active,
            completed=int(completed or 0),
            failed=int(failed or 0),
        )

    async def close(self) -> None:
        await self.stop()
        await self._redis.aclose()


def create_delivery_queue(settings: Settings) -> IDeliveryQueue:
    """Redis queue when ``REDIS_URL`` is set, in-memory otherwise."""
    if settings.redis_url:
        logger.info("Using Redis delivery queue")
        return RedisDeliveryQueue.from_url(
            settings.redis_url,
            concurrency=settings.notification_concurrency,
            lease_ms=settings.notification_lease_seconds * 1000,
        )
    logger.info("Using in-memory delivery queue")
    return InMemoryDeliveryQueue(concurrency=settings.notification_concurrency)
