"""Delivery queue port."""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from typing import Any

JobHandler = Callable[[str], Awaitable[None]]


@dataclass
class QueueStats:
    waiting: int = 0
    delayed: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class IDeliveryQueue(ABC):
    """Priority-ordered delayed job queue keyed by job id.

    Among jobs whose delay has elapsed, the lowest priority number runs first;
    equal priorities run in order of eligibility. Enqueueing an id that is
    already waiting, delayed or active is a no-op.
    """

    @abstractmethod
    async def enqueue(self, job_id: str, *, delay_ms: int = 0, priority: int = 3) -> bool:
        """Add a job; returns False when a job with this id already exists."""

    @abstractmethod
    async def start(self, handler: JobHandler) -> None:
        """Start consuming jobs, running ``handler(job_id)`` for each."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop consuming and wait for active handlers to finish."""

    @abstractmethod
    async def stats(self) -> QueueStats:
        pass

    async def close(self) -> None:
        await self.stop()
