"""Metric recording, aggregation and reports.

Only equality filters reach the store; time windows are applied here.
"""

from collections import Counter, defaultdict
from collections.abc import Iterable
from datetime import datetime, timedelta
import logging
from typing import Any
import uuid

from nutriplan.models.common import assume_utc, to_document, utc_now
from nutriplan.models.metric import (
    AggregationResult,
    AggregationType,
    GroupBy,
    Metric,
    MetricCategory,
    MetricCreate,
    MetricReport,
    MetricType,
)
from nutriplan.ports.storage import IDocumentStore

logger = logging.getLogger(__name__)

METRICS = "metrics"

TOP_TYPES = 10

BUCKET_FORMATS: dict[str, str] = {
    "hour": "%Y-%m-%dT%H:00",
    "day": "%Y-%m-%d",
    "week": "%G-W%V",
    "month": "%Y-%m",
    "year": "%Y",
}


def bucket_key(timestamp: datetime, group_by: GroupBy) -> str:
    return timestamp.strftime(BUCKET_FORMATS[group_by])


def period_type(start: datetime, end: datetime) -> str:
    days = (end - start) / timedelta(days=1)
    if days <= 1:
        return "daily"
    if days <= 7:
        return "weekly"
    if days <= 31:
        return "monthly"
    return "yearly"


def _combine(values: list[float], aggregation: AggregationType) -> float:
    if aggregation == "count":
        return float(len(values))
    if aggregation == "avg":
        return sum(values) / len(values)
    if aggregation == "min":
        return min(values)
    if aggregation == "max":
        return max(values)
    return sum(values)


class MetricsService:
    def __init__(
        self,
        store: IDocumentStore,
        *,
        retention_days: int = 90,
        enabled: bool = True,
    ) -> None:
        self.store = store
        self.retention_days = retention_days
        self.enabled = enabled

    def _build(self, data: MetricCreate, now: datetime) -> Metric:
        return Metric(
            **data.model_dump(exclude={"name"}),
            id=uuid.uuid4().hex,
            name=data.name or data.type.value,
            category=data.type.category,
            timestamp=now,
        )

    async def record(self, data: MetricCreate) -> Metric:
        metric = self._build(data, utc_now())
        await self.store.create(METRICS, to_document(metric), document_id=metric.id)
        return metric

    async def record_batch(self, items: Iterable[MetricCreate]) -> list[Metric]:
        now = utc_now()
        metrics = [self._build(item, now) for item in items]
        for metric in metrics:
            await self.store.create(METRICS, to_document(metric), document_id=metric.id)
        logger.debug("Recorded %d metrics", len(metrics))
        return metrics

    async def find(
        self,
        *,
        metric_type: MetricType | None = None,
        category: MetricCategory | None = None,
        user_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> list[Metric]:
        """Newest first, within ``[start, end]`` when given."""
        filters: dict[str, Any] = {}
        if metric_type is not None:
            filters["type"] = metric_type.value
        if category is not None:
            filters["category"] = category.value
        if user_id is not None:
            filters["user_id"] = user_id
        start, end = assume_utc(start), assume_utc(end)

        documents = await self.store.query(
            METRICS, filters or None, order_by="timestamp", descending=True
        )
        metrics = [
            Metric.model_validate(document)
            for document in documents
            if (start is None or document["timestamp"] >= start)
            and (end is None or document["timestamp"] <= end)
        ]
        return metrics[:limit] if limit is not None else metrics

    async def aggregate(
        self,
        start: datetime,
        end: datetime,
        *,
        group_by: GroupBy = "day",
        aggregation: AggregationType = "sum",
        metric_type: MetricType | None = None,
        category: MetricCategory | None = None,
    ) -> list[AggregationResult]:
        """Metric values combined per calendar bucket, oldest bucket first."""
        buckets: dict[str, list[float]] = defaultdict(list)
        for metric in await self.find(
            metric_type=metric_type, category=category, start=start, end=end
        ):
            buckets[bucket_key(metric.timestamp, group_by)].append(metric.value)
        return [
            AggregationResult(
                period=key, value=_combine(values, aggregation), count=len(values)
            )
            for key, values in sorted(buckets.items())
        ]

    async def report(self, start: datetime, end: datetime) -> MetricReport:
        start, end = assume_utc(start), assume_utc(end)
        metrics = await self.find(start=start, end=end)

        categories = Counter(metric.category.value for metric in metrics)
        type_counts = Counter(metric.type for metric in metrics)
        type_values: dict[MetricType, float] = defaultdict(float)
        for metric in metrics:
            type_values[metric.type] += metric.value

        return MetricReport(
            period={"start": start, "end": end, "type": period_type(start, end)},
            summary={
                "total_metrics": len(metrics),
                "categories": dict(categories),
                "top_types": [
                    {"type": kind.value, "count": count, "value": type_values[kind]}
                    for kind, count in type_counts.most_common(TOP_TYPES)
                ],
            },
            trends={"daily": await self.aggregate(start, end, group_by="day")},
            performance=self._performance(metrics),
            user_activity=self._user_activity(metrics),
        )

    @staticmethod
    def _performance(metrics: list[Metric]) -> dict[str, float]:
        response_times = [m.value for m in metrics if m.type == MetricType.RESPONSE_TIME]
        requests = sum(1 for m in metrics if m.type == MetricType.API_REQUEST)
        errors = sum(1 for m in metrics if m.type == MetricType.API_ERROR)
        return {
            "avg_response_time": (
                sum(response_times) / len(response_times) if response_times else 0.0
            ),
            "error_rate": errors / requests * 100 if requests else 0.0,
        }

    @staticmethod
    def _user_activity(metrics: list[Metric]) -> dict[str, float]:
        active_types = {MetricType.USER_LOGIN, MetricType.API_REQUEST}
        active = {m.user_id for m in metrics if m.type in active_types and m.user_id}
        sessions = sum(1 for m in metrics if m.type == MetricType.USER_LOGIN)
        return {
            "active_users": len(active),
            "new_users": sum(1 for m in metrics if m.type == MetricType.USER_REGISTRATION),
            "sessions_per_user": sessions / len(active) if active else 0.0,
        }

    async def cleanup(self, days_to_keep: int | None = None, now: datetime | None = None) -> int:
        """Delete metrics older than ``days_to_keep`` (the retention setting by default)."""
        now = now or utc_now()
        cutoff = now - timedelta(days=days_to_keep or self.retention_days)
        removed = 0
        for document in await self.store.query(METRICS):
            if document["timestamp"] < cutoff and await self.store.delete(
                METRICS, document["id"]
            ):
                removed += 1
        if removed:
            logger.info("Metrics cleanup removed %d entries", removed)
        return removed
