"""Audit trail for access to patient records.

Entries are written after the audited request succeeds. A failed write is
logged and never breaks the request it describes.
"""

from collections import Counter
from datetime import datetime, timedelta
import logging
from typing import Any
import uuid

from nutriplan.models.audit import (
    SENSITIVE_ACTIONS,
    ActivityReport,
    AuditAction,
    AuditEntry,
    AuditResource,
    RiskLevel,
    SecurityMetrics,
    UserActivity,
)
from nutriplan.models.common import to_document, utc_now
from nutriplan.models.user import User
from nutriplan.ports.storage import IDocumentStore

logger = logging.getLogger(__name__)

AUDIT_LOGS = "audit_logs"

TOP_USERS = 10
NIGHT_START_HOUR = 22
NIGHT_END_HOUR = 6
HEAVY_USER_ACCESSES = 20
HIGH_VOLUME_ACCESSES = 100
HIGH_RISK_RATIO = 0.5
MEDIUM_RISK_RATIO = 0.2


class AuditService:
    def __init__(
        self,
        store: IDocumentStore,
        *,
        retention_days: int = 90,
        enabled: bool = True,
    ) -> None:
        self.store = store
        self.retention = timedelta(days=retention_days)
        self.enabled = enabled

    async def record(
        self,
        user: User,
        action: AuditAction,
        resource_type: AuditResource,
        resource_id: str | None = None,
        *,
        details: dict[str, Any] | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuditEntry | None:
        """Store one audit entry; returns ``None`` when disabled or on failure."""
        if not self.enabled:
            return None
        now = utc_now()
        entry = AuditEntry(
            id=uuid.uuid4().hex,
            user_id=user.id,
            user_email=user.email,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=details or {},
            ip_address=ip_address,
            user_agent=user_agent,
            sensitive=action in SENSITIVE_ACTIONS,
            timestamp=now,
            expires_at=now + self.retention,
        )
        try:
            await self.store.create(AUDIT_LOGS, to_document(entry), document_id=entry.id)
        except Exception:
            logger.exception("Failed to create audit log")
            return None
        logger.debug("Audit log created: %s by %s", action.value, user.id)
        return entry

    async def _since(
        self, since: datetime, filters: dict[str, Any] | None = None
    ) -> list[AuditEntry]:
        documents = await self.store.query(
            AUDIT_LOGS, filters, order_by="timestamp", descending=True
        )
        return [
            AuditEntry.model_validate(document)
            for document in documents
            if document["timestamp"] >= since
        ]

    async def logs_by_user(self, user_id: str, limit: int = 50) -> list[AuditEntry]:
        documents = await self.store.query(
            AUDIT_LOGS, {"user_id": user_id}, order_by="timestamp", descending=True, limit=limit
        )
        return [AuditEntry.model_validate(document) for document in documents]

    async def logs_by_resource(
        self, resource_type: AuditResource, resource_id: str, limit: int = 50
    ) -> list[AuditEntry]:
        documents = await self.store.query(
            AUDIT_LOGS,
            {"resource_type": resource_type.value, "resource_id": resource_id},
            order_by="timestamp",
            descending=True,
            limit=limit,
        )
        return [AuditEntry.model_validate(document) for document in documents]

    async def sensitive_access(self, days: int = 7) -> list[AuditEntry]:
        return await self._since(utc_now() - timedelta(days=days), {"sensitive": True})

    async def activity_report(self, days: int = 30) -> ActivityReport:
        """Action totals, the most active users and sensitive totals for a period."""
        now = utc_now()
        start = now - timedelta(days=days)
        entries = await self._since(start)

        actions = Counter(entry.action.value for entry in entries)
        users = Counter(entry.user_id for entry in entries)
        emails = {entry.user_id: entry.user_email for entry in entries}
        sensitive = Counter(entry.action.value for entry in entries if entry.sensitive)

        return ActivityReport(
            period={"start": start, "end": now, "days": days},
            action_stats=dict(actions.most_common()),
            user_stats=[
                UserActivity(user_id=user_id, user_email=emails[user_id], count=count)
                for user_id, count in users.most_common(TOP_USERS)
            ],
            sensitive_stats=dict(sensitive.most_common()),
            total_actions=len(entries),
        )

    async def security_metrics(self, days: int = 7) -> SecurityMetrics:
        """Sensitive access ratio, a risk level and review recommendations."""
        now = utc_now()
        start = now - timedelta(days=days)
        entries = await self._since(start)
        sensitive = [entry for entry in entries if entry.sensitive]

        ratio = len(sensitive) / len(entries) if entries else 0.0
        if ratio > HIGH_RISK_RATIO:
            risk = RiskLevel.HIGH
        elif ratio > MEDIUM_RISK_RATIO:
            risk = RiskLevel.MEDIUM
        else:
            risk = RiskLevel.LOW

        per_user = Counter(entry.user_id for entry in sensitive)
        return SecurityMetrics(
            period={"start": start, "end": now, "days": days},
            total_actions=len(entries),
            sensitive_data_access=len(sensitive),
            unique_users_accessing=len(per_user),
            top_sensitive_actions=dict(
                Counter(entry.action.value for entry in sensitive).most_common()
            ),
            risk_score=risk,
            recommendations=_recommendations(sensitive, per_user),
        )

    async def cleanup(self, now: datetime | None = None) -> int:
        """Delete entries past their retention date."""
        now = now or utc_now()
        removed = 0
        for document in await self.store.query(AUDIT_LOGS):
            if document["expires_at"] < now and await self.store.delete(
                AUDIT_LOGS, document["id"]
            ):
                removed += 1
        if removed:
            logger.info("Audit cleanup removed %d entries", removed)
        return removed


def _recommendations(sensitive: list[AuditEntry], per_user: Counter[str]) -> list[str]:
    recommendations = []
    night = [
        entry
        for entry in sensitive
        if entry.timestamp.hour < NIGHT_END_HOUR or entry.timestamp.hour > NIGHT_START_HOUR
    ]
    if night:
        recommendations.append(
            f"{len(night)} sensitive accesses happened outside business hours. "
            "Review them."
        )
    heavy = [user_id for user_id, count in per_user.items() if count > HEAVY_USER_ACCESSES]
    if heavy:
        recommendations.append(
            f"{len(heavy)} users accessed sensitive data more than "
            f"{HEAVY_USER_ACCESSES} times. Review their access."
        )
    if len(sensitive) > HIGH_VOLUME_ACCESSES:
        recommendations.append(
            "High volume of sensitive data access. Consider tighter access controls."
        )
    if not recommendations:
        recommendations.append("Access patterns look normal.")
    return recommendations
