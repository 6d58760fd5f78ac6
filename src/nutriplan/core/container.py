"""NutriPlan - Service Container.

Builds every long-lived collaborator once per application and exposes them
to request handlers through ``request.app.state.container``.
"""

from dataclasses import dataclass
import logging

from fastapi import Request

from nutriplan.auth.gate import AuthorizationGate
from nutriplan.auth.identity_provider import IdentityProviderState, build_identity_provider
from nutriplan.auth.reset_tokens import (
    InMemoryPasswordResetTokenStore,
    PasswordResetTokens,
    PasswordResetTokenStore,
    RedisPasswordResetTokenStore,
)
from nutriplan.auth.resolver import (
    CredentialResolver,
    IdentityProviderStrategy,
    LocalTokenStrategy,
)
from nutriplan.auth.tokens import LocalTokenIssuer
from nutriplan.core.config import Settings
from nutriplan.ports.queue_ports import IDeliveryQueue
from nutriplan.ports.storage import IDocumentStore
from nutriplan.services.audit import AuditService
from nutriplan.services.auth_service import AuthenticationService
from nutriplan.services.metrics import MetricsService
from nutriplan.services.notifications.dispatcher import NotificationDispatcher
from nutriplan.services.notifications.email import (
    EmailChannelSender,
    EmailTemplates,
    EmailTransport,
    create_email_transport,
)
from nutriplan.services.notifications.processor import NotificationJobProcessor
from nutriplan.services.notifications.queue import create_delivery_queue
from nutriplan.services.notifications.reconciler import NotificationReconciler
from nutriplan.services.records import (
    AssessmentService,
    ConsultationService,
    DietPlanService,
    InviteService,
    PatientService,
)
from nutriplan.services.user_service import UserService
from nutriplan.storage.factory import create_document_store

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    store: IDocumentStore
    provider_state: IdentityProviderState
    issuer: LocalTokenIssuer
    resolver: CredentialResolver
    federated_resolver: CredentialResolver
    gate: AuthorizationGate
    reset_tokens: PasswordResetTokens
    queue: IDeliveryQueue
    dispatcher: NotificationDispatcher
    processor: NotificationJobProcessor
    reconciler: NotificationReconciler
    user_service: UserService
    auth_service: AuthenticationService
    patients: PatientService
    assessments: AssessmentService
    diet_plans: DietPlanService
    consultations: ConsultationService
    invites: InviteService
    audit: AuditService
    metrics: MetricsService

    async def start_workers(self) -> None:
        await self.queue.start(self.processor.process)
        self.reconciler.start()

    async def shutdown(self) -> None:
        await self.reconciler.stop()
        await self.queue.close()
        await self.reset_tokens.store.close()
        await self.store.close()
        logger.info("Service container shut down")


def get_container(request: Request) -> ServiceContainer:
    """FastAPI dependency returning the application's container."""
    return request.app.state.container


def build_container(
    settings: Settings,
    *,
    store: IDocumentStore | None = None,
    provider_state: IdentityProviderState | None = None,
    queue: IDeliveryQueue | None = None,
    reset_token_store: PasswordResetTokenStore | None = None,
    email_transport: EmailTransport | None = None,
) -> ServiceContainer:
    """Wire the services; explicit arguments replace the configured backends."""
    store = store or create_document_store(settings)
    provider_state = provider_state or build_identity_provider(settings)
    if not provider_state.is_configured:
        logger.info("Identity provider not configured: %s", provider_state.reason)

    if reset_token_store is None:
        reset_token_store = (
            RedisPasswordResetTokenStore.from_url(settings.redis_url)
            if settings.redis_url
            else InMemoryPasswordResetTokenStore()
        )
    queue = queue or create_delivery_queue(settings)

    issuer = LocalTokenIssuer(settings.jwt_secret, settings.jwt_expires_seconds())
    resolver = CredentialResolver(
        [LocalTokenStrategy(issuer), IdentityProviderStrategy(provider_state)]
    )
    federated_resolver = CredentialResolver([IdentityProviderStrategy(provider_state)])
    reset_tokens = PasswordResetTokens(
        reset_token_store,
        settings.jwt_secret,
        settings.password_reset_expires_seconds(),
    )

    dispatcher = NotificationDispatcher(store, queue, ttl_days=settings.notification_ttl_days)
    email_sender = EmailChannelSender(
        store,
        email_transport or create_email_transport(settings),
        EmailTemplates(settings.client_url),
    )
    processor = NotificationJobProcessor(
        store,
        queue,
        email_sender,
        base_delay_ms=settings.notification_base_delay_ms,
    )
    audit = AuditService(
        store,
        retention_days=settings.audit_retention_days,
        enabled=settings.audit_logging_enabled,
    )
    metrics = MetricsService(
        store,
        retention_days=settings.metrics_retention_days,
        enabled=settings.metrics_enabled,
    )
    reconciler = NotificationReconciler(
        dispatcher,
        interval_seconds=settings.reconcile_interval_seconds,
        stale_after_seconds=settings.reconcile_stale_after_seconds,
        sweeps={
            "reset_tokens": reset_token_store.evict_expired,
            "audit_logs": audit.cleanup,
            "metrics": metrics.cleanup,
        },
    )

    user_service = UserService(store, provider_state)
    auth_service = AuthenticationService(
        user_service,
        issuer,
        reset_tokens,
        bcrypt_rounds=settings.bcrypt_rounds,
        expose_reset_token=not settings.is_production(),
        dispatcher=dispatcher,
    )
    patients = PatientService(store)

    return ServiceContainer(
        settings=settings,
        store=store,
        provider_state=provider_state,
        issuer=issuer,
        resolver=resolver,
        federated_resolver=federated_resolver,
        gate=AuthorizationGate(provider_state),
        reset_tokens=reset_tokens,
        queue=queue,
        dispatcher=dispatcher,
        processor=processor,
        reconciler=reconciler,
        user_service=user_service,
        auth_service=auth_service,
        patients=patients,
        assessments=AssessmentService(store, patients, dispatcher),
        diet_plans=DietPlanService(store, patients, dispatcher),
        consultations=ConsultationService(store, patients, dispatcher),
        invites=InviteService(store),
        audit=audit,
        metrics=metrics,
    )
