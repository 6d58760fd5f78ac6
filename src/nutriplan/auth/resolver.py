"""Credential resolver.

Turns a raw ``Authorization`` header into a ``Principal`` by trying an
ordered list of verification strategies. Every route uses the same order:
local session token first, then the identity provider. The first strategy
that verifies the token wins.

Strategies return tagged outcomes instead of raising, so the resolver can
pick the most specific rejection when nothing verifies.
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
import logging

from nutriplan.auth.identity_provider import IdentityProviderState, NotConfigured
from nutriplan.auth.tokens import LocalTokenIssuer
from nutriplan.core.exceptions import (
    AuthenticationError,
    CredentialExpiredError,
    IdentityProviderUnreachableError,
    InvalidCredentialError,
    MissingCredentialError,
)
from nutriplan.models.auth import CredentialSource, Principal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Verified:
    principal: Principal


@dataclass(frozen=True)
class NotApplicable:
    reason: str


@dataclass(frozen=True)
class Rejected:
    error: AuthenticationError | IdentityProviderUnreachableError


VerificationOutcome = Verified | NotApplicable | Rejected


def parse_bearer(raw_header: str | None) -> str:
    """Extract the token from ``Bearer <token>``."""
    if not raw_header:
        raise MissingCredentialError()
    scheme, _, token = raw_header.strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token or " " in token:
        raise MissingCredentialError("Malformed Authorization header")
    return token


class VerificationStrategy(ABC):
    name: str = "strategy"

    @abstractmethod
    async def verify(self, token: str) -> VerificationOutcome:
        pass


class LocalTokenStrategy(VerificationStrategy):
    """Verify a locally issued session token; the embedded role is trusted."""

    name = "local"

    def __init__(self, issuer: LocalTokenIssuer) -> None:
        self.issuer = issuer

    async def verify(self, token: str) -> VerificationOutcome:
        try:
            claims = self.issuer.verify(token)
        except (CredentialExpiredError, InvalidCredentialError) as e:
            return Rejected(e)
        return Verified(
            Principal(
                subject_id=claims.sub,
                email=claims.email,
                role=claims.role,
                source=CredentialSource.LOCAL,
            )
        )


class IdentityProviderStrategy(VerificationStrategy):
    """Verify an identity provider token; role only from a custom claim."""

    name = "identity_provider"

    def __init__(self, provider_state: IdentityProviderState) -> None:
        self.provider_state = provider_state

    async def verify(self, token: str) -> VerificationOutcome:
        if isinstance(self.provider_state, NotConfigured):
            return NotApplicable(self.provider_state.reason)
        try:
            identity = await self.provider_state.provider.verify_token(token)
        except (InvalidCredentialError, IdentityProviderUnreachableError) as e:
            return Rejected(e)
        return Verified(
            Principal(
                subject_id=identity.subject_id,
                email=identity.email,
                display_name=identity.display_name,
                role=identity.role,
                email_verified=identity.email_verified,
                source=CredentialSource.IDENTITY_PROVIDER,
            )
        )


def _rejection_rank(error: Exception) -> int:
    if isinstance(error, CredentialExpiredError):
        return 0
    if isinstance(error, IdentityProviderUnreachableError):
        return 1
    return 2


class CredentialResolver:
    """Resolve a principal using strategies tried in a fixed order."""

    def __init__(self, strategies: Sequence[VerificationStrategy]) -> None:
        if not strategies:
            msg = "At least one verification strategy is required"
            raise ValueError(msg)
        self.strategies = list(strategies)

    async def resolve(self, raw_authorization_header: str | None) -> Principal:
        """Return the principal for the header.

        Raises:
            MissingCredentialError: Header absent or not ``Bearer <token>``.
            CredentialExpiredError: A session token verified but expired.
            InvalidCredentialError: No strategy accepted the token.
            IdentityProviderUnreachableError: Only the provider could have
                accepted the token and it was unreachable.
        """
        token = parse_bearer(raw_authorization_header)
        rejections: list[Exception] = []

        for strategy in self.strategies:
            outcome = await strategy.verify(token)
            if isinstance(outcome, Verified):
                logger.debug(
                    "Credential verified by %s strategy for subject %s",
                    strategy.name,
                    outcome.principal.subject_id,
                )
                return outcome.principal
            if isinstance(outcome, Rejected):
                rejections.append(outcome.error)

        if not rejections:
            raise InvalidCredentialError()
        raise min(rejections, key=_rejection_rank)
