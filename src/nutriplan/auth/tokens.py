"""Local session token issuer.

Session tokens are HS256 JWTs carrying the subject id, email and role fixed
at issuance. There is no server-side revocation; logout is client side.
"""

import logging
import time

import jwt
from pydantic import ValidationError as PydanticValidationError

from nutriplan.core.exceptions import CredentialExpiredError, InvalidCredentialError
from nutriplan.models.auth import SessionClaims, UserRole

logger = logging.getLogger(__name__)

SESSION_TOKEN_TYPE = "session"


class LocalTokenIssuer:
    """Issue and verify self-contained session tokens."""

    def __init__(
        self,
        secret: str,
        expires_in_seconds: int,
        algorithm: str = "HS256",
    ) -> None:
        if not secret:
            msg = "Session token secret must not be empty"
            raise ValueError(msg)
        self._secret = secret
        self.expires_in_seconds = expires_in_seconds
        self.algorithm = algorithm

    def issue(self, subject_id: str, email: str, role: UserRole | str) -> str:
        issued_at = int(time.time())
        payload = {
            "sub": subject_id,
            "email": email,
            "role": UserRole(role).value,
            "iat": issued_at,
            "exp": issued_at + self.expires_in_seconds,
            "typ": SESSION_TOKEN_TYPE,
        }
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def verify(self, token: str) -> SessionClaims:
        """Verify signature and expiry.

        Raises:
            CredentialExpiredError: The token is past ``exp``.
            InvalidCredentialError: Bad signature, malformed token or claims.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={"require": ["sub", "exp", "iat"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise CredentialExpiredError() from e
        except jwt.InvalidTokenError as e:
            logger.debug("Session token rejected: %s", e)
            raise InvalidCredentialError() from e

        if payload.get("typ") != SESSION_TOKEN_TYPE:
            raise InvalidCredentialError()

        try:
            return SessionClaims.model_validate(payload)
        except PydanticValidationError as e:
            raise InvalidCredentialError() from e
