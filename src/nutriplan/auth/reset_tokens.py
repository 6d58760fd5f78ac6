"""Password-reset tokens and their keyed store.

Reset tokens live in their own namespace (``typ=password_reset``) and are
single use: the store keeps one entry per subject, a new request supersedes
the previous token and a successful reset marks the entry used.
"""

from abc import ABC, abstractmethod
import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
import json
import logging
import secrets
import time

import jwt
import redis.asyncio as redis
from redis.exceptions import WatchError

from nutriplan.core.exceptions import InvalidCredentialError
from nutriplan.models.common import utc_now

logger = logging.getLogger(__name__)

RESET_TOKEN_TYPE = "password_reset"
INVALID_RESET_TOKEN = "Invalid or expired reset token"


@dataclass
class ResetTokenEntry:
    token: str
    expires_at: datetime
    created_at: datetime
    used: bool = False
    used_at: datetime | None = None

    def to_json(self) -> str:
        return json.dumps(
            {
                "token": self.token,
                "expires_at": self.expires_at.isoformat(),
                "created_at": self.created_at.isoformat(),
                "used": self.used,
                "used_at": self.used_at.isoformat() if self.used_at else None,
            }
        )

    @classmethod
    def from_json(cls, raw: str) -> "ResetTokenEntry":
        data = json.loads(raw)
        return cls(
            token=data["token"],
            expires_at=datetime.fromisoformat(data["expires_at"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            used=data["used"],
            used_at=datetime.fromisoformat(data["used_at"]) if data["used_at"] else None,
        )


class PasswordResetTokenStore(ABC):
    """Keyed store of the current reset token per subject."""

    @abstractmethod
    async def put(self, subject_id: str, entry: ResetTokenEntry) -> None:
        """Store ``entry``, replacing any earlier token for the subject."""

    @abstractmethod
    async def get(self, subject_id: str) -> ResetTokenEntry | None:
        pass

    @abstractmethod
    async def mark_used(self, subject_id: str, token: str) -> bool:
        """Atomically mark the entry used if it holds ``token`` and is unused."""

    @abstractmethod
    async def invalidate(self, subject_id: str) -> None:
        pass

    @abstractmethod
    async def evict_expired(self) -> int:
        """Drop expired entries and return how many were removed."""

    async def close(self) -> None:
        return None


class InMemoryPasswordResetTokenStore(PasswordResetTokenStore):
    def __init__(self) -> None:
        self._entries: dict[str, ResetTokenEntry] = {}
        self._lock = asyncio.Lock()

    async def put(self, subject_id: str, entry: ResetTokenEntry) -> None:
        async with self._lock:
            self._entries[subject_id] = entry

    async def get(self, subject_id: str) -> ResetTokenEntry | None:
        async with self._lock:
            return self._entries.get(subject_id)

    async def mark_used(self, subject_id: str, token: str) -> bool:
        async with self._lock:
            entry = self._entries.get(subject_id)
            if entry is None or entry.used or entry.token != token:
                return False
            entry.used = True
            entry.used_at = utc_now()
            return True

    async def invalidate(self, subject_id: str) -> None:
        async with self._lock:
            self._entries.pop(subject_id, None)

    async def evict_expired(self) -> int:
        now = utc_now()
        async with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
            for key in expired:
                del self._entries[key]
        return len(expired)


class RedisPasswordResetTokenStore(PasswordResetTokenStore):
    """Redis-backed store; Redis key expiry evicts stale entries."""

    def __init__(self, client: redis.Redis, key_prefix: str = "nutriplan:reset:") -> None:
        self._redis = client
        self.key_prefix = key_prefix

    @classmethod
    def from_url(cls, redis_url: str) -> "RedisPasswordResetTokenStore":
        return cls(redis.from_url(redis_url, decode_responses=True))

    def _key(self, subject_id: str) -> str:
        return f"{self.key_prefix}{subject_id}"

    async def put(self, subject_id: str, entry: ResetTokenEntry) -> None:
        ttl_ms = max(1, int((entry.expires_at - utc_now()).total_seconds() * 1000))
        await self._redis.set(self._key(subject_id), entry.to_json(), px=ttl_ms)

    async def get(self, subject_id: str) -> ResetTokenEntry | None:
        raw = await self._redis.get(self._key(subject_id))
        return ResetTokenEntry.from_json(raw) if raw else None

    async def mark_used(self, subject_id: str, token: str) -> bool:
        key = self._key(subject_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if not raw:
                        return False
                    entry = ResetTokenEntry.from_json(raw)
                    if entry.used or entry.token != token:
                        return False
                    entry.used = True
                    entry.used_at = utc_now()
                    pipe.multi()
                    pipe.set(key, entry.to_json(), keepttl=True)
                    await pipe.execute()
                    return True
                except WatchError:
                    logger.debug("Reset token entry changed concurrently, retrying")
                    continue

    async def invalidate(self, subject_id: str) -> None:
        await self._redis.delete(self._key(subject_id))

    async def evict_expired(self) -> int:
        # Redis expires keys itself
        return 0

    async def close(self) -> None:
        await self._redis.aclose()


class PasswordResetTokens:
    """Issue and consume single-use password-reset tokens."""

    def __init__(
        self,
        store: PasswordResetTokenStore,
        secret: str,
        expires_in_seconds: int = 3600,
        algorithm: str = "HS256",
    ) -> None:
        self.store = store
        self._secret = secret
        self.expires_in_seconds = expires_in_seconds
        self.algorithm = algorithm

    async def generate(self, subject_id: str) -> str:
        issued_at = int(time.time())
        token = jwt.encode(
            {
                "sub": subject_id,
                "typ": RESET_TOKEN_TYPE,
                "iat": issued_at,
                "exp": issued_at + self.expires_in_seconds,
                "jti": secrets.token_hex(8),
            },
            self._secret,
            algorithm=self.algorithm,
        )
        now = utc_now()
        await self.store.put(
            subject_id,
            ResetTokenEntry(
                token=token,
                expires_at=now + timedelta(seconds=self.expires_in_seconds),
                created_at=now,
            ),
        )
        logger.info("Password reset token generated for user %s", subject_id)
        return token

    async def verify_and_consume(self, token: str) -> str:
        """Return the subject id and mark the token used.

        Raises:
            InvalidCredentialError: For any expired, unknown, superseded or
                already used token.
        """
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self.algorithm])
        except jwt.InvalidTokenError as e:
            raise InvalidCredentialError(INVALID_RESET_TOKEN) from e

        subject_id = payload.get("sub")
        if payload.get("typ") != RESET_TOKEN_TYPE or not subject_id:
            raise InvalidCredentialError(INVALID_RESET_TOKEN)

        entry = await self.store.get(subject_id)
        if (
            entry is None
            or entry.used
            or entry.token != token
            or entry.expires_at <= utc_now()
        ):
            raise InvalidCredentialError(INVALID_RESET_TOKEN)

        if not await self.store.mark_used(subject_id, token):
            raise InvalidCredentialError(INVALID_RESET_TOKEN)

        logger.info("Password reset token used for user %s", subject_id)
        return subject_id

    async def invalidate(self, subject_id: str) -> None:
        await self.store.invalidate(subject_id)
