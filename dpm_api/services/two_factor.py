"""Segundo factor TOTP: alta (pendiente → confirmada), desafío en login y baja.

El estado efímero vive en el ``EphemeralStore`` como dos registros tipados:

* ``PendingTwoFactorChallenge`` (``2fa:pending:<user_id>``): contexto del login
  que pasó la contraseña; TTL 5 min y hasta ``max_attempts`` códigos erróneos;
  se consume con un ``verify_challenge`` exitoso.
* ``PendingTwoFactorEnrollment`` (``2fa:setup:<user_id>``): secreto recién
  generado; TTL 10 min, se promueve a ``User.two_factor_secret`` al confirmar.
"""
from __future__ import annotations

import json
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timedelta

from dpm_api.core import security
from dpm_api.core.cache import EphemeralStore
from dpm_api.core.clock import Clock
from dpm_api.core.errors import AuthError, AuthErrorKind
from dpm_api.core.logging import get_logger
from dpm_api.services.credentials import CredentialStore
from dpm_api.services.sessions import SessionManager
from dpm_api.storage.base import AuthStore
from dpm_api.storage.records import UserRecord

logger = get_logger(__name__)


@dataclass(frozen=True)
class PendingTwoFactorChallenge:
    user_id: str
    ip_address: str | None
    user_agent: str | None
    expires_at: datetime
    attempts: int = 0

    KEY_PREFIX = "2fa:pending:"

    @classmethod
    def key(cls, user_id: str) -> str:
        return f"{cls.KEY_PREFIX}{user_id}"

    def dumps(self) -> str:
        data = asdict(self)
        data["expires_at"] = self.expires_at.isoformat()
        return json.dumps(data)

    @classmethod
    def loads(cls, raw: str) -> PendingTwoFactorChallenge:
        data = json.loads(raw)
        data["expires_at"] = datetime.fromisoformat(data["expires_at"])
        return cls(**data)


@dataclass(frozen=True)
class PendingTwoFactorEnrollment:
    user_id: str
    secret: str
    expires_at: datetime

    KEY_PREFIX = "2fa:setup:"

    @classmethod
    def key(cls, user_id: str) -> str:
        return f"{cls.KEY_PREFIX}{user_id}"

    def dumps(self) -> str:
        return json.dumps({
            "user_id": self.user_id,
            "secret": self.secret,
            "expires_at": self.expires_at.isoformat(),
        })

    @classmethod
    def loads(cls, raw: str) -> PendingTwoFactorEnrollment:
        data = json.loads(raw)
        return cls(
            user_id=data["user_id"],
            secret=data["secret"],
            expires_at=datetime.fromisoformat(data["expires_at"]),
        )


@dataclass(frozen=True)
class EnrollmentStart:
    secret: str
    otpauth_url: str
    qr_base64_png: str


class TwoFactorCoordinator:
    def __init__(
        self,
        store: AuthStore,
        cache: EphemeralStore,
        credentials: CredentialStore,
        sessions: SessionManager,
        clock: Clock,
        *,
        issuer: str = "DPM",
        pending_ttl_seconds: int = 300,
        setup_ttl_seconds: int = 600,
        max_attempts: int = 5,
    ) -> None:
        self.store = store
        self.cache = cache
        self.credentials = credentials
        self.sessions = sessions
        self.clock = clock
        self.issuer = issuer
        self.pending_ttl_seconds = pending_ttl_seconds
        self.setup_ttl_seconds = setup_ttl_seconds
        self.max_attempts = max_attempts

    def _verify(self, code: str, secret: str) -> bool:
        return security.verify_totp(code, secret, self.clock.now())

    async def _user_with_password(self, user_id: str, password: str) -> UserRecord:
        user = await self.store.get_user(user_id)
        if user is None:
            raise AuthError(AuthErrorKind.user_not_found)
        if not await self.credentials.check_password(user, password):
            raise AuthError(AuthErrorKind.invalid_credentials, "Contraseña incorrecta")
        return user

    # ---------- alta ----------
    async def begin_enrollment(self, user_id: str, password: str) -> EnrollmentStart:
        user = await self._user_with_password(user_id, password)
        secret = security.generate_2fa_secret()
        pending = PendingTwoFactorEnrollment(
            user_id=user.id,
            secret=secret,
            expires_at=self.clock.now() + timedelta(seconds=self.setup_ttl_seconds),
        )
        await self.cache.set(pending.key(user.id), pending.dumps(), self.setup_ttl_seconds)

        otpauth = security.totp_uri_from_secret(secret, email=user.email, issuer=self.issuer)
        logger.info("2fa_enrollment_started", user_id=user.id)
        return EnrollmentStart(
            secret=secret,
            otpauth_url=otpauth,
            qr_base64_png=security.qr_png_base64_from_text(otpauth),
        )

    async def confirm_enrollment(self, user_id: str, code: str) -> None:
        raw = await self.cache.get(PendingTwoFactorEnrollment.key(user_id))
        if raw is None:
            raise AuthError(AuthErrorKind.two_factor_setup_expired)
        pending = PendingTwoFactorEnrollment.loads(raw)
        if pending.expires_at <= self.clock.now():
            await self.cache.delete(pending.key(user_id))
            raise AuthError(AuthErrorKind.two_factor_setup_expired)

        # si falla, el alta pendiente queda para reintentar hasta el TTL
        if not self._verify(code, pending.secret):
            raise AuthError(AuthErrorKind.two_factor_invalid_code)

        await self.store.update_user(user_id, two_factor_enabled=True, two_factor_secret=pending.secret)
        await self.cache.delete(pending.key(user_id))
        logger.info("2fa_enabled", user_id=user_id)

    # ---------- login ----------
    async def challenge_on_login(self, user: UserRecord, ip_address: str | None = None,
                                 user_agent: str | None = None) -> PendingTwoFactorChallenge:
        challenge = PendingTwoFactorChallenge(
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
            expires_at=self.clock.now() + timedelta(seconds=self.pending_ttl_seconds),
        )
        await self.cache.set(challenge.key(user.id), challenge.dumps(), self.pending_ttl_seconds)
        logger.info("2fa_challenge_issued", user_id=user.id)
        return challenge

    async def verify_challenge(self, user_id: str, code: str) -> tuple[UserRecord, PendingTwoFactorChallenge]:
        key = PendingTwoFactorChallenge.key(user_id)
        raw = await self.cache.pop(key)
        if raw is None:
            raise AuthError(AuthErrorKind.two_factor_session_expired)
        challenge = PendingTwoFactorChallenge.loads(raw)
        now = self.clock.now()
        if challenge.expires_at <= now:
            raise AuthError(AuthErrorKind.two_factor_session_expired)

        user = await self.store.get_user(user_id)
        if user is None or not user.two_factor_enabled or not user.two_factor_secret:
            raise AuthError(AuthErrorKind.two_factor_session_expired)

        if not self._verify(code, user.two_factor_secret):
            await self._put_back(challenge, now)
            logger.info("2fa_code_rejected", user_id=user_id, attempts=challenge.attempts + 1)
            raise AuthError(AuthErrorKind.two_factor_invalid_code)

        return user, challenge

    async def _put_back(self, challenge: PendingTwoFactorChallenge, now: datetime) -> None:
        # agotados los intentos, el desafío muere y hay que volver a loguearse
        attempts = challenge.attempts + 1
        if attempts >= self.max_attempts:
            logger.warning("2fa_challenge_exhausted", user_id=challenge.user_id, attempts=attempts)
            return
        remaining = int((challenge.expires_at - now).total_seconds())
        if remaining <= 0:
            return
        # NX: no pisar un desafío más nuevo de un login concurrente
        await self.cache.set_if_absent(
            challenge.key(challenge.user_id),
            replace(challenge, attempts=attempts).dumps(),
            remaining,
        )

    # ---------- baja ----------
    async def disable(self, user_id: str, password: str, code: str) -> None:
        user = await self._user_with_password(user_id, password)

        if user.two_factor_enabled and user.two_factor_secret:
            if not self._verify(code, user.two_factor_secret):
                raise AuthError(AuthErrorKind.two_factor_invalid_code)

        await self.store.update_user(user_id, two_factor_enabled=False, two_factor_secret=None)
        await self.sessions.revoke(user_id)
        logger.info("2fa_disabled", user_id=user_id)
