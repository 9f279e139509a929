import math
from datetime import timedelta

from passlib.context import CryptContext
from fastapi.concurrency import run_in_threadpool

from dpm_api.core import security
from dpm_api.core.clock import Clock
from dpm_api.core.errors import AuthError, AuthErrorKind
from dpm_api.core.logging import get_logger
from dpm_api.storage.base import AuthStore
from dpm_api.storage.records import UserRecord

logger = get_logger(__name__)


class CredentialStore:
    """Verificación email + contraseña con contador de fallos y bloqueo temporal.

    El contador ``failed_login_attempts`` no se limpia cuando vence
    ``locked_until``; sólo un login correcto lo vuelve a 0. Así, tras un
    bloqueo, el siguiente fallo vuelve a bloquear inmediatamente.
    """

    def __init__(
        self,
        store: AuthStore,
        clock: Clock,
        pwd_context: CryptContext,
        *,
        max_attempts: int = 5,
        lockout_minutes: int = 15,
    ) -> None:
        self.store = store
        self.clock = clock
        self.pwd_context = pwd_context
        self.max_attempts = max_attempts
        self.lockout = timedelta(minutes=lockout_minutes)

    async def hash_password(self, plain: str) -> str:
        return await run_in_threadpool(security.hash_password, plain, self.pwd_context)

    async def check_password(self, user: UserRecord, plain: str) -> bool:
        return await run_in_threadpool(
            security.verify_password, plain, user.password_hash, self.pwd_context
        )

    async def verify_password(self, email: str, password: str, clinic_id: str | None = None) -> UserRecord:
        email = email.strip().lower()
        user = await self.store.get_user_by_email(email, clinic_id)
        if user is None:
            await run_in_threadpool(security.dummy_verify, self.pwd_context)
            logger.info("login_failed", reason="unknown_email", email=email)
            raise AuthError(AuthErrorKind.invalid_credentials)

        now = self.clock.now()
        # el bloqueo se evalúa antes de tocar el hash
        if user.locked_until and user.locked_until > now:
            minutes_remaining = math.ceil((user.locked_until - now).total_seconds() / 60)
            logger.info("login_blocked", user_id=user.id, minutes_remaining=minutes_remaining)
            raise AuthError(
                AuthErrorKind.account_locked,
                f"Cuenta bloqueada. Probá de nuevo en {minutes_remaining} minutos",
                minutes_remaining=minutes_remaining,
            )

        if not user.is_active:
            raise AuthError(AuthErrorKind.account_inactive)

        if not await self.check_password(user, password):
            await self._register_failure(user)
            raise AuthError(AuthErrorKind.invalid_credentials)

        await self.store.update_user(user.id, failed_login_attempts=0, locked_until=None)
        user.failed_login_attempts = 0
        user.locked_until = None
        return user

    async def _register_failure(self, user: UserRecord) -> None:
        # last-write-wins si hay fallos concurrentes sobre el mismo usuario
        attempts = user.failed_login_attempts + 1
        fields: dict = {"failed_login_attempts": attempts}
        if attempts >= self.max_attempts:
            fields["locked_until"] = self.clock.now() + self.lockout
            logger.warning("account_locked", user_id=user.id, attempts=attempts)
        else:
            logger.info("login_failed", reason="bad_password", user_id=user.id, attempts=attempts)
        await self.store.update_user(user.id, **fields)
