import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Protocol

from dpm_api.core.clock import Clock
from dpm_api.core.errors import AuthError, AuthErrorKind
from dpm_api.core.logging import get_logger
from dpm_api.services.credentials import CredentialStore
from dpm_api.services.sessions import SessionManager
from dpm_api.storage.base import AuthStore

logger = get_logger(__name__)


class ResetNotifier(Protocol):
    async def send_password_reset(self, email: str, token: str) -> None: ...


class LogResetNotifier:
    """Sin canal de envío configurado: deja el enlace de recuperación en el log.

    Sólo sirve para desarrollo; el enlace va bajo ``reset_url`` para que el
    enmascarado de logs no lo oculte.
    """

    def __init__(self, reset_url: str) -> None:
        self.reset_url = reset_url

    def link_for(self, token: str) -> str:
        sep = "&" if "?" in self.reset_url else "?"
        return f"{self.reset_url}{sep}token={token}"

    async def send_password_reset(self, email: str, token: str) -> None:
        logger.warning("password_reset_not_delivered", email=email, reset_url=self.link_for(token))


@dataclass(frozen=True)
class ResetDelivery:
    """Envío pendiente de un token recién emitido; se ejecuta fuera de la respuesta."""
    email: str
    token: str
    notifier: ResetNotifier

    async def send(self) -> None:
        try:
            await self.notifier.send_password_reset(self.email, self.token)
        except Exception:
            # fire-and-forget: un fallo de envío no llega al cliente
            logger.exception("password_reset_delivery_failed", email=self.email)


def hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class PasswordResetFlow:
    def __init__(
        self,
        store: AuthStore,
        credentials: CredentialStore,
        sessions: SessionManager,
        notifier: ResetNotifier,
        clock: Clock,
        *,
        expire_hours: int = 1,
    ) -> None:
        self.store = store
        self.credentials = credentials
        self.sessions = sessions
        self.notifier = notifier
        self.clock = clock
        self.ttl = timedelta(hours=expire_hours)

    async def request_reset(self, email: str) -> ResetDelivery | None:
        """Emite un token si el email existe; nunca falla hacia el cliente.

        No envía nada: devuelve el ``ResetDelivery`` para que quien llama lo
        programe en segundo plano y la respuesta tarde lo mismo exista o no
        la cuenta.
        """
        email = email.strip().lower()
        # el token se genera siempre, exista o no el usuario
        token = secrets.token_urlsafe(32)
        token_hash = hash_reset_token(token)

        user = await self.store.get_user_by_email(email)
        if user is None:
            logger.info("password_reset_unknown_email", email=email)
            return None

        now = self.clock.now()
        await self.store.invalidate_password_resets(email, now)
        await self.store.create_password_reset(
            email=email,
            token_hash=token_hash,
            expires_at=now + self.ttl,
            created_at=now,
        )
        logger.info("password_reset_requested", user_id=user.id)
        return ResetDelivery(email=email, token=token, notifier=self.notifier)

    async def consume_reset(self, token: str, new_password: str) -> None:
        record = await self.store.get_password_reset(hash_reset_token(token))
        if record is None:
            raise AuthError(AuthErrorKind.reset_token_invalid)
        if record.used_at is not None:
            raise AuthError(AuthErrorKind.reset_token_used)
        now = self.clock.now()
        if record.expires_at < now:
            raise AuthError(AuthErrorKind.reset_token_expired)

        # se marca primero: dos consumos concurrentes no pueden ganar ambos
        if not await self.store.mark_password_reset_used(record.id, now):
            raise AuthError(AuthErrorKind.reset_token_used)

        password_hash = await self.credentials.hash_password(new_password)
        await self.store.update_password_by_email(record.email, password_hash)

        for user in await self.store.list_users_by_email(record.email):
            await self.sessions.revoke(user.id)
        logger.info("password_reset_completed", email=record.email)
