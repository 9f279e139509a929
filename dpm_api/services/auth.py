from __future__ import annotations

from dataclasses import dataclass

from passlib.context import CryptContext

from dpm_api.core.cache import EphemeralStore
from dpm_api.core.clock import Clock
from dpm_api.core.config import Settings
from dpm_api.core.errors import AuthError, AuthErrorKind
from dpm_api.core.logging import get_logger
from dpm_api.core.security import make_password_context
from dpm_api.core.tokens import TokenCodec, TokenPair
from dpm_api.services.credentials import CredentialStore
from dpm_api.services.password_reset import PasswordResetFlow, ResetDelivery, ResetNotifier
from dpm_api.services.sessions import SessionManager, SessionSummary
from dpm_api.services.two_factor import EnrollmentStart, TwoFactorCoordinator
from dpm_api.storage.base import AuthStore
from dpm_api.storage.records import UserRecord

logger = get_logger(__name__)


@dataclass
class AuthContext:
    """Identidad autenticada, construida una vez a partir del bearer token."""
    user_id: str
    clinic_id: str
    role: str
    token: str


@dataclass
class LoginResult:
    user: UserRecord
    tokens: TokenPair | None = None
    requires_2fa: bool = False


class AuthService:
    """Operaciones de autenticación expuestas por la API."""

    def __init__(
        self,
        store: AuthStore,
        cache: EphemeralStore,
        settings: Settings,
        clock: Clock,
        notifier: ResetNotifier,
        *,
        pwd_context: CryptContext | None = None,
    ) -> None:
        self.store = store
        self.clock = clock
        self.codec = TokenCodec(
            settings.JWT_SECRET,
            clock,
            algorithm=settings.JWT_ALGORITHM,
            expires_minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES,
        )
        self.credentials = CredentialStore(
            store,
            clock,
            pwd_context or make_password_context(settings.BCRYPT_ROUNDS),
            max_attempts=settings.MAX_LOGIN_ATTEMPTS,
            lockout_minutes=settings.LOCKOUT_DURATION_MINUTES,
        )
        self.sessions = SessionManager(
            store, self.codec, clock, refresh_ttl_days=settings.REFRESH_TOKEN_EXPIRE_DAYS
        )
        self.two_factor = TwoFactorCoordinator(
            store,
            cache,
            self.credentials,
            self.sessions,
            clock,
            issuer=settings.TOTP_ISSUER,
            pending_ttl_seconds=settings.TWOFA_PENDING_TTL_SECONDS,
            setup_ttl_seconds=settings.TWOFA_SETUP_TTL_SECONDS,
            max_attempts=settings.TWOFA_MAX_ATTEMPTS,
        )
        self.password_reset = PasswordResetFlow(
            store,
            self.credentials,
            self.sessions,
            notifier,
            clock,
            expire_hours=settings.PASSWORD_RESET_EXPIRE_HOURS,
        )

    # ---------- login ----------
    async def login(self, email: str, password: str, *, clinic_id: str | None = None,
                    ip_address: str | None = None, user_agent: str | None = None) -> LoginResult:
        user = await self.credentials.verify_password(email, password, clinic_id)

        if user.two_factor_enabled:
            await self.two_factor.challenge_on_login(user, ip_address, user_agent)
            return LoginResult(user=user, requires_2fa=True)

        tokens = await self._open_session(user, ip_address, user_agent)
        return LoginResult(user=user, tokens=tokens)

    async def verify_2fa(self, user_id: str, code: str) -> TokenPair:
        user, challenge = await self.two_factor.verify_challenge(user_id, code)
        return await self._open_session(user, challenge.ip_address, challenge.user_agent)

    async def _open_session(self, user: UserRecord, ip_address: str | None,
                            user_agent: str | None) -> TokenPair:
        tokens = await self.sessions.create_session(user, ip_address, user_agent)
        now = self.clock.now()
        await self.store.update_user(user.id, last_login_at=now)
        user.last_login_at = now
        logger.info("login_succeeded", user_id=user.id, clinic_id=user.clinic_id)
        return tokens

    async def refresh(self, refresh_token: str) -> TokenPair:
        return await self.sessions.refresh(refresh_token)

    def authenticate(self, access_token: str) -> AuthContext:
        claims = self.codec.verify(access_token)
        return AuthContext(
            user_id=claims.user_id,
            clinic_id=claims.clinic_id,
            role=claims.role,
            token=access_token,
        )

    # ---------- logout ----------
    async def logout(self, ctx: AuthContext) -> None:
        await self.sessions.revoke_by_access_token(ctx.user_id, ctx.token)

    async def logout_all(self, user_id: str) -> None:
        await self.sessions.revoke(user_id)

    # ---------- usuarios ----------
    async def register(self, *, clinic_id: str, email: str, password: str, name: str,
                       role: str) -> UserRecord:
        email = email.strip().lower()
        if await self.store.get_user_by_email(email, clinic_id):
            raise AuthError(AuthErrorKind.email_already_registered)
        password_hash = await self.credentials.hash_password(password)
        user = await self.store.create_user(
            clinic_id=clinic_id,
            email=email,
            name=name,
            role=role,
            password_hash=password_hash,
            created_at=self.clock.now(),
        )
        logger.info("user_registered", user_id=user.id, clinic_id=clinic_id)
        return user

    async def me(self, user_id: str) -> UserRecord:
        user = await self.store.get_user(user_id)
        if user is None:
            raise AuthError(AuthErrorKind.user_not_found)
        return user

    # ---------- contraseñas ----------
    async def forgot_password(self, email: str) -> ResetDelivery | None:
        return await self.password_reset.request_reset(email)

    async def reset_password(self, token: str, new_password: str) -> None:
        await self.password_reset.consume_reset(token, new_password)

    async def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        user = await self.me(user_id)
        if not await self.credentials.check_password(user, current_password):
            raise AuthError(AuthErrorKind.invalid_credentials, "La contraseña actual es incorrecta")
        password_hash = await self.credentials.hash_password(new_password)
        await self.store.update_user(user_id, password_hash=password_hash)
        await self.sessions.revoke(user_id)
        logger.info("password_changed", user_id=user_id)

    # ---------- 2FA ----------
    async def enable_2fa(self, user_id: str, password: str) -> EnrollmentStart:
        return await self.two_factor.begin_enrollment(user_id, password)

    async def confirm_2fa(self, user_id: str, code: str) -> None:
        await self.two_factor.confirm_enrollment(user_id, code)

    async def disable_2fa(self, user_id: str, password: str, code: str) -> None:
        await self.two_factor.disable(user_id, password, code)

    # ---------- sesiones ----------
    async def list_sessions(self, ctx: AuthContext) -> list[SessionSummary]:
        return await self.sessions.list_sessions(ctx.user_id, current_token=ctx.token)

    async def revoke_session(self, user_id: str, session_id: str) -> None:
        await self.sessions.revoke(user_id, session_id)
