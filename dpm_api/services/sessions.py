from dataclasses import dataclass
from datetime import datetime, timedelta

from dpm_api.core.clock import Clock
from dpm_api.core.errors import AuthError, AuthErrorKind
from dpm_api.core.logging import get_logger
from dpm_api.core.tokens import TokenClaims, TokenCodec, TokenPair
from dpm_api.storage.base import AuthStore
from dpm_api.storage.records import UserRecord

logger = get_logger(__name__)


@dataclass(frozen=True)
class SessionSummary:
    id: str
    user_agent: str | None
    ip_address: str | None
    created_at: datetime
    expires_at: datetime
    is_current: bool = False


class SessionManager:
    """Emite pares access/refresh, persiste sesiones, rota y revoca."""

    def __init__(self, store: AuthStore, codec: TokenCodec, clock: Clock, *,
                 refresh_ttl_days: int = 7) -> None:
        self.store = store
        self.codec = codec
        self.clock = clock
        self.refresh_ttl = timedelta(days=refresh_ttl_days)

    def _mint(self, user: UserRecord) -> TokenPair:
        access = self.codec.sign(TokenClaims(user_id=user.id, clinic_id=user.clinic_id, role=user.role))
        return TokenPair(access_token=access, refresh_token=self.codec.new_refresh_token())

    async def create_session(self, user: UserRecord, ip_address: str | None = None,
                             user_agent: str | None = None) -> TokenPair:
        tokens = self._mint(user)
        now = self.clock.now()
        session = await self.store.create_session(
            user_id=user.id,
            token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_at=now + self.refresh_ttl,
            created_at=now,
            user_agent=user_agent,
            ip_address=ip_address,
        )
        logger.info("session_created", user_id=user.id, session_id=session.id)
        return tokens

    async def refresh(self, refresh_token: str) -> TokenPair:
        session = await self.store.get_session_by_refresh_token(refresh_token)
        if session is None:
            raise AuthError(AuthErrorKind.token_invalid, "Refresh token inválido")

        if session.expires_at < self.clock.now():
            await self.store.delete_session(session.id)
            raise AuthError(AuthErrorKind.token_expired, "Refresh token expirado")

        user = await self.store.get_user(session.user_id)
        if user is None:
            raise AuthError(AuthErrorKind.token_invalid, "Refresh token inválido")
        if not user.is_active:
            raise AuthError(AuthErrorKind.account_inactive)

        tokens = self._mint(user)
        rotated = await self.store.rotate_session(
            session.id,
            refresh_token,
            token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_at=self.clock.now() + self.refresh_ttl,
        )
        if not rotated:
            # otro refresh concurrente ya consumió este token
            logger.warning("refresh_race_lost", session_id=session.id)
            raise AuthError(AuthErrorKind.token_invalid, "Refresh token inválido")
        return tokens

    async def revoke(self, user_id: str, session_id: str | None = None) -> int:
        if session_id is None:
            count = await self.store.delete_all_sessions(user_id)
            logger.info("sessions_revoked_all", user_id=user_id, count=count)
            return count
        count = await self.store.delete_user_session(user_id, session_id)
        if count == 0:
            raise AuthError(AuthErrorKind.session_not_found)
        logger.info("session_revoked", user_id=user_id, session_id=session_id)
        return count

    async def revoke_by_access_token(self, user_id: str, access_token: str) -> int:
        return await self.store.delete_sessions_by_token(user_id, access_token)

    async def list_sessions(self, user_id: str, current_token: str | None = None) -> list[SessionSummary]:
        rows = await self.store.list_sessions(user_id)
        return [
            SessionSummary(
                id=s.id,
                user_agent=s.user_agent,
                ip_address=s.ip_address,
                created_at=s.created_at,
                expires_at=s.expires_at,
                is_current=current_token is not None and s.token == current_token,
            )
            for s in rows
        ]
