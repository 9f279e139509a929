from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from dpm_api.storage.records import PasswordResetRecord, SessionRecord, UserRecord


class AuthStore(Protocol):
    """Persistencia durable de usuarios, sesiones y tokens de recuperación."""

    # --- users ---
    async def create_user(
        self,
        *,
        clinic_id: str,
        email: str,
        name: str,
        role: str,
        password_hash: str,
        is_active: bool = True,
        created_at: datetime,
    ) -> UserRecord: ...

    async def get_user(self, user_id: str) -> UserRecord | None: ...

    async def get_user_by_email(self, email: str, clinic_id: str | None = None) -> UserRecord | None: ...

    async def list_users_by_email(self, email: str) -> list[UserRecord]: ...

    async def update_user(self, user_id: str, **fields: Any) -> None: ...

    async def update_password_by_email(self, email: str, password_hash: str) -> int: ...

    # --- sessions ---
    async def create_session(
        self,
        *,
        user_id: str,
        token: str,
        refresh_token: str,
        expires_at: datetime,
        created_at: datetime,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> SessionRecord: ...

    async def get_session_by_refresh_token(self, refresh_token: str) -> SessionRecord | None: ...

    async def rotate_session(
        self,
        session_id: str,
        old_refresh_token: str,
        *,
        token: str,
        refresh_token: str,
        expires_at: datetime,
    ) -> bool:
        """Update condicional por id + refresh token viejo; False si otro ganó la carrera."""
        ...

    async def list_sessions(self, user_id: str) -> list[SessionRecord]: ...

    async def delete_session(self, session_id: str) -> None: ...

    async def delete_user_session(self, user_id: str, session_id: str) -> int: ...

    async def delete_sessions_by_token(self, user_id: str, token: str) -> int: ...

    async def delete_all_sessions(self, user_id: str) -> int: ...

    # --- password resets ---
    async def create_password_reset(
        self, *, email: str, token_hash: str, expires_at: datetime, created_at: datetime
    ) -> PasswordResetRecord: ...

    async def invalidate_password_resets(self, email: str, used_at: datetime) -> int: ...

    async def get_password_reset(self, token_hash: str) -> PasswordResetRecord | None: ...

    async def mark_password_reset_used(self, reset_id: str, used_at: datetime) -> bool: ...
