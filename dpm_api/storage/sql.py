# dpm_api/storage/sql.py
from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession

from dpm_api.core.clock import as_naive_utc, as_utc
from dpm_api.models.user import User, RoleEnum
from dpm_api.models.session import UserSession
from dpm_api.models.password_reset import PasswordReset
from dpm_api.storage.records import PasswordResetRecord, SessionRecord, UserRecord


def _user_record(u: User) -> UserRecord:
    return UserRecord(
        id=u.id,
        clinic_id=u.clinic_id,
        email=u.email,
        name=u.name,
        role=u.role.value if isinstance(u.role, RoleEnum) else str(u.role),
        password_hash=u.password_hash,
        is_active=u.is_active,
        two_factor_enabled=u.two_factor_enabled,
        two_factor_secret=u.two_factor_secret,
        failed_login_attempts=u.failed_login_attempts,
        locked_until=as_utc(u.locked_until),
        last_login_at=as_utc(u.last_login_at),
        created_at=as_utc(u.created_at),
    )


def _session_record(s: UserSession) -> SessionRecord:
    return SessionRecord(
        id=s.id,
        user_id=s.user_id,
        token=s.token,
        refresh_token=s.refresh_token,
        expires_at=as_utc(s.expires_at),
        created_at=as_utc(s.created_at),
        user_agent=s.user_agent,
        ip_address=s.ip_address,
    )


def _reset_record(r: PasswordReset) -> PasswordResetRecord:
    return PasswordResetRecord(
        id=r.id,
        email=r.email,
        token_hash=r.token,
        expires_at=as_utc(r.expires_at),
        used_at=as_utc(r.used_at),
        created_at=as_utc(r.created_at),
    )


class SqlAuthStore:
    """AuthStore sobre una AsyncSession; cada escritura hace commit."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    # ---------- users ----------
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
    ) -> UserRecord:
        user = User(
            clinic_id=clinic_id,
            email=email,
            name=name,
            role=RoleEnum(role),
            password_hash=password_hash,
            is_active=is_active,
            two_factor_enabled=False,
            failed_login_attempts=0,
            created_at=as_naive_utc(created_at),
            updated_at=as_naive_utc(created_at),
        )
        self.db.add(user)
        await self.db.commit()
        await self.db.refresh(user)
        return _user_record(user)

    async def get_user(self, user_id: str) -> UserRecord | None:
        res = await self.db.execute(select(User).where(User.id == user_id))
        user = res.scalar_one_or_none()
        return _user_record(user) if user else None

    async def get_user_by_email(self, email: str, clinic_id: str | None = None) -> UserRecord | None:
        q = select(User).where(User.email == email)
        if clinic_id:
            q = q.where(User.clinic_id == clinic_id)
        res = await self.db.execute(q.order_by(User.created_at).limit(1))
        user = res.scalars().first()
        return _user_record(user) if user else None

    async def list_users_by_email(self, email: str) -> list[UserRecord]:
        res = await self.db.execute(select(User).where(User.email == email))
        return [_user_record(u) for u in res.scalars().all()]

    async def update_user(self, user_id: str, **fields: Any) -> None:
        fields = {k: as_naive_utc(v) if isinstance(v, datetime) else v for k, v in fields.items()}
        await self.db.execute(update(User).where(User.id == user_id).values(**fields))
        await self.db.commit()

    async def update_password_by_email(self, email: str, password_hash: str) -> int:
        res = await self.db.execute(
            update(User).where(User.email == email).values(password_hash=password_hash)
        )
        await self.db.commit()
        return res.rowcount

    # ---------- sessions ----------
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
    ) -> SessionRecord:
        s = UserSession(
            user_id=user_id,
            token=token,
            refresh_token=refresh_token,
            expires_at=as_naive_utc(expires_at),
            created_at=as_naive_utc(created_at),
            user_agent=user_agent,
            ip_address=ip_address,
        )
        self.db.add(s)
        await self.db.commit()
        await self.db.refresh(s)
        return _session_record(s)

    async def get_session_by_refresh_token(self, refresh_token: str) -> SessionRecord | None:
        res = await self.db.execute(
            select(UserSession).where(UserSession.refresh_token == refresh_token)
        )
        s = res.scalar_one_or_none()
        return _session_record(s) if s else None

    async def rotate_session(
        self,
        session_id: str,
        old_refresh_token: str,
        *,
        token: str,
        refresh_token: str,
        expires_at: datetime,
    ) -> bool:
        res = await self.db.execute(
            update(UserSession)
            .where(UserSession.id == session_id, UserSession.refresh_token == old_refresh_token)
            .values(token=token, refresh_token=refresh_token, expires_at=as_naive_utc(expires_at))
        )
        await self.db.commit()
        return res.rowcount == 1

    async def list_sessions(self, user_id: str) -> list[SessionRecord]:
        res = await self.db.execute(
            select(UserSession)
            .where(UserSession.user_id == user_id)
            .order_by(UserSession.created_at.desc())
        )
        return [_session_record(s) for s in res.scalars().all()]

    async def delete_session(self, session_id: str) -> None:
        await self.db.execute(delete(UserSession).where(UserSession.id == session_id))
        await self.db.commit()

    async def delete_user_session(self, user_id: str, session_id: str) -> int:
        res = await self.db.execute(
            delete(UserSession).where(UserSession.id == session_id, UserSession.user_id == user_id)
        )
        await self.db.commit()
        return res.rowcount

    async def delete_sessions_by_token(self, user_id: str, token: str) -> int:
        res = await self.db.execute(
            delete(UserSession).where(UserSession.user_id == user_id, UserSession.token == token)
        )
        await self.db.commit()
        return res.rowcount

    async def delete_all_sessions(self, user_id: str) -> int:
        res = await self.db.execute(delete(UserSession).where(UserSession.user_id == user_id))
        await self.db.commit()
        return res.rowcount

    # ---------- password resets ----------
    async def create_password_reset(
        self, *, email: str, token_hash: str, expires_at: datetime, created_at: datetime
    ) -> PasswordResetRecord:
        r = PasswordReset(
            email=email,
            token=token_hash,
            expires_at=as_naive_utc(expires_at),
            created_at=as_naive_utc(created_at),
        )
        self.db.add(r)
        await self.db.commit()
        await self.db.refresh(r)
        return _reset_record(r)

    async def invalidate_password_resets(self, email: str, used_at: datetime) -> int:
        res = await self.db.execute(
            update(PasswordReset)
            .where(PasswordReset.email == email, PasswordReset.used_at.is_(None))
            .values(used_at=as_naive_utc(used_at))
        )
        await self.db.commit()
        return res.rowcount

    async def get_password_reset(self, token_hash: str) -> PasswordResetRecord | None:
        res = await self.db.execute(select(PasswordReset).where(PasswordReset.token == token_hash))
        r = res.scalar_one_or_none()
        return _reset_record(r) if r else None

    async def mark_password_reset_used(self, reset_id: str, used_at: datetime) -> bool:
        res = await self.db.execute(
            update(PasswordReset)
            .where(PasswordReset.id == reset_id, PasswordReset.used_at.is_(None))
            .values(used_at=as_naive_utc(used_at))
        )
        await self.db.commit()
        return res.rowcount == 1
