from __future__ import annotations

import asyncio
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Any

from dpm_api.storage.records import PasswordResetRecord, SessionRecord, UserRecord


class MemoryAuthStore:
    """AuthStore en memoria para tests y desarrollo local (USE_MEMORY_STORE)."""

    def __init__(self) -> None:
        self.users: dict[str, UserRecord] = {}
        self.sessions: dict[str, SessionRecord] = {}
        self.password_resets: dict[str, PasswordResetRecord] = {}
        self._lock = asyncio.Lock()

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
        user = UserRecord(
            id=str(uuid.uuid4()),
            clinic_id=clinic_id,
            email=email,
            name=name,
            role=role,
            password_hash=password_hash,
            is_active=is_active,
            created_at=created_at,
        )
        async with self._lock:
            self.users[user.id] = user
        return replace(user)

    async def get_user(self, user_id: str) -> UserRecord | None:
        user = self.users.get(user_id)
        return replace(user) if user else None

    async def get_user_by_email(self, email: str, clinic_id: str | None = None) -> UserRecord | None:
        matches = [
            u for u in self.users.values()
            if u.email == email and (clinic_id is None or u.clinic_id == clinic_id)
        ]
        if not matches:
            return None
        return replace(min(matches, key=lambda u: u.created_at))

    async def list_users_by_email(self, email: str) -> list[UserRecord]:
        return [replace(u) for u in self.users.values() if u.email == email]

    async def update_user(self, user_id: str, **fields: Any) -> None:
        async with self._lock:
            user = self.users.get(user_id)
            if user is None:
                return
            for k, v in fields.items():
                if not hasattr(user, k):
                    raise AttributeError(f"UserRecord has no field {k!r}")
                setattr(user, k, v)

    async def update_password_by_email(self, email: str, password_hash: str) -> int:
        async with self._lock:
            count = 0
            for user in self.users.values():
                if user.email == email:
                    user.password_hash = password_hash
                    count += 1
            return count

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
        async with self._lock:
            if any(s.refresh_token == refresh_token for s in self.sessions.values()):
                raise ValueError("refresh_token must be unique")
            s = SessionRecord(
                id=str(uuid.uuid4()),
                user_id=user_id,
                token=token,
                refresh_token=refresh_token,
                expires_at=expires_at,
                created_at=created_at,
                user_agent=user_agent,
                ip_address=ip_address,
            )
            self.sessions[s.id] = s
        return replace(s)

    async def get_session_by_refresh_token(self, refresh_token: str) -> SessionRecord | None:
        for s in self.sessions.values():
            if s.refresh_token == refresh_token:
                return replace(s)
        return None

    async def rotate_session(
        self,
        session_id: str,
        old_refresh_token: str,
        *,
        token: str,
        refresh_token: str,
        expires_at: datetime,
    ) -> bool:
        async with self._lock:
            s = self.sessions.get(session_id)
            if s is None or s.refresh_token != old_refresh_token:
                return False
            s.token = token
            s.refresh_token = refresh_token
            s.expires_at = expires_at
            return True

    async def list_sessions(self, user_id: str) -> list[SessionRecord]:
        rows = [replace(s) for s in self.sessions.values() if s.user_id == user_id]
        return sorted(rows, key=lambda s: s.created_at, reverse=True)

    async def delete_session(self, session_id: str) -> None:
        async with self._lock:
            self.sessions.pop(session_id, None)

    async def delete_user_session(self, user_id: str, session_id: str) -> int:
        async with self._lock:
            s = self.sessions.get(session_id)
            if s is None or s.user_id != user_id:
                return 0
            del self.sessions[session_id]
            return 1

    async def delete_sessions_by_token(self, user_id: str, token: str) -> int:
        return await self._delete_where(lambda s: s.user_id == user_id and s.token == token)

    async def delete_all_sessions(self, user_id: str) -> int:
        return await self._delete_where(lambda s: s.user_id == user_id)

    async def _delete_where(self, pred) -> int:
        async with self._lock:
            doomed = [sid for sid, s in self.sessions.items() if pred(s)]
            for sid in doomed:
                del self.sessions[sid]
            return len(doomed)

    # ---------- password resets ----------
    async def create_password_reset(
        self, *, email: str, token_hash: str, expires_at: datetime, created_at: datetime
    ) -> PasswordResetRecord:
        r = PasswordResetRecord(
            id=str(uuid.uuid4()),
            email=email,
            token_hash=token_hash,
            expires_at=expires_at,
            created_at=created_at,
        )
        async with self._lock:
            self.password_resets[r.id] = r
        return replace(r)

    async def invalidate_password_resets(self, email: str, used_at: datetime) -> int:
        async with self._lock:
            count = 0
            for r in self.password_resets.values():
                if r.email == email and r.used_at is None:
                    r.used_at = used_at
                    count += 1
            return count

    async def get_password_reset(self, token_hash: str) -> PasswordResetRecord | None:
        for r in self.password_resets.values():
            if r.token_hash == token_hash:
                return replace(r)
        return None

    async def mark_password_reset_used(self, reset_id: str, used_at: datetime) -> bool:
        async with self._lock:
            r = self.password_resets.get(reset_id)
            if r is None or r.used_at is not None:
                return False
            r.used_at = used_at
            return True
