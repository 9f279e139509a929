from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class UserRecord:
    id: str
    clinic_id: str
    email: str
    name: str
    role: str
    password_hash: str
    is_active: bool = True
    two_factor_enabled: bool = False
    two_factor_secret: str | None = None
    failed_login_attempts: int = 0
    locked_until: datetime | None = None
    last_login_at: datetime | None = None
    created_at: datetime | None = None


@dataclass
class SessionRecord:
    id: str
    user_id: str
    token: str
    refresh_token: str
    expires_at: datetime
    created_at: datetime
    user_agent: str | None = None
    ip_address: str | None = None


@dataclass
class PasswordResetRecord:
    id: str
    email: str
    token_hash: str
    expires_at: datetime
    used_at: datetime | None = None
    created_at: datetime | None = None
