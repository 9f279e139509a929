from functools import lru_cache

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from dpm_api.core.cache import EphemeralStore, MemoryEphemeralStore, RedisEphemeralStore
from dpm_api.core.clock import SystemClock
from dpm_api.core.config import settings
from dpm_api.core.db import get_db
from dpm_api.services.auth import AuthContext, AuthService
from dpm_api.services.password_reset import LogResetNotifier
from dpm_api.storage.base import AuthStore
from dpm_api.storage.memory import MemoryAuthStore
from dpm_api.storage.sql import SqlAuthStore


bearer = HTTPBearer(auto_error=True)

_clock = SystemClock()

@lru_cache
def get_cache() -> EphemeralStore:
    if settings.USE_MEMORY_STORE:
        return MemoryEphemeralStore(_clock)
    return RedisEphemeralStore.from_url(settings.REDIS_URL, timeout_seconds=settings.CACHE_TIMEOUT_SECONDS)

@lru_cache
def _memory_store() -> MemoryAuthStore:
    return MemoryAuthStore()

async def get_auth_store(db: AsyncSession = Depends(get_db)) -> AuthStore:
    if settings.USE_MEMORY_STORE:
        return _memory_store()
    return SqlAuthStore(db)

async def get_auth_service(
    store: AuthStore = Depends(get_auth_store),
    cache: EphemeralStore = Depends(get_cache),
) -> AuthService:
    return AuthService(store, cache, settings, _clock, LogResetNotifier(settings.PASSWORD_RESET_URL))

async def get_auth_context(
    creds: HTTPAuthorizationCredentials = Depends(bearer),
    auth: AuthService = Depends(get_auth_service),
) -> AuthContext:
    # AuthError (TokenInvalid / TokenExpired) lo traduce el handler global
    return auth.authenticate(creds.credentials)

# --- Role-based dependency ---
def require_roles(*roles: str):
    async def _guard(ctx: AuthContext = Depends(get_auth_context)) -> AuthContext:
        if ctx.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Permiso denegado")
        return ctx
    return _guard
