# dpm_api/core/cache.py
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Protocol

import redis.asyncio as aioredis

from dpm_api.core.clock import Clock


class EphemeralStore(Protocol):
    """KV con expiración por clave (estado 2FA pendiente)."""

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Escribe sólo si la clave no existe; True si escribió."""
        ...

    async def get(self, key: str) -> str | None: ...

    async def pop(self, key: str) -> str | None:
        """Lee y borra en una sola operación."""
        ...

    async def delete(self, key: str) -> None: ...


class RedisEphemeralStore:
    def __init__(self, client: aioredis.Redis) -> None:
        self.client = client

    @classmethod
    def from_url(cls, url: str, *, timeout_seconds: float) -> "RedisEphemeralStore":
        client = aioredis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout_seconds,
            socket_connect_timeout=timeout_seconds,
        )
        return cls(client)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self.client.set(key, value, ex=ttl_seconds)

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        return bool(await self.client.set(key, value, ex=ttl_seconds, nx=True))

    async def get(self, key: str) -> str | None:
        return await self.client.get(key)

    async def pop(self, key: str) -> str | None:
        # GETDEL es atómico (Redis >= 6.2)
        return await self.client.getdel(key)

    async def delete(self, key: str) -> None:
        await self.client.delete(key)

    async def close(self) -> None:
        await self.client.aclose()


class MemoryEphemeralStore:
    """Versión en memoria; la expiración se evalúa contra el reloj inyectado."""

    def __init__(self, clock: Clock) -> None:
        self.clock = clock
        self._data: dict[str, tuple[str, datetime]] = {}
        self._lock = asyncio.Lock()

    def _alive(self, key: str) -> str | None:
        item = self._data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at <= self.clock.now():
            self._data.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        async with self._lock:
            self._data[key] = (value, self.clock.now() + timedelta(seconds=ttl_seconds))

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        async with self._lock:
            if self._alive(key) is not None:
                return False
            self._data[key] = (value, self.clock.now() + timedelta(seconds=ttl_seconds))
            return True

    async def get(self, key: str) -> str | None:
        async with self._lock:
            return self._alive(key)

    async def pop(self, key: str) -> str | None:
        async with self._lock:
            value = self._alive(key)
            self._data.pop(key, None)
            return value

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)
