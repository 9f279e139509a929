import os
from datetime import datetime, timedelta, timezone

# antes de importar dpm_api: settings se instancia a nivel de módulo
os.environ.setdefault("JWT_SECRET", "test-secret-key-that-is-at-least-32-characters-long")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOG_JSON", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from dpm_api.api.deps import get_auth_service  # noqa: E402
from dpm_api.core.cache import MemoryEphemeralStore  # noqa: E402
from dpm_api.core.config import Settings  # noqa: E402
from dpm_api.core.security import totp_code_at  # noqa: E402
from dpm_api.main import app  # noqa: E402
from dpm_api.services.auth import AuthService  # noqa: E402
from dpm_api.storage.memory import MemoryAuthStore  # noqa: E402

CLINIC_ID = "clinic-demo"
ADMIN_EMAIL = "admin@demo.dpm.local"
ADMIN_PASSWORD = "Admin@123"


class FrozenClock:
    """Reloj controlable desde el test."""

    def __init__(self, start: datetime) -> None:
        self._now = start

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs) -> None:
        self._now = self._now + timedelta(**kwargs)


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def send_password_reset(self, email: str, token: str) -> None:
        self.sent.append((email, token))


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def settings():
    return Settings(
        JWT_SECRET="test-secret-key-that-is-at-least-32-characters-long",
        BCRYPT_ROUNDS=4,
        TOTP_ISSUER="DPM Test",
    )


@pytest.fixture
def store():
    return MemoryAuthStore()


@pytest.fixture
def cache(clock):
    return MemoryEphemeralStore(clock)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def auth(store, cache, settings, clock, notifier):
    return AuthService(store, cache, settings, clock, notifier)


@pytest.fixture
async def admin(auth):
    return await auth.register(
        clinic_id=CLINIC_ID,
        email=ADMIN_EMAIL,
        password=ADMIN_PASSWORD,
        name="Admin User",
        role="ADMIN",
    )


@pytest.fixture
async def dentist(auth):
    return await auth.register(
        clinic_id=CLINIC_ID,
        email="dentist@demo.dpm.local",
        password="Dentist@123",
        name="Dentist User",
        role="DENTIST",
    )


@pytest.fixture
def totp(clock):
    """Código TOTP válido para ``secret`` en el instante actual del reloj."""
    def _code(secret: str, offset_seconds: int = 0) -> str:
        return totp_code_at(secret, clock.now() + timedelta(seconds=offset_seconds))
    return _code


@pytest.fixture
async def client(auth):
    app.dependency_overrides[get_auth_service] = lambda: auth
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
