from datetime import timedelta

import pytest
from fastapi import concurrency

from dpm_api.core.errors import AuthError, AuthErrorKind
from dpm_api.services import credentials as credentials_module
from tests.conftest import ADMIN_EMAIL, ADMIN_PASSWORD, CLINIC_ID


async def _fail(auth, email=ADMIN_EMAIL, password="Wrong@123"):
    with pytest.raises(AuthError) as exc:
        await auth.credentials.verify_password(email, password)
    return exc.value


async def test_correct_password_resets_counter_and_lock(auth, store, admin, clock):
    await store.update_user(
        admin.id, failed_login_attempts=3, locked_until=clock.now() - timedelta(minutes=1)
    )

    user = await auth.credentials.verify_password(ADMIN_EMAIL, ADMIN_PASSWORD)

    assert user.id == admin.id
    stored = await store.get_user(admin.id)
    assert stored.failed_login_attempts == 0
    assert stored.locked_until is None


async def test_wrong_password_increments_counter(auth, store, admin):
    err = await _fail(auth)

    assert err.kind is AuthErrorKind.invalid_credentials
    assert (await store.get_user(admin.id)).failed_login_attempts == 1


async def test_fifth_failure_locks_account_even_for_correct_password(auth, store, admin, clock):
    for _ in range(5):
        assert (await _fail(auth)).kind is AuthErrorKind.invalid_credentials

    stored = await store.get_user(admin.id)
    assert stored.failed_login_attempts == 5
    assert stored.locked_until == clock.now() + timedelta(minutes=15)

    err = await _fail(auth, password=ADMIN_PASSWORD)
    assert err.kind is AuthErrorKind.account_locked
    assert err.details["minutes_remaining"] == 15


async def test_locked_account_skips_password_hashing(auth, store, admin, clock, monkeypatch):
    await store.update_user(admin.id, locked_until=clock.now() + timedelta(minutes=3))

    async def _boom(*args, **kwargs):
        raise AssertionError("password must not be checked while locked")

    monkeypatch.setattr(auth.credentials, "check_password", _boom)

    err = await _fail(auth, password=ADMIN_PASSWORD)
    assert err.kind is AuthErrorKind.account_locked
    assert err.details["minutes_remaining"] == 3


async def test_remaining_minutes_round_up(auth, store, admin, clock):
    await store.update_user(admin.id, locked_until=clock.now() + timedelta(minutes=4, seconds=1))

    err = await _fail(auth, password=ADMIN_PASSWORD)
    assert err.details["minutes_remaining"] == 5


async def test_lock_expiry_allows_login_and_resets_counter(auth, store, admin, clock):
    for _ in range(5):
        await _fail(auth)

    clock.advance(minutes=15, seconds=1)
    user = await auth.credentials.verify_password(ADMIN_EMAIL, ADMIN_PASSWORD)

    assert user.failed_login_attempts == 0
    assert (await store.get_user(admin.id)).failed_login_attempts == 0


async def test_counter_survives_lock_expiry_so_next_failure_relocks(auth, store, admin, clock):
    for _ in range(5):
        await _fail(auth)
    clock.advance(minutes=16)

    # el contador no se limpió al vencer el bloqueo
    assert (await store.get_user(admin.id)).failed_login_attempts == 5

    await _fail(auth)
    stored = await store.get_user(admin.id)
    assert stored.failed_login_attempts == 6
    assert stored.locked_until == clock.now() + timedelta(minutes=15)
    assert (await _fail(auth, password=ADMIN_PASSWORD)).kind is AuthErrorKind.account_locked


async def test_inactive_account_is_rejected(auth, store, admin):
    await store.update_user(admin.id, is_active=False)

    err = await _fail(auth, password=ADMIN_PASSWORD)
    assert err.kind is AuthErrorKind.account_inactive


async def test_lock_is_checked_before_active_flag(auth, store, admin, clock):
    await store.update_user(admin.id, is_active=False, locked_until=clock.now() + timedelta(minutes=1))

    assert (await _fail(auth, password=ADMIN_PASSWORD)).kind is AuthErrorKind.account_locked


async def test_unknown_email_is_invalid_credentials(auth, admin):
    err = await _fail(auth, email="nobody@demo.dpm.local", password=ADMIN_PASSWORD)
    assert err.kind is AuthErrorKind.invalid_credentials


async def test_email_lookup_is_case_insensitive(auth, admin):
    user = await auth.credentials.verify_password("  Admin@Demo.DPM.local ", ADMIN_PASSWORD)
    assert user.id == admin.id


async def test_email_lookup_can_be_scoped_to_clinic(auth, admin):
    other = await auth.register(
        clinic_id="clinic-other",
        email=ADMIN_EMAIL,
        password="Other@1234",
        name="Other Admin",
        role="ADMIN",
    )

    user = await auth.credentials.verify_password(ADMIN_EMAIL, "Other@1234", clinic_id="clinic-other")
    assert user.id == other.id

    with pytest.raises(AuthError):
        await auth.credentials.verify_password(ADMIN_EMAIL, "Other@1234", clinic_id=CLINIC_ID)


async def test_password_hash_uses_bcrypt(auth, admin):
    assert admin.password_hash.startswith("$2b$")
    assert admin.password_hash != ADMIN_PASSWORD


def test_hashing_runs_in_fastapi_threadpool():
    assert credentials_module.run_in_threadpool is concurrency.run_in_threadpool
