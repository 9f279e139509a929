import email_validator
import pytest
from email_validator import EmailNotValidError, validate_email
from pydantic import ValidationError

from dpm_api.core.config import settings
from dpm_api.core.email_domains import allow_special_use_domains
from dpm_api.core.errors import DEFAULT_MESSAGES, STATUS_BY_KIND, AuthError, AuthErrorKind
from dpm_api.schemas.auth import CodeIn, LoginIn, RegisterIn, ResetPasswordIn


@pytest.mark.parametrize(
    "password",
    ["Sh@rt1", "nouppercase@1", "NOLOWERCASE@1", "NoDigits@here", "NoSpecial123"],
)
def test_weak_passwords_are_rejected(password):
    with pytest.raises(ValidationError):
        ResetPasswordIn(token="t", password=password)


def test_strong_password_is_accepted():
    assert ResetPasswordIn(token="t", password="Admin@123").password == "Admin@123"


def test_register_rejects_unknown_role():
    with pytest.raises(ValidationError):
        RegisterIn(
            clinic_id="clinic-demo",
            email="new@demo.dpm.local",
            password="Admin@123",
            name="New User",
            role="OWNER",
        )


@pytest.mark.parametrize("code", ["12345", "1234567", "12a456", " 123456"])
def test_code_must_be_six_digits(code):
    with pytest.raises(ValidationError):
        CodeIn(code=code)


def test_demo_domain_email_is_valid():
    assert LoginIn(email="admin@demo.dpm.local", password="x").email == "admin@demo.dpm.local"


def test_every_error_kind_has_status_and_message():
    for kind in AuthErrorKind:
        assert kind in STATUS_BY_KIND
        assert DEFAULT_MESSAGES[kind]


def test_error_body_carries_code_and_details():
    err = AuthError(AuthErrorKind.account_locked, minutes_remaining=7)

    assert err.status_code == 401
    assert err.to_body() == {
        "detail": "Cuenta bloqueada",
        "code": "AccountLocked",
        "minutes_remaining": 7,
    }


def test_special_use_domains_follow_settings():
    allow_special_use_domains(settings.EMAIL_ALLOWED_SPECIAL_DOMAINS)

    assert "local" not in email_validator.SPECIAL_USE_DOMAIN_NAMES
    validate_email("admin@demo.dpm.local", check_deliverability=False)
    with pytest.raises(EmailNotValidError):
        validate_email("admin@clinic.invalid", check_deliverability=False)
