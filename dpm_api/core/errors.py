"""Resultados de error esperados del núcleo de autenticación.

Cada fallo de negocio lleva un ``AuthErrorKind``; la capa HTTP los traduce a un
status fijo con ``STATUS_BY_KIND`` (ver ``dpm_api.main``).
"""
import enum
from typing import Any


class AuthErrorKind(str, enum.Enum):
    invalid_credentials = "InvalidCredentials"
    account_locked = "AccountLocked"
    account_inactive = "AccountInactive"
    two_factor_session_expired = "TwoFactorSessionExpired"
    two_factor_setup_expired = "TwoFactorSetupExpired"
    two_factor_invalid_code = "TwoFactorInvalidCode"
    token_invalid = "TokenInvalid"
    token_expired = "TokenExpired"
    reset_token_invalid = "ResetTokenInvalid"
    reset_token_used = "ResetTokenUsed"
    reset_token_expired = "ResetTokenExpired"
    session_not_found = "SessionNotFound"
    email_already_registered = "EmailAlreadyRegistered"
    user_not_found = "UserNotFound"


STATUS_BY_KIND: dict[AuthErrorKind, int] = {
    AuthErrorKind.invalid_credentials: 401,
    AuthErrorKind.account_locked: 401,
    AuthErrorKind.account_inactive: 401,
    AuthErrorKind.two_factor_session_expired: 401,
    AuthErrorKind.two_factor_invalid_code: 401,
    AuthErrorKind.token_invalid: 401,
    AuthErrorKind.token_expired: 401,
    AuthErrorKind.two_factor_setup_expired: 400,
    AuthErrorKind.reset_token_invalid: 400,
    AuthErrorKind.reset_token_used: 400,
    AuthErrorKind.reset_token_expired: 400,
    AuthErrorKind.session_not_found: 404,
    AuthErrorKind.user_not_found: 404,
    AuthErrorKind.email_already_registered: 409,
}

DEFAULT_MESSAGES: dict[AuthErrorKind, str] = {
    AuthErrorKind.invalid_credentials: "Email o contraseña inválidos",
    AuthErrorKind.account_locked: "Cuenta bloqueada",
    AuthErrorKind.account_inactive: "La cuenta está desactivada",
    AuthErrorKind.two_factor_session_expired: "La sesión 2FA expiró. Iniciá sesión de nuevo",
    AuthErrorKind.two_factor_setup_expired: "La configuración 2FA expiró. Empezá de nuevo",
    AuthErrorKind.two_factor_invalid_code: "Código 2FA inválido",
    AuthErrorKind.token_invalid: "Token inválido",
    AuthErrorKind.token_expired: "Token expirado",
    AuthErrorKind.reset_token_invalid: "Token de recuperación inválido",
    AuthErrorKind.reset_token_used: "El token de recuperación ya fue usado",
    AuthErrorKind.reset_token_expired: "El token de recuperación expiró",
    AuthErrorKind.session_not_found: "Sesión no encontrada",
    AuthErrorKind.email_already_registered: "El email ya está registrado en esta clínica",
    AuthErrorKind.user_not_found: "Usuario no encontrado",
}


class AuthError(Exception):
    """Fallo tipado; ``details`` viaja tal cual en el cuerpo de la respuesta."""

    def __init__(self, kind: AuthErrorKind, message: str | None = None, **details: Any) -> None:
        self.kind = kind
        self.message = message or DEFAULT_MESSAGES[kind]
        self.details = details
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return STATUS_BY_KIND[self.kind]

    def to_body(self) -> dict[str, Any]:
        return {"detail": self.message, "code": self.kind.value, **self.details}
