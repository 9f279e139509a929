import re
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field, field_validator
from enum import Enum

class Role(str, Enum):
    ADMIN = "ADMIN"
    DENTIST = "DENTIST"
    RECEPTIONIST = "RECEPTIONIST"
    ASSISTANT = "ASSISTANT"
    FINANCIAL = "FINANCIAL"

_TOTP_CODE = r"^\d{6}$"

def _strong_password(v: str) -> str:
    if len(v) < 8:
        raise ValueError("La contraseña debe tener al menos 8 caracteres")
    if not re.search(r"[A-Z]", v):
        raise ValueError("La contraseña debe tener al menos una mayúscula")
    if not re.search(r"[a-z]", v):
        raise ValueError("La contraseña debe tener al menos una minúscula")
    if not re.search(r"\d", v):
        raise ValueError("La contraseña debe tener al menos un número")
    if not re.search(r"[^A-Za-z0-9]", v):
        raise ValueError("La contraseña debe tener al menos un caracter especial")
    return v

class RegisterIn(BaseModel):
    clinic_id: str = Field(..., min_length=1)
    email: EmailStr
    password: str
    name: str = Field(..., min_length=2)
    role: Role

    @field_validator("password")
    @classmethod
    def password_strength(cls, v: str) -> str:
        return _strong_password(v)

class LoginIn(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)
    remember_me: bool = False
    clinic_id: str | None = None   # opcional: acota el email a una clínica

class Verify2FAIn(BaseModel):
    user_id: str
    code: str = Field(..., pattern=_TOTP_CODE)

class CodeIn(BaseModel):
    code: str = Field(..., pattern=_TOTP_CODE)

class RefreshIn(BaseModel):
    refresh_token: str = Field(..., min_length=1)

class ForgotPasswordIn(BaseModel):
    email: EmailStr

class ResetPasswordIn(BaseModel):
    token: str = Field(..., min_length=1)
    password: str

    @field_validator("password")
    @classmethod
    def password_strength(cls, v: str) -> str:
        return _strong_password(v)

class ChangePasswordIn(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str

    @field_validator("new_password")
    @classmethod
    def password_strength(cls, v: str) -> str:
        return _strong_password(v)

class Enable2FAIn(BaseModel):
    password: str = Field(..., min_length=1)

class Disable2FAIn(BaseModel):
    password: str = Field(..., min_length=1)
    code: str = Field(..., pattern=_TOTP_CODE)

class TokensOut(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"

    class Config:
        from_attributes = True

class UserOut(BaseModel):
    id: str
    clinic_id: str
    email: EmailStr
    name: str
    role: Role
    is_active: bool
    two_factor_enabled: bool
    last_login_at: datetime | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True

class LoginOut(BaseModel):
    user: UserOut
    tokens: TokensOut

class Requires2FAOut(BaseModel):
    requires_2fa: bool = True
    user_id: str
    message: str = "Se requiere verificación 2FA"

class TwoFASetupOut(BaseModel):
    secret: str
    otpauth_url: str
    qr_base64_png: str | None = None

class SessionOut(BaseModel):
    id: str
    user_agent: str | None
    ip_address: str | None
    created_at: datetime
    expires_at: datetime
    is_current: bool = False

    class Config:
        from_attributes = True

class MessageOut(BaseModel):
    ok: bool = True
    message: str
