import secrets
from dataclasses import dataclass
from datetime import timedelta

from jose import jwt, JWTError

from dpm_api.core.clock import Clock
from dpm_api.core.errors import AuthError, AuthErrorKind

# 48 bytes -> 64 chars urlsafe
REFRESH_TOKEN_BYTES = 48


@dataclass(frozen=True)
class TokenClaims:
    user_id: str
    clinic_id: str
    role: str


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


class TokenCodec:
    """Firma y verifica access tokens (JWT). No guarda estado.

    Los refresh tokens NO son JWT: son strings aleatorios opacos cuya validez
    depende sólo de la fila de sesión.
    """

    def __init__(self, secret: str, clock: Clock, *, algorithm: str = "HS256",
                 expires_minutes: int = 15) -> None:
        self.secret = secret
        self.algorithm = algorithm
        self.expires = timedelta(minutes=expires_minutes)
        self.clock = clock

    def sign(self, claims: TokenClaims) -> str:
        now = self.clock.now()
        to_encode = {
            "sub": claims.user_id,
            "userId": claims.user_id,
            "clinicId": claims.clinic_id,
            "role": claims.role,
            "iat": int(now.timestamp()),
            # jti para que dos tokens del mismo segundo no sean idénticos
            "jti": secrets.token_hex(8),
            "exp": int((now + self.expires).timestamp()),
        }
        return jwt.encode(to_encode, self.secret, algorithm=self.algorithm)

    def verify(self, token: str) -> TokenClaims:
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"verify_exp": False},
            )
        except JWTError:
            raise AuthError(AuthErrorKind.token_invalid)

        # exp contra el reloj inyectado, no contra time.time()
        exp = payload.get("exp")
        if not isinstance(exp, (int, float)):
            raise AuthError(AuthErrorKind.token_invalid)
        if exp <= self.clock.now().timestamp():
            raise AuthError(AuthErrorKind.token_expired)

        user_id = payload.get("userId")
        clinic_id = payload.get("clinicId")
        role = payload.get("role")
        if not all(isinstance(v, str) and v for v in (user_id, clinic_id, role)):
            raise AuthError(AuthErrorKind.token_invalid)
        return TokenClaims(user_id=user_id, clinic_id=clinic_id, role=role)

    @staticmethod
    def new_refresh_token() -> str:
        return secrets.token_urlsafe(REFRESH_TOKEN_BYTES)
