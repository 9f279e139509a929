from datetime import datetime
from passlib.context import CryptContext

from dpm_api.core.config import settings

# --- 2FA helpers ---
import base64
from io import BytesIO
import pyotp
import qrcode


def make_password_context(rounds: int = settings.BCRYPT_ROUNDS) -> CryptContext:
    return CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)

pwd_context = make_password_context()

def hash_password(plain: str, context: CryptContext = pwd_context) -> str:
    return context.hash(plain)

def verify_password(plain: str, hashed: str, context: CryptContext = pwd_context) -> bool:
    return context.verify(plain, hashed)

def dummy_verify(context: CryptContext = pwd_context) -> None:
    # mismo costo que un verify real cuando el email no existe
    context.dummy_verify()

# --- 2FA functions ---

def generate_2fa_secret() -> str:
    # 32 chars base32 (TOTP)
    return pyotp.random_base32(length=32)

def totp_uri_from_secret(secret: str, email: str, issuer: str = settings.TOTP_ISSUER) -> str:
    totp = pyotp.TOTP(secret)
    return totp.provisioning_uri(name=email, issuer_name=issuer)

def verify_totp(otp: str, secret: str, for_time: datetime) -> bool:
    # ventana de ±1 paso (30s) por desfasaje de reloj
    if not otp or len(otp) != 6 or not otp.isdigit():
        return False
    return pyotp.TOTP(secret).verify(otp, for_time=for_time, valid_window=1)

def totp_code_at(secret: str, for_time: datetime) -> str:
    return pyotp.TOTP(secret).at(for_time)

# -- QR PNG en base64 para el front --
def qr_png_base64_from_text(text: str) -> str:
    img = qrcode.make(text)
    buf = BytesIO()
    img.save(buf, "PNG")
    return base64.b64encode(buf.getvalue()).decode("ascii")
