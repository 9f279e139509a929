# dpm_api/core/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore")

    APP_NAME: str = "DPM API"
    TOTP_ISSUER: str = "DPM"

    JWT_SECRET: str = Field(...)
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    # --- login / lockout ---
    BCRYPT_ROUNDS: int = 12
    MAX_LOGIN_ATTEMPTS: int = 5
    LOCKOUT_DURATION_MINUTES: int = 15

    # --- 2FA (segundos) ---
    TWOFA_PENDING_TTL_SECONDS: int = 300
    TWOFA_SETUP_TTL_SECONDS: int = 600
    TWOFA_MAX_ATTEMPTS: int = 5          # códigos erróneos por desafío de login

    PASSWORD_RESET_EXPIRE_HOURS: int = 1
    # sin canal de envío el enlace sólo queda en el log (desarrollo)
    PASSWORD_RESET_URL: str = "http://localhost:5173/reset-password"

    # dominios de uso especial que email-validator debe aceptar (usuarios demo)
    EMAIL_ALLOWED_SPECIAL_DOMAINS: list[str] = ["local", "test"]

    DB_HOST: str = "localhost"
    DB_PORT: int = 3306
    DB_USER: str = "dpm"
    DB_PASSWORD: str = ""
    DB_NAME: str = "dpm"
    DATABASE_URL: str | None = None   # si está, pisa los DB_*
    DB_TIMEOUT_SECONDS: float = 5.0

    REDIS_URL: str = "redis://localhost:6379/0"
    CACHE_TIMEOUT_SECONDS: float = 2.0
    USE_MEMORY_STORE: bool = False

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    CORS_ORIGINS: list[str] = ["http://localhost:5173", "http://127.0.0.1:5173"]

    @property
    def async_database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (f"mysql+aiomysql://{self.DB_USER}:{self.DB_PASSWORD}"
                f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}?charset=utf8mb4")

settings = Settings()  # type: ignore[call-arg]
