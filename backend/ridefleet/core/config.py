import re

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DURATION_RE = re.compile(r"^(\d+)([smhdw])$")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    ENV: str = "prod"  # dev|staging|prod|test

    DATABASE_URL: str

    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 5
    DB_POOL_TIMEOUT_SECONDS: int = 30
    DB_POOL_RECYCLE_SECONDS: int = 1800

    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TTL: str = "15m"
    JWT_REFRESH_TTL: str = "7d"

    PII_PEPPER: str = "CHANGE_ME"
    PASSWORD_BCRYPT_ROUNDS: int = 12

    OTP_DIGITS: int = 4
    OTP_STEP_SECONDS: int = 300
    OTP_VALID_WINDOW: int = 1
    OTP_BYPASS_CODE: str | None = "2299"

    # OAuth providers
    GOOGLE_CLIENT_ID: str | None = None
    GOOGLE_CLIENT_ID_IOS: str | None = None
    GOOGLE_JWKS_URL: str = "https://www.googleapis.com/oauth2/v3/certs"
    APPLE_BUNDLE_ID: str | None = None
    APPLE_SERVICE_ID: str | None = None
    APPLE_JWKS_URL: str = "https://appleid.apple.com/auth/keys"
    OAUTH_HTTP_TIMEOUT_SECONDS: int = 10
    OAUTH_JWKS_CACHE_SECONDS: int = 3600

    # Notifications (delivery lives outside this service)
    NOTIFY_WEBHOOK_URL: str | None = None
    NOTIFY_TIMEOUT_SECONDS: int = 5
    NOTIFY_PHONE_OTP_TEMPLATE: str = "phone-otp"
    NOTIFY_EMAIL_OTP_TEMPLATE: str = "email-verification-code"
    NOTIFY_FORGOT_PASSWORD_TEMPLATE: str = "forgot-password"

    EMAIL_SIGNUP_ROLES: str = "rider"
    PASSWORD_LOGIN_ROLES: str = "super_admin"

    WS_EXPIRY_WARNING_SECONDS: int = 120
    WS_SWEEP_INTERVAL_SECONDS: int = 60

    REFRESH_TOKEN_RETENTION_DAYS: int = 30

    ALLOWED_HOSTS: str = "localhost,127.0.0.1,testserver"
    SECURITY_HEADERS_ENABLED: bool = True

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    @field_validator("JWT_ACCESS_TTL", "JWT_REFRESH_TTL")
    @classmethod
    def validate_duration(cls, value: str) -> str:
        if not _DURATION_RE.match(value.strip()):
            raise ValueError(f"Invalid duration '{value}', expected e.g. 15m, 7d")
        return value.strip()

    @property
    def otp_bypass_active(self) -> bool:
        return self.ENV == "staging" and bool(self.OTP_BYPASS_CODE)

    @property
    def email_signup_roles(self) -> set[str]:
        return _split_csv(self.EMAIL_SIGNUP_ROLES)

    @property
    def password_login_roles(self) -> set[str]:
        return _split_csv(self.PASSWORD_LOGIN_ROLES)


def _split_csv(raw: str) -> set[str]:
    return {part.strip() for part in (raw or "").split(",") if part.strip()}


def parse_duration(value: str) -> int:
    """Seconds for a duration string like '15m' or '7d'."""
    match = _DURATION_RE.match(value.strip())
    if not match:
        raise ValueError(f"Invalid duration '{value}'")
    amount = int(match.group(1))
    unit = match.group(2)
    return amount * {"s": 1, "m": 60, "h": 3600, "d": 86400, "w": 604800}[unit]


settings = Settings()
