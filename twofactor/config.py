from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    # Application settings
    app_name: str = "BuildFast Chat Two-Factor"
    app_version: str = "1.0.0"
    debug: bool = False
    environment: str = "development"

    # Database settings
    database_url: str = "sqlite+aiosqlite:///./twofactor.db"
    db_timeout_seconds: int = 30

    # Security settings
    secret_key: str = "change-me"
    access_token_expire_minutes: int = 30

    # TOTP provisioning
    totp_issuer: str = "BuildFast Chat"

    # Second-factor policy
    backup_code_count: int = 8
    lockout_threshold: int = 5
    lockout_cooldown_minutes: int = 15
    trusted_device_ttl_days: int = 30
    email_code_ttl_minutes: int = 10
    email_code_resend_seconds: int = 30
    email_code_max_attempts: int = 5
    enrollment_flow_ttl_minutes: int = 30
    challenge_ttl_minutes: int = 30
    notifier_timeout_seconds: float = 10.0
    notifier_backend: str = "smtp"  # "smtp" or "log"

    # SMTP settings for the email notifier
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    smtp_from: str = "no-reply@buildfast.chat"

    # CORS settings
    allowed_origins: list[str] = ["http://localhost:3000", "http://localhost:8000"]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


settings = Settings()
