from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=(
            str(Path(__file__).resolve().parents[3] / ".env"),
            ".env",
        ),
        env_ignore_empty=True,
        extra="ignore",
    )

    host: str = "0.0.0.0"
    port: int = 3001
    log_level: str = "INFO"
    allow_origin: str = "*"
    max_body_bytes: int = 64 * 1024
    trust_forwarded_for: bool = True

    smtp_host: str | None = None
    smtp_port: int = 465
    smtp_secure: bool = True
    smtp_starttls: bool = True
    smtp_user: str | None = None
    smtp_pass: str | None = None
    smtp_from_name: str = "Mi Refugio"
    smtp_timeout_seconds: float = 10.0
    smtp_pool_max_connections: int = 5
    smtp_pool_max_messages: int = 50
    smtp_verify_on_startup: bool = True

    mail_to: str | None = None
    mail_subject_prefix: str = "Contacto Mi Refugio"

    recaptcha_secret_key: str | None = None
    recaptcha_verify_url: str = "https://www.google.com/recaptcha/api/siteverify"
    recaptcha_timeout_seconds: float = 10.0
    recaptcha_expected_hostname: str | None = None

    rate_limit_backend: str = "memory"
    rate_limit_window_seconds: float = 60.0
    rate_limit_max: int = 20
    redis_url: str = "redis://localhost:6379/0"

    def allowed_origins(self) -> list[str]:
        return [o.strip() for o in str(self.allow_origin or "*").split(",") if o.strip()]


settings = Settings()
