from dataclasses import dataclass, field
import os


def _as_bool(value: str) -> bool:
    return value.lower() in ("1", "true", "yes")


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    db_host: str = os.getenv("DB_HOST", "")
    db_port: int = int(os.getenv("DB_PORT", "5432"))
    db_name: str = os.getenv("DB_NAME", "")
    db_user: str = os.getenv("DB_USER", "")
    db_password: str = os.getenv("DB_PASSWORD", "")
    auto_migrate: bool = _as_bool(os.getenv("AUTO_MIGRATE", "false"))
    cors_allow_origins: list[str] = field(
        default_factory=lambda: _split_csv(os.getenv("CORS_ALLOW_ORIGINS", "*"))
    )
    cors_allow_methods: list[str] = field(
        default_factory=lambda: _split_csv(os.getenv("CORS_ALLOW_METHODS", "*"))
    )
    cors_allow_headers: list[str] = field(
        default_factory=lambda: _split_csv(os.getenv("CORS_ALLOW_HEADERS", "*"))
    )
    expose_errors: bool = _as_bool(os.getenv("EXPOSE_ERRORS", "true"))

    pool_size: int = int(os.getenv("RAFFLE_POOL_SIZE", "100"))
    allocation_isolation: str = os.getenv("ALLOCATION_ISOLATION", "READ COMMITTED")
    reservation_timeout_minutes: int = int(os.getenv("RESERVATION_TIMEOUT_MINUTES", "0"))

    payment_provider: str = os.getenv("PAYMENT_PROVIDER", "cardpointe").lower()
    payment_timeout_seconds: float = float(os.getenv("PAYMENT_TIMEOUT_SECONDS", "30"))
    payment_currency: str = os.getenv("PAYMENT_CURRENCY", "USD")
    cardpointe_site: str = os.getenv("CARDPOINTE_SITE", "")
    cardpointe_merchant_id: str = os.getenv("CARDPOINTE_MERCHANT_ID", "")
    cardpointe_username: str = os.getenv("CARDPOINTE_API_USERNAME", "")
    cardpointe_password: str = os.getenv("CARDPOINTE_API_PASSWORD", "")
    authorizenet_login_id: str = os.getenv("AUTHORIZENET_API_LOGIN_ID", "")
    authorizenet_transaction_key: str = os.getenv("AUTHORIZENET_TRANSACTION_KEY", "")
    authorizenet_environment: str = os.getenv("AUTHORIZENET_ENVIRONMENT", "sandbox").lower()

    throttle_max_failed_attempts: int = int(os.getenv("THROTTLE_MAX_FAILED_ATTEMPTS", "4"))
    throttle_window_minutes: int = int(os.getenv("THROTTLE_WINDOW_MINUTES", "60"))
    throttle_block_hours: int = int(os.getenv("THROTTLE_BLOCK_HOURS", "24"))


settings = Settings()


def db_configured() -> bool:
    return all([settings.db_host, settings.db_name, settings.db_user, settings.db_password])


def cardpointe_configured() -> bool:
    return all(
        [
            settings.cardpointe_site,
            settings.cardpointe_merchant_id,
            settings.cardpointe_username,
            settings.cardpointe_password,
        ]
    )


def authorizenet_configured() -> bool:
    return all([settings.authorizenet_login_id, settings.authorizenet_transaction_key])
