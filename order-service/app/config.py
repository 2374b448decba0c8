import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    database_url: str
    log_level: str
    user_service_url: str
    restaurant_service_url: str
    payment_service_url: str
    driver_service_url: str
    http_timeout_seconds: float
    delivery_eta_minutes: int
    auto_dispatch_enabled: bool
    auto_dispatch_delay_seconds: float


def load_settings() -> Settings:
    # URLs default to docker-compose service names
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./orders.db"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        user_service_url=os.getenv("USER_SERVICE_URL", "http://user-service:3001").rstrip("/"),
        restaurant_service_url=os.getenv("RESTAURANT_SERVICE_URL", "http://restaurant-service:3002").rstrip("/"),
        payment_service_url=os.getenv("PAYMENT_SERVICE_URL", "http://payment-service:3004").rstrip("/"),
        driver_service_url=os.getenv("DRIVER_SERVICE_URL", "http://driver-service:3005").rstrip("/"),
        http_timeout_seconds=float(os.getenv("HTTP_TIMEOUT_SECONDS", "5.0")),
        delivery_eta_minutes=int(os.getenv("DELIVERY_ETA_MINUTES", "30")),
        auto_dispatch_enabled=_env_bool("AUTO_DISPATCH_ENABLED", True),
        auto_dispatch_delay_seconds=float(os.getenv("AUTO_DISPATCH_DELAY_SECONDS", "10")),
    )
