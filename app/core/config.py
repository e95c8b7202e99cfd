from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Pydantic v2 settings: read from .env and ignore extra keys to prevent crashes from unused env vars
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")
    # Commerce backend proxy (carts, shipping methods, project settings, account addresses)
    COMMERCE_API_BASE: str = "http://localhost:8080/service"
    COMMERCE_TIMEOUT_SEC: float = 20.0
    # Reference data (countries, shipping methods, saved addresses) is read-only during a flow
    REFERENCE_CACHE_TTL_SEC: int = 300
    # Split-shipping flow
    CSV_IMPORT_ENABLED: bool = True
    FLOW_TTL_SEC: int = 1800  # idle flows are dropped after 30 minutes
    FLOW_CLEANUP_INTERVAL_SEC: float = 60.0
    DEFAULT_LOCALE: str = "en-US"
    CSV_MAX_BYTES: int = 512 * 1024
    ALLOWED_ORIGINS: str = (
        "http://localhost:3000,"
        "http://127.0.0.1:3000,"
        "http://localhost:5173"
    )
    ALLOWED_ORIGIN_REGEX: str | None = None
    DEBUG: bool = True  # для разработки
    SLOW_REQUEST_THRESHOLD_SEC: float = 1.0
    # App runtime settings
    APP_HOST: str = "0.0.0.0"
    APP_PORT: int = 8000


settings = Settings()
