from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Loading priority (highest to lowest):
    1. Environment variables
    2. .env file
    3. Default values below

    These are the static settings. Values an admin can change at runtime
    live in the system_settings table (see services/settings_store.py) and
    take precedence through AppConfig.
    """

    # Environment
    environment: str = "development"
    debug: bool = True

    # Application
    app_name: str = "Shlink UI"
    app_version: str = "1.0.0"
    secret_key: str = "your-secret-key-here-change-in-production"

    # Server
    host: str = "127.0.0.1"
    port: int = 8000
    base_url: str = "http://127.0.0.1:8000"

    # Database
    database_url: str = "sqlite:///./shlink_ui.db"
    seed_default_settings: bool = True

    # Shlink REST API
    shlink_base_url: str = "http://localhost:8080"
    shlink_api_key: str = ""
    shlink_timeout: int = 30

    # Runtime defaults (overridable from system settings)
    timezone: str = "UTC"
    log_level: str = "info"

    # Cache settings
    cache_backend: str = "redis"  # Options: "redis", "memory", "null"
    redis_url: str = "redis://localhost:6379/0"
    cache_ttl: int = 3600  # Cache TTL in seconds (1 hour)

    # Job queue settings
    queue_backend: str = "redis_streams"  # Options: "redis_streams", "memory"
    queue_name: str = "mailers"
    queue_consumer_group: str = "job_workers"
    queue_batch_size: int = 10
    queue_block_time: int = 1000  # milliseconds
    job_max_attempts: int = 3
    embedded_worker: bool = True  # run the job worker inside the API process

    # Rate limiting
    rate_limit_enabled: bool = True
    rate_limit_per_minute: int = 60

    # Sessions
    session_cookie: str = "shlink_ui_session"
    session_max_age: int = 14 * 24 * 3600

    # WebAuthn relying party
    webauthn_rp_id: str = "localhost"
    webauthn_rp_name: str = "Shlink UI"
    webauthn_origin: str = "http://localhost:8000"

    # CAPTCHA (Cloudflare Turnstile)
    turnstile_verify_url: str = "https://challenges.cloudflare.com/turnstile/v0/siteverify"
    turnstile_timeout: int = 10

    # Mail
    mail_from_address: str = "noreply@example.com"
    mail_from_name: str = "Shlink UI"
    mailersend_api_url: str = "https://api.mailersend.com/v1/email"

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


# Create settings instance
settings = Settings()
