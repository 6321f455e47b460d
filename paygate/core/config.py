"""
Application configuration.
All settings are loaded from environment variables.
Use env.example as a reference for required variables.
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: Credentials have no defaults - they MUST be set in .env file.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"
    # Comma separated. "*" = any origin (public checkout pages, mobile webviews).
    cors_origins: str = "*"
    # Public base URL of this API, used to build processor notification URLs.
    public_base_url: str = "http://localhost:8000"

    # ===========================================
    # DATABASE (PostgreSQL)
    # ===========================================
    database_url: str  # Required, no default

    # ===========================================
    # REDIS & CELERY
    # ===========================================
    redis_url: str  # Required, no default
    celery_broker_url: str  # Required, no default
    celery_result_backend: str  # Required, no default

    # ===========================================
    # SESSIONS (identity provider)
    # ===========================================
    session_secret: str  # Required, no default
    access_token_ttl: int = 3600  # 1 hour
    refresh_token_ttl: int = 30 * 24 * 3600  # 30 days

    # ===========================================
    # PROCESSOR A: MERCADO PAGO
    # ===========================================
    mercadopago_access_token: str = ""  # Optional, checkout/reconcile disabled if empty
    mercadopago_api_url: str = "https://api.mercadopago.com"
    mercadopago_statement_descriptor: str = "DINDIN MAGICO"
    checkout_success_url: str = ""
    checkout_failure_url: str = ""
    checkout_pending_url: str = ""

    # ===========================================
    # PROCESSOR B: KIWIFY
    # ===========================================
    kiwify_api_key: str = ""  # Optional, purchase lookup falls back to local orders if empty
    kiwify_api_url: str = "https://api.kiwify.com.br"
    kiwify_default_plan: str = "lifetime"

    # ===========================================
    # RECONCILIATION
    # ===========================================
    # Prefix of correlation tokens issued at checkout (external_reference).
    correlation_prefix: str = "dindin_"
    # Tier 3 of order matching: most recent pending intent. Legacy processor A path only.
    matcher_fallback_enabled: bool = True
    # Access verification looks at approvals updated within this window first.
    access_recency_hours: int = 24
    reconcile_interval_minutes: int = 15
    reconcile_lookback_hours: int = 48

    # ===========================================
    # PLANS
    # ===========================================
    plan_prices: str = '{"lifetime": 97.0, "monthly": 9.9, "yearly": 99.0}'
    default_currency: str = "BRL"
    product_name: str = "DinDin Mágico - Acesso Vitalício"

    # ===========================================
    # FULFILLMENT NOTIFICATIONS (external mailer)
    # ===========================================
    mailer_url: str = ""  # Empty = notifications are logged and dropped
    mailer_api_key: str = ""

    # ===========================================
    # HTTP CLIENTS
    # ===========================================
    http_client_timeout: float = 10.0
    http_client_timeout_long: float = 30.0

    # ===========================================
    # CIRCUIT BREAKER
    # ===========================================
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30

    # ===========================================
    # LOGGING
    # ===========================================
    log_level: str = "INFO"
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @field_validator("session_secret")
    @classmethod
    def validate_session_secret(cls, v: str) -> str:
        """Ensure session secret is reasonably secure."""
        if len(v) < 16:
            raise ValueError("session_secret must be at least 16 characters")
        if v in ("changeme", "secret", "password", "admin"):
            raise ValueError("session_secret is too weak, please change it")
        return v

    @field_validator("correlation_prefix")
    @classmethod
    def validate_correlation_prefix(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("correlation_prefix must not be empty")
        return v.strip()

    @property
    def cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
