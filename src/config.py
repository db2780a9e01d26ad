from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str
    supabase_url: str
    supabase_service_role_key: str
    jwt_secret: str
    jwt_algorithm: str = "HS256"
    jwt_expiration_minutes: int = 60
    superpixel_webhook_secret: str | None = None
    enrichment_webhook_secret: str | None = None
    internal_scheduler_secret: str | None = None
    webhook_max_body_bytes: int = 3 * 1024 * 1024
    webhook_max_events_per_delivery: int = 500
    import_max_rows: int = 50_000
    import_batch_size: int = 100
    import_download_timeout_seconds: float = 30.0
    import_download_max_attempts: int = 3
    import_download_max_bytes: int = 50 * 1024 * 1024
    import_routing_concurrency: int = 5
    import_batch_timeout_seconds: float = 60.0
    routing_dispatch_mode: str = "inline"  # inline | queued
    routing_queue_drain_limit: int = 100
    event_publisher_mode: str = "outbox"  # outbox | log
    partner_default_commission_rate: float = 0.30
    partner_max_commission_rate: float = 0.50
    partner_fresh_sale_days: int = 7
    partner_fresh_sale_bonus: float = 0.10
    partner_high_verification_threshold: float = 95.0
    partner_high_verification_bonus: float = 0.05
    partner_commission_holdback_days: int = 14
    partner_upload_max_rows: int = 10_000
    partner_upload_max_bytes: int = 10 * 1024 * 1024

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
