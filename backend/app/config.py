from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Prediction provider (Replicate, IDM-VTON)
    replicate_api_token: str = ""
    replicate_model_version: str = (
        "c871bb9b046607b680449ecbae55fd8c6d945e0a1948644bf2361b3d021d3ff4"
    )
    replicate_base_url: str = "https://api.replicate.com/v1"
    http_timeout_seconds: float = 30.0

    # Database
    database_url: str = "sqlite:///./tryon.db"

    # Object storage (local-disk backend)
    # Override via STORAGE_PATH env var; defaults to ./storage next to the DB.
    storage_path: str = "./storage"
    # HMAC key for signed storage URLs (set via STORAGE_SIGNING_SECRET)
    storage_signing_secret: str = ""
    # Externally reachable base URL; signed URLs must be fetchable by the provider
    public_base_url: str = "http://localhost:8000"
    signed_url_ttl_seconds: int = 3600

    # Polling policy: 60 attempts x 5 s = 5 minutes from submission
    poll_interval_seconds: float = 5.0
    poll_max_attempts: int = 60

    # Quality validation
    auto_validate: bool = True
    quality_sample_pixels: int = 1000

    # Frontend (CORS)
    frontend_url: str = "http://localhost:3000"

    log_level: str = "INFO"

    model_config = {"env_file": ".env"}


settings = Settings()
