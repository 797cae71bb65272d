"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file)."""

    # --- App ---
    app_name: str = "FieldSync"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Record store ---
    database_url: str  # postgres connection string for asyncpg
    database_pool_min: int = 2
    database_pool_max: int = 20
    database_command_timeout: int = 30

    # --- Biometric matching server ---
    biometric_server_url: str = "http://localhost:8090"
    biometric_api_key: str = ""

    # --- Participant image storage (S3-compatible) ---
    image_bucket_name: str = "fieldsync-images"
    image_endpoint_url: str = ""  # empty = AWS default endpoint
    image_access_key_id: str = ""
    image_secret_access_key: str = ""
    image_region: str = "auto"
    image_prefix: str = "person_images"

    # --- Policy ---
    policy_path: str = ""  # empty = bundled policy.yaml

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:3000"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
