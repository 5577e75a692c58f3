from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"

    db_host: str = "localhost"
    db_port: int = 5432
    db_database: str = "postgres"
    db_username: str = "postgres"
    db_password: str = "secret"
    db_pool_max_size: int = 10

    storage_provider: str = "unified"
    storage_root_folder: str = "minu-ai"
    storage_max_file_size_bytes: int = 50 * 1024 * 1024
    storage_allowed_mime_types: list[str] = [
        "image/jpeg",
        "image/png",
        "image/webp",
        "video/mp4",
        "video/webm",
        "video/quicktime",
    ]
    storage_timeout_seconds: int = 60
    storage_max_attempts: int = 3
    storage_retry_base_delay_seconds: float = 1.0
    storage_retry_max_delay_seconds: float = 10.0

    cloudinary_cloud_name: str = ""
    cloudinary_api_key: str = ""
    cloudinary_api_secret: str = ""

    supabase_url: str = ""
    supabase_service_role_key: str = ""
    supabase_bucket: str = "generated-content"
    supabase_bucket_public: bool = True

    fetch_timeout_seconds: int = 30
    fetch_max_attempts: int = 2
    fetch_backoff_seconds: float = 0.5
    fetch_trusted_domains: list[str] = []

    max_concurrent_files: int = 1
    batch_deadline_seconds: float | None = None

    prompt_similarity_threshold: float = 0.85
