"""Runtime configuration for the ClientDesk chat service.

Every option can be set through the environment (or a `.env` file) using the
upper-case alias next to it.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_ASYNC_DRIVERS = {
    "postgresql+asyncpg": "postgresql",
    "sqlite+aiosqlite": "sqlite",
    "mysql+aiomysql": "mysql",
}


class Settings(BaseSettings):
    """Service settings."""

    app_name: str = Field(default="ClientDesk", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")

    # Bearer tokens; the subject is a profile id.
    secret_key: str = Field(default="change-me", alias="SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=12 * 60, alias="TOKEN_TTL_MINUTES")

    database_url: str = Field(default="sqlite:///./clientdesk.db", alias="DATABASE_URL")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")
    auto_create_tables: bool = Field(default=True, alias="AUTO_CREATE_TABLES")

    # Attachment storage: "local" serves files from STORAGE_ROOT, "s3" uses boto3.
    storage_backend: str = Field(default="local", alias="STORAGE_BACKEND")
    storage_root: str = Field(default="./storage", alias="STORAGE_ROOT")
    storage_public_url: str = Field(
        default="http://localhost:8000/storage",
        alias="STORAGE_PUBLIC_URL",
    )
    s3_endpoint_url: str | None = Field(default=None, alias="S3_ENDPOINT_URL")
    s3_region: str | None = Field(default=None, alias="S3_REGION")
    s3_access_key: str | None = Field(default=None, alias="S3_ACCESS_KEY")
    s3_secret_key: str | None = Field(default=None, alias="S3_SECRET_KEY")
    s3_public_url: str | None = Field(default=None, alias="S3_PUBLIC_URL")

    chat_bucket: str = Field(default="chat-attachments", alias="CHAT_BUCKET")
    attachment_cache_control: str = Field(default="3600", alias="ATTACHMENT_CACHE_SECONDS")
    max_attachment_bytes: int = Field(default=20 * 1024 * 1024, alias="MAX_ATTACHMENT_BYTES")
    realtime_queue_size: int = Field(default=256, alias="REALTIME_QUEUE_SIZE")

    # The dashboard and the portal are usually served from different origins.
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "PUT", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(
        default=["Authorization", "Content-Type"],
        alias="CORS_ALLOW_HEADERS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def database_url_sync(self) -> str:
        """`DATABASE_URL` with any async driver swapped for the sync default.

        The database capability and Alembic both run synchronous SQLAlchemy.
        """
        url = self.database_url
        for async_prefix, sync_prefix in _ASYNC_DRIVERS.items():
            if url.startswith(async_prefix):
                return sync_prefix + url[len(async_prefix):]
        return url


settings = Settings()
