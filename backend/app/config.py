from functools import lru_cache
from pathlib import Path
from typing import Annotated, List

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = Field(default="Huddle API", env="APP_NAME", description="Human readable service name")
    environment: str = Field(default="development", env="ENVIRONMENT", description="Deployment environment name")
    debug: bool = Field(default=True, env="DEBUG", description="Enable debug mode")

    cors_origins: Annotated[List[AnyHttpUrl], NoDecode] = Field(
        default_factory=lambda: [
            "http://localhost",
            "http://localhost:3000",
            "http://127.0.0.1",
            "http://127.0.0.1:3000",
        ],
        env="CORS_ORIGINS",
        description="List of allowed CORS origins",
    )

    database_user: str = Field(default="huddle", env="DB_USER")
    database_password: str = Field(default="huddle", env="DB_PASSWORD")
    database_host: str = Field(default="db", env="DB_HOST")
    database_port: int = Field(default=3306, env="DB_PORT")
    database_name: str = Field(default="huddle", env="DB_NAME")
    database_url_override: str | None = Field(
        default=None,
        validation_alias="DATABASE_URL",
        description="Full SQLAlchemy URL; takes precedence over the DB_* parts.",
    )

    jwt_secret_key: str = Field(default="changeme", env="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", env="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=60, env="ACCESS_TOKEN_EXPIRE_MINUTES")

    chat_message_max_length: int = Field(default=4000, env="CHAT_MESSAGE_MAX_LENGTH")
    media_root: Path = Field(default=Path("uploads"), env="MEDIA_ROOT")
    media_base_url: str = Field(
        default="/api/attachments",
        env="MEDIA_BASE_URL",
        description="Base URL under which stored attachments are publicly served",
    )
    max_upload_size: int = Field(
        default=20 * 1024 * 1024, env="MAX_UPLOAD_SIZE", description="Maximum upload size in bytes"
    )

    openai_api_key: str | None = Field(default=None, env="OPENAI_API_KEY")
    embedding_model: str = Field(
        default="text-embedding-3-small",
        env="EMBEDDING_MODEL",
        description="Embedding model used for messages, file chunks and queries",
    )
    search_similarity_threshold: float = Field(
        default=0.0,
        env="SEARCH_SIMILARITY_THRESHOLD",
        description="Minimum cosine similarity for a vector match to be returned",
    )
    search_message_limit: int = Field(default=5, env="SEARCH_MESSAGE_LIMIT")
    search_file_chunk_limit: int = Field(default=20, env="SEARCH_FILE_CHUNK_LIMIT")
    search_people_limit: int = Field(default=10, env="SEARCH_PEOPLE_LIMIT")
    file_chunk_size: int = Field(
        default=1000, env="FILE_CHUNK_SIZE", description="Characters per indexed file chunk"
    )
    file_chunk_overlap: int = Field(default=200, env="FILE_CHUNK_OVERLAP")

    presence_online_minutes: int = Field(default=5, env="PRESENCE_ONLINE_MINUTES")
    presence_away_minutes: int = Field(default=30, env="PRESENCE_AWAY_MINUTES")
    presence_touch_interval_seconds: int = Field(
        default=60,
        env="PRESENCE_TOUCH_INTERVAL_SECONDS",
        description="Minimum delay between last_seen_at refreshes for one user",
    )

    realtime_redis_url: str | None = Field(
        default=None,
        env="REALTIME_REDIS_URL",
        description="Redis URL used to relay change events between nodes",
    )
    realtime_namespace: str = Field(default="huddle.realtime", env="REALTIME_NAMESPACE")
    realtime_node_id: str | None = Field(default=None, env="REALTIME_NODE_ID")
    websocket_keepalive_timeout_seconds: int = Field(
        default=30,
        env="WEBSOCKET_KEEPALIVE_TIMEOUT_SECONDS",
        description="Idle seconds before the server pings a change feed socket",
    )
    websocket_keepalive_ping_interval_seconds: int = Field(
        default=30, env="WEBSOCKET_KEEPALIVE_PING_INTERVAL_SECONDS"
    )

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[2] / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        return (
            f"mysql+pymysql://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v):  # type: ignore[override]
        if v in (None, "", Ellipsis):
            return v
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        if isinstance(v, (list, tuple, set)):
            return list(v)
        return v

    @field_validator("media_root", mode="before")
    @classmethod
    def resolve_media_root(cls, value: str | Path) -> Path:
        if isinstance(value, Path):
            return value.resolve()
        return Path(value).resolve()


@lru_cache
def get_settings() -> Settings:
    return Settings()
