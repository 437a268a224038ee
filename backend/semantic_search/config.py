"""
Configuration settings for Semantic Search.
Loads from environment variables with sensible defaults.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from sqlalchemy.engine import URL
from typing import Optional
from pathlib import Path
from dotenv import load_dotenv


def _resolve_project_root() -> Path:
    """Resolve repo root for local and container deployments."""
    current = Path(__file__).resolve()
    backend_root = current.parents[1]
    if backend_root.name == "backend":
        return backend_root.parent
    return backend_root


PROJECT_ROOT = _resolve_project_root()

# Explicitly load .env from project root
env_path = PROJECT_ROOT / ".env"
load_dotenv(env_path)


# Output width of the OpenAI embedding models we know about.
KNOWN_MODEL_DIMENSIONS = {
    "text-embedding-3-large": 3072,
    "text-embedding-3-small": 1536,
    "text-embedding-ada-002": 1536,
}


class ConfigurationError(Exception):
    """Raised when settings cannot support indexing or search."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=env_path,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # App info
    app_name: str = "Semantic Search"
    app_version: str = "0.1.0"
    debug: bool = False

    # Embeddings
    embedding_provider: str = Field(default="openai", validation_alias="EMBEDDING_PROVIDER")
    openai_api_key: Optional[str] = Field(default=None, validation_alias="OPENAI_API_KEY")
    openai_base_url: Optional[str] = Field(default=None, validation_alias="OPENAI_BASE_URL")
    openai_embedding_model: str = "text-embedding-3-large"
    embedding_dimension: int = Field(default=3072, validation_alias="EMBEDDING_DIMENSION")
    embedding_max_tokens: int = 8191
    embedding_chars_per_token: int = 3
    embedding_max_retries: int = 3
    embedding_concurrency: int = Field(default=4, validation_alias="EMBEDDING_CONCURRENCY")
    embedding_timeout_seconds: float = 60.0

    # Postgres + pgvector
    db_host: str = Field(default="localhost", validation_alias="DB_HOST")
    db_port: int = Field(default=5432, validation_alias="DB_PORT")
    db_user: str = Field(default="postgres", validation_alias="DB_USER")
    db_password: str = Field(default="", validation_alias="DB_PASSWORD")
    db_name: str = Field(default="semantic_search", validation_alias="DB_NAME")
    db_admin_database: str = "postgres"
    db_connect_timeout: int = 10

    # HNSW recall/latency knobs
    hnsw_m: int = 32
    hnsw_ef_construction: int = 128
    hnsw_ef_search: int = Field(default=64, validation_alias="HNSW_EF_SEARCH")

    # Indexing
    project_root: Path = Field(default_factory=Path.cwd, validation_alias="PROJECT_ROOT")
    entry_point_files: list[str] = ["__main__.py", "setup.py", "conftest.py"]
    extra_excluded_dirs: list[str] = Field(default_factory=list)
    skip_unchanged: bool = Field(default=True, validation_alias="SKIP_UNCHANGED")
    index_on_startup: bool = Field(default=False, validation_alias="INDEX_ON_STARTUP")
    auto_index_on_empty_search: bool = True

    # Retrieval
    search_limit: int = Field(default=10, validation_alias="SEARCH_LIMIT")

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8000, validation_alias="PORT")


    @field_validator("openai_api_key", mode="before")
    @classmethod
    def _normalize_api_key(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        cleaned = str(value).strip()
        return cleaned or None

    @field_validator("embedding_provider", mode="before")
    @classmethod
    def _normalize_provider(cls, value: str) -> str:
        cleaned = str(value or "openai").strip().lower()
        if cleaned not in ("openai", "mock"):
            raise ValueError(f"Unknown embedding provider: {value}")
        return cleaned

    @property
    def use_mock_embeddings(self) -> bool:
        """Mock embeddings are only used when explicitly configured."""
        return self.embedding_provider == "mock"

    def database_url(self, database: Optional[str] = None) -> URL:
        """Connection URL for the target (or given) database."""
        return URL.create(
            "postgresql+psycopg2",
            username=self.db_user,
            password=self.db_password or None,
            host=self.db_host,
            port=self.db_port,
            database=database or self.db_name,
        )

    def validate_for_startup(self) -> None:
        """
        Fail fast on settings that would make every later call fail.

        Raises:
            ConfigurationError: missing credential or dimension mismatch.
        """
        if self.embedding_provider == "openai" and not self.openai_api_key:
            raise ConfigurationError(
                "OPENAI_API_KEY is not set. Export it or set EMBEDDING_PROVIDER=mock for offline use."
            )
        if self.embedding_dimension <= 0:
            raise ConfigurationError(
                f"EMBEDDING_DIMENSION must be positive, got {self.embedding_dimension}"
            )
        expected = KNOWN_MODEL_DIMENSIONS.get(self.openai_embedding_model)
        if (
            self.embedding_provider == "openai"
            and expected is not None
            and expected != self.embedding_dimension
        ):
            raise ConfigurationError(
                f"Model {self.openai_embedding_model} produces {expected}-d vectors "
                f"but EMBEDDING_DIMENSION is {self.embedding_dimension}"
            )


def get_settings() -> Settings:
    """Build a fresh settings object from the current environment."""
    return Settings()
