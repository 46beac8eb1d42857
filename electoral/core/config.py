"""Application configuration management."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str
    DB_POOL_MIN_SIZE: int = 5
    DB_POOL_MAX_SIZE: int = 20

    # JWT verification (tokens are issued by the identity provider)
    SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"

    # Document storage (S3 / MinIO)
    SPACES_ENDPOINT: str = "http://127.0.0.1:9000"
    SPACES_REGION: str = "us-east-1"
    SPACES_BUCKET: str = "electoral-documents"
    SPACES_KEY: str = ""
    SPACES_SECRET: str = ""
    DOCUMENT_PREFIX: str = "documents"
    MAX_DOCUMENT_SIZE_MB: int = 20

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000"

    # Environment
    ENVIRONMENT: str = "development"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]


settings = Settings()


def get_settings() -> Settings:
    return settings
