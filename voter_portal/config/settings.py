from typing import List, Optional, Union
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Application
    ENVIRONMENT: str = "development"
    NAME: str = "Voter Portal"
    VERSION: str = "1.0.0"
    API_PREFIX: str = "/api"
    """Pydantic v2 doesn't support parsing List[str] from a plain comma-separated string by default anymore."""
    ALLOWED_HOSTS: Union[str, List[str]] = "http://localhost:3000"
    LOG_LEVEL: str = "info"

    # Database
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_USER: str = "postgres"
    DB_PASSWORD: str = "<your-db-password>"
    DB_NAME: str = "voter_portal"
    DATABASE_URL: Optional[str] = None
    DB_POOL_MIN_SIZE: int = 5
    DB_POOL_MAX_SIZE: int = 20
    DB_POOL_TIMEOUT: int = 10
    DB_POOL_RECYCLE: int = 3600
    DB_ECHO: bool = False

    # Authentication & Security
    JWT_SECRET_KEY: str = "<your-jwt-secret-key>"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRE_HOURS: int = 24
    BCRYPT_ROUNDS: int = 12

    # Default admin account created by the seeder
    ADMIN_EMAIL: str = "admin@voterportal.local"
    ADMIN_PASSWORD: str = "<your-admin-password>"

    # Twilio WhatsApp
    TWILIO_ACCOUNT_SID: str = ""
    TWILIO_AUTH_TOKEN: str = ""
    TWILIO_WHATSAPP_NUMBER: str = ""
    TWILIO_API_BASE_URL: str = "https://api.twilio.com"
    WHATSAPP_COUNTRY_CODE: str = "91"

    # MinIO Object Storage
    MINIO_ENDPOINT: str = "localhost:9000"
    MINIO_ACCESS_KEY: str = "<your-minio-access-key>"
    MINIO_SECRET_KEY: str = "<your-minio-secret-key>"
    MINIO_BUCKET_NAME: str = "voter-portal-uploads"
    MINIO_SECURE: bool = False
    MINIO_URL_EXPIRE_HOURS: int = 1

    # Redis & Celery
    REDIS_PASSWORD: str = "<your-redis-password>"
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    # Uploads
    MAX_UPLOAD_SIZE_MB: int = 5
    TEAM_MAX_UPLOAD_SIZE_MB: int = 2
    TEAM_MAX_FILES: int = 3

    # Team signup
    TEAM_EMAIL_DOMAIN: str = "team.voterportal.local"

    # Rate limiting & caching
    RATE_LIMIT_ENABLED: bool = True
    STATISTICS_CACHE_SECONDS: int = 300

    @field_validator("ALLOWED_HOSTS", mode="before")
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if not v:
            return []
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        return v

    @property
    def database_url(self) -> str:
        """Async SQLAlchemy URL, either the explicit override or built from DB_* parts."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )

    @property
    def twilio_configured(self) -> bool:
        return bool(
            self.TWILIO_ACCOUNT_SID
            and self.TWILIO_AUTH_TOKEN
            and self.TWILIO_WHATSAPP_NUMBER
        )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )


settings = Settings()
