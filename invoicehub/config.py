from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    APP_NAME: str = "InvoiceHub"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    PORT: int = 8000

    # "firebase" talks to the Realtime Database, "memory" keeps the tree in-process
    STORE_BACKEND: str = "memory"
    FIREBASE_CREDENTIALS_PATH: Optional[str] = None
    FIREBASE_DATABASE_URL: Optional[str] = None
    FIREBASE_PROJECT_ID: Optional[str] = None
    GCP_PROJECT_ID: str = ""
    USE_SECRET_MANAGER: bool = False

    # "firebase" verifies Firebase ID tokens, "jwt" verifies locally signed tokens
    AUTH_PROVIDER: str = "jwt"
    JWT_SECRET_KEY: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    BLOB_ENDPOINT_URL: Optional[str] = None
    BLOB_ACCESS_KEY_ID: str = ""
    BLOB_SECRET_ACCESS_KEY: str = ""
    BLOB_BUCKET_NAME: str = "invoicehub-attachments"
    BLOB_REGION: str = "auto"
    BLOB_PUBLIC_BASE_URL: Optional[str] = None
    PRESIGNED_URL_EXPIRES_IN: int = 3600

    MAX_UPLOAD_SIZE_MB: int = 10
    ALLOWED_ATTACHMENT_TYPES: str = "application/pdf,image/jpeg,image/png,image/gif"
    NOTES_MAX_LENGTH: int = 1000
    DEFAULT_PAGE_SIZE: int = 10

    CORS_ORIGINS: str = "http://localhost:3000"
    CORS_ORIGIN_REGEX: Optional[str] = None

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",")]

    @property
    def allowed_attachment_types_list(self) -> list[str]:
        return [t.strip() for t in self.ALLOWED_ATTACHMENT_TYPES.split(",") if t.strip()]

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
