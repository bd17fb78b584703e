from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "Law Practice Audit Service"
    DEBUG: bool = False
    ENV: str = "production"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://audit_user:change_me@db:5432/practice_db"
    DATABASE_URL_SYNC: str = "postgresql://audit_user:change_me@db:5432/practice_db"

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS string into a list of origins."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    # Audit log
    # Named retention policy applied to every new entry (see lexaudit.audit.retention)
    AUDIT_RETENTION_POLICY: str = "7_years"
    # How often the writer re-reads the chain tail after a storage-level fork rejection
    AUDIT_CHAIN_MAX_RETRIES: int = 3
    # "log": call-site helpers log a failed audit write and let the request continue
    # "raise": call-site helpers re-raise so the originating operation fails
    AUDIT_WRITE_FAILURE_POLICY: str = "log"
    # Strings longer than this in change payloads are truncated before storage
    AUDIT_PAYLOAD_MAX_STRING: int = 1000

    @property
    def audit_fail_closed(self) -> bool:
        """Check if audit write failures should abort the originating operation."""
        return self.AUDIT_WRITE_FAILURE_POLICY.strip().lower() == "raise"

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
