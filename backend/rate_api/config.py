"""
Application settings
Read from the environment and an optional .env file
"""
from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Application
    APP_NAME: str = "Rate Engine"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str = "sqlite:///./rate_engine.db"

    # JWT (actor attribution)
    SECRET_KEY: str = "rate-engine-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_HOURS: int = 24

    # Worker pools
    MATRIX_MAX_WORKERS: int = 4
    BULK_MAX_WORKERS: int = 1  # 1 = sequential, in selection order
    BULK_MAX_CELLS: int = 5000

    # Compare-and-swap on RoomRate.version during bulk writes
    ENABLE_RATE_VERSIONING: bool = False

    # Audit
    AUDIT_PAGE_SIZE: int = 20
    AUDIT_EXPORT_LIMIT: int = 10000

    CURRENCY: str = "USD"

    model_config = ConfigDict(env_file=".env", case_sensitive=True)


# Global settings instance
settings = Settings()
