"""Application configuration."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    
    # Environment
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    
    # Database
    DATABASE_URL: str = "postgresql://leadgen:leadgen123@db:5432/leadgen"
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    
    # Every store call is bounded by this (connect, pool checkout, statement)
    STORE_TIMEOUT_SECONDS: int = 30
    
    # Pipeline batching
    BATCH_SIZE: int = 500
    
    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
