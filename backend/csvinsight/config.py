"""
Application configuration using Pydantic Settings
"""
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )
    
    # Database
    database_url: str = "sqlite:///./csvinsight.db"
    
    # Gemini API (mock by default for development)
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.0-flash"
    use_mock_ai: bool = True
    
    # Blob storage
    storage_backend: str = "local"  # local, s3
    storage_root: str = "./storage"
    s3_bucket: Optional[str] = None
    
    # CSV processing
    summary_sample_rows: int = 13
    sample_cell_max_chars: int = 100
    small_dataset_max_cells: int = 250
    small_dataset_max_bytes: int = 250_000
    
    # Application
    cors_origins: List[str] = ["http://localhost:3000", "http://localhost:5173"]
    log_level: str = "INFO"
    debug: bool = False


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
