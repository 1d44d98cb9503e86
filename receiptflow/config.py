"""Application settings loaded from the environment / .env"""
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Storage
    DB_PATH: str = "receiptflow.duckdb"
    IMAGE_DIR: str = "./data/images"
    IMAGE_BASE_URL: Optional[str] = None

    # OCR
    OCR_BACKENDS: List[str] = ["tesseract", "ollama", "gemini"]
    OCR_LANGUAGE: str = "eng"
    OCR_TIMEOUT_SECONDS: float = 60.0
    OCR_TARGET_WIDTH: int = 1000
    JPEG_QUALITY: int = 80
    THUMBNAIL_WIDTH: int = 100
    OLLAMA_MODEL: str = "qwen3-vl"
    GEMINI_API_KEY: Optional[str] = None
    GEMINI_MODEL: str = "gemini-2.5-flash"

    # Uploads
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024

    # HTTP
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://localhost:8081",
    ]
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)


settings = Settings()
