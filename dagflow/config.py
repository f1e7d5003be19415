"""
Configuration settings for DagFlow.
"""

from pydantic_settings import BaseSettings
from typing import Optional, Union


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Application
    APP_NAME: str = "DagFlow"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = True

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Exchange rate service (used by the fetch_rate node only)
    API_KEY: Optional[str] = None
    EXCHANGE_RATE_URL: str = "https://api.exchangerate.host/live"
    FALLBACK_RATE: Union[int, float] = 85

    # Gemini (used by the summarize node only)
    GEMINI_API_KEY: Optional[str] = None
    GEMINI_MODEL: str = "gemini-2.5-pro"
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"

    # Outbound HTTP calls made by nodes
    HTTP_TIMEOUT: float = 10.0

    # Where the demo writes its Mermaid diagram
    DIAGRAM_PATH: str = "graph.mmd"

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
