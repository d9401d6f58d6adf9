"""
Configuration settings for FlowAgent.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings with environment variable support."""
    
    # Application
    APP_NAME: str = "FlowAgent"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = True
    
    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    
    # Generation backend: "gemini" or "echo"
    GENERATION_BACKEND: str = "gemini"
    GEMINI_API_KEY: Optional[str] = None
    GEMINI_MODEL: str = "gemini-2.5-flash"
    
    # Flow Engine
    MAX_LEVELS: int = 100  # Upper bound on levels per run (cycle guard)
    DEFAULT_GLOBAL_INPUT: str = "Artificial Intelligence"
    
    # Live updates
    WS_SEND_TIMEOUT: float = 5.0  # Seconds before a slow subscriber is dropped
    
    # Logging
    LOG_LEVEL: str = "INFO"
    
    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
