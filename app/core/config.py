import os
from typing import Optional, List
from pydantic import field_validator
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    # Environment
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "local")

    # Database / cache
    DATABASE_URL: Optional[str] = os.getenv("DATABASE_URL")
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # Fernet key used to encrypt provider credentials at rest
    ENCRYPTION_KEY: Optional[str] = os.getenv("ENCRYPTION_KEY")

    # Shared secret for the internal admin endpoints
    INTERNAL_ADMIN_HEADER: Optional[str] = os.getenv("INTERNAL_ADMIN_HEADER")

    # Public URL the embed snippet points at
    PUBLIC_BASE_URL: str = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000")

    # Upstream provider calls (no retries, timeout only)
    PROVIDER_TIMEOUT_SECONDS: float = float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "30"))

    # Env-level provider credentials, used when a configuration stores none
    OPENAI_API_KEY: Optional[str] = os.getenv("OPENAI_API_KEY")
    ANTHROPIC_API_KEY: Optional[str] = os.getenv("ANTHROPIC_API_KEY")
    GEMINI_API_KEY: Optional[str] = os.getenv("GEMINI_API_KEY")
    MISTRAL_API_KEY: Optional[str] = os.getenv("MISTRAL_API_KEY")
    GROQ_API_KEY: Optional[str] = os.getenv("GROQ_API_KEY")
    DEEPSEEK_API_KEY: Optional[str] = os.getenv("DEEPSEEK_API_KEY")
    HUGGINGFACE_API_KEY: Optional[str] = os.getenv("HUGGINGFACE_API_KEY")
    GROK_API_KEY: Optional[str] = os.getenv("GROK_API_KEY")
    OPENROUTER_API_KEY: Optional[str] = os.getenv("OPENROUTER_API_KEY")

    # Digital Ocean Spaces / S3 (rotated log archive)
    SPACES_ACCESS_KEY_ID: Optional[str] = os.getenv("SPACES_ACCESS_KEY_ID")
    SPACES_SECRET_ACCESS_KEY: Optional[str] = os.getenv("SPACES_SECRET_ACCESS_KEY")
    SPACES_REGION: str = os.getenv("SPACES_REGION", "sgp1")
    SPACES_BUCKET: str = os.getenv("SPACES_BUCKET", "widget-platform")
    SPACES_ENDPOINT: str = os.getenv("SPACES_ENDPOINT", "https://sgp1.digitaloceanspaces.com")

    # CORS
    # Comma separated; the widget is embedded on arbitrary sites so "*" is the default
    BACKEND_CORS_ORIGINS: str = os.getenv("BACKEND_CORS_ORIGINS", "*")

    @field_validator("PROVIDER_TIMEOUT_SECONDS")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("PROVIDER_TIMEOUT_SECONDS must be positive")
        return v

    @property
    def cors_origins(self) -> List[str]:
        return [i.strip() for i in self.BACKEND_CORS_ORIGINS.split(",") if i.strip()]

    def env_credential(self, env_var: Optional[str]) -> Optional[str]:
        """
        Return the provider credential exposed through the given env variable name.
        """
        if not env_var:
            return None
        return getattr(self, env_var, None) or os.getenv(env_var) or None

    class Config:
        env_file = ".env"
        extra = "ignore"

settings = Settings()
