from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import lru_cache


class Settings(BaseSettings):
    OPENAI_API_KEY: str = Field("", description="OpenAI API Key (empty disables the provider)")
    GEMINI_API_KEY: str = Field("", description="Gemini API Key (empty disables the provider)")
    PSI_API_KEY: str = Field("", description="PageSpeed Insights API key (optional)")

    DEFAULT_PROVIDER: str = "gemini"
    ENABLE_PROVIDER_FALLBACK: bool = True
    OPENAI_MAX_CONCURRENT: int = 2
    GEMINI_MAX_CONCURRENT: int = 3
    OPENAI_DEFAULT_MODEL: str = "gpt-4o"
    GEMINI_DEFAULT_MODEL: str = "gemini-2.0-flash"
    OPENAI_TIMEOUT_S: float = 60.0
    GEMINI_TIMEOUT_S: float = 30.0

    FETCH_TIMEOUT_MS: int = Field(5000, description="Per-attempt deadline for collector fetches")
    FETCH_RETRIES: int = 1
    MAX_REDIRECT_HOPS: int = 5
    PSI_TIMEOUT_MS: int = 60000
    USER_AGENT: str = "HybridAudit/1.0 (website audit bot)"
    LOG_LEVEL: str = "INFO"
    API_HOST: str = "127.0.0.1"
    API_PORT: int = 8000

    # MLflow settings
    MLFLOW_TRACKING_URI: str = Field("http://127.0.0.1:5000", description="MLflow tracking server URI")
    MLFLOW_ENABLE_TRACING: bool = Field(False, description="Enable MLflow tracing")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

@lru_cache()
def get_settings() -> Settings:
    return Settings()
