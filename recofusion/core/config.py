from functools import lru_cache
from typing import Literal
import os
from pydantic_settings import BaseSettings, SettingsConfigDict

EnvName = Literal["development", "production"]

def _env_file_for(app_env: EnvName) -> str:
    return ".env.development" if app_env == "development" else ".env.production"

class Settings(BaseSettings):

    # Core
    APP_ENV: EnvName = "development"
    APP_NAME: str = "RecoFusion"
    DEBUG: bool = False
    GIT_SHA: str = "unknown"

    # Mongo
    MONGO_URI: str = ""
    MONGO_DB: str = "recofusion"

    # Redis (optional; embeddings are recomputed without it)
    REDIS_URL: str = ""

    # Vector cache config
    vector_cache_ttl: int = 24 * 3600          # 24h
    vector_cache_prefix: str = "vec"           # redis key namespace
    vector_lock_ttl: int = 20                  # seconds; dogpile protection

    # OpenAI
    OPENAI_API_KEY: str = ""
    openai_timeout_s: int = 30  # seconds
    OPENAI_EMBEDDING_MODEL: str = "text-embedding-3-small"
    OPENAI_CHAT_MODEL: str = "gpt-4o-mini"
    llm_max_tokens: int = 1024

    # Fusion pipeline
    strategy_timeout_s: float = 5.0            # per candidate source call
    enrichment_timeout_s: float = 10.0         # explanation call
    candidate_pool_factor: int = 2             # each source fetches limit * factor
    diversity_after_fusion: bool = True
    diversity_per_strategy: bool = False
    query_understanding_enabled: bool = False

    # Collections
    knowledge_collection: str = "knowledge_base"
    analytics_collection: str = "recommendation_logs"

    # CORS (CSV)
    ALLOWED_ORIGINS: str = ""

    # pydantic-settings config will be set dynamically in the factory below
    model_config = SettingsConfigDict(env_file=None, case_sensitive=True)

    @property
    def allowed_origins(self) -> list[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

@lru_cache
def get_settings() -> Settings:
    """
    Factory that chooses the right .env file based on APP_ENV.
    Cache makes it cheap to inject via FastAPI dependencies.
    """
    app_env: EnvName = os.getenv("APP_ENV", "development")  # earliest switch
    env_file = _env_file_for(app_env)
    return Settings(
                _env_file=env_file,  # load .env.development or .env.production
                _env_file_encoding="utf-8"
    )
