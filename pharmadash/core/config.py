from functools import lru_cache
from typing import List, Literal, Optional
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # APP
    APP_NAME: str = "Pharmadash Analytics API"
    ENV: str = "development"
    DEBUG: bool = True

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_TO_FILE: bool = False
    LOG_FILE_PATH: Optional[str] = None

    # Fact store
    FACT_STORE: Literal["sql", "memory"] = "sql"
    DATABASE_URL: Optional[str] = None
    MEMORY_DATA_DIR: Optional[str] = None
    STATEMENT_TIMEOUT_MS: int = 15000
    QUERY_TIMEOUT_MS: int = 30000

    # Resolve laboratory/category codes through the product catalog.
    # False = codes are already product codes (dashboard behaviour).
    RESOLVE_IDENTIFIERS: bool = False

    # Result cache (Redis). No cache when REDIS_URL is unset.
    REDIS_URL: Optional[str] = None
    CACHE_NAMESPACE: str = "pharmadash:analytics:v1"
    CACHE_TTL_SECONDS: int = 300

    # CACHE HTTP
    CACHE_MAX_AGE: int = 60
    CACHE_SWR: int = 300

    # JWT
    AUTH_ENABLED: bool = True
    JWT_SECRET: str = "change-me-change-me-change-me-change-me"
    JWT_ALGORITHM: str = "HS256"

    # CORS (aceita string separada por vírgulas no .env)
    CORS_ORIGINS: Optional[str] = None

    # Analytics policy
    MAX_PERIOD_DAYS: int = 365
    PAGE_SIZE_MIN: int = 1
    PAGE_SIZE_MAX: int = 50
    PAGE_SIZE_DEFAULT: int = 5
    TOP_N_SUB_ENTITIES: int = 3
    SEGMENT_JOIN_MODE: Literal["inner", "total"] = "inner"

    @field_validator("JWT_SECRET")
    @classmethod
    def _jwt_min_length(cls, v: str) -> str:
        if v is None or len(v) < 32:
            raise ValueError("JWT secret must be at least 32 characters long.")
        return v

    @model_validator(mode="after")
    def _page_size_bounds(self) -> "Settings":
        if self.PAGE_SIZE_MIN < 1 or self.PAGE_SIZE_MIN > self.PAGE_SIZE_MAX:
            raise ValueError("PAGE_SIZE_MIN must be >= 1 and <= PAGE_SIZE_MAX.")
        return self

    @property
    def CORS_ORIGINS_LIST(self) -> List[str]:
        v = self.CORS_ORIGINS
        if not v:
            return []
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return v

    # Pydantic v2 settings configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # ignora chaves extras no .env
    )

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
