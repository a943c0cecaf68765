from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    PROJECT_NAME: str = "Knowledge-Base-Service"

    DATABASE_URL: str = "postgresql+asyncpg://postgres:postgres@db:5432/knowledge_base"
    DATABASE_POOL_SIZE: int = 5
    DATABASE_MAX_OVERFLOW: int = 10

    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    UPLOADS_PER_MINUTE: int = 10
    SEARCHES_PER_MINUTE: int = 100

    GEMINI_API_KEY: Optional[str] = None
    EMBEDDING_MODEL: str = "models/text-embedding-004"
    EMBEDDING_DIMENSION: int = 768
    GENERATION_MODEL: str = "gemini-1.5-flash"
    GENERATION_TEMPERATURE: float = 0.2

    CHUNK_SIZE_TOKENS: int = 500
    CHUNK_OVERLAP_TOKENS: int = 50
    TOKENS_PER_WORD: float = 1.33

    EXTRACTION_TIMEOUT_SECONDS: float = 60.0
    EMBEDDING_TIMEOUT_SECONDS: float = 30.0
    GENERATION_TIMEOUT_SECONDS: float = 45.0
    # A run still processing after this long is treated as dead
    STALE_RUN_SECONDS: float = 1800.0

    # "memory" runs indexing in-process, "kafka" hands jobs to app/workers/worker.py
    INDEXING_QUEUE_BACKEND: str = "memory"
    INDEXING_WORKERS: int = 2
    KAFKA_BROKER: str = "localhost:9092"
    KAFKA_TOPIC: str = "knowledge-indexing"

    UPLOAD_DIR: str = "uploads"
    MAX_UPLOAD_BYTES: int = 20 * 1024 * 1024

    QUERY_REWRITE_ENABLED: bool = False
    SEARCH_MAX_RESULTS: int = 5
    SEARCH_MIN_SIMILARITY: float = 0.7
    ANSWER_MAX_CHUNKS: int = 3
    ANSWER_MIN_SIMILARITY: float = 0.7

    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    LOG_TO_FILE: bool = True
    LOG_JSON: bool = False
    METRICS_PORT: int = 8001


settings = Settings()
