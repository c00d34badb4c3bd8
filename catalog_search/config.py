"""Application configuration via environment variables.

Default values are intended for local development only.
Production deployments should override via .env file or environment variables.

Security considerations:
- postgres_password: Override with a strong password in production
- opensearch_use_ssl: Enable SSL/TLS in production
- openai_api_key: Store securely, never commit to version control
- upstream_api_token: Issued by the business system, keep out of the repo
"""

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # PostgreSQL
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "catalog"
    postgres_user: str = "postgres"
    postgres_password: str = "postgres"

    # OpenSearch
    opensearch_host: str = "localhost"
    opensearch_port: int = 9200
    opensearch_index: str = "catalog_products"
    opensearch_use_ssl: bool = False
    opensearch_verify_certs: bool = False

    # Redis cache
    redis_url: str = "redis://localhost:6379/0"
    cache_namespace: str = "catalog"
    search_cache_ttl_seconds: int = 300
    embedding_cache_ttl_seconds: int = 86400
    # Renewed after every upstream page, so it only has to outlast one page
    sync_lock_ttl_seconds: int = 1800

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 9019

    # OpenAI Embeddings
    openai_api_key: str | None = None
    openai_embedding_model: str = "text-embedding-3-small"
    openai_embedding_dimensions: int = 1536
    openai_timeout_seconds: float = 30.0
    embedding_batch_size: int = 100

    # Retry policy shared by the embedding provider and the upstream API
    retry_max_attempts: int = 3
    retry_initial_delay: float = 1.0
    retry_backoff_factor: float = 2.0
    retry_max_delay: float = 30.0

    # Search tuning
    search_default_limit: int = 5
    search_max_limit: int = 20
    search_default_threshold: float = 0.3
    search_candidate_multiplier: int = 3
    search_min_similarity: float = 0.1
    vector_weight: float = 0.7
    lexical_weight: float = 0.3
    single_signal_penalty: float = 0.8
    # Raw BM25 score that maps to a lexical score of 0.5
    lexical_score_midpoint: float = 5.0
    search_subquery_timeout_seconds: float = 3.0
    hide_out_of_stock: bool = False

    # Inventory display
    low_stock_threshold: int = 10
    currency_code: str = "MNT"
    currency_symbol: str = "₮"

    # Upstream business API
    upstream_base_url: str = "http://localhost:8080/api"
    upstream_api_token: str | None = None
    upstream_store_id: str = "MK001"
    upstream_start_date: str = "2025-01-01"
    upstream_end_date: str = "2025-12-31"
    upstream_page_size: int = 50
    upstream_max_pages: int = 200
    upstream_timeout_seconds: float = 30.0

    @model_validator(mode="after")
    def check_tuning(self) -> "Settings":
        if self.search_candidate_multiplier < 2:
            raise ValueError("search_candidate_multiplier must be at least 2")
        if self.vector_weight < 0 or self.lexical_weight < 0:
            raise ValueError("fusion weights must be non-negative")
        if self.vector_weight + self.lexical_weight <= 0:
            raise ValueError("fusion weights must not both be zero")
        if not 0 < self.single_signal_penalty <= 1:
            raise ValueError("single_signal_penalty must be in (0, 1]")
        if self.lexical_score_midpoint <= 0:
            raise ValueError("lexical_score_midpoint must be positive")
        if self.openai_embedding_dimensions <= 0:
            raise ValueError("openai_embedding_dimensions must be positive")
        if self.retry_max_attempts < 1:
            raise ValueError("retry_max_attempts must be at least 1")
        return self

    @property
    def postgres_url_sync(self) -> str:
        return f"postgresql+psycopg://{self.postgres_user}:{self.postgres_password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"

    @property
    def opensearch_url(self) -> str:
        return f"http://{self.opensearch_host}:{self.opensearch_port}"


settings = Settings()
