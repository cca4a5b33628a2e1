"""Application configuration"""

from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Ledger index (remote transaction source)
    index_url: str = "https://icp-index.fundtrace.local/api"
    index_request_timeout: float = 30.0
    index_max_results: int = 10000  # Page size requested from the index
    index_max_pages: int = 100
    index_user_agent: str = "fundtrace/0.1"

    # Fetch retry policy
    fetch_max_attempts: int = 3
    fetch_retry_delay: float = 10.0  # Seconds between attempts
    fetch_retry_backoff: float = 1.0  # 1.0 = fixed delay

    # Redis
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: str = ""
    cache_enabled: bool = True

    # Cache TTL (seconds)
    cache_ttl_account_history: int = 3600  # Accounts keep receiving transfers

    # Local ledger store
    ledger_directory: str = "./ledger_data"
    ledger_db_path: str = "./ledger.db"
    ledger_import_batch_size: int = 10000
    ledger_commit_every_files: int = 10

    # Address directory (JSON file with categorized address groups)
    address_directory_path: Optional[str] = None

    # Network trace defaults
    trace_max_depth: int = 3
    trace_min_amount_e8s: int = 100_000_000  # 1 ICP
    max_trace_depth: int = 10  # Upper bound accepted by the API

    # Reports
    report_output_dir: str = "./reports"
    filter_min_balance_icp: float = 10000.0
    filter_suspicious_tx_threshold: int = 15
    usd_per_icp: float = 10.0

    # API
    api_title: str = "fundtrace API"
    api_version: str = "0.1.0"
    cors_origins: List[str] = ["http://localhost:5173", "http://localhost:3000"]

    # Logging
    log_level: str = "INFO"


# Global settings instance
settings = Settings()
