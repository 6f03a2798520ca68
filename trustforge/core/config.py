from __future__ import annotations

from dataclasses import dataclass

from pydantic_settings import BaseSettings


@dataclass(frozen=True)
class ProviderConfig:
    """
    Read-only endpoint/credential pair for one scanning provider.

    Built once from ``Settings`` and handed to the scanner client at
    construction time. Clients never look anything up in global settings,
    so tests can pass a fake config per provider.
    """
    name: str
    base_url: str
    api_key: str = ""
    poll_interval_seconds: float = 15.0
    max_attempts: int = 30
    max_file_size_mb: float | None = None
    request_timeout_seconds: float = 60.0


class Settings(BaseSettings):
    PROJECT_NAME: str = "TrustForge Scan API"
    LOG_LEVEL: str = "INFO"
    DATABASE_URL: str = "" # Logic: If set, use Postgres. Else, use SQLite.
    SQLITE_PATH: str = "trustforge.db"
    REDIS_URL: str = "redis://localhost:6379/0" # Default local Redis
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_DEFAULT: str = "60/minute"
    MAX_UPLOAD_SIZE_MB: int = 700

    # ⚠ SECURITY WARNING: These defaults are for local development ONLY.
    # In production, you MUST override CORS_ORIGINS via environment variable to restrict access.
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:3000,http://localhost:8080"

    # ─── Storage ─────────────────────────────────────────────────────────
    STORAGE_TYPE: str = "local" # "local" or "s3"
    LOCAL_STORAGE_DIR: str = "storage"
    UPLOAD_PREFIX: str = "app-uploads"
    REPORT_PREFIX: str = "app-pdf-reports"
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""
    AWS_REGION: str = "us-east-1"
    AWS_BUCKET_NAME: str = "trustforge-scans"

    # ─── Worker ──────────────────────────────────────────────────────────
    TEMP_ROOT: str = "temp"
    TEMP_MAX_AGE_SECONDS: int = 86400
    STALE_JOB_SECONDS: int = 7200  # longest provider budget is 30 min; leave headroom

    # ─── Providers ───────────────────────────────────────────────────────
    MOBSF_API_URL: str = "http://localhost:8000"
    MOBSF_API_KEY: str = ""
    MOBSF_POLL_INTERVAL: float = 30.0
    MOBSF_MAX_ATTEMPTS: int = 60

    VIRUSTOTAL_API_URL: str = "https://www.virustotal.com/api/v3"
    VIRUSTOTAL_API_KEY: str = ""
    VIRUSTOTAL_POLL_INTERVAL: float = 15.0
    VIRUSTOTAL_MAX_ATTEMPTS: int = 30
    VIRUSTOTAL_MAX_FILE_MB: float = 650.0

    METADEFENDER_API_URL: str = "https://api.metadefender.com/v4"
    METADEFENDER_API_KEY: str = ""
    METADEFENDER_POLL_INTERVAL: float = 15.0
    METADEFENDER_MAX_ATTEMPTS: int = 30
    METADEFENDER_MAX_FILE_MB: float = 140.0

    HYBRID_ANALYSIS_API_URL: str = "https://www.hybrid-analysis.com/api/v2"
    HYBRID_ANALYSIS_API_KEY: str = ""
    HYBRID_ANALYSIS_POLL_INTERVAL: float = 10.0
    HYBRID_ANALYSIS_MAX_ATTEMPTS: int = 30
    HYBRID_ANALYSIS_ENVIRONMENT_ID: int = 200  # Android Static Analysis

    class Config:
        env_file = ".env"

    def provider_config(self, name: str) -> ProviderConfig:
        """Build the injected config for one provider (mobsf, virustotal, metadefender, hybrid_analysis)."""
        if name == "mobsf":
            return ProviderConfig(
                name=name,
                base_url=self.MOBSF_API_URL,
                api_key=self.MOBSF_API_KEY,
                poll_interval_seconds=self.MOBSF_POLL_INTERVAL,
                max_attempts=self.MOBSF_MAX_ATTEMPTS,
            )
        if name == "virustotal":
            return ProviderConfig(
                name=name,
                base_url=self.VIRUSTOTAL_API_URL,
                api_key=self.VIRUSTOTAL_API_KEY,
                poll_interval_seconds=self.VIRUSTOTAL_POLL_INTERVAL,
                max_attempts=self.VIRUSTOTAL_MAX_ATTEMPTS,
                max_file_size_mb=self.VIRUSTOTAL_MAX_FILE_MB,
            )
        if name == "metadefender":
            return ProviderConfig(
                name=name,
                base_url=self.METADEFENDER_API_URL,
                api_key=self.METADEFENDER_API_KEY,
                poll_interval_seconds=self.METADEFENDER_POLL_INTERVAL,
                max_attempts=self.METADEFENDER_MAX_ATTEMPTS,
                max_file_size_mb=self.METADEFENDER_MAX_FILE_MB,
            )
        if name == "hybrid_analysis":
            return ProviderConfig(
                name=name,
                base_url=self.HYBRID_ANALYSIS_API_URL,
                api_key=self.HYBRID_ANALYSIS_API_KEY,
                poll_interval_seconds=self.HYBRID_ANALYSIS_POLL_INTERVAL,
                max_attempts=self.HYBRID_ANALYSIS_MAX_ATTEMPTS,
            )
        raise KeyError(f"Unknown provider: {name}")

settings = Settings()
