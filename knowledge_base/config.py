"""Central configuration for pipeline constants and limits.

This module contains all configurable constants used throughout the ingestion
pipeline. Centralizing these values makes it easy to adjust limits and defaults
without searching through multiple files.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


@dataclass
class LangfuseConfig:
    """Langfuse observability configuration."""

    enabled: bool = True
    public_key: str = ""
    secret_key: str = ""
    host: str = "https://cloud.langfuse.com"

    @classmethod
    def from_env(cls) -> "LangfuseConfig":
        """Load configuration from environment variables."""
        public_key = (os.getenv("LANGFUSE_PUBLIC_KEY") or "").strip()
        secret_key = (os.getenv("LANGFUSE_SECRET_KEY") or "").strip()
        host = (os.getenv("LANGFUSE_BASE_URL") or "https://cloud.langfuse.com").strip()
        enabled_str = (os.getenv("LANGFUSE_ENABLED") or "true").strip().lower()
        enabled = enabled_str == "true" and bool(public_key and secret_key)
        return cls(
            enabled=enabled,
            public_key=public_key,
            secret_key=secret_key,
            host=host,
        )


# Extraction Settings
DEFAULT_EXTRACTION_MODEL = (
    os.getenv("KB_EXTRACTION_MODEL") or "google-gla:gemini-2.5-flash"
).strip()
DEFAULT_MERGE_MODEL = (os.getenv("KB_MERGE_MODEL") or "google-gla:gemini-2.5-pro").strip()
EXTRACTION_TEMPERATURE = 0.3

# Merge Settings
MERGE_STRATEGY_DETERMINISTIC = "deterministic"
MERGE_STRATEGY_LLM = "llm"
MERGE_STRATEGY = (
    os.getenv("KB_MERGE_STRATEGY") or MERGE_STRATEGY_DETERMINISTIC
).strip().lower()

# Document Acquisition Settings
PAGE_STATUS_INTERVAL = 5  # Emit a progress status every N pages (and on the last page)
UPLOAD_MAX_BYTES = 10 * 1024 * 1024  # 10MB max uploaded document size

# Remote Profile Providers
REMOTE_FETCH_TIMEOUT_SEC = 120  # Apify run-sync calls routinely take 30-60s
APIFY_LINKEDIN_URL = (
    "https://api.apify.com/v2/acts/apimaestro~linkedin-profile-detail/"
    "run-sync-get-dataset-items"
)
GITHUB_API_URL = "https://api.github.com"
GITHUB_MAX_REPOS = 50

# Manual text sources keep the first N characters as the summary
MANUAL_TEXT_SUMMARY_CHARS = 500

# Logged prefix length for raw model output on parse failure
RAW_OUTPUT_LOG_CHARS = 500


def get_apify_token() -> str:
    """Return the Apify API token (empty string when not configured)."""
    return (os.getenv("APIFY_API_TOKEN") or "").strip()


def get_github_token() -> str:
    """Return the GitHub personal token (empty string when not configured)."""
    return (os.getenv("GITHUB_PERSONAL_TOKEN") or "").strip()


def get_cors_origins() -> list[str]:
    """Return allowed CORS origins; defaults to any origin."""
    raw = os.environ.get("CORS_ORIGINS", "*")
    return [o.strip() for o in raw.split(",") if o.strip()] or ["*"]
