from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
import json
from pathlib import Path


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "sqlite:///./novelly.db"

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # CORS - can be JSON string or comma-separated string
    CORS_ORIGINS: str = '["http://localhost:8081", "http://localhost:19006"]'

    # Perplexity (generative text service)
    PERPLEXITY_API_KEY: Optional[str] = None
    PERPLEXITY_MODEL: str = "sonar-pro"
    PERPLEXITY_API_URL: str = "https://api.perplexity.ai/chat/completions"
    LLM_TIMEOUT_SECONDS: float = 60.0

    # External book lookups
    GOOGLE_BOOKS_API_KEY: Optional[str] = None
    LOOKUP_TIMEOUT_SECONDS: float = 10.0
    LOOKUP_USER_AGENT: str = "NovellyBackend/1.0"

    # Hydration
    HYDRATION_BATCH_SIZE: int = 5
    HYDRATION_BATCH_DELAY_MS: int = 100

    # Background enrichment
    ENRICHMENT_MAX_ITEMS: int = 3
    ENRICHMENT_INTERVAL_MINUTES: int = 15
    ENABLE_SCHEDULER: bool = True

    # Catalog search
    CATALOG_MIN_SEARCH_CONFIDENCE: float = 0.5
    CATALOG_SEARCH_DEFAULT_LIMIT: int = 20

    # Homepage feed
    FEED_CACHE_HOURS: int = 24

    # Supabase JWT verification (local)
    SUPABASE_URL: str = ""
    SUPABASE_JWT_SECRET: str = ""
    SUPABASE_JWT_AUD: str = "authenticated"
    SUPABASE_JWT_ISS: str = ""

    model_config = SettingsConfigDict(
        # Load from <repo root>/.env
        env_file=str(Path(__file__).resolve().parents[2] / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Ignore unknown environment variables (like EXPO_*)
    )

    def require_supabase(self) -> None:
        """Raise if the settings needed to verify Supabase tokens are missing."""
        if not self.SUPABASE_URL or self.SUPABASE_URL.strip() == "":
            raise RuntimeError(
                "SUPABASE_URL is not set. Add SUPABASE_URL=https://YOUR_PROJECT_REF.supabase.co to .env"
            )
        if "YOUR_PROJECT_REF" in self.SUPABASE_URL:
            raise RuntimeError(
                "SUPABASE_URL appears to be a placeholder. Set it to your actual Supabase project URL in .env"
            )
        if not self.SUPABASE_JWT_SECRET or self.SUPABASE_JWT_SECRET.strip() == "":
            raise RuntimeError(
                "SUPABASE_JWT_SECRET is not set. Add it from Supabase Project Settings -> API -> JWT Secret."
            )

    @property
    def jwt_issuer(self) -> str:
        """Expected issuer claim, defaulting to the project's auth endpoint."""
        if self.SUPABASE_JWT_ISS and self.SUPABASE_JWT_ISS.strip():
            return self.SUPABASE_JWT_ISS
        return f"{self.SUPABASE_URL.rstrip('/')}/auth/v1"

    def get_masked_database_url(self) -> str:
        """Return DATABASE_URL with password masked for logging."""
        try:
            from urllib.parse import urlparse, urlunparse
            parsed = urlparse(self.DATABASE_URL)
            if not parsed.password:
                return self.DATABASE_URL
            masked_netloc = f"{parsed.username}:***@{parsed.hostname}"
            if parsed.port:
                masked_netloc += f":{parsed.port}"
            return urlunparse((
                parsed.scheme,
                masked_netloc,
                parsed.path,
                parsed.params,
                parsed.query,
                parsed.fragment
            ))
        except Exception:
            # Fallback: just show scheme
            return f"{self.DATABASE_URL.split('://')[0]}://<masked>"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS from JSON string or comma-separated string."""
        if not self.CORS_ORIGINS:
            return []

        try:
            # Try parsing as JSON first
            parsed = json.loads(self.CORS_ORIGINS)
            if isinstance(parsed, list):
                return parsed
            # If it's a string, treat as single origin
            return [str(parsed)]
        except (json.JSONDecodeError, TypeError):
            # Fall back to comma-separated string
            return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


settings = Settings()
