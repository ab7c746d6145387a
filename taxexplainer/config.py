"""
config.py — Tax Regime Explainer application settings.

Usage:
    from taxexplainer.config import settings
    print(settings.index_dir)

Never use FastAPI Depends() for settings — import directly as a module-level singleton.
"""
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict

# Sample values shipped in .env templates — treated the same as "not set".
PLACEHOLDER_MISTRAL_KEY = "your_mistral_api_key_here"
PLACEHOLDER_WEBHOOK_URL = "http://localhost:5678/webhook/tax-report"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Silently ignore any extra env vars
    )

    # --- Generation (Mistral) ---
    mistral_api_key: str = ""
    # Preferred model — tried first when set, then the built-in fallback order
    mistral_model: str = ""
    mistral_fallback_models: str = "mistral-small-latest,open-mistral-nemo,mistral-large-latest"
    mistral_temperature: float = 0.2
    mistral_max_tokens: int = 1024

    # --- Fallback / retry policy ---
    generation_attempts_per_model: int = 2
    generation_default_retry_delay_s: float = 10.0
    generation_max_retry_delay_s: float = 30.0
    # Wall-clock ceiling for the whole retry + fallback sequence
    generation_budget_s: float = 60.0

    # --- Retrieval ---
    index_dir: str = "knowledge_base/indexes"
    pdf_dir: str = "knowledge_base/pdfs"
    embed_model: str = "BAAI/bge-m3"
    retrieval_top_k: int = 5

    # --- Notification webhook ---
    webhook_url: str = ""
    webhook_timeout_s: float = 10.0

    # --- Uploads ---
    upload_dir: str = "uploads"
    max_upload_mb: int = 10

    # --- CORS ---
    # Comma-separated list of allowed frontend origins
    cors_origins: str = "http://localhost:3000,http://localhost:5173"

    # --- Application ---
    debug: bool = False
    app_version: str = "0.1.0"

    @property
    def cors_origins_list(self) -> List[str]:
        """Split comma-separated CORS origins into a list."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def generation_configured(self) -> bool:
        key = self.mistral_api_key.strip()
        return bool(key) and key != PLACEHOLDER_MISTRAL_KEY

    @property
    def webhook_configured(self) -> bool:
        url = self.webhook_url.strip()
        return bool(url) and url != PLACEHOLDER_WEBHOOK_URL

    @property
    def candidate_models(self) -> List[str]:
        """Preferred model first, then the fallback order — duplicates dropped, order kept."""
        ordered = [self.mistral_model.strip()] + [
            m.strip() for m in self.mistral_fallback_models.split(",")
        ]
        return list(dict.fromkeys(m for m in ordered if m))


# Module-level singleton — import this throughout the codebase
settings = Settings()
