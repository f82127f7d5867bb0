"""
Configuration loaded from environment variables (and an optional .env file),
with Google Secret Manager as an optional source for credentials.
"""

import os
import logging
from typing import List, Optional, Set
from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from google.cloud import secretmanager

logger = logging.getLogger(__name__)

SUPPORTED_STORAGE_BACKENDS = ("sqlite", "postgres", "cosmosdb")


class Settings(BaseSettings):
    """Application settings with environment variables as the primary source."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
        protected_namespaces=(),
    )

    # Server
    port: int = 3001
    frontend_url: str = "http://localhost:5173"
    ui_url: str = "http://localhost:8501"

    # Access control
    authorized_userids: str = ""
    max_requests_per_user: int = 50

    # Storage
    storage_backend: str = Field(
        "sqlite", validation_alias=AliasChoices("storage_backend", "db_type")
    )
    sqlite_db_path: str = "./data/ai-usage-tracking.db"
    database_url: Optional[str] = None

    # Azure OpenAI
    azure_openai_endpoint: Optional[str] = None
    azure_openai_key: Optional[str] = None
    azure_openai_api_version: str = "2024-02-15-preview"
    azure_openai_model: str = "gpt-4.1"

    # Model call limits
    model_timeout_seconds: float = 60.0
    model_max_retries: int = 2
    model_max_tokens: int = 3000
    model_temperature: float = 0.7

    # Conversation context
    context_window_size: int = 5
    context_expire_seconds: Optional[float] = None

    # Optional GCP Secret Manager source
    gcp_project_id: Optional[str] = None
    database_url_secret_name: str = "database-url"
    azure_openai_key_secret_name: str = "azure-openai-key"
    azure_openai_endpoint_secret_name: str = "azure-openai-endpoint"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if self.gcp_project_id:
            self._load_secrets()

    def _load_secrets(self):
        """Load credentials from Google Cloud Secret Manager, keeping env values as fallback."""
        try:
            client = secretmanager.SecretManagerServiceClient()
        except Exception as e:
            logger.warning(f"Could not create Secret Manager client, using environment only: {e}")
            return

        project_path = f"projects/{self.gcp_project_id}"
        logger.info("Loading application secrets from Google Secret Manager...")
        self.database_url = self._get_secret_with_fallback(
            client, project_path, self.database_url_secret_name, self.database_url
        )
        self.azure_openai_key = self._get_secret_with_fallback(
            client, project_path, self.azure_openai_key_secret_name, self.azure_openai_key
        )
        self.azure_openai_endpoint = self._get_secret_with_fallback(
            client, project_path, self.azure_openai_endpoint_secret_name, self.azure_openai_endpoint
        )

    def _get_secret_with_fallback(
        self, client, project_path: str, secret_name: str, fallback: Optional[str]
    ) -> Optional[str]:
        """Get a secret value from Secret Manager, returning `fallback` if it cannot be read."""
        try:
            secret_path = f"{project_path}/secrets/{secret_name}/versions/latest"
            response = client.access_secret_version(request={"name": secret_path})
            return response.payload.data.decode("UTF-8").strip()
        except Exception as e:
            logger.warning(f"Could not fetch secret '{secret_name}' from Secret Manager: {e}")
            return fallback

    def allowed_user_ids(self) -> Set[str]:
        """Normalized allow-list: trimmed, lower-cased, empty entries dropped."""
        return {
            entry.strip().lower()
            for entry in self.authorized_userids.split(",")
            if entry.strip()
        }

    def is_authorized(self, user_id: str) -> bool:
        return user_id.strip().lower() in self.allowed_user_ids()

    def cors_origins(self) -> List[str]:
        """Browser origins allowed to call the API: the web front end and the Streamlit UI."""
        return list(dict.fromkeys(o.strip() for o in (self.frontend_url, self.ui_url) if o.strip()))

    def validate_settings(self):
        """Validate derived settings at startup."""
        backend = self.storage_backend.strip().lower()
        if backend not in SUPPORTED_STORAGE_BACKENDS:
            raise ValueError(f"Unknown storage backend: {self.storage_backend}")
        self.storage_backend = backend

        if self.max_requests_per_user < 1:
            raise ValueError("MAX_REQUESTS_PER_USER must be a positive integer")
        if self.context_window_size < 1:
            raise ValueError("CONTEXT_WINDOW_SIZE must be a positive integer")

        if backend == "postgres" and not self.database_url:
            raise ValueError("DATABASE_URL is required when STORAGE_BACKEND=postgres")

        if not self.authorized_userids.strip():
            logger.warning("AUTHORIZED_USERIDS is empty; every user will be rejected")
        if not self.azure_openai_endpoint or not self.azure_openai_key:
            logger.warning("Azure OpenAI credentials not configured; submissions will fail")

        running_in_cloud_run = bool(os.getenv("K_SERVICE"))
        if running_in_cloud_run and backend == "sqlite":
            logger.warning("SQLite storage on Cloud Run is ephemeral; data is lost on restart")
        return True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    settings = Settings()
    settings.validate_settings()
    return settings
