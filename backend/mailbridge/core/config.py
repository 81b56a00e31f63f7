"""Application configuration"""

import json
import logging
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # API
    PROJECT_NAME: str = "Mailbridge Proxy API"
    VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Proxy secrets
    # WHY: Two keys give two capability levels. The widget key ships inside a
    # public script, so it must never grant Admin.
    APP_SECRET_KEY: str
    WIDGET_API_KEY: str

    # CORS
    # Comma-separated list of origins, or "*" for any origin
    ALLOWED_ORIGINS: str = "*"

    # Workflow engine
    WORKFLOW_ENGINE_BASE_URL: str = "https://app.example.com"
    WORKFLOW_ENGINE_API_TOKEN: str = ""
    WORKFLOW_DEFAULT_VERSION: str = "version-test"
    WORKFLOW_PREVIEW_PATH: str = "wf/quote_preview"
    WORKFLOW_NOTIFY_PATH: str = "wf/send_remember"

    # Mail backends
    GMAIL_API_BASE: str = "https://gmail.googleapis.com/gmail/v1/users/me"
    GRAPH_API_BASE: str = "https://graph.microsoft.com/v1.0/me"
    POSTMARK_API_BASE: str = "https://api.postmarkapp.com"
    POSTMARK_SERVER_TOKEN: Optional[str] = None
    POSTMARK_SENDER_DOMAIN: str = "example.com"

    # OAuth client identifiers (public, handed to the widget)
    GOOGLE_OAUTH_CLIENT_ID: Optional[str] = None
    MICROSOFT_OAUTH_CLIENT_ID: Optional[str] = None

    # Network policy
    UPSTREAM_TIMEOUT_SECONDS: float = 30.0
    RETRY_DELAY_SECONDS: float = 0.5

    # Quote templates
    QUOTE_COMMENT_PLACEHOLDER: str = Field(default="__COMMENT_PLACEHOLDER__", min_length=1)

    @model_validator(mode="after")
    def _warn_on_shared_keys(self) -> "Settings":
        if self.APP_SECRET_KEY == self.WIDGET_API_KEY:
            logger.critical(
                "WIDGET_API_KEY is the same as APP_SECRET_KEY. "
                "The public widget key will grant admin access!"
            )
        return self

    @property
    def allowed_origins(self) -> List[str]:
        """
        Parsed cross-origin allow-list.

        Returns:
            List of origins; ["*"] means any origin is accepted
        """
        raw = self.ALLOWED_ORIGINS.strip()
        if raw.startswith("["):
            try:
                parsed = json.loads(raw)
            except ValueError:
                parsed = None
            if isinstance(parsed, list):
                origins = [str(o).strip() for o in parsed if str(o).strip()]
                return origins or ["*"]

        origins = [o.strip() for o in raw.split(",") if o.strip()]
        return origins or ["*"]

    @property
    def allows_any_origin(self) -> bool:
        return "*" in self.allowed_origins


@lru_cache
def get_settings() -> Settings:
    """
    Get the process-wide settings instance.

    WHY: Settings are read once and never mutated afterwards. Exposing them
    through a dependency lets tests substitute their own instance with
    app.dependency_overrides instead of patching module state.
    """
    return Settings()
