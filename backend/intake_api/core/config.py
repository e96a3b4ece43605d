"""Application configuration loaded from the environment (and a local .env)."""

import json
import re
from pathlib import Path
from typing import List, Tuple
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv(dotenv_path=".env")

FORM_SCHEMA_VERSION = "2025.1"   # bumped whenever the wizard definitions change shape
VALID_ENVS = ("development", "production", "test")
VALID_LOG_LEVELS = ("error", "warn", "warning", "info", "debug")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "development"
    PORT: int = 3000
    APP_NAME: str = "flexion-flow-intake"
    VERSION: str = "1.4.0"

    # Storage roots (metadata/, pdfs/, logs/ live underneath)
    DATA_DIR: str = "./data"
    DATABASE_URL: str = ""

    # Logging
    LOG_LEVEL: str = ""
    LOG_TO_FILE: bool = True

    # CORS (comma-separated)
    ALLOWED_ORIGINS: str = ""

    # Abuse protection
    RATE_LIMIT_ENABLED: bool = True

    # E2E runs skip PDF/Drive/metadata side effects
    E2E_MODE: bool = False

    # Google Drive
    GOOGLE_SERVICE_ACCOUNT_KEY_PATH: str = ""
    GOOGLE_SERVICE_ACCOUNT_KEY: str = ""
    GOOGLE_DRIVE_FOLDER_ID: str = ""
    ALLOW_LOCAL_PDF_FALLBACK: bool = True

    # OpenAI (SOAP note assist)
    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-4o"
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"

    # Auth
    SESSION_TTL_HOURS: int = 12
    ADMIN_EMAIL: str = ""
    ADMIN_PASSWORD: str = ""

    # Wizard drafts older than this are purged
    DRAFT_TTL_HOURS: int = 72

    # Analytics bucketing / PDF timestamps
    ANALYTICS_TIMEZONE: str = "Australia/Sydney"

    @property
    def data_path(self) -> Path:
        return Path(self.DATA_DIR)

    @property
    def metadata_dir(self) -> Path:
        return self.data_path / "metadata"

    @property
    def pdf_dir(self) -> Path:
        return self.data_path / "pdfs"

    @property
    def logs_dir(self) -> Path:
        return self.data_path / "logs"

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"sqlite:///{(self.data_path / 'intake.db').as_posix()}"

    @property
    def is_production(self) -> bool:
        return self.ENV == "production"

    @property
    def log_level(self) -> str:
        if self.LOG_LEVEL and self.LOG_LEVEL.lower() in VALID_LOG_LEVELS:
            return self.LOG_LEVEL.lower()
        return "info" if self.is_production else "debug"

    @property
    def google_drive_configured(self) -> bool:
        return bool(self.GOOGLE_SERVICE_ACCOUNT_KEY_PATH or self.GOOGLE_SERVICE_ACCOUNT_KEY)

    @property
    def openai_configured(self) -> bool:
        return bool(self.OPENAI_API_KEY)

    @property
    def allowed_origins_list(self) -> List[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]


_LOCALHOST_ORIGIN = re.compile(r"^https?://(localhost|127\.0\.0\.1):\d+$")


def _is_valid_origin(origin: str) -> bool:
    if _LOCALHOST_ORIGIN.match(origin):
        return True
    parsed = urlparse(origin)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def validate_environment(cfg: Settings) -> Tuple[List[str], List[str]]:
    """
    Check the loaded settings for combinations that cannot work.
    Returns (errors, warnings); callers decide whether errors are fatal.
    """
    errors: List[str] = []
    warnings: List[str] = []

    if cfg.ENV not in VALID_ENVS:
        errors.append(f"ENV must be one of: {', '.join(VALID_ENVS)}, got: {cfg.ENV}")

    if cfg.is_production and not cfg.ALLOWED_ORIGINS:
        warnings.append("ALLOWED_ORIGINS not set in production - CORS will be restrictive")

    # Google Drive
    if not cfg.google_drive_configured:
        warnings.append(
            "Google Drive not configured - PDFs will be saved locally if ALLOW_LOCAL_PDF_FALLBACK is enabled"
        )
    elif not cfg.GOOGLE_DRIVE_FOLDER_ID:
        warnings.append("GOOGLE_DRIVE_FOLDER_ID not set - files will be saved to root of Google Drive")

    if cfg.GOOGLE_SERVICE_ACCOUNT_KEY:
        try:
            parsed = json.loads(cfg.GOOGLE_SERVICE_ACCOUNT_KEY)
        except ValueError:
            errors.append("GOOGLE_SERVICE_ACCOUNT_KEY is not valid JSON")
        else:
            if not isinstance(parsed, dict) or not all(
                parsed.get(k) for k in ("type", "project_id", "client_email")
            ):
                errors.append("GOOGLE_SERVICE_ACCOUNT_KEY does not appear to be a valid service account key")

    # Storage: at least one place for PDFs to land
    if not cfg.google_drive_configured and not cfg.ALLOW_LOCAL_PDF_FALLBACK:
        errors.append(
            "No PDF storage method configured. Either set up Google Drive or enable ALLOW_LOCAL_PDF_FALLBACK"
        )

    # OpenAI
    if not cfg.OPENAI_API_KEY:
        warnings.append("OPENAI_API_KEY not set - SOAP note generation will be disabled")
    elif not cfg.OPENAI_API_KEY.startswith("sk-"):
        warnings.append("OPENAI_API_KEY does not appear to be in the correct format (should start with sk-)")

    # CORS
    invalid = [o for o in cfg.allowed_origins_list if not _is_valid_origin(o)]
    if invalid:
        warnings.append(f"Invalid CORS origins detected: {', '.join(invalid)}")

    if cfg.LOG_LEVEL and cfg.LOG_LEVEL.lower() not in VALID_LOG_LEVELS:
        warnings.append(f"Invalid LOG_LEVEL: {cfg.LOG_LEVEL}. Valid levels: error, warn, info, debug")

    return errors, warnings


settings = Settings()
