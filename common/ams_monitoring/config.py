"""Configuration management for AMS therapy monitoring."""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from .env file
env_path = Path(__file__).parent.parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)
else:
    # Fall back to template for defaults
    template_path = Path(__file__).parent.parent.parent / ".env.template"
    if template_path.exists():
        load_dotenv(template_path)


class Config:
    """Therapy monitoring configuration."""

    # Patient document store
    AMS_MONITORING_DB_PATH: str = os.getenv(
        "AMS_MONITORING_DB_PATH", "~/.aegis/ams_monitoring.db"
    )

    # Serum creatinine is entered in umol/L on the ward forms
    CREATININE_UNIT: str = os.getenv("AMS_CREATININE_UNIT", "umol/L")

    # Advisory renal dosing (Ollama-compatible chat endpoint)
    DOSING_ADVISOR_ENABLED: bool = os.getenv("DOSING_ADVISOR_ENABLED", "false").lower() == "true"
    OLLAMA_BASE_URL: str = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
    OLLAMA_MODEL: str = os.getenv("OLLAMA_MODEL", "llama3.1:8b")
    DOSING_ADVISOR_TIMEOUT: int = int(os.getenv("DOSING_ADVISOR_TIMEOUT", "30"))

    # Document backup webhook (spreadsheet mirror)
    AMS_BACKUP_WEBHOOK_URL: str | None = os.getenv("AMS_BACKUP_WEBHOOK_URL") or None
    AMS_BACKUP_TIMEOUT: int = int(os.getenv("AMS_BACKUP_TIMEOUT", "10"))

    # CLI watch mode polling
    WATCH_INTERVAL_SECONDS: int = int(os.getenv("AMS_WATCH_INTERVAL", "30"))

    @classmethod
    def is_backup_configured(cls) -> bool:
        """Check if a backup webhook is configured."""
        return bool(cls.AMS_BACKUP_WEBHOOK_URL)


config = Config()
