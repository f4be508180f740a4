"""Dashboard configuration."""

import os


class Config:
    """Base configuration."""

    # Flask
    SECRET_KEY = os.environ.get("FLASK_SECRET_KEY", "dev-secret-change-in-production")
    DEBUG = os.environ.get("FLASK_DEBUG", "false").lower() == "true"

    # Dashboard
    DASHBOARD_BASE_URL = os.environ.get("DASHBOARD_BASE_URL", "http://localhost:5000")

    # Monitoring patient store
    AMS_MONITORING_DB_PATH = os.environ.get(
        "AMS_MONITORING_DB_PATH",
        os.path.expanduser("~/.aegis/ams_monitoring.db")
    )

    # Spreadsheet backup of patient documents (optional)
    AMS_BACKUP_WEBHOOK_URL = os.environ.get("AMS_BACKUP_WEBHOOK_URL", "")

    # Advisory renal dosing
    DOSING_ADVISOR_ENABLED = os.environ.get("DOSING_ADVISOR_ENABLED", "false").lower() == "true"


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False


def get_config():
    """Get configuration based on environment."""
    env = os.environ.get("FLASK_ENV", "development")
    if env == "production":
        return ProductionConfig()
    return DevelopmentConfig()
