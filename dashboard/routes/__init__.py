"""Dashboard routes."""

from .monitoring import monitoring_bp

__all__ = [
    "monitoring_bp",
]
