"""AMS monitoring dashboard (Flask JSON API)."""
