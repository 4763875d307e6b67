"""
Shared pytest configuration for UrbanWatch.

Environment variables are set before any urbanwatch.* import so the
lru_cached settings pick them up.
"""

import os
import tempfile

# ── Set env vars BEFORE any urbanwatch.* import (handles @lru_cache on get_settings) ─
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/1")
os.environ.setdefault("JWT_SECRET", "urbanwatch-test-jwt-secret-must-be-32chars!!")
os.environ.setdefault("YOLO_API_KEY", "test-detector-key")
os.environ.setdefault("ANTHROPIC_API_KEY", "sk-ant-test-fake-key")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("MEDIA_ROOT", tempfile.mkdtemp(prefix="urbanwatch-media-"))

# Clear lru_cache so settings picks up test env vars
from urbanwatch.config.settings import get_settings

get_settings.cache_clear()
