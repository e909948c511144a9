"""Local persistence for synced records."""

from .engine import Database, get_db_url
from .models import SyncRecord


__all__ = ["Database", "SyncRecord", "get_db_url"]
