# Infrastructure Storage Package
from .sqlite_storage import SqliteStorage

__all__ = ["SqliteStorage"]
