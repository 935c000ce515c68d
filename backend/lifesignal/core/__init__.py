# Core modules - Database, Config, Exceptions
from .database import SupabaseRepository, WriteBatch, create_repository
from .config import settings, get_settings, Settings
from .exceptions import (
    LifeSignalException,
    ConfigurationError,
    DatabaseError,
    ResourceNotFoundError,
    CallPlacementError,
    ClientStateError,
)

__all__ = [
    "SupabaseRepository",
    "WriteBatch",
    "create_repository",
    "settings",
    "get_settings",
    "Settings",
    "LifeSignalException",
    "ConfigurationError",
    "DatabaseError",
    "ResourceNotFoundError",
    "CallPlacementError",
    "ClientStateError",
]
