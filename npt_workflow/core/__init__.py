"""Core application utilities."""

from .clock import as_utc, utcnow
from .config import Settings, get_settings
from .database import (
    async_session_factory,
    build_engine,
    build_session_factory,
    close_db,
    engine,
    get_session,
    init_db,
)
from .dependencies import (
    CurrentPrincipalDep,
    SessionDep,
    get_current_principal,
)
from .security import create_access_token, decode_token

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Clock
    "utcnow",
    "as_utc",
    # Database
    "engine",
    "async_session_factory",
    "build_engine",
    "build_session_factory",
    "get_session",
    "init_db",
    "close_db",
    # Dependencies
    "get_current_principal",
    "CurrentPrincipalDep",
    "SessionDep",
    # Security
    "create_access_token",
    "decode_token",
]
