"""Persistence: ORM models, the async engine and session handling."""

from call_orchestrator.database.connection import check_connection, get_engine
from call_orchestrator.database.models import (
    AccountQuota,
    ApiKey,
    Base,
    Call,
    CallEvent,
    Recording,
)
from call_orchestrator.database.session import (
    close_db,
    get_session,
    get_session_context,
    init_db,
)

__all__ = [
    "AccountQuota",
    "ApiKey",
    "Base",
    "Call",
    "CallEvent",
    "Recording",
    "check_connection",
    "close_db",
    "get_engine",
    "get_session",
    "get_session_context",
    "init_db",
]
