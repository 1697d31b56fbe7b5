"""Authentication utilities."""

from call_orchestrator.auth.dependencies import (
    enforce_rate_limit,
    get_principal,
    require_internal_api_key,
)

__all__ = [
    "enforce_rate_limit",
    "get_principal",
    "require_internal_api_key",
]
