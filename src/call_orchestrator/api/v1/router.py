"""Version 1 of the public API, mounted under ``API_V1_PREFIX``.

Client routes take an ``X-API-Key``. Provider webhooks are checked against the
Twilio request signature, and key management needs ``X-Internal-API-Key``.
"""

from fastapi import APIRouter

from call_orchestrator.api.v1 import api_keys, batch, calls, recordings, webhooks
from call_orchestrator.config import get_settings

router = APIRouter(prefix=get_settings().api_v1_prefix)

for module in (calls, batch, recordings, webhooks, api_keys):
    router.include_router(module.router)


@router.get("/", summary="API version and entry points")
async def api_info():
    prefix = router.prefix
    return {
        "version": "v1",
        "endpoints": {
            name: f"{prefix}/{path}"
            for name, path in (
                ("call", "call"),
                ("calls", "calls"),
                ("batch", "batch"),
                ("recordings", "recordings"),
                ("stats", "stats/account"),
                ("webhooks", "webhooks"),
                ("api-keys", "api-keys"),
            )
        },
    }
