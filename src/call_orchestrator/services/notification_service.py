"""Signed notifications to the owning application backend."""

import hashlib
import hmac
import json
import logging
import time
from typing import Any, Dict, Optional

import httpx

from call_orchestrator.config import get_settings
from call_orchestrator.database.models import Call, Recording

logger = logging.getLogger(__name__)


def sign_payload(body: str, secret: str, timestamp: str) -> str:
    """HMAC-SHA256 over ``"<timestamp>.<body>"``, hex encoded."""
    return hmac.new(
        secret.encode("utf-8"), f"{timestamp}.{body}".encode("utf-8"), hashlib.sha256
    ).hexdigest()


class BackendNotifier:
    """Posts recording-complete notifications. Failures are logged, never raised."""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = get_settings().notifications
        self._http_client = http_client

    @property
    def enabled(self) -> bool:
        return self.settings.is_enabled

    def build_recording_payload(self, call: Call, recording: Recording) -> Dict[str, Any]:
        return {
            "callId": call.id,
            "callSid": call.provider_call_id,
            "accountId": call.account_id,
            "phoneNumber": call.to_number,
            "question": call.message,
            "batchId": call.batch_id,
            "recordingSid": recording.provider_recording_id,
            "filename": recording.filename,
            "fileSize": recording.size_bytes,
            "durationSeconds": recording.duration_seconds,
            "metadata": call.call_metadata or {},
        }

    async def notify_recording_complete(self, call: Call, recording: Recording) -> bool:
        """Returns True if the backend acknowledged the notification."""
        if not self.enabled:
            logger.debug("Backend notification URL not configured, skipping")
            return False

        body = json.dumps(self.build_recording_payload(call, recording), separators=(",", ":"))
        headers = {"Content-Type": "application/json", "X-Account-Id": call.account_id}
        if self.settings.signing_secret:
            timestamp = str(int(time.time()))
            signature = sign_payload(body, self.settings.signing_secret, timestamp)
            headers["X-Timestamp"] = timestamp
            headers["X-Signature"] = f"sha256={signature}"

        url = f"{self.settings.backend_url.rstrip('/')}/api/calls/recording-complete"
        try:
            if self._http_client is not None:
                response = await self._http_client.post(url, content=body, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.settings.timeout_seconds) as client:
                    response = await client.post(url, content=body, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Error notifying backend for call {call.id}: {e}")
            return False

        if response.status_code >= 400:
            logger.error(
                f"Backend notification for call {call.id} failed: "
                f"{response.status_code} {response.text[:200]}"
            )
            return False

        logger.info(f"Backend notified of recording for call {call.id}")
        return True


def get_backend_notifier() -> BackendNotifier:
    """Get backend notifier instance."""
    return BackendNotifier()
