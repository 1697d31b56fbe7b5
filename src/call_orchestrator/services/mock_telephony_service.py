"""In-process telephony provider for development and tests."""

from __future__ import annotations

import logging
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from call_orchestrator.exceptions import ProviderError
from call_orchestrator.services.telephony_service import (
    CallInitiationRequest,
    CallInitiationResponse,
    RecordingArtifact,
    TelephonyProvider,
)
from call_orchestrator.services.twilio_service import TwilioWebhookMixin

logger = logging.getLogger(__name__)


class MockTelephonyProvider(TwilioWebhookMixin, TelephonyProvider):
    """Mock telephony provider.

    Records every request, hands out sequential provider ids (or ones queued
    with ``queue_provider_call_ids``), and can be told to fail initiation,
    cancellation or recording downloads.
    """

    name = "mock"

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self._calls: List[CallInitiationRequest] = []
        self._cancelled: List[str] = []
        self._fetched: List[str] = []
        self._next_call_number = 1
        self._queued_ids: Deque[str] = deque()
        self._fail_initiate = False
        self._fail_on_attempts: set[int] = set()
        self._fail_cancel = False
        self._fail_fetch = False
        self._fail_error = "Mock failure"
        self._fail_code = "MOCK_ERROR"
        self._recording_content = b"ID3mock-recording-bytes"
        self._attempts = 0

    def configure_failure(
        self,
        should_fail: bool = True,
        error_message: str = "Mock failure",
        error_code: str = "MOCK_ERROR",
    ) -> None:
        self._fail_initiate = should_fail
        self._fail_error = error_message
        self._fail_code = error_code

    def fail_on_attempts(self, *attempts: int) -> None:
        """Fail the given 1-based initiation attempts (e.g. the 2nd call of a batch)."""
        self._fail_on_attempts = set(attempts)

    def configure_cancel_failure(self, should_fail: bool = True) -> None:
        self._fail_cancel = should_fail

    def configure_recording(self, content: Optional[bytes] = None, should_fail: bool = False) -> None:
        if content is not None:
            self._recording_content = content
        self._fail_fetch = should_fail

    def queue_provider_call_ids(self, *provider_call_ids: str) -> None:
        self._queued_ids.extend(provider_call_ids)

    @property
    def calls(self) -> List[CallInitiationRequest]:
        return list(self._calls)

    @property
    def cancelled(self) -> List[str]:
        return list(self._cancelled)

    @property
    def fetched(self) -> List[str]:
        return list(self._fetched)

    def get_last_call(self) -> Optional[CallInitiationRequest]:
        return self._calls[-1] if self._calls else None

    async def initiate(self, request: CallInitiationRequest) -> CallInitiationResponse:
        self._attempts += 1
        logger.info(f"Mock: initiating call {request.call_id} to {request.to}")

        if self._fail_initiate or self._attempts in self._fail_on_attempts:
            raise ProviderError(self._fail_error, provider=self.name, error_code=self._fail_code)

        self._calls.append(request)

        if self._queued_ids:
            provider_call_id = self._queued_ids.popleft()
        else:
            provider_call_id = f"MOCK_CALL_{self._next_call_number:06d}"
            self._next_call_number += 1

        return CallInitiationResponse(
            provider_call_id=provider_call_id,
            status="queued",
            raw_response={"mock": True, "call_id": request.call_id, "sid": provider_call_id},
        )

    async def cancel(self, provider_call_id: str) -> None:
        logger.info(f"Mock: cancelling call {provider_call_id}")
        if self._fail_cancel:
            raise ProviderError("Mock cancel failure", provider=self.name, error_code="MOCK_CANCEL")
        self._cancelled.append(provider_call_id)

    async def fetch_recording(self, recording_url: str) -> RecordingArtifact:
        self._fetched.append(recording_url)
        if self._fail_fetch:
            raise ProviderError("Mock recording download failure", provider=self.name)
        return RecordingArtifact(content=self._recording_content, content_type="audio/mpeg")

    def validate_signature(self, url: str, params: Dict[str, Any], signature: Optional[str]) -> bool:
        return True
