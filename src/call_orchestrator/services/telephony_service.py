"""Telephony provider interface.

The orchestrator only talks to the provider through ``TelephonyProvider``.
Provider-specific behaviour (REST calls, webhook form fields, TwiML) lives in
the concrete implementations.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from call_orchestrator.config import TelephonyProviderType, get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallInitiationRequest:
    """Request to place an outbound call."""

    call_id: str
    to: str
    from_number: str
    status_callback_url: str
    recording_callback_url: str
    transcription_callback_url: str
    voice_url: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CallInitiationResponse:
    """Provider acceptance of a call."""

    provider_call_id: str
    status: str
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RecordingArtifact:
    """Downloaded recording bytes."""

    content: bytes
    content_type: str = "audio/mpeg"


@dataclass(frozen=True)
class StatusEvent:
    """Call progress callback."""

    provider_call_id: str
    status: str
    duration_seconds: Optional[int] = None
    to_number: Optional[str] = None
    call_id: Optional[str] = None
    error_code: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RecordingEvent:
    """A finished recording is available at ``recording_url``."""

    provider_call_id: str
    recording_id: str
    recording_url: str
    duration_seconds: Optional[int] = None
    to_number: Optional[str] = None
    call_id: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TranscriptionEvent:
    """Transcription result for a recording."""

    provider_call_id: str
    status: str
    recording_id: Optional[str] = None
    transcription_id: Optional[str] = None
    text: Optional[str] = None
    to_number: Optional[str] = None
    call_id: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RecordingStatusEvent:
    """Intermediate recording status (in-progress, completed, absent, failed)."""

    provider_call_id: str
    recording_status: str
    recording_id: Optional[str] = None
    call_id: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict)


class TelephonyProvider(ABC):
    """Abstract interface for telephony providers."""

    name: str = "telephony"

    @abstractmethod
    async def initiate(self, request: CallInitiationRequest) -> CallInitiationResponse:
        """
        Place an outbound call.

        Raises:
            ProviderError: If the provider rejects the call or cannot be reached
        """
        ...

    @abstractmethod
    async def cancel(self, provider_call_id: str) -> None:
        """Ask the provider to stop a call. Raises ProviderError on failure."""
        ...

    @abstractmethod
    async def fetch_recording(self, recording_url: str) -> RecordingArtifact:
        """Download a recording artifact. Raises ProviderError on failure."""
        ...

    @abstractmethod
    def parse_status_event(
        self, form: Mapping[str, Any], call_id: Optional[str] = None
    ) -> StatusEvent:
        ...

    @abstractmethod
    def parse_recording_event(
        self, form: Mapping[str, Any], call_id: Optional[str] = None
    ) -> RecordingEvent:
        ...

    @abstractmethod
    def parse_transcription_event(
        self, form: Mapping[str, Any], call_id: Optional[str] = None
    ) -> TranscriptionEvent:
        ...

    @abstractmethod
    def parse_recording_status_event(
        self, form: Mapping[str, Any], call_id: Optional[str] = None
    ) -> RecordingStatusEvent:
        ...

    @abstractmethod
    def build_voice_response(
        self,
        message: str,
        action_url: str,
        recording_callback_url: str,
        transcription_callback_url: str,
        max_length: int,
    ) -> str:
        """Markup the provider executes when the callee answers."""
        ...

    @abstractmethod
    def build_hangup_response(self, message: Optional[str] = None) -> str:
        """Markup that (optionally) speaks ``message`` and ends the call."""
        ...

    @abstractmethod
    def validate_signature(
        self, url: str, params: Mapping[str, Any], signature: Optional[str]
    ) -> bool:
        """Check that a webhook request was sent by the provider."""
        ...


_provider: Optional[TelephonyProvider] = None


def get_telephony_provider() -> TelephonyProvider:
    """
    Get the configured telephony provider (FastAPI dependency).

    Tests replace it through ``app.dependency_overrides``.
    """
    global _provider
    if _provider is None:
        settings = get_settings()
        provider_type = settings.telephony.provider

        if provider_type == TelephonyProviderType.TWILIO:
            from call_orchestrator.services.twilio_service import TwilioTelephonyProvider

            _provider = TwilioTelephonyProvider()
        elif provider_type == TelephonyProviderType.MOCK:
            from call_orchestrator.services.mock_telephony_service import MockTelephonyProvider

            _provider = MockTelephonyProvider()
        else:
            raise ValueError(f"Unsupported telephony provider: {provider_type}")

        logger.info(f"Telephony provider initialized: {_provider.name}")
    return _provider
