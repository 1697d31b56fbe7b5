"""Twilio telephony provider."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Optional
from urllib.parse import urlparse

import httpx
from twilio.base.exceptions import TwilioRestException
from twilio.request_validator import RequestValidator
from twilio.rest import Client
from twilio.twiml.voice_response import VoiceResponse

from call_orchestrator.config import get_settings
from call_orchestrator.exceptions import ProviderError, WebhookPayloadError
from call_orchestrator.services.telephony_service import (
    CallInitiationRequest,
    CallInitiationResponse,
    RecordingArtifact,
    RecordingEvent,
    RecordingStatusEvent,
    StatusEvent,
    TelephonyProvider,
    TranscriptionEvent,
)

logger = logging.getLogger(__name__)

STATUS_CALLBACK_EVENTS = ["initiated", "ringing", "answered", "completed"]


def _require(form: Mapping[str, Any], *names: str) -> None:
    missing = [name for name in names if not form.get(name)]
    if missing:
        raise WebhookPayloadError(
            f"Missing required fields: {', '.join(missing)}", missing_fields=missing
        )


def _int_or_none(value: Any) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _text_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


class TwilioWebhookMixin:
    """
    Parsing of Twilio webhook form posts and TwiML generation.

    Shared by the real Twilio provider and the mock, which emits the same
    webhook fields so the whole pipeline can be exercised without Twilio.
    """

    def parse_status_event(
        self, form: Mapping[str, Any], call_id: Optional[str] = None
    ) -> StatusEvent:
        _require(form, "CallSid", "CallStatus")
        return StatusEvent(
            provider_call_id=str(form["CallSid"]),
            status=str(form["CallStatus"]).strip().lower(),
            duration_seconds=_int_or_none(form.get("CallDuration")),
            to_number=_text_or_none(form.get("To")),
            call_id=call_id,
            error_code=_text_or_none(form.get("ErrorCode")),
            raw=dict(form),
        )

    def parse_recording_event(
        self, form: Mapping[str, Any], call_id: Optional[str] = None
    ) -> RecordingEvent:
        _require(form, "CallSid", "RecordingSid", "RecordingUrl")
        return RecordingEvent(
            provider_call_id=str(form["CallSid"]),
            recording_id=str(form["RecordingSid"]),
            recording_url=str(form["RecordingUrl"]),
            duration_seconds=_int_or_none(form.get("RecordingDuration")),
            to_number=_text_or_none(form.get("To")),
            call_id=call_id,
            raw=dict(form),
        )

    def parse_transcription_event(
        self, form: Mapping[str, Any], call_id: Optional[str] = None
    ) -> TranscriptionEvent:
        _require(form, "CallSid", "TranscriptionStatus")
        return TranscriptionEvent(
            provider_call_id=str(form["CallSid"]),
            status=str(form["TranscriptionStatus"]).strip().lower(),
            recording_id=_text_or_none(form.get("RecordingSid")),
            transcription_id=_text_or_none(form.get("TranscriptionSid")),
            text=_text_or_none(form.get("TranscriptionText")),
            to_number=_text_or_none(form.get("To")),
            call_id=call_id,
            raw=dict(form),
        )

    def parse_recording_status_event(
        self, form: Mapping[str, Any], call_id: Optional[str] = None
    ) -> RecordingStatusEvent:
        _require(form, "CallSid", "RecordingStatus")
        return RecordingStatusEvent(
            provider_call_id=str(form["CallSid"]),
            recording_status=str(form["RecordingStatus"]).strip().lower(),
            recording_id=_text_or_none(form.get("RecordingSid")),
            call_id=call_id,
            raw=dict(form),
        )

    def build_voice_response(
        self,
        message: str,
        action_url: str,
        recording_callback_url: str,
        transcription_callback_url: str,
        max_length: int,
    ) -> str:
        response = VoiceResponse()
        response.say(message, voice="alice")
        response.record(
            action=action_url,
            method="POST",
            max_length=max_length,
            play_beep=True,
            transcribe=True,
            transcribe_callback=transcription_callback_url,
            recording_status_callback=recording_callback_url,
            recording_status_callback_method="POST",
        )
        return str(response)

    def build_hangup_response(self, message: Optional[str] = None) -> str:
        response = VoiceResponse()
        if message:
            response.say(message, voice="alice")
        response.hangup()
        return str(response)


class TwilioTelephonyProvider(TwilioWebhookMixin, TelephonyProvider):
    """Places calls through the Twilio REST API.

    The Twilio SDK is synchronous, so REST calls run in a worker thread.
    """

    name = "twilio"

    def __init__(self, client: Optional[Client] = None):
        settings = get_settings()
        self._account_sid = settings.telephony.account_sid
        self._auth_token = settings.telephony.auth_token
        self._fetch_timeout = settings.dispatch.recording_fetch_timeout_seconds

        if client is not None:
            self.client = client
        elif not self._account_sid or not self._auth_token:
            logger.warning("Twilio credentials not configured. Outbound calls will fail.")
            self.client = None
        else:
            if not self._account_sid.startswith("AC"):
                logger.warning(
                    f"TELEPHONY_ACCOUNT_SID does not start with 'AC'. "
                    f"Account SIDs start with 'AC', API Key SIDs start with 'SK'. "
                    f"Got: {self._account_sid[:3]}..."
                )
            self.client = Client(self._account_sid, self._auth_token)

    def _require_client(self) -> Client:
        if self.client is None:
            raise ProviderError("Twilio client not configured", provider=self.name)
        return self.client

    async def initiate(self, request: CallInitiationRequest) -> CallInitiationResponse:
        """
        Create the outbound call.

        Recording and transcription callbacks are wired through the TwiML
        served from ``request.voice_url``; Twilio only needs the status
        callback here.
        """
        client = self._require_client()
        try:
            call = await asyncio.to_thread(
                client.calls.create,
                to=request.to,
                from_=request.from_number,
                url=request.voice_url,
                method="POST",
                status_callback=request.status_callback_url,
                status_callback_event=STATUS_CALLBACK_EVENTS,
                status_callback_method="POST",
            )
        except TwilioRestException as e:
            logger.error(f"Twilio API error creating call {request.call_id}: {e}")
            raise ProviderError(
                e.msg or "Twilio rejected the call",
                provider=self.name,
                error_code=str(e.code) if e.code else None,
                details={"status_code": e.status},
            ) from e

        logger.info(f"Twilio call created: {call.sid} for call {request.call_id}")
        return CallInitiationResponse(
            provider_call_id=call.sid,
            status=call.status or "queued",
            raw_response={"sid": call.sid, "status": call.status},
        )

    async def cancel(self, provider_call_id: str) -> None:
        """Cancel a call that has not been answered, or hang up one in progress."""
        client = self._require_client()
        try:
            call = await asyncio.to_thread(client.calls(provider_call_id).fetch)
            if call.status in ("queued", "ringing"):
                target = "canceled"
            elif call.status == "in-progress":
                target = "completed"
            else:
                logger.info(f"Twilio call {provider_call_id} already {call.status}, nothing to cancel")
                return

            await asyncio.to_thread(client.calls(provider_call_id).update, status=target)
            logger.info(f"Twilio call {provider_call_id} updated to {target}")
        except TwilioRestException as e:
            logger.error(f"Twilio API error cancelling call {provider_call_id}: {e}")
            raise ProviderError(
                e.msg or "Failed to cancel call",
                provider=self.name,
                error_code=str(e.code) if e.code else None,
                details={"status_code": e.status},
            ) from e

    async def fetch_recording(self, recording_url: str) -> RecordingArtifact:
        """Download a recording as MP3 using account credentials."""
        url = recording_url
        path = urlparse(url).path
        if "." not in path.rsplit("/", 1)[-1]:
            url = f"{url}.mp3"

        auth = None
        if self._account_sid and self._auth_token and "api.twilio.com" in url:
            auth = (self._account_sid, self._auth_token)

        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self._fetch_timeout), follow_redirects=True
            ) as http:
                response = await http.get(url, auth=auth)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                f"HTTP {e.response.status_code} downloading recording",
                provider=self.name,
                details={"url": recording_url},
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(
                f"Failed to download recording: {e!s}",
                provider=self.name,
                details={"url": recording_url},
            ) from e

        content_type = response.headers.get("content-type", "audio/mpeg").split(";")[0].strip()
        return RecordingArtifact(content=response.content, content_type=content_type)

    def validate_signature(
        self, url: str, params: Mapping[str, Any], signature: Optional[str]
    ) -> bool:
        """
        Validate a Twilio webhook signature.

        Twilio signs the full URL (including query string) together with all
        POST parameters using HMAC-SHA1 and the account auth token.
        """
        if not self._auth_token:
            logger.error("TELEPHONY_AUTH_TOKEN not configured, cannot validate signatures")
            return False

        if not signature:
            logger.warning("Missing X-Twilio-Signature header. Request may not be from Twilio.")
            return False

        try:
            is_valid = RequestValidator(self._auth_token).validate(url, dict(params), signature)
        except Exception as e:
            logger.error(f"Error validating Twilio signature: {e}", exc_info=True)
            return False

        if not is_valid:
            logger.warning(
                f"Twilio signature validation failed. URL: {url}, "
                f"Form params: {list(params.keys())}"
            )
        return is_valid
