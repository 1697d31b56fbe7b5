"""Telephony provider webhook endpoints.

Twilio posts form-encoded callbacks here. Every URL we hand to the provider
carries our ``callId`` as a query parameter, so the first lookup is by our
own id. Handlers acknowledge with 200 whatever the business outcome; only a
structurally invalid payload (400) or a bad signature (403) is rejected.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Request, status
from fastapi.responses import JSONResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from call_orchestrator.config import get_settings
from call_orchestrator.database.session import get_session
from call_orchestrator.exceptions import WebhookPayloadError
from call_orchestrator.repositories.calls_repository import CallsRepository
from call_orchestrator.services.dispatcher_service import webhook_url
from call_orchestrator.services.reconciler_service import get_webhook_reconciler, run_recording_fetch
from call_orchestrator.services.telephony_service import TelephonyProvider, get_telephony_provider
from call_orchestrator.utils.logging import log_error

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks", tags=["webhooks"])

RECEIVED = {"received": True}


def signed_url(request: Request) -> str:
    """
    The URL the provider signed: our public base URL plus path and query.

    ``request.url`` reflects the internal host when running behind a proxy.
    """
    url = f"{get_settings().public_base_url}{request.url.path}"
    if request.url.query:
        url = f"{url}?{request.url.query}"
    return url


async def read_webhook_form(
    request: Request,
    provider: TelephonyProvider,
    signature: Optional[str],
) -> Optional[Dict[str, str]]:
    """
    Read the form body and check the provider signature.

    Returns None when signature validation is enabled and fails.
    """
    form_data = await request.form()
    form_dict = {key: str(value) for key, value in form_data.items()}

    if get_settings().telephony.validate_signatures:
        if not provider.validate_signature(signed_url(request), form_dict, signature):
            logger.error(
                f"Invalid webhook signature on {request.url.path}. "
                f"CallSid: {form_dict.get('CallSid')}"
            )
            return None
    return form_dict


def forbidden() -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_403_FORBIDDEN,
        content={"error": {"message": "Invalid request signature", "code": "INVALID_SIGNATURE"}},
    )


def bad_payload(e: WebhookPayloadError) -> JSONResponse:
    logger.warning(f"Rejected webhook payload: {e.message}")
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=e.to_dict())


async def apply_event(
    session: AsyncSession, request: Request, form: Dict[str, str], applying: Awaitable[Any]
) -> Any:
    """
    Await a reconciler step; on failure roll back, log and return None.

    Processing errors are acknowledged like any other outcome.
    """
    try:
        return await applying
    except Exception as e:
        await session.rollback()
        log_error(e, context={"path": request.url.path, "CallSid": form.get("CallSid")})
        return None


@router.post("/call-status", status_code=status.HTTP_200_OK)
async def call_status_webhook(
    request: Request,
    callId: Optional[str] = None,
    x_twilio_signature: Optional[str] = Header(default=None, alias="X-Twilio-Signature"),
    session: AsyncSession = Depends(get_session),
    provider: TelephonyProvider = Depends(get_telephony_provider),
):
    """Provider call progress: initiated, ringing, answered, completed and the failure statuses."""
    form = await read_webhook_form(request, provider, x_twilio_signature)
    if form is None:
        return forbidden()
    try:
        event = provider.parse_status_event(form, call_id=callId)
    except WebhookPayloadError as e:
        return bad_payload(e)

    await apply_event(
        session, request, form, get_webhook_reconciler(session, provider).apply_status_event(event)
    )
    return RECEIVED


async def _handle_recording_event(
    request: Request,
    form: Dict[str, str],
    call_id: Optional[str],
    session: AsyncSession,
    provider: TelephonyProvider,
    background_tasks: BackgroundTasks,
):
    try:
        event = provider.parse_recording_event(form, call_id=call_id)
    except WebhookPayloadError as e:
        return bad_payload(e)

    reconciler = get_webhook_reconciler(session, provider)
    recording = await apply_event(session, request, form, reconciler.apply_recording_event(event))
    if recording is not None:
        background_tasks.add_task(run_recording_fetch, recording.id, provider)
    return RECEIVED


@router.post("/recording-complete", status_code=status.HTTP_200_OK)
async def recording_complete_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    callId: Optional[str] = None,
    x_twilio_signature: Optional[str] = Header(default=None, alias="X-Twilio-Signature"),
    session: AsyncSession = Depends(get_session),
    provider: TelephonyProvider = Depends(get_telephony_provider),
):
    """
    The answer recording is available.

    Duplicate deliveries are acknowledged without creating a second
    recording. The artifact is downloaded in the background after a grace
    delay.
    """
    form = await read_webhook_form(request, provider, x_twilio_signature)
    if form is None:
        return forbidden()

    recording_status = (form.get("RecordingStatus") or "completed").strip().lower()
    if recording_status != "completed":
        try:
            event = provider.parse_recording_status_event(form, call_id=callId)
        except WebhookPayloadError as e:
            return bad_payload(e)
        await apply_event(
            session,
            request,
            form,
            get_webhook_reconciler(session, provider).apply_recording_status_event(event),
        )
        return RECEIVED

    return await _handle_recording_event(
        request, form, callId, session, provider, background_tasks
    )


@router.post("/recording-status", status_code=status.HTTP_200_OK)
async def recording_status_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    callId: Optional[str] = None,
    x_twilio_signature: Optional[str] = Header(default=None, alias="X-Twilio-Signature"),
    session: AsyncSession = Depends(get_session),
    provider: TelephonyProvider = Depends(get_telephony_provider),
):
    """Recording progress. A completed recording with a URL is handled as recording-complete."""
    form = await read_webhook_form(request, provider, x_twilio_signature)
    if form is None:
        return forbidden()

    if (form.get("RecordingStatus") or "").strip().lower() == "completed" and form.get(
        "RecordingUrl"
    ):
        return await _handle_recording_event(
            request, form, callId, session, provider, background_tasks
        )

    try:
        event = provider.parse_recording_status_event(form, call_id=callId)
    except WebhookPayloadError as e:
        return bad_payload(e)

    await apply_event(
        session,
        request,
        form,
        get_webhook_reconciler(session, provider).apply_recording_status_event(event),
    )
    return RECEIVED


@router.post("/transcription-complete", status_code=status.HTTP_200_OK)
async def transcription_complete_webhook(
    request: Request,
    callId: Optional[str] = None,
    x_twilio_signature: Optional[str] = Header(default=None, alias="X-Twilio-Signature"),
    session: AsyncSession = Depends(get_session),
    provider: TelephonyProvider = Depends(get_telephony_provider),
):
    form = await read_webhook_form(request, provider, x_twilio_signature)
    if form is None:
        return forbidden()
    try:
        event = provider.parse_transcription_event(form, call_id=callId)
    except WebhookPayloadError as e:
        return bad_payload(e)

    await apply_event(
        session,
        request,
        form,
        get_webhook_reconciler(session, provider).apply_transcription_event(event),
    )
    return RECEIVED


@router.post("/voice", status_code=status.HTTP_200_OK)
async def voice_webhook(
    request: Request,
    callId: Optional[str] = None,
    stage: Optional[str] = None,
    x_twilio_signature: Optional[str] = Header(default=None, alias="X-Twilio-Signature"),
    session: AsyncSession = Depends(get_session),
    provider: TelephonyProvider = Depends(get_telephony_provider),
):
    """
    TwiML for an answered call: speak the message, then record the answer.

    The Record verb's action posts back here with ``stage=done``, which hangs up.
    """
    form = await read_webhook_form(request, provider, x_twilio_signature)
    if form is None:
        return Response(
            content=provider.build_hangup_response("Invalid request signature."),
            media_type="application/xml",
            status_code=status.HTTP_403_FORBIDDEN,
        )

    if stage == "done":
        return Response(
            content=provider.build_hangup_response("Thank you. Goodbye."),
            media_type="application/xml",
        )

    call = (
        await apply_event(session, request, form, CallsRepository(session).get_by_id(callId))
        if callId
        else None
    )
    if call is None:
        logger.warning(f"Voice webhook for unknown call {callId} (CallSid: {form.get('CallSid')})")
        return Response(content=provider.build_hangup_response(), media_type="application/xml")

    twiml = provider.build_voice_response(
        message=call.message,
        action_url=webhook_url("voice", call.id, stage="done"),
        recording_callback_url=webhook_url("recording-complete", call.id),
        transcription_callback_url=webhook_url("transcription-complete", call.id),
        max_length=get_settings().telephony.recording_max_length,
    )
    return Response(content=twiml, media_type="application/xml")
