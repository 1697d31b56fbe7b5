"""Call dispatcher: intake, provider dispatch, cancellation and scheduled release."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from sqlalchemy.ext.asyncio import AsyncSession

from call_orchestrator.config import get_settings
from call_orchestrator.database.models import Call
from call_orchestrator.database.session import get_session_context
from call_orchestrator.exceptions import (
    InvalidStateError,
    NotFoundError,
    ProviderError,
    ValidationError,
)
from call_orchestrator.repositories.call_events_repository import CallEventsRepository
from call_orchestrator.repositories.calls_repository import CallsRepository
from call_orchestrator.services.api_key_service import Principal
from call_orchestrator.services.call_state import (
    CallStatus,
    CallTrigger,
    allowed_sources,
    is_terminal,
)
from call_orchestrator.services.quota_service import QuotaService
from call_orchestrator.services.telephony_service import (
    CallInitiationRequest,
    TelephonyProvider,
    get_telephony_provider,
)
from call_orchestrator.utils.phone import normalize_phone_number

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def webhook_url(path: str, call_id: str, **params: str) -> str:
    """Absolute webhook URL carrying the local call id as ``callId``."""
    settings = get_settings()
    query = urlencode({"callId": call_id, **params})
    return f"{settings.public_base_url}{settings.api_v1_prefix}/webhooks/{path}?{query}"


@dataclass
class CallRequest:
    """One outbound call as submitted by a client."""

    to_number: Optional[str]
    message: Optional[str]
    scheduled_for: Optional[datetime] = None
    from_number: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ValidatedCall:
    to_number: str
    from_number: str
    message: str
    scheduled_for: Optional[datetime]
    metadata: Dict[str, Any]


def validate_call_request(request: CallRequest) -> ValidatedCall:
    """
    Check and normalize a call request.

    Raises:
        ValidationError: If the number or message is missing or malformed
    """
    errors: Dict[str, str] = {}

    to_number = None
    if not request.to_number or not request.to_number.strip():
        errors["phoneNumber"] = "Phone number is required"
    else:
        to_number = normalize_phone_number(request.to_number)
        if to_number is None:
            errors["phoneNumber"] = "Invalid phone number format"

    message = (request.message or "").strip()
    if not message:
        errors["customMessage"] = "Message is required"

    from_number = request.from_number or get_settings().telephony.from_number
    if not from_number:
        errors["fromNumber"] = "No caller ID configured"

    if errors:
        raise ValidationError("Invalid call request", errors=errors)

    return ValidatedCall(
        to_number=to_number,
        from_number=from_number,
        message=message,
        scheduled_for=as_utc(request.scheduled_for),
        metadata=dict(request.metadata or {}),
    )


class CallDispatcher:
    """
    Creates calls and drives them through the dispatch half of the lifecycle.

    Every status write goes through ``transition``, which applies the state
    machine guard as a single conditional update and appends an audit event.
    """

    def __init__(self, session: AsyncSession, provider: TelephonyProvider):
        self.session = session
        self.provider = provider
        self.calls = CallsRepository(session)
        self.events = CallEventsRepository(session)
        self.quota = QuotaService(session)

    async def transition(
        self,
        call_id: str,
        trigger: CallTrigger,
        target: CallStatus,
        event_payload: Optional[Dict[str, Any]] = None,
        **values,
    ) -> Optional[Call]:
        """Apply a guarded transition. Returns None (and logs) if it did not apply."""
        sources = allowed_sources(trigger, target)
        call = await self.calls.conditional_update(
            call_id, sources, status=target.value, **values
        )
        if call is None:
            logger.info(
                f"Transition {trigger.value} -> {target.value} ignored for call {call_id}"
            )
            return None

        await self.events.append(
            call_id,
            "status_changed",
            {"trigger": trigger.value, "status": target.value, **(event_payload or {})},
        )
        logger.info(f"Call {call_id} -> {target.value} ({trigger.value})")
        return call

    async def create_validated(
        self,
        principal: Principal,
        validated: ValidatedCall,
        batch_id: Optional[str] = None,
    ) -> Call:
        metadata = dict(validated.metadata)
        if batch_id:
            metadata["batch_id"] = batch_id
        if validated.scheduled_for:
            metadata["scheduled_for"] = validated.scheduled_for.isoformat()

        call = await self.calls.create(
            account_id=principal.account_id,
            api_key_id=principal.api_key_id,
            from_number=validated.from_number,
            to_number=validated.to_number,
            message=validated.message,
            status=CallStatus.QUEUED.value,
            scheduled_for=validated.scheduled_for,
            batch_id=batch_id,
            call_metadata=metadata,
        )
        await self.events.append(
            call.id,
            "created",
            {"to": call.to_number, "batch_id": batch_id, "scheduled_for": metadata.get("scheduled_for")},
        )

        if validated.scheduled_for and validated.scheduled_for > utc_now():
            scheduled = await self.transition(call.id, CallTrigger.SCHEDULE, CallStatus.SCHEDULED)
            if scheduled is not None:
                call = scheduled
        return call

    async def create_call(self, principal: Principal, request: CallRequest) -> Call:
        """
        Validate, admit and persist a call.

        The call is committed before returning so background dispatch can see it.

        Raises:
            ValidationError: Missing or malformed fields
            QuotaExceededError: The account is over its allowance
        """
        validated = validate_call_request(request)
        await self.quota.require_admission(principal.account_id, 1)

        call = await self.create_validated(principal, validated)
        await self.quota.record_admission(principal.account_id, 1)
        await self.session.commit()

        logger.info(f"Call {call.id} created for account {principal.account_id} ({call.status})")
        return call

    def build_initiation_request(self, call: Call) -> CallInitiationRequest:
        return CallInitiationRequest(
            call_id=call.id,
            to=call.to_number,
            from_number=call.from_number,
            status_callback_url=webhook_url("call-status", call.id),
            recording_callback_url=webhook_url("recording-complete", call.id),
            transcription_callback_url=webhook_url("transcription-complete", call.id),
            voice_url=webhook_url("voice", call.id),
            metadata={"batch_id": call.batch_id} if call.batch_id else {},
        )

    async def dispatch(self, call_id: str) -> Optional[Call]:
        """
        Hand a queued call to the provider.

        Returns the call in its post-dispatch state, or None if the call was
        not ``queued`` (already dispatched, scheduled or cancelled).
        """
        call = await self.transition(call_id, CallTrigger.DISPATCH_START, CallStatus.INITIATING)
        if call is None:
            return None
        await self.session.commit()

        request = self.build_initiation_request(call)
        try:
            response = await self.provider.initiate(request)
        except ProviderError as e:
            logger.warning(f"Provider rejected call {call_id}: {e.message}")
            return await self.fail_dispatch(
                call, e.message, {"code": e.error_code, "details": e.details}
            )

        accepted = await self.transition(
            call_id,
            CallTrigger.DISPATCH_ACCEPTED,
            CallStatus.INITIATED,
            event_payload={"provider_call_id": response.provider_call_id},
            provider_call_id=response.provider_call_id,
            call_metadata={**(call.call_metadata or {}), "provider_status": response.status},
        )
        if accepted is None:
            # Moved on (e.g. cancelled) while the provider request was in flight
            await self.calls.set_provider_call_id_if_empty(call_id, response.provider_call_id)
            current = await self.calls.get_by_id(call_id)
            if current is not None and current.status == CallStatus.CANCELLED.value:
                await self._cancel_with_provider(response.provider_call_id)
            await self.session.commit()
            return current

        await self.session.commit()
        return accepted

    async def fail_dispatch(
        self,
        call: Call,
        message: str,
        provider_error: Optional[Dict[str, Any]] = None,
        trigger: CallTrigger = CallTrigger.DISPATCH_FAILED,
    ) -> Optional[Call]:
        """
        Move a call to ``failed`` and record why.

        ``DISPATCH_FAILED`` only applies to ``initiating`` calls;
        ``DISPATCH_CRASHED`` also fails calls that never left ``queued``.
        """
        metadata = {
            **(call.call_metadata or {}),
            "provider_error": {"message": message, **(provider_error or {})},
            "call_outcome": "dispatch_failed",
        }
        failed = await self.transition(
            call.id,
            trigger,
            CallStatus.FAILED,
            event_payload={"error": message},
            error_message=message,
            completed_at=utc_now(),
            call_metadata=metadata,
        )
        await self.session.commit()
        return failed

    async def _cancel_with_provider(self, provider_call_id: str) -> None:
        try:
            await self.provider.cancel(provider_call_id)
        except Exception as e:
            logger.warning(f"Provider cancel failed for {provider_call_id} (ignored): {e}")

    async def get_owned_call(self, principal: Principal, call_id: str) -> Call:
        call = await self.calls.get_by_id(call_id)
        if call is None or call.account_id != principal.account_id:
            raise NotFoundError(resource="Call", resource_id=call_id)
        return call

    async def cancel(self, principal: Principal, call_id: str) -> Call:
        """
        Cancel a call that has not reached a terminal state.

        Provider-side cancellation is best effort; its failure never blocks
        the local transition.

        Raises:
            NotFoundError: Unknown call or owned by another account
            InvalidStateError: The call is already terminal
        """
        call = await self.get_owned_call(principal, call_id)
        if is_terminal(call.status):
            raise InvalidStateError(
                f"Call cannot be cancelled in status {call.status}", current_status=call.status
            )

        cancelled = await self.transition(
            call_id,
            CallTrigger.CANCEL,
            CallStatus.CANCELLED,
            event_payload={"requested_by": principal.api_key_id},
            completed_at=utc_now(),
            call_metadata={**(call.call_metadata or {}), "call_outcome": "cancelled"},
        )
        if cancelled is None:
            current = await self.calls.get_by_id(call_id)
            status = current.status if current else call.status
            raise InvalidStateError(
                f"Call cannot be cancelled in status {status}", current_status=status
            )
        await self.session.commit()

        if cancelled.provider_call_id:
            await self._cancel_with_provider(cancelled.provider_call_id)
        return cancelled

    async def release_due_scheduled_calls(
        self, now: Optional[datetime] = None, limit: int = 100
    ) -> List[str]:
        """Move scheduled calls whose time has come back to ``queued``."""
        due = await self.calls.get_due_scheduled(now or utc_now(), limit=limit)
        released = []
        for call in due:
            if await self.transition(call.id, CallTrigger.RELEASE, CallStatus.QUEUED):
                released.append(call.id)
        await self.session.commit()
        if released:
            logger.info(f"Released {len(released)} scheduled call(s)")
        return released


def get_call_dispatcher(
    session: AsyncSession, provider: Optional[TelephonyProvider] = None
) -> CallDispatcher:
    """Get call dispatcher instance."""
    return CallDispatcher(session, provider or get_telephony_provider())


async def mark_dispatch_failed(
    call_id: str, message: str, provider: Optional[TelephonyProvider] = None
) -> None:
    """Last-resort failure transition for a call whose dispatch task crashed."""
    try:
        async with get_session_context() as session:
            dispatcher = CallDispatcher(session, provider or get_telephony_provider())
            call = await dispatcher.calls.get_by_id(call_id)
            if call is not None:
                await dispatcher.fail_dispatch(
                    call, message, {"code": "INTERNAL_ERROR"}, CallTrigger.DISPATCH_CRASHED
                )
    except Exception as e:
        logger.error(f"Could not mark call {call_id} as failed: {e}", exc_info=True)


async def run_dispatch(call_id: str, provider: Optional[TelephonyProvider] = None) -> None:
    """Background task: dispatch one call in its own session."""
    provider = provider or get_telephony_provider()
    try:
        async with get_session_context() as session:
            await CallDispatcher(session, provider).dispatch(call_id)
    except Exception as e:
        logger.error(f"Dispatch of call {call_id} crashed: {e}", exc_info=True)
        await mark_dispatch_failed(call_id, f"Internal dispatch error: {e}", provider)


async def run_scheduled_release(provider: Optional[TelephonyProvider] = None) -> List[str]:
    """Release due scheduled calls and dispatch them."""
    provider = provider or get_telephony_provider()
    async with get_session_context() as session:
        released = await CallDispatcher(session, provider).release_due_scheduled_calls()

    for call_id in released:
        await run_dispatch(call_id, provider)
    return released
