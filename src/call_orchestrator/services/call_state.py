"""Call lifecycle state machine.

Every status write names a trigger and a target. ``allowed_sources`` gives the
statuses the call must currently be in for that write to apply; repositories
turn that set into a conditional UPDATE, so a late or duplicate event simply
matches no row.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple


class CallStatus(str, Enum):
    """Call status."""

    QUEUED = "queued"
    SCHEDULED = "scheduled"
    INITIATING = "initiating"
    INITIATED = "initiated"
    RINGING = "ringing"
    ANSWERED = "answered"
    RECORDING = "recording"
    RECORDING_RECEIVED = "recording_received"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class CallTrigger(str, Enum):
    """What caused a status write."""

    SCHEDULE = "schedule"
    RELEASE = "release"
    DISPATCH_START = "dispatch_start"
    DISPATCH_ACCEPTED = "dispatch_accepted"
    DISPATCH_FAILED = "dispatch_failed"
    DISPATCH_CRASHED = "dispatch_crashed"
    PROVIDER_STATUS = "provider_status"
    RECORDING_PROGRESS = "recording_progress"
    CANCEL = "cancel"
    RECORDING_RECEIVED = "recording_received"
    RECORDING_ATTACHED = "recording_attached"


TERMINAL_STATUSES: FrozenSet[str] = frozenset(
    {CallStatus.COMPLETED.value, CallStatus.FAILED.value, CallStatus.CANCELLED.value}
)
NON_TERMINAL_STATUSES: FrozenSet[str] = frozenset(
    s.value for s in CallStatus if s.value not in TERMINAL_STATUSES
)

# Statuses in which the provider is driving the call
PROVIDER_ACTIVE_STATUSES: FrozenSet[str] = frozenset(
    {
        CallStatus.INITIATED.value,
        CallStatus.RINGING.value,
        CallStatus.ANSWERED.value,
        CallStatus.RECORDING.value,
    }
)

# A recording row may be created for calls in these statuses
RECORDING_ELIGIBLE_STATUSES: FrozenSet[str] = PROVIDER_ACTIVE_STATUSES | frozenset(
    {CallStatus.RECORDING_RECEIVED.value, CallStatus.COMPLETED.value}
)


@dataclass(frozen=True)
class TransitionRule:
    sources: FrozenSet[str]
    targets: FrozenSet[str]


def _rule(sources, targets) -> TransitionRule:
    return TransitionRule(
        sources=frozenset(CallStatus(s).value for s in sources),
        targets=frozenset(CallStatus(t).value for t in targets),
    )


TRANSITIONS: Dict[CallTrigger, TransitionRule] = {
    CallTrigger.SCHEDULE: _rule(["queued"], ["scheduled"]),
    CallTrigger.RELEASE: _rule(["scheduled"], ["queued"]),
    CallTrigger.DISPATCH_START: _rule(["queued"], ["initiating"]),
    CallTrigger.DISPATCH_ACCEPTED: _rule(["initiating"], ["initiated"]),
    CallTrigger.DISPATCH_FAILED: _rule(["initiating"], ["failed"]),
    CallTrigger.DISPATCH_CRASHED: _rule(["queued", "initiating"], ["failed"]),
    CallTrigger.PROVIDER_STATUS: _rule(
        PROVIDER_ACTIVE_STATUSES, ["ringing", "answered", "completed", "failed"]
    ),
    CallTrigger.RECORDING_PROGRESS: _rule(["answered"], ["recording"]),
    CallTrigger.CANCEL: _rule(NON_TERMINAL_STATUSES, ["cancelled"]),
    CallTrigger.RECORDING_RECEIVED: _rule(PROVIDER_ACTIVE_STATUSES, ["recording_received"]),
    CallTrigger.RECORDING_ATTACHED: _rule(["recording_received"], ["completed"]),
}

# Ordering of provider-driven statuses; a non-terminal provider event never
# moves a call to a lower rank.
_PROVIDER_RANK: Dict[str, int] = {
    CallStatus.INITIATED.value: 0,
    CallStatus.RINGING.value: 1,
    CallStatus.ANSWERED.value: 2,
    CallStatus.RECORDING.value: 3,
}


class InvalidTransition(ValueError):
    """Raised when a trigger can never produce the requested target."""


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def allowed_sources(trigger: CallTrigger, target: str) -> FrozenSet[str]:
    """
    Statuses from which ``trigger`` may move a call to ``target``.

    The target itself is never a source, so re-applying the current status
    is a no-op.

    Raises:
        InvalidTransition: If ``target`` is not a target of ``trigger``
    """
    rule = TRANSITIONS[trigger]
    target = CallStatus(target).value
    if target not in rule.targets:
        raise InvalidTransition(f"{trigger.value} cannot move a call to {target}")

    sources = set(rule.sources)
    sources.discard(target)

    if trigger is CallTrigger.PROVIDER_STATUS and target not in TERMINAL_STATUSES:
        target_rank = _PROVIDER_RANK[target]
        sources = {s for s in sources if _PROVIDER_RANK.get(s, -1) < target_rank}

    return frozenset(sources)


def can_transition(current: str, trigger: CallTrigger, target: str) -> bool:
    """Check a transition without touching storage."""
    try:
        return current in allowed_sources(trigger, target)
    except InvalidTransition:
        return False


# Twilio CallStatus -> (local status, call outcome)
PROVIDER_STATUS_MAP: Dict[str, Tuple[str, Optional[str]]] = {
    "ringing": (CallStatus.RINGING.value, None),
    "in-progress": (CallStatus.ANSWERED.value, None),
    "answered": (CallStatus.ANSWERED.value, None),
    "completed": (CallStatus.COMPLETED.value, None),
    "busy": (CallStatus.FAILED.value, "line_busy"),
    "no-answer": (CallStatus.FAILED.value, "no_answer"),
    "failed": (CallStatus.FAILED.value, "call_failed"),
    "canceled": (CallStatus.FAILED.value, "call_canceled"),
}


def map_provider_status(provider_status: str) -> Optional[Tuple[str, Optional[str]]]:
    """
    Map a provider call status to a local status and outcome.

    Returns None for statuses that carry no lifecycle information
    (``queued``, ``initiated``) and for unknown values.
    """
    return PROVIDER_STATUS_MAP.get((provider_status or "").strip().lower())


_PROGRESS: Dict[str, int] = {
    CallStatus.QUEUED.value: 10,
    CallStatus.SCHEDULED.value: 10,
    CallStatus.INITIATING.value: 20,
    CallStatus.INITIATED.value: 30,
    CallStatus.RINGING.value: 40,
    CallStatus.ANSWERED.value: 60,
    CallStatus.RECORDING.value: 80,
    CallStatus.RECORDING_RECEIVED.value: 90,
    CallStatus.COMPLETED.value: 100,
    CallStatus.FAILED.value: 0,
    CallStatus.CANCELLED.value: 0,
}


def call_progress(status: str) -> int:
    """Rough completion percentage shown to clients polling a call."""
    return _PROGRESS.get(status, 0)
