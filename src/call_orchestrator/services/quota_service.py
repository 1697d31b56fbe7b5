"""Quota guard: per-account daily and monthly call ceilings."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from call_orchestrator.config import get_settings
from call_orchestrator.database.models import AccountQuota
from call_orchestrator.exceptions import QuotaExceededError, ValidationError
from call_orchestrator.repositories.quota_repository import QuotaRepository

logger = logging.getLogger(__name__)


@dataclass
class QuotaDecision:
    """Outcome of an admission check."""

    allowed: bool
    reason: Optional[str] = None
    limits: Dict[str, Any] = field(default_factory=dict)


def _windows(now: datetime) -> tuple[str, str]:
    now = now.astimezone(timezone.utc) if now.tzinfo else now.replace(tzinfo=timezone.utc)
    return now.strftime("%Y-%m-%d"), now.strftime("%Y-%m")


class QuotaService:
    """
    Admission control for call creation.

    Counters live in one row per account and reset when the UTC day or month
    changes. ``check_admission`` never mutates counts; ``record_admission``
    is called after the calls exist, in the same transaction.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self._repo = QuotaRepository(session)
        self._settings = get_settings().quota

    async def _load(self, account_id: str, now: datetime) -> AccountQuota:
        """Load (or create) the account's row with windows rolled forward to ``now``."""
        day, month = _windows(now)
        quota = await self._repo.get_by_account_id(account_id, for_update=True)
        if quota is None:
            await self._repo.ensure_row(account_id, day, month)
            quota = await self._repo.get_by_account_id(account_id, for_update=True)

        changed = False
        if quota.day_window != day:
            quota.daily_count = 0
            quota.day_window = day
            changed = True
        if quota.month_window != month:
            quota.monthly_count = 0
            quota.month_window = month
            changed = True
        if changed:
            await self.session.flush()
            logger.debug(f"Quota windows rolled over for account {account_id}: {day}, {month}")
        return quota

    def _limits(self, quota: AccountQuota) -> Dict[str, Any]:
        daily_limit = (
            quota.daily_limit if quota.daily_limit is not None else self._settings.default_daily_limit
        )
        monthly_limit = (
            quota.monthly_limit
            if quota.monthly_limit is not None
            else self._settings.default_monthly_limit
        )
        return {
            "daily": {
                "limit": daily_limit,
                "used": quota.daily_count,
                "remaining": max(0, daily_limit - quota.daily_count),
            },
            "monthly": {
                "limit": monthly_limit,
                "used": quota.monthly_count,
                "remaining": max(0, monthly_limit - quota.monthly_count),
            },
        }

    async def check_admission(
        self,
        account_id: str,
        requested_count: int = 1,
        now: Optional[datetime] = None,
    ) -> QuotaDecision:
        """
        Decide whether ``requested_count`` more calls fit in the account's allowance.

        A batch is admitted or rejected as a whole.
        """
        if requested_count < 1:
            raise ValidationError("requested_count must be at least 1")

        quota = await self._load(account_id, now or datetime.now(timezone.utc))
        limits = self._limits(quota)

        if quota.daily_count + requested_count > limits["daily"]["limit"]:
            return QuotaDecision(
                allowed=False,
                reason=(
                    f"Daily call limit reached ({limits['daily']['limit']} calls/day, "
                    f"{limits['daily']['remaining']} remaining)"
                ),
                limits=limits,
            )
        if quota.monthly_count + requested_count > limits["monthly"]["limit"]:
            return QuotaDecision(
                allowed=False,
                reason=(
                    f"Monthly call limit reached ({limits['monthly']['limit']} calls/month, "
                    f"{limits['monthly']['remaining']} remaining)"
                ),
                limits=limits,
            )
        return QuotaDecision(allowed=True, limits=limits)

    async def require_admission(
        self, account_id: str, requested_count: int = 1, now: Optional[datetime] = None
    ) -> QuotaDecision:
        """
        Same as ``check_admission`` but raises when the request is denied.

        Raises:
            QuotaExceededError: Carrying the account's current limits
        """
        decision = await self.check_admission(account_id, requested_count, now)
        if not decision.allowed:
            logger.info(
                f"Quota denied for account {account_id} (requested {requested_count}): "
                f"{decision.reason}"
            )
            raise QuotaExceededError(decision.reason or "Call quota exceeded", limits=decision.limits)
        return decision

    async def record_admission(
        self, account_id: str, count: int = 1, now: Optional[datetime] = None
    ) -> None:
        """Count ``count`` admitted calls against the account."""
        if count < 1:
            return
        await self._load(account_id, now or datetime.now(timezone.utc))
        await self._repo.increment(account_id, count)
        logger.debug(f"Recorded {count} admitted call(s) for account {account_id}")

    async def get_usage(self, account_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Current limits and usage for an account."""
        quota = await self._load(account_id, now or datetime.now(timezone.utc))
        return self._limits(quota)

    async def set_limits(
        self,
        account_id: str,
        daily_limit: Optional[int] = None,
        monthly_limit: Optional[int] = None,
    ) -> None:
        """Set per-account ceilings. None falls back to the configured default."""
        await self._load(account_id, datetime.now(timezone.utc))
        await self._repo.set_limits(account_id, daily_limit, monthly_limit)


def get_quota_service(session: AsyncSession) -> QuotaService:
    """Get quota service instance."""
    return QuotaService(session)
