"""Per-user daily request quota and cost budget."""

import logging
from collections import defaultdict
from datetime import date, datetime, timezone
from typing import Callable, Dict, Optional, Protocol, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from ..core.config import settings
from ..db.models import UsageRecord
from ..errors import BudgetExceeded, QuotaExceeded
from ..models import UsageSnapshot
from ..utils.background import BackgroundTaskTracker, background_tasks


logger = logging.getLogger(__name__)

ANONYMOUS_USER = "anon"


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def is_anonymous(user_id: Optional[str]) -> bool:
    return not user_id or user_id == ANONYMOUS_USER


class QuotaStore(Protocol):
    async def get_usage(self, user_id: str, ledger_key: str, day: date) -> UsageSnapshot:
        ...

    async def increment(self, user_id: str, ledger_key: str, amount: int = 1, cost_usd: float = 0.0) -> None:
        ...


class InMemoryQuotaStore:
    """Process-local usage ledger."""

    def __init__(self, today: Callable[[], date] = utc_today):
        self._today = today
        self._usage: Dict[Tuple[str, str, date], UsageSnapshot] = defaultdict(UsageSnapshot)

    async def get_usage(self, user_id: str, ledger_key: str, day: date) -> UsageSnapshot:
        return self._usage[(user_id, ledger_key, day)].model_copy()

    async def increment(self, user_id: str, ledger_key: str, amount: int = 1, cost_usd: float = 0.0) -> None:
        snapshot = self._usage[(user_id, ledger_key, self._today())]
        snapshot.count += amount
        snapshot.cost_usd += cost_usd

    def set_usage(self, user_id: str, ledger_key: str, count: int = 0, cost_usd: float = 0.0, day: Optional[date] = None):
        """Seed usage for a user and ledger key."""
        self._usage[(user_id, ledger_key, day or self._today())] = UsageSnapshot(count=count, cost_usd=cost_usd)


class SqlQuotaStore:
    """Usage ledger backed by the ``usage_records`` table."""

    def __init__(self, session_factory=None, today: Callable[[], date] = utc_today):
        if session_factory is None:
            from ..db.session import AsyncSessionLocal
            session_factory = AsyncSessionLocal
        self.session_factory = session_factory
        self._today = today

    async def get_usage(self, user_id: str, ledger_key: str, day: date) -> UsageSnapshot:
        async with self.session_factory() as session:
            result = await session.execute(
                select(UsageRecord).where(
                    UsageRecord.user_id == user_id,
                    UsageRecord.ledger_key == ledger_key,
                    UsageRecord.day == day,
                )
            )
            record = result.scalars().first()
            if record is None:
                return UsageSnapshot()
            return UsageSnapshot(count=record.count, cost_usd=record.cost_usd)

    async def increment(self, user_id: str, ledger_key: str, amount: int = 1, cost_usd: float = 0.0) -> None:
        day = self._today()
        async with self.session_factory() as session:
            result = await session.execute(
                update(UsageRecord)
                .where(
                    UsageRecord.user_id == user_id,
                    UsageRecord.ledger_key == ledger_key,
                    UsageRecord.day == day,
                )
                .values(count=UsageRecord.count + amount, cost_usd=UsageRecord.cost_usd + cost_usd)
            )
            if result.rowcount:
                await session.commit()
                return

            session.add(UsageRecord(user_id=user_id, ledger_key=ledger_key, day=day, count=amount, cost_usd=cost_usd))
            try:
                await session.commit()
            except IntegrityError:
                # Another increment created the row first
                await session.rollback()
                await session.execute(
                    update(UsageRecord)
                    .where(
                        UsageRecord.user_id == user_id,
                        UsageRecord.ledger_key == ledger_key,
                        UsageRecord.day == day,
                    )
                    .values(count=UsageRecord.count + amount, cost_usd=UsageRecord.cost_usd + cost_usd)
                )
                await session.commit()


class QuotaGuard:
    """
    Gate sub-tasks on the caller's daily request quota and cost budget.

    ``check`` is read-only; ``record_usage`` increments the ledger in a
    detached task. Concurrent sub-tasks can therefore all pass ``check``
    before any increment lands.
    """

    def __init__(
        self,
        store: QuotaStore,
        tier_resolver: Optional[Callable[[str], str]] = None,
        background: BackgroundTaskTracker = background_tasks,
        today: Callable[[], date] = utc_today,
    ):
        self.store = store
        self.tier_resolver = tier_resolver
        self.background = background
        self._today = today

    def resolve_tier(self, user_id: str) -> str:
        if self.tier_resolver is None:
            return settings.DEFAULT_TIER
        return self.tier_resolver(user_id) or settings.DEFAULT_TIER

    async def check(self, user_id: str, ledger_key: str) -> UsageSnapshot:
        """
        Verify the user is below both daily limits for the ledger key.

        Args:
            user_id: Owning user
            ledger_key: Capability (or mode) the usage is counted under

        Returns:
            Current usage snapshot

        Raises:
            QuotaExceeded: If the request count is at or above the tier limit
            BudgetExceeded: If spend is at or above the tier cost ceiling
        """
        tier = self.resolve_tier(user_id)
        limits = settings.tier_limits(tier)
        usage = await self.store.get_usage(user_id, ledger_key, self._today())

        request_limit = int(limits["daily_requests"])
        if usage.count >= request_limit:
            raise QuotaExceeded(
                f"Quota exceeded for {ledger_key}. Limit: {request_limit}, Used: {usage.count}",
                user_id=user_id,
                ledger_key=ledger_key,
            )

        cost_limit = float(limits["daily_cost_usd"])
        if usage.cost_usd >= cost_limit:
            raise BudgetExceeded(
                f"Daily cost budget exceeded for {ledger_key}. "
                f"Spent: ${usage.cost_usd:.4f}, Limit: ${cost_limit:.2f}",
                user_id=user_id,
                ledger_key=ledger_key,
            )

        return usage

    def record_usage(self, user_id: str, ledger_key: str, cost_usd: float = 0.0) -> None:
        """Increment the ledger without waiting for the write."""
        if is_anonymous(user_id):
            return
        self.background.spawn(
            self.store.increment(user_id, ledger_key, 1, cost_usd),
            name=f"usage-{ledger_key}",
        )
