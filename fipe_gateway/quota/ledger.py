"""
QuotaLedger: daily upstream call budget with an atomic spend operation.
"""

import threading
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional

import pytz

from fipe_gateway.database.manager import DatabaseManager
from fipe_gateway.database.models import ApiCallRecord, QuotaCounter
from fipe_gateway.utils.logger import get_logger


class QuotaDecision(Enum):
    ALLOWED = "allowed"
    DENIED = "denied"

    def __bool__(self) -> bool:
        return self is QuotaDecision.ALLOWED


class QuotaLedger:
    """Counts upstream calls per provider day and refuses calls past the limit.

    ``try_consume`` is the only spending operation. It runs under a process
    lock and spends with a single bounded ``UPDATE ... WHERE call_count < limit``,
    so ``0 <= count <= limit`` holds for any number of concurrent callers
    (and across processes sharing a database file). The reporting reads are
    not linearized with it.

    The day is the calendar date in the provider's timezone. A new day's
    counter is created at zero the first time it is touched, and older
    counters and call records are forgotten at that point.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        daily_limit: int = 500,
        timezone: str = "America/Sao_Paulo",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            db_manager: Database manager holding the quota tables
            daily_limit: Upstream calls allowed per provider day
            timezone: IANA name of the provider's timezone
            clock: Returns an aware datetime; defaults to now in ``timezone``
        """
        self.db_manager = db_manager
        self._daily_limit = daily_limit
        self.tz = pytz.timezone(timezone)
        self._clock = clock or (lambda: datetime.now(self.tz))
        self._lock = threading.Lock()
        self._known_day: Optional[str] = None
        self.logger = get_logger("quota.ledger")

    def today(self) -> date:
        return self._clock().astimezone(self.tz).date()

    def next_reset(self) -> datetime:
        """Start of the next provider day, as an aware datetime in the provider timezone."""
        return self.tz.localize(datetime.combine(self.today() + timedelta(days=1), time()))

    def seconds_until_reset(self) -> int:
        now = self._clock().astimezone(self.tz)
        return max(1, int((self.next_reset() - now).total_seconds()))

    def _ensure_day(self, day: str) -> None:
        """Create the counter row for ``day`` and forget earlier days. Caller holds the lock."""
        if self._known_day == day:
            return
        self.db_manager.execute_update(
            "INSERT OR IGNORE INTO quota_counters (day, call_count) VALUES (?, 0)", (day,)
        )
        forgotten = self.forget_before(day)
        if forgotten:
            self.logger.info(f"Quota rolled over to {day}; forgot {forgotten} counter(s) from previous days")
        self._known_day = day

    def forget_before(self, day: str) -> int:
        """Delete counters and call records older than ``day`` (ISO date). Returns counters removed."""
        removed = self.db_manager.execute_update("DELETE FROM quota_counters WHERE day < ?", (day,))
        self.db_manager.execute_update("DELETE FROM api_calls WHERE day < ?", (day,))
        return removed

    def try_consume(self, endpoint: str = "unknown", caller: str = "public") -> QuotaDecision:
        """Spend one upstream call from today's budget if any remains.

        Args:
            endpoint: Operation name recorded in the call log
            caller: Who triggered the call (user id or "public")

        Returns:
            QuotaDecision.ALLOWED if a unit was spent, QuotaDecision.DENIED otherwise
        """
        with self._lock:
            now = self._clock().astimezone(self.tz)
            day = now.date().isoformat()
            self._ensure_day(day)
            spent = self.db_manager.execute_update(
                "UPDATE quota_counters SET call_count = call_count + 1 WHERE day = ? AND call_count < ?",
                (day, self._daily_limit),
            )
            if spent != 1:
                self.logger.warning(f"Daily quota of {self._daily_limit} exhausted; denying {endpoint}")
                return QuotaDecision.DENIED
            self.db_manager.execute_update(
                "INSERT INTO api_calls (day, endpoint, caller, called_at) VALUES (?, ?, ?, ?)",
                (day, endpoint, caller, now.isoformat()),
            )
        self.logger.debug(f"Quota unit spent on {endpoint} by {caller}")
        return QuotaDecision.ALLOWED

    def daily_limit(self) -> int:
        return self._daily_limit

    def used_today(self) -> int:
        rows = self.db_manager.execute_query(
            "SELECT call_count FROM quota_counters WHERE day = ?", (self.today().isoformat(),)
        )
        return rows[0][0] if rows else 0

    def remaining(self) -> int:
        return max(0, self._daily_limit - self.used_today())

    def counter(self) -> QuotaCounter:
        return QuotaCounter(date=self.today(), count=self.used_today(), limit=self._daily_limit)

    def usage_by_endpoint(self) -> Dict[str, int]:
        rows = self.db_manager.execute_query(
            "SELECT endpoint, COUNT(*) FROM api_calls WHERE day = ? GROUP BY endpoint ORDER BY endpoint",
            (self.today().isoformat(),),
        )
        return {endpoint: count for endpoint, count in rows}

    def calls_today(self) -> List[ApiCallRecord]:
        rows = self.db_manager.execute_query(
            "SELECT day, endpoint, caller, called_at FROM api_calls WHERE day = ? ORDER BY id",
            (self.today().isoformat(),),
        )
        return [ApiCallRecord(*row) for row in rows]

    def persist_state(self) -> dict:
        """Return a serializable snapshot of today's counter."""
        counter = self.counter()
        return {"date": counter.date.isoformat(), "count": counter.count, "limit": counter.limit}

    def load_state(self, snapshot: dict) -> None:
        """Restore a counter from a snapshot (for admin seeding and tests).

        The count is clamped to ``[0, daily_limit]``.
        """
        day = snapshot.get("date") or self.today().isoformat()
        count = max(0, min(int(snapshot.get("count", 0)), self._daily_limit))
        with self._lock:
            self.db_manager.execute_update(
                "INSERT OR REPLACE INTO quota_counters (day, call_count) VALUES (?, ?)", (day, count)
            )
