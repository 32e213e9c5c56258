"""Quota gates checked by the orchestrator before a strategy runs."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict

from shared.database import DatabaseManager
from .quota_pool import QuotaPool

logger = logging.getLogger(__name__)


class QuotaGate(ABC):
    """A strategy's admission check. `admit()` False means skip the strategy."""

    @abstractmethod
    def admit(self) -> bool:
        pass

    def status(self) -> Dict[str, Any]:
        return {}


class PoolGate(QuotaGate):
    """Open while the quota pool still has a usable entry."""

    def __init__(self, pool: QuotaPool):
        self._pool = pool

    def admit(self) -> bool:
        return self._pool.has_available()

    def status(self) -> Dict[str, Any]:
        status = self._pool.status()
        return {"active_apis": status["active_apis"], "total_apis": status["total_apis"]}


class DailyUsageGate(QuotaGate):
    """
    Daily budget keyed by strategy name and UTC date.

    Admission consumes one unit atomically, so a unit is spent even when the
    attempt that follows fails.
    """

    def __init__(self, database: DatabaseManager, api_name: str, daily_limit: int):
        self._db = database
        self.api_name = api_name
        self.daily_limit = daily_limit

    def admit(self) -> bool:
        allowed, usage = self._db.try_increment_daily_usage(self.api_name, self.daily_limit)
        if not allowed:
            logger.info(f"{self.api_name} daily limit reached: {usage}/{self.daily_limit}")
        return allowed

    def status(self) -> Dict[str, Any]:
        return {
            "daily_limit": self.daily_limit,
            "used_today": self._db.get_daily_usage(self.api_name),
        }
