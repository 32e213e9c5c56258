"""Orchestrates conversion providers as an ordered fallback cascade."""

import logging
import threading
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Union

from shared.deadline import Deadline
from shared.errors import FailureReason
from shared.models import ConversionResult, MediaRequest
from .providers.base import ConversionFailure, ProviderAdapter
from .usage_gate import QuotaGate

logger = logging.getLogger(__name__)


@dataclass
class Strategy:
    """A named provider slot with an optional admission gate."""
    name: str
    adapter: ProviderAdapter
    gate: Optional[QuotaGate] = None


@dataclass
class Attempt:
    strategy: str
    outcome: str  # success | skipped | failed
    reason: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ConversionOutcome:
    result: ConversionResult
    strategy_name: str
    attempts: List[Attempt] = field(default_factory=list)
    ok: bool = True


@dataclass
class TerminalFailure:
    attempts: List[Attempt]
    reason: str = FailureReason.ALL_PROVIDERS_FAILED
    ok: bool = False

    @property
    def message(self) -> str:
        if self.reason == FailureReason.DEADLINE_EXCEEDED:
            return "Conversion did not complete within the request deadline"
        return "All conversion methods failed"


OrchestratorResult = Union[ConversionOutcome, TerminalFailure]


class FallbackOrchestrator:
    """
    Tries strategies strictly in declared order until one succeeds.

    Provider failures are recorded and never propagate; the caller gets either
    a ConversionOutcome or a TerminalFailure listing every attempt.
    """

    def __init__(self, strategies: List[Strategy]):
        self.strategies = list(strategies)
        self._lock = threading.Lock()
        self._stats: Dict[str, Dict[str, int]] = {
            s.name: {"attempts": 0, "successes": 0, "failures": 0, "skipped": 0}
            for s in self.strategies
        }

    def _count(self, name: str, key: str) -> None:
        with self._lock:
            self._stats[name][key] += 1

    def convert(self, request: MediaRequest, deadline: Optional[Deadline] = None) -> OrchestratorResult:
        deadline = deadline or Deadline.never()
        attempts: List[Attempt] = []

        for strategy in self.strategies:
            if deadline.expired():
                logger.warning(f"Deadline exceeded before {strategy.name} for {request.media_id}")
                return TerminalFailure(attempts, FailureReason.DEADLINE_EXCEEDED)

            if not strategy.adapter.is_available:
                attempts.append(Attempt(strategy.name, "skipped", FailureReason.NOT_CONFIGURED))
                self._count(strategy.name, "skipped")
                continue

            if strategy.gate is not None and not strategy.gate.admit():
                logger.info(f"{strategy.name} quota exhausted, skipping")
                attempts.append(Attempt(strategy.name, "skipped", FailureReason.QUOTA_EXHAUSTED))
                self._count(strategy.name, "skipped")
                continue

            logger.info(f"Trying {strategy.name} for {request.media_id}")
            self._count(strategy.name, "attempts")
            try:
                outcome = strategy.adapter.invoke(request, deadline)
            except Exception as e:
                logger.exception(f"{strategy.name} raised unexpectedly")
                outcome = ConversionFailure(FailureReason.PROVIDER_ERROR, str(e) or type(e).__name__,
                                            strategy.name)

            if outcome.ok:
                self._count(strategy.name, "successes")
                attempts.append(Attempt(strategy.name, "success"))
                logger.info(f"{strategy.name} succeeded for {request.media_id}")
                return ConversionOutcome(outcome.result, strategy.name, attempts)

            self._count(strategy.name, "failures")
            attempts.append(Attempt(strategy.name, "failed", outcome.reason, outcome.message))
            logger.warning(f"{strategy.name} failed for {request.media_id}: {outcome.message}")
            if outcome.reason == FailureReason.DEADLINE_EXCEEDED:
                return TerminalFailure(attempts, FailureReason.DEADLINE_EXCEEDED)

        logger.error(f"All conversion methods failed for {request.media_id}")
        return TerminalFailure(attempts, FailureReason.ALL_PROVIDERS_FAILED)

    def stats(self) -> Dict[str, Dict[str, Any]]:
        """Per-strategy counters plus gate status."""
        with self._lock:
            out = {name: dict(counters) for name, counters in self._stats.items()}
        for strategy in self.strategies:
            out[strategy.name]["available"] = strategy.adapter.is_available
            if strategy.gate is not None:
                out[strategy.name]["gate"] = strategy.gate.status()
        return out
