from .quota_pool import QuotaPool
from .usage_gate import QuotaGate, PoolGate, DailyUsageGate
from .service import (
    Attempt,
    ConversionOutcome,
    FallbackOrchestrator,
    Strategy,
    TerminalFailure,
)

__all__ = [
    "QuotaPool",
    "QuotaGate",
    "PoolGate",
    "DailyUsageGate",
    "Attempt",
    "ConversionOutcome",
    "FallbackOrchestrator",
    "Strategy",
    "TerminalFailure",
]
