from unittest.mock import MagicMock

from conversion.providers.base import ConversionFailure, ConversionSuccess, ProviderAdapter
from conversion.service import FallbackOrchestrator, Strategy, TerminalFailure
from conversion.usage_gate import DailyUsageGate
from shared.deadline import Deadline
from shared.errors import FailureReason
from shared.models import ConversionResult, MediaRequest


class ScriptedAdapter(ProviderAdapter):
    def __init__(self, name, outcome=None, available=True, error=None):
        self.name = name
        self._outcome = outcome
        self._available = available
        self._error = error
        self.calls = 0

    @property
    def is_available(self):
        return self._available

    def invoke(self, request, deadline=None):
        self.calls += 1
        if self._error is not None:
            raise self._error
        return self._outcome


def ok(name):
    return ConversionSuccess(ConversionResult(result_link=f"https://{name}/a.mp3", title="t", provider=name))


def fail(name, reason=FailureReason.PROVIDER_ERROR):
    return ConversionFailure(reason, f"{name} failed", name)


MEDIA = MediaRequest(media_id="abc123", title="Song", artist="Band")


def test_stops_at_first_success():
    a = ScriptedAdapter("a", fail("a"))
    b = ScriptedAdapter("b", ok("b"))
    c = ScriptedAdapter("c", ok("c"))
    orchestrator = FallbackOrchestrator([Strategy("a", a), Strategy("b", b), Strategy("c", c)])

    outcome = orchestrator.convert(MEDIA)

    assert outcome.ok
    assert outcome.strategy_name == "b"
    assert outcome.result.result_link == "https://b/a.mp3"
    assert (a.calls, b.calls, c.calls) == (1, 1, 0)
    assert [att.outcome for att in outcome.attempts] == ["failed", "success"]


def test_all_failed_is_terminal_failure():
    strategies = [Strategy(n, ScriptedAdapter(n, fail(n))) for n in ("a", "b", "c")]
    outcome = FallbackOrchestrator(strategies).convert(MEDIA)

    assert isinstance(outcome, TerminalFailure)
    assert outcome.reason == FailureReason.ALL_PROVIDERS_FAILED
    assert [att.strategy for att in outcome.attempts] == ["a", "b", "c"]


def test_unconfigured_and_gated_strategies_are_skipped():
    gate = MagicMock()
    gate.admit.return_value = False
    gate.status.return_value = {}
    unconfigured = ScriptedAdapter("a", ok("a"), available=False)
    gated = ScriptedAdapter("b", ok("b"))
    last = ScriptedAdapter("c", ok("c"))
    orchestrator = FallbackOrchestrator([
        Strategy("a", unconfigured), Strategy("b", gated, gate), Strategy("c", last),
    ])

    outcome = orchestrator.convert(MEDIA)

    assert outcome.strategy_name == "c"
    assert unconfigured.calls == 0
    assert gated.calls == 0
    reasons = [(att.strategy, att.outcome, att.reason) for att in outcome.attempts]
    assert reasons[:2] == [
        ("a", "skipped", FailureReason.NOT_CONFIGURED),
        ("b", "skipped", FailureReason.QUOTA_EXHAUSTED),
    ]


def test_adapter_exception_does_not_propagate():
    boom = ScriptedAdapter("a", error=RuntimeError("boom"))
    fallback = ScriptedAdapter("b", ok("b"))
    outcome = FallbackOrchestrator([Strategy("a", boom), Strategy("b", fallback)]).convert(MEDIA)

    assert outcome.ok
    assert outcome.attempts[0].reason == FailureReason.PROVIDER_ERROR
    assert outcome.attempts[0].message == "boom"


def test_expired_deadline_stops_cascade():
    now = [0.0]
    deadline = Deadline(5, clock=lambda: now[0])

    class SlowAdapter(ScriptedAdapter):
        def invoke(self, request, deadline=None):
            now[0] += 10
            return super().invoke(request, deadline)

    slow = SlowAdapter("a", fail("a"))
    never = ScriptedAdapter("b", ok("b"))
    outcome = FallbackOrchestrator([Strategy("a", slow), Strategy("b", never)]).convert(MEDIA, deadline)

    assert isinstance(outcome, TerminalFailure)
    assert outcome.reason == FailureReason.DEADLINE_EXCEEDED
    assert never.calls == 0


def test_daily_gate_limits_strategy(database):
    limited = ScriptedAdapter("cc", fail("cc"))
    fallback = ScriptedAdapter("cobalt", ok("cobalt"))
    orchestrator = FallbackOrchestrator([
        Strategy("cc", limited, DailyUsageGate(database, "cc", daily_limit=1)),
        Strategy("cobalt", fallback),
    ])

    orchestrator.convert(MEDIA)
    orchestrator.convert(MEDIA)

    assert limited.calls == 1
    assert fallback.calls == 2
    stats = orchestrator.stats()
    assert stats["cc"]["attempts"] == 1
    assert stats["cc"]["skipped"] == 1
    assert stats["cc"]["gate"]["used_today"] == 1
    assert stats["cobalt"]["successes"] == 2


def test_strategies_tried_in_declared_order_every_call():
    order = []

    class Recording(ScriptedAdapter):
        def invoke(self, request, deadline=None):
            order.append(self.name)
            return super().invoke(request, deadline)

    orchestrator = FallbackOrchestrator([
        Strategy("x", Recording("x", fail("x"))),
        Strategy("y", Recording("y", ok("y"))),
    ])
    orchestrator.convert(MEDIA)
    orchestrator.convert(MEDIA)
    assert order == ["x", "y", "x", "y"]
