"""Tests for poll_until."""

from __future__ import annotations

from tigstack.kube.poll import Outcome, Probe, poll_until


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def scripted(*probes: Probe):
    """Check function returning the given probes, repeating the last one."""
    seq = list(probes)

    def check():
        probe = seq.pop(0) if len(seq) > 1 else seq[0]
        return probe, probe.value

    return check


class TestPollUntil:
    def test_ready_immediately(self):
        clock = FakeClock()
        result = poll_until(scripted(Probe.SATISFIED), timeout=10, clock=clock, sleep=clock.sleep)
        assert result.outcome is Outcome.READY
        assert result.attempts == 1
        assert clock.sleeps == []

    def test_ready_after_pending(self):
        clock = FakeClock()
        result = poll_until(
            scripted(Probe.ABSENT, Probe.PENDING, Probe.SATISFIED),
            timeout=10, interval=2, clock=clock, sleep=clock.sleep,
        )
        assert result.outcome is Outcome.READY
        assert result.attempts == 3
        assert result.elapsed == 4

    def test_timed_out_when_seen(self):
        clock = FakeClock()
        result = poll_until(
            scripted(Probe.ABSENT, Probe.PENDING),
            timeout=10, interval=3, clock=clock, sleep=clock.sleep,
        )
        assert result.outcome is Outcome.TIMED_OUT
        assert result.detail == "pending"
        assert clock.now == 10  # last sleep clipped to the deadline

    def test_not_found_when_never_seen(self):
        clock = FakeClock()
        result = poll_until(scripted(Probe.ABSENT), timeout=5, interval=1, clock=clock, sleep=clock.sleep)
        assert result.outcome is Outcome.NOT_FOUND
        assert result.attempts == 6

    def test_seen_then_gone_is_timed_out(self):
        clock = FakeClock()
        result = poll_until(
            scripted(Probe.PENDING, Probe.ABSENT),
            timeout=4, interval=1, clock=clock, sleep=clock.sleep,
        )
        assert result.outcome is Outcome.TIMED_OUT

    def test_zero_timeout_checks_once(self):
        clock = FakeClock()
        result = poll_until(scripted(Probe.PENDING), timeout=0, clock=clock, sleep=clock.sleep)
        assert result.attempts == 1
        assert result.outcome is Outcome.TIMED_OUT
