"""Bounded polling with a three-way outcome."""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable


class Probe(str, Enum):
    """What a single check observed."""

    SATISFIED = "satisfied"
    PENDING = "pending"  # resource exists, condition not met yet
    ABSENT = "absent"


class Outcome(str, Enum):
    READY = "ready"
    TIMED_OUT = "timed-out"
    NOT_FOUND = "not-found"


@dataclass
class PollResult:
    outcome: Outcome
    elapsed: float
    attempts: int
    detail: str = ""


def poll_until(
    check: Callable[[], tuple[Probe, str]],
    *,
    timeout: float,
    interval: float = 2.0,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> PollResult:
    """Call ``check`` until it reports SATISFIED or ``timeout`` elapses.

    ``check`` returns a probe and a human-readable detail. On timeout the
    result is NOT_FOUND if the resource was never seen, TIMED_OUT otherwise.
    The check always runs at least once.
    """
    start = clock()
    deadline = start + timeout
    seen = False
    attempts = 0
    detail = ""
    while True:
        attempts += 1
        probe, detail = check()
        if probe is Probe.SATISFIED:
            return PollResult(Outcome.READY, clock() - start, attempts, detail)
        if probe is Probe.PENDING:
            seen = True
        remaining = deadline - clock()
        if remaining <= 0:
            break
        sleep(min(interval, remaining))

    outcome = Outcome.TIMED_OUT if seen else Outcome.NOT_FOUND
    return PollResult(outcome, clock() - start, attempts, detail)
