"""
Cluster access: kubectl wrapper, manifest apply and readiness polling.

Public API:
    Kubectl(binary)                         → run kubectl commands
    ResourceApplier(kubectl).apply(text)    → ApplyResult (raises ApplyRejected)
    ResourceApplier(kubectl).await_ready()  → AwaitResult, one outcome per spec
    poll_until(check, timeout=..)           → PollResult (READY / TIMED_OUT / NOT_FOUND)
"""

from __future__ import annotations

from tigstack.kube.applier import (
    ApplyResult,
    AwaitResult,
    ReadinessOutcome,
    ReadinessSpec,
    ResourceApplier,
    default_readiness_plan,
)
from tigstack.kube.kubectl import Kubectl, KubectlError
from tigstack.kube.poll import Outcome, PollResult, Probe, poll_until

__all__ = [
    "ApplyResult",
    "AwaitResult",
    "Kubectl",
    "KubectlError",
    "Outcome",
    "PollResult",
    "Probe",
    "ReadinessOutcome",
    "ReadinessSpec",
    "ResourceApplier",
    "default_readiness_plan",
    "poll_until",
]
