"""Submit the rendered manifest and wait for the stack to become ready."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

import yaml  # type: ignore[import-untyped]

from tigstack.errors import ApplyRejected
from tigstack.kube.kubectl import Kubectl, KubectlError
from tigstack.kube.poll import Outcome, PollResult, Probe, poll_until

logger = logging.getLogger(__name__)

CONDITIONS = ("active", "available", "ready", "complete")


@dataclass(frozen=True)
class ReadinessSpec:
    kind: str
    name: str
    namespace: str | None
    condition: str
    timeout: float

    def __post_init__(self) -> None:
        if self.condition not in CONDITIONS:
            raise ValueError(f"Unknown readiness condition: {self.condition}")

    @property
    def ref(self) -> str:
        return f"{self.kind}/{self.name}"

    @property
    def is_namespace(self) -> bool:
        return self.kind.lower() in ("namespace", "ns")


@dataclass
class ReadinessOutcome:
    spec: ReadinessSpec
    outcome: Outcome
    elapsed: float = 0.0
    detail: str = ""

    @property
    def ready(self) -> bool:
        return self.outcome is Outcome.READY


@dataclass
class AwaitResult:
    outcomes: list[ReadinessOutcome] = field(default_factory=list)

    @property
    def all_ready(self) -> bool:
        return all(o.ready for o in self.outcomes)

    @property
    def problems(self) -> list[ReadinessOutcome]:
        return [o for o in self.outcomes if not o.ready]

    def outcome_for(self, ref: str) -> Outcome | None:
        for o in self.outcomes:
            if o.spec.ref == ref:
                return o.outcome
        return None


@dataclass
class ApplyResult:
    resources: list[str] = field(default_factory=list)
    output: str = ""


def default_readiness_plan(namespace: str) -> list[ReadinessSpec]:
    """Readiness checks for the TIG stack, in evaluation order."""
    return [
        ReadinessSpec("namespace", namespace, None, "active", 30),
        ReadinessSpec("pod", "tig-influxdb-0", namespace, "ready", 300),
        ReadinessSpec("deployment", "tig-grafana", namespace, "available", 180),
        ReadinessSpec("deployment", "tig-explorer", namespace, "available", 180),
        ReadinessSpec("deployment", "tig-telegraf", namespace, "available", 180),
        ReadinessSpec("job", "tig-init", namespace, "complete", 120),
    ]


def evaluate(resource: dict | None, condition: str) -> tuple[Probe, str]:
    """Map a resource document to a probe for ``condition``."""
    if resource is None:
        return Probe.ABSENT, "not found"
    status = resource.get("status") or {}
    if condition == "active":
        phase = status.get("phase", "")
        return (Probe.SATISFIED if phase == "Active" else Probe.PENDING), f"phase={phase or '?'}"
    wanted = condition.capitalize()
    for cond in status.get("conditions") or []:
        if cond.get("type") == wanted:
            state = cond.get("status", "Unknown")
            reason = cond.get("reason") or cond.get("message") or ""
            probe = Probe.SATISFIED if state == "True" else Probe.PENDING
            return probe, f"{wanted}={state}" + (f" ({reason})" if reason else "")
    return Probe.PENDING, f"no {wanted} condition yet"


class ResourceApplier:
    """Apply manifests through kubectl and poll for readiness."""

    def __init__(
        self,
        kubectl: Kubectl,
        *,
        poll_interval: float = 2.0,
        poll: Callable[..., PollResult] = poll_until,
    ):
        self.kubectl = kubectl
        self.poll_interval = poll_interval
        self._poll = poll

    def apply(self, manifest: str) -> ApplyResult:
        """Submit ``manifest`` once. No automatic retry."""
        try:
            result = self.kubectl.apply(manifest)
        except KubectlError as e:
            raise ApplyRejected(e.stderr) from e
        resources = [line.strip() for line in result.stdout.splitlines() if line.strip()]
        if result.returncode != 0:
            raise ApplyRejected(result.stderr or result.stdout, committed=resources)
        logger.info("Applied %d resources", len(resources))
        return ApplyResult(resources=resources, output=result.stdout)

    def upsert_secret(self, name: str, namespace: str, data: dict[str, str]) -> ApplyResult:
        """Create or update an Opaque secret from literal values."""
        doc = {
            "apiVersion": "v1",
            "kind": "Secret",
            "type": "Opaque",
            "metadata": {"name": name, "namespace": namespace},
            "stringData": data,
        }
        return self.apply(yaml.safe_dump(doc, sort_keys=False))

    def await_ready(self, specs: list[ReadinessSpec]) -> AwaitResult:
        """Wait for each spec in turn. Timeouts never stop later specs.

        Namespaces are awaited before anything else. Specs in a namespace that
        did not become active are reported NOT_FOUND without polling.
        """
        ordered = [s for s in specs if s.is_namespace] + [s for s in specs if not s.is_namespace]
        result = AwaitResult()
        dead_namespaces: set[str] = set()

        for spec in ordered:
            if spec.namespace in dead_namespaces:
                result.outcomes.append(
                    ReadinessOutcome(spec, Outcome.NOT_FOUND, detail=f"namespace {spec.namespace} not active")
                )
                continue

            logger.info("Waiting for %s (%s, %.0fs)", spec.ref, spec.condition, spec.timeout)
            polled = self._poll(
                lambda spec=spec: self._probe(spec),
                timeout=spec.timeout,
                interval=self.poll_interval,
            )
            outcome = ReadinessOutcome(spec, polled.outcome, polled.elapsed, polled.detail)
            result.outcomes.append(outcome)
            if outcome.ready:
                logger.info("%s is %s after %.0fs", spec.ref, spec.condition, polled.elapsed)
            else:
                logger.warning("%s: %s (%s)", spec.ref, polled.outcome.value, polled.detail)
                if spec.is_namespace:
                    dead_namespaces.add(spec.name)
        return result

    def _probe(self, spec: ReadinessSpec) -> tuple[Probe, str]:
        try:
            resource = self.kubectl.get(spec.kind, spec.name, spec.namespace)
        except KubectlError as e:
            # transient API errors count as "not seen yet"
            logger.debug("Probe of %s failed: %s", spec.ref, e)
            return Probe.ABSENT, str(e)
        return evaluate(resource, spec.condition)
