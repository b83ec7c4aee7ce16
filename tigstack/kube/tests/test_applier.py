"""Tests for ResourceApplier."""

from __future__ import annotations

import subprocess
from unittest.mock import MagicMock

import pytest
import yaml

from tigstack.errors import ApplyRejected
from tigstack.kube import (
    Kubectl,
    KubectlError,
    Outcome,
    Probe,
    ReadinessSpec,
    ResourceApplier,
    default_readiness_plan,
)
from tigstack.kube.applier import evaluate
from tigstack.kube.poll import PollResult


def completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(["kubectl"], returncode, stdout=stdout, stderr=stderr)


def available(kind="Available", status="True"):
    return {"status": {"conditions": [{"type": kind, "status": status}]}}


@pytest.fixture
def kubectl():
    return MagicMock(spec=Kubectl)


def instant_poll(check, *, timeout, interval):
    """One probe, no waiting: SATISFIED -> READY, PENDING -> TIMED_OUT, ABSENT -> NOT_FOUND."""
    probe, detail = check()
    outcome = {
        Probe.SATISFIED: Outcome.READY,
        Probe.PENDING: Outcome.TIMED_OUT,
        Probe.ABSENT: Outcome.NOT_FOUND,
    }[probe]
    return PollResult(outcome, 0.0, 1, detail)


class TestEvaluate:
    def test_absent(self):
        assert evaluate(None, "ready")[0] is Probe.ABSENT

    def test_namespace_active(self):
        assert evaluate({"status": {"phase": "Active"}}, "active")[0] is Probe.SATISFIED
        assert evaluate({"status": {"phase": "Terminating"}}, "active")[0] is Probe.PENDING

    def test_condition_true(self):
        assert evaluate(available(), "available")[0] is Probe.SATISFIED
        assert evaluate(available("Ready"), "ready")[0] is Probe.SATISFIED
        assert evaluate(available("Complete"), "complete")[0] is Probe.SATISFIED

    def test_condition_false(self):
        probe, detail = evaluate(available(status="False"), "available")
        assert probe is Probe.PENDING
        assert "Available=False" in detail

    def test_no_conditions_yet(self):
        assert evaluate({"status": {}}, "ready")[0] is Probe.PENDING
        assert evaluate({}, "complete")[0] is Probe.PENDING


class TestReadinessSpec:
    def test_rejects_unknown_condition(self):
        with pytest.raises(ValueError):
            ReadinessSpec("pod", "x", "ns", "healthy", 10)

    def test_default_plan_order(self):
        plan = default_readiness_plan("tig")
        assert plan[0].ref == "namespace/tig"
        assert [s.ref for s in plan[1:]] == [
            "pod/tig-influxdb-0",
            "deployment/tig-grafana",
            "deployment/tig-explorer",
            "deployment/tig-telegraf",
            "job/tig-init",
        ]
        assert plan[1].timeout == 300


class TestApply:
    def test_apply_success(self, kubectl):
        kubectl.apply.return_value = completed(
            stdout="namespace/tig created\nsecret/tig-credentials created\n"
        )
        result = ResourceApplier(kubectl).apply("kind: Namespace")
        assert result.resources == ["namespace/tig created", "secret/tig-credentials created"]
        kubectl.apply.assert_called_once_with("kind: Namespace")

    def test_apply_rejected_carries_diagnostic_and_committed(self, kubectl):
        kubectl.apply.return_value = completed(
            returncode=1,
            stdout="namespace/tig created\n",
            stderr='error: unable to recognize "STDIN": no matches for kind "Foo"',
        )
        with pytest.raises(ApplyRejected) as exc:
            ResourceApplier(kubectl).apply("...")
        assert "no matches for kind" in exc.value.diagnostic
        assert exc.value.committed == ["namespace/tig created"]
        assert exc.value.fatal is True

    def test_apply_not_retried(self, kubectl):
        kubectl.apply.return_value = completed(returncode=1, stderr="boom")
        with pytest.raises(ApplyRejected):
            ResourceApplier(kubectl).apply("...")
        assert kubectl.apply.call_count == 1

    def test_kubectl_missing(self, kubectl):
        kubectl.apply.side_effect = KubectlError(["apply"], 127, "No such file")
        with pytest.raises(ApplyRejected, match="No such file"):
            ResourceApplier(kubectl).apply("...")

    def test_upsert_secret(self, kubectl):
        kubectl.apply.return_value = completed(stdout="secret/grafana-sa-token configured\n")
        ResourceApplier(kubectl).upsert_secret("grafana-sa-token", "tig", {"token": "glsa_x"})
        doc = yaml.safe_load(kubectl.apply.call_args.args[0])
        assert doc["kind"] == "Secret"
        assert doc["metadata"] == {"name": "grafana-sa-token", "namespace": "tig"}
        assert doc["stringData"] == {"token": "glsa_x"}


class TestAwaitReady:
    def test_continues_after_timeout(self, kubectl):
        specs = [
            ReadinessSpec("deployment", "a", "ns", "available", 5),
            ReadinessSpec("deployment", "b", "ns", "available", 5),
        ]
        kubectl.get.side_effect = lambda kind, name, ns: (
            available() if name == "a" else available(status="False")
        )
        result = ResourceApplier(kubectl, poll=instant_poll).await_ready(specs)
        assert result.outcome_for("deployment/a") is Outcome.READY
        assert result.outcome_for("deployment/b") is Outcome.TIMED_OUT
        assert not result.all_ready
        assert [p.spec.name for p in result.problems] == ["b"]

    def test_with_real_poll_and_clock(self, kubectl):
        specs = [
            ReadinessSpec("deployment", "a", "ns", "available", 0),
            ReadinessSpec("deployment", "b", "ns", "available", 0),
        ]
        kubectl.get.side_effect = lambda kind, name, ns: available() if name == "a" else None
        result = ResourceApplier(kubectl, poll_interval=0).await_ready(specs)
        assert [o.outcome for o in result.outcomes] == [Outcome.READY, Outcome.NOT_FOUND]

    def test_namespace_first(self, kubectl):
        specs = [
            ReadinessSpec("deployment", "a", "ns", "available", 5),
            ReadinessSpec("namespace", "ns", None, "active", 5),
        ]
        calls = []

        def get(kind, name, ns):
            calls.append(kind)
            return {"status": {"phase": "Active"}} if kind == "namespace" else available()

        kubectl.get.side_effect = get
        result = ResourceApplier(kubectl, poll=instant_poll).await_ready(specs)
        assert calls == ["namespace", "deployment"]
        assert result.all_ready

    def test_dead_namespace_short_circuits_workloads(self, kubectl):
        specs = default_readiness_plan("ns")
        kubectl.get.return_value = None
        result = ResourceApplier(kubectl, poll=instant_poll).await_ready(specs)
        assert kubectl.get.call_count == 1  # only the namespace was probed
        assert all(o.outcome is Outcome.NOT_FOUND for o in result.outcomes)
        assert "not active" in result.outcomes[1].detail

    def test_api_errors_count_as_absent(self, kubectl):
        kubectl.get.side_effect = KubectlError(["get"], 1, "connection refused")
        spec = ReadinessSpec("pod", "p", "ns", "ready", 5)
        result = ResourceApplier(kubectl, poll=instant_poll).await_ready([spec])
        assert result.outcomes[0].outcome is Outcome.NOT_FOUND
