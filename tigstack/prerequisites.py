"""Check kubectl, cluster and manifest prerequisites before deploying."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from tigstack.config import Config
from tigstack.errors import PrerequisiteMissing
from tigstack.kube import Kubectl, KubectlError


@dataclass
class PrereqResult:
    name: str
    found: bool
    required: bool
    detail: str
    hint: str

    @property
    def ok(self) -> bool:
        return self.found or not self.required


def check_kubectl(kubectl: Kubectl) -> PrereqResult:
    """Check that kubectl is on PATH."""
    found = kubectl.available()
    return PrereqResult(
        name="kubectl",
        found=found,
        required=True,
        detail=kubectl.binary if found else "not installed",
        hint="" if found else "https://kubernetes.io/docs/tasks/tools/ or set TIGSTACK_KUBECTL",
    )


def check_cluster(kubectl: Kubectl) -> PrereqResult:
    """Check that the K3s cluster answers."""
    found = kubectl.available() and kubectl.cluster_info()
    return PrereqResult(
        name="K3s cluster",
        found=found,
        required=True,
        detail="reachable" if found else "cannot connect",
        hint="" if found else "Check KUBECONFIG and that k3s is running",
    )


def _check_cluster_object(kubectl: Kubectl, kind: str, name: str, hint: str) -> PrereqResult:
    try:
        found = kubectl.available() and kubectl.exists(kind, name)
    except KubectlError:
        found = False
    return PrereqResult(
        name=f"{kind} {name}",
        found=found,
        required=False,
        detail="present" if found else "not found",
        hint="" if found else hint,
    )


def check_storage_class(kubectl: Kubectl, name: str) -> PrereqResult:
    return _check_cluster_object(
        kubectl, "storageclass", name, f"Make sure the {name} provisioner is deployed"
    )


def check_ingress_class(kubectl: Kubectl, name: str) -> PrereqResult:
    return _check_cluster_object(
        kubectl, "ingressclass", name, f"Make sure {name} is deployed"
    )


def check_manifest(path: Path) -> PrereqResult:
    found = path.is_file()
    return PrereqResult(
        name="Manifest",
        found=found,
        required=True,
        detail=str(path),
        hint="" if found else "Place tig-stack-manifests.yaml there or set TIGSTACK_MANIFEST",
    )


def check_all(config: Config, kubectl: Kubectl, *, dry_run: bool = False) -> list[PrereqResult]:
    """Check all deploy prerequisites. Dry runs never talk to the cluster."""
    manifest = check_manifest(config.paths.manifest)
    if dry_run:
        return [manifest]
    results = [check_kubectl(kubectl), check_cluster(kubectl)]
    if all(r.found for r in results):
        results += [
            check_storage_class(kubectl, config.storage_class),
            check_ingress_class(kubectl, config.ingress_class),
        ]
    results.append(manifest)
    return results


def require(results: list[PrereqResult]) -> None:
    """Raise PrerequisiteMissing naming every failed required check."""
    missing = [r for r in results if not r.ok]
    if missing:
        raise PrerequisiteMissing(
            "Missing prerequisites: " + ", ".join(f"{r.name} ({r.detail})" for r in missing),
            hint="; ".join(r.hint for r in missing if r.hint),
        )
