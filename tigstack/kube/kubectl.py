"""Thin wrapper around the kubectl binary."""

from __future__ import annotations

import json
import logging
import shutil
import subprocess

logger = logging.getLogger(__name__)


class KubectlError(Exception):
    """kubectl exited non-zero or could not be run."""

    def __init__(self, args: list[str], returncode: int, stderr: str):
        super().__init__(f"kubectl {' '.join(args)} failed ({returncode}): {stderr.strip()}")
        self.returncode = returncode
        self.stderr = stderr

    @property
    def not_found(self) -> bool:
        return "NotFound" in self.stderr or "not found" in self.stderr


class Kubectl:
    """Run kubectl commands, optionally scoped to a namespace."""

    def __init__(self, binary: str = "kubectl", timeout: float = 60):
        self.binary = binary
        self.timeout = timeout

    def available(self) -> bool:
        return shutil.which(self.binary) is not None

    def run(
        self,
        args: list[str],
        *,
        input: str | None = None,
        check: bool = True,
        timeout: float | None = None,
    ) -> subprocess.CompletedProcess[str]:
        cmd = [self.binary, *args]
        logger.debug("Running %s", " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                input=input,
                capture_output=True,
                text=True,
                timeout=timeout or self.timeout,
            )
        except FileNotFoundError as e:
            raise KubectlError(args, 127, str(e)) from e
        except subprocess.TimeoutExpired as e:
            raise KubectlError(args, -1, f"timed out after {e.timeout}s") from e
        if check and result.returncode != 0:
            raise KubectlError(args, result.returncode, result.stderr)
        return result

    def cluster_info(self) -> bool:
        try:
            self.run(["cluster-info"], timeout=15)
            return True
        except KubectlError as e:
            logger.debug("cluster-info failed: %s", e)
            return False

    def exists(self, kind: str, name: str, namespace: str | None = None) -> bool:
        try:
            self.run(["get", f"{kind}/{name}", *_ns(namespace)])
            return True
        except KubectlError as e:
            if e.not_found:
                return False
            raise

    def get(self, kind: str, name: str, namespace: str | None = None) -> dict | None:
        """Return the resource as a dict, or None if it does not exist."""
        try:
            result = self.run(["get", f"{kind}/{name}", *_ns(namespace), "-o", "json"])
        except KubectlError as e:
            if e.not_found:
                return None
            raise
        return json.loads(result.stdout)

    def get_jsonpath(self, kind: str, name: str, namespace: str | None, path: str) -> str:
        result = self.run(
            ["get", kind, name, *_ns(namespace), "-o", f"jsonpath={path}"], check=False
        )
        return result.stdout.strip() if result.returncode == 0 else ""

    def apply(self, manifest: str) -> subprocess.CompletedProcess[str]:
        return self.run(["apply", "-f", "-"], input=manifest, check=False, timeout=300)


def _ns(namespace: str | None) -> list[str]:
    return ["-n", namespace] if namespace else []
