"""Error taxonomy for provisioning runs.

Fatal errors abort the run with exit code 1. Non-fatal errors are collected
by the deploy layer and reported in the final summary.
"""

from __future__ import annotations


class ProvisionError(Exception):
    """Base class for all provisioning failures."""

    fatal = True

    def __init__(self, message: str, *, hint: str = ""):
        super().__init__(message)
        self.hint = hint


class PrerequisiteMissing(ProvisionError):
    """A required external tool, cluster connection or manifest is absent."""


class StoreUnwritable(ProvisionError):
    """Credential or certificate material could not be persisted."""


class IssuanceFailed(ProvisionError):
    """Key or certificate generation failed."""


class UnboundPlaceholder(ProvisionError):
    """Placeholder tokens survived rendering."""

    def __init__(self, leftovers: list[tuple[int, str]]):
        shown = ", ".join(f"{token} (line {line})" for line, token in leftovers[:10])
        more = f" and {len(leftovers) - 10} more" if len(leftovers) > 10 else ""
        super().__init__(
            f"Unresolved placeholders in manifest: {shown}{more}",
            hint="Add a binding for each token or remove it from the template.",
        )
        self.leftovers = leftovers


class InvalidManifest(ProvisionError):
    """The rendered manifest is not valid YAML."""


class CertificateMismatch(ProvisionError):
    """Ingress hostnames are not covered by the TLS certificate."""

    def __init__(self, uncovered: list[str]):
        super().__init__(
            f"Certificate does not cover ingress host(s): {', '.join(uncovered)}",
            hint="Re-run with --regenerate-creds or add the hosts to the certificate.",
        )
        self.uncovered = uncovered


class ApplyRejected(ProvisionError):
    """kubectl refused the manifest. Some resources may already be committed."""

    def __init__(self, diagnostic: str, *, committed: list[str] | None = None):
        super().__init__(
            f"kubectl apply failed: {diagnostic.strip() or 'no diagnostic output'}",
            hint="Fix the cause and re-run; apply is idempotent per resource.",
        )
        self.diagnostic = diagnostic
        self.committed = committed or []


class TokenExchangeFailed(ProvisionError):
    """The Grafana service account token could not be created."""

    fatal = False
