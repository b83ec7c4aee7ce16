"""End-to-end deployment of the TIG stack.

Steps:
    1. Check prerequisites (kubectl, cluster, manifest)
    2. Load or generate credentials
    3. Load or issue the self-signed certificate
    4. Render and validate the manifest
    5. Show the deployment plan and ask for confirmation
    6. kubectl apply
    7. Wait for readiness
    8. Mint the Grafana service account token
    9. Show status and access information

Phases run strictly in order. Fatal errors stop the run; readiness problems
and token exchange failures are collected and reported at the end.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable

from tigstack.config import Config
from tigstack.errors import (
    CertificateMismatch,
    PrerequisiteMissing,
    ProvisionError,
    TokenExchangeFailed,
)
from tigstack.grafana import exchange_token
from tigstack.kube import (
    AwaitResult,
    Kubectl,
    KubectlError,
    Outcome,
    ResourceApplier,
    default_readiness_plan,
)
from tigstack.prerequisites import check_all, require
from tigstack.provision import (
    GRAFANA_PASSWORD,
    INFLUXDB_TOKEN,
    CertificateBundle,
    CertificateIssuer,
    CredentialSet,
    CredentialStore,
    SecretMaterializer,
    preview,
)
from tigstack.provision.store import atomic_write
from tigstack.render import (
    ManifestSummary,
    bindings_for,
    build_bindings,
    describe_manifest,
    render,
)

logger = logging.getLogger(__name__)


@dataclass
class Finding:
    message: str
    hint: str = ""


@dataclass
class RunReport:
    """Non-fatal findings collected during a run."""

    warnings: list[Finding] = field(default_factory=list)
    applied: list[str] = field(default_factory=list)
    readiness: AwaitResult | None = None

    def warn(self, message: str, hint: str = "") -> None:
        logger.warning(message)
        self.warnings.append(Finding(message, hint))


@dataclass
class RenderedStack:
    credentials: CredentialSet
    bundle: CertificateBundle
    text: str
    summary: ManifestSummary


def run_deploy(
    config: Config,
    *,
    dry_run: bool = False,
    regenerate: bool = False,
    assume_yes: bool = False,
    kubectl: Kubectl | None = None,
    applier: ResourceApplier | None = None,
    confirm: Callable[[str], str] = input,
) -> int:
    """Run the full deployment. Returns the process exit code."""
    kubectl = kubectl or Kubectl(config.kubectl)
    applier = applier or ResourceApplier(kubectl, poll_interval=config.poll_interval)
    report = RunReport()

    _banner("TIG Stack K3s Deployment")
    try:
        _check_prerequisites(config, kubectl, report, dry_run=dry_run)
        stack = prepare(config, report, regenerate=regenerate)
        show_plan(config, stack.summary)

        if dry_run:
            print("DRY RUN - no changes applied")
            print(f"  Rendered manifest: {config.paths.rendered_manifest}")
            _print_report(report)
            return 0

        if not assume_yes:
            reply = confirm("Deploy now? (yes/no): ").strip()
            print()
            if reply not in ("yes", "Yes"):
                print("Cancelled")
                return 0

        print("Deploying to K3s...")
        result = applier.apply(stack.text)
        report.applied = result.resources
        print(f"  + Applied manifest ({len(result.resources)} resources)")
        print()

        report.readiness = wait_for_ready(config, applier, report)
        _token_step(config, applier, report)
        show_status(config, kubectl)
        show_access(config, kubectl, stack.credentials, report)
    except KeyboardInterrupt:
        print()
        print("Interrupted. Every file written so far is complete; re-run to continue.")
        return 130
    except ProvisionError as e:
        _print_failure(e, report)
        return 1

    _print_report(report)
    return 0


def _check_prerequisites(config: Config, kubectl: Kubectl, report: RunReport, *, dry_run: bool) -> None:
    print("Checking prerequisites...")
    results = check_all(config, kubectl, dry_run=dry_run)
    for r in results:
        if r.found:
            print(f"  + {r.name}: {r.detail}")
        elif r.required:
            print(f"  x {r.name}: {r.detail}")
        else:
            report.warn(f"{r.name} {r.detail}", r.hint)
    require(results)
    print()


def prepare(config: Config, report: RunReport, *, regenerate: bool = False) -> RenderedStack:
    """Credentials, certificate and rendered manifest. No cluster access."""
    store = CredentialStore(config.paths.credentials_file)
    materializer = SecretMaterializer()
    print("Loading credentials..." if store.exists() and not regenerate else "Generating credentials...")
    credentials = materializer.obtain(store, force_regenerate=regenerate)
    print(f"  + {'Generated' if materializer.generated else 'Loaded'} credentials ({store.path})")
    print(f"  InfluxDB Token:   {preview(credentials.get(INFLUXDB_TOKEN))}")
    print(f"  Grafana Password: {preview(credentials.get(GRAFANA_PASSWORD))}")
    print()

    issuer = CertificateIssuer(config.paths.cert_dir, config.cert)
    bundle = issuer.obtain(config.domain, config.alternate_names, force_regenerate=regenerate)
    print(f"  + {'Generated' if issuer.generated else 'Using existing'} certificate for *.{config.domain}")
    if bundle.is_stale(timedelta(days=config.cert.renew_days)):
        report.warn(
            f"Certificate expires {bundle.not_after:%Y-%m-%d}",
            "Re-run with --regenerate-creds to rotate it",
        )
    print()

    print("Creating deployment manifest...")
    try:
        template = config.paths.manifest.read_text()
    except OSError as e:
        raise PrerequisiteMissing(f"Cannot read manifest {config.paths.manifest}: {e}") from e
    bindings = bindings_for(template, build_bindings(config, credentials, bundle))
    rendered = render(template, bindings)
    for token in rendered.unused:
        report.warn(f"Template has no placeholder for binding {token}")

    summary = describe_manifest(rendered.text)
    uncovered = bundle.uncovered(summary.ingress_hosts)
    if uncovered:
        raise CertificateMismatch(uncovered)

    atomic_write(config.paths.rendered_manifest, rendered.text.encode("utf-8"))
    print(f"  + Manifest ready: {config.paths.rendered_manifest}")
    print()
    return RenderedStack(credentials, bundle, rendered.text, summary)


def show_plan(config: Config, summary: ManifestSummary) -> None:
    print("Deployment Plan:")
    print()
    print(f"  Namespace: {config.namespace}")
    print(f"  Domain:    {config.domain}")
    print(f"  Storage:   {config.storage_class}")
    print(f"  Ingress:   {config.ingress_class}")
    print()
    print(f"Resources ({summary.total}):")
    for kind, count in sorted(summary.kinds.items()):
        print(f"  - {count} {kind}")
    print()
    print("Endpoints:")
    for host in summary.ingress_hosts or [config.grafana_host, config.explorer_host]:
        print(f"  - https://{host}")
    print()


def wait_for_ready(config: Config, applier: ResourceApplier, report: RunReport) -> AwaitResult:
    print("Waiting for resources...")
    result = applier.await_ready(default_readiness_plan(config.namespace))
    for o in result.outcomes:
        mark = "+" if o.ready else "!"
        print(f"  {mark} {o.spec.ref}: {o.outcome.value} ({o.detail})")
        if o.outcome is Outcome.TIMED_OUT:
            report.warn(
                f"{o.spec.ref} not {o.spec.condition} after {o.spec.timeout:.0f}s",
                f"kubectl describe {o.spec.ref} -n {o.spec.namespace or config.namespace}",
            )
        elif o.outcome is Outcome.NOT_FOUND:
            report.warn(
                f"{o.spec.ref} never appeared",
                f"kubectl get all -n {config.namespace}",
            )
    print()
    return result


def _token_step(config: Config, applier: ResourceApplier, report: RunReport) -> None:
    print("Creating Grafana Service Account Token...")
    store = CredentialStore(config.paths.credentials_file)
    try:
        token = exchange_token(config, store, applier)
    except TokenExchangeFailed as e:
        report.warn(str(e), e.hint or "Run 'tigstack token' later")
        print(f"  ! {e}")
    else:
        print(f"  + Token created: {token.token_name}")
        print(f"  + Saved to {store.path} and secret {config.grafana.token_secret}")
        print(f"  Token: {preview(token.token)}")
    print()


def run_token(config: Config, *, kubectl: Kubectl | None = None) -> int:
    """Standalone retry of the token exchange step."""
    kubectl = kubectl or Kubectl(config.kubectl)
    applier = ResourceApplier(kubectl, poll_interval=config.poll_interval)
    report = RunReport()
    _token_step(config, applier, report)
    if report.warnings:
        _print_report(report)
        return 1
    return 0


def show_status(config: Config, kubectl: Kubectl) -> None:
    print("Current Status:")
    print()
    for kind in ("pods", "pvc", "ingress"):
        try:
            result = kubectl.run(["get", kind, "-n", config.namespace], check=False)
        except KubectlError as e:
            print(f"  {kind}: {e}")
        else:
            print(result.stdout.rstrip() or result.stderr.rstrip())
        print()


def show_access(
    config: Config,
    kubectl: Kubectl,
    credentials: CredentialSet,
    report: RunReport,
) -> None:
    _banner("Deployment Complete!")
    try:
        lb_ip = kubectl.get_jsonpath(
            "ingress", config.grafana.host_prefix, config.namespace,
            "{.status.loadBalancer.ingress[0].ip}",
        )
    except KubectlError as e:
        report.warn(
            f"Cannot read the load balancer address: {e}",
            f"kubectl get ingress -n {config.namespace}",
        )
        lb_ip = ""
    if lb_ip:
        print(f"LoadBalancer IP: {lb_ip}")
        print()
    print("Access URLs:")
    print(f"  Grafana:  {config.grafana_url}")
    print(f"  Explorer: {config.explorer_url}")
    print()
    print("Grafana Login:")
    print(f"  Username: {config.grafana.user}")
    print(f"  Password: {preview(credentials.get(GRAFANA_PASSWORD))} (full value in {config.paths.credentials_file})")
    print()
    ns = config.namespace
    try:
        has_token = kubectl.exists("secret", config.grafana.token_secret, ns)
    except KubectlError as e:
        logger.debug("Cannot check token secret: %s", e)
        has_token = False
    if has_token:
        print("+ Grafana Service Account Token created and saved")
        print(f"  Retrieve with: kubectl get secret -n {ns} {config.grafana.token_secret} "
              "-o jsonpath='{.data.token}' | base64 -d")
        print()
    print("Useful Commands:")
    print(f"  kubectl get all -n {ns}")
    print(f"  kubectl logs -n {ns} tig-influxdb-0")
    print(f"  kubectl logs -n {ns} -l app=tig-grafana")
    print(f"  kubectl logs -n {ns} job/tig-init")
    print()
    print(f"Credentials:  {config.paths.credentials_file}")
    print(f"Certificates: {config.paths.cert_dir}/{config.domain}.{{crt,key}}")
    print()


def _banner(title: str) -> None:
    print("=" * 44)
    print(f"   {title}")
    print("=" * 44)
    print()


def _print_failure(error: ProvisionError, report: RunReport) -> None:
    print()
    print(f"Error: {error}")
    if error.hint:
        print(f"  Hint: {error.hint}")
    committed = getattr(error, "committed", None)
    if committed:
        print("  Already committed to the cluster:")
        for line in committed:
            print(f"    {line}")
    _print_report(report)


def _print_report(report: RunReport) -> None:
    if not report.warnings:
        return
    print()
    print(f"Warnings ({len(report.warnings)}):")
    for w in report.warnings:
        print(f"  ! {w.message}")
        if w.hint:
            print(f"    -> {w.hint}")
