"""
tigstack CLI: entry point for all operations.

Usage:
    tigstack deploy                 # Provision credentials/TLS, render, apply, wait
    tigstack deploy --dry-run       # Render and validate only (no cluster, no network)
    tigstack deploy --regenerate-creds
    tigstack token                  # Retry the Grafana service account token step
    tigstack status                 # Show pods, PVCs and ingresses
    tigstack cert-check             # Advisory certificate expiry check
    tigstack version                # Show version
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime, timedelta, timezone


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="tigstack",
        description="Deploy the TIG monitoring stack to a K3s cluster.",
    )
    parser.add_argument("--version", action="store_true", help="Show version and exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command")

    # deploy
    deploy_parser = subparsers.add_parser("deploy", help="Deploy the stack")
    deploy_parser.add_argument(
        "--dry-run", action="store_true", help="Render and validate without applying"
    )
    deploy_parser.add_argument(
        "--regenerate-creds",
        action="store_true",
        help="Force regeneration of credentials and certificates",
    )
    deploy_parser.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")

    # token
    subparsers.add_parser("token", help="Create the Grafana service account token")

    # status
    subparsers.add_parser("status", help="Show stack status in the cluster")

    # cert-check
    subparsers.add_parser("cert-check", help="Check certificate expiry and coverage")

    # version
    subparsers.add_parser("version", help="Show version")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if args.version or args.command == "version":
        from tigstack import __version__

        print(f"tigstack {__version__}")
        return 0

    if args.command == "deploy":
        return _cmd_deploy(args)
    elif args.command == "token":
        return _cmd_token()
    elif args.command == "status":
        return _cmd_status()
    elif args.command == "cert-check":
        return _cmd_cert_check()
    else:
        parser.print_help()
        return 0


def _cmd_deploy(args: argparse.Namespace) -> int:
    from tigstack.config import get_config
    from tigstack.deploy import run_deploy

    return run_deploy(
        get_config(),
        dry_run=args.dry_run,
        regenerate=args.regenerate_creds,
        assume_yes=args.yes,
    )


def _cmd_token() -> int:
    from tigstack.config import get_config
    from tigstack.deploy import run_token

    return run_token(get_config())


def _cmd_status() -> int:
    from tigstack.config import get_config
    from tigstack.deploy import show_status
    from tigstack.kube import Kubectl

    cfg = get_config()
    kubectl = Kubectl(cfg.kubectl)
    if not kubectl.available():
        print(f"Error: {cfg.kubectl} not installed")
        return 1
    if not kubectl.cluster_info():
        print("Error: Cannot connect to K3s cluster")
        return 1
    print(f"  Namespace: {cfg.namespace}")
    print()
    show_status(cfg, kubectl)
    return 0


def _cmd_cert_check() -> int:
    from tigstack.config import get_config
    from tigstack.provision import CertificateIssuer

    cfg = get_config()
    issuer = CertificateIssuer(cfg.paths.cert_dir, cfg.cert)
    cert_path, _ = issuer.paths(cfg.domain)
    bundle = issuer.load(cfg.domain, cfg.alternate_names)

    print(f"  Certificate: {cert_path}")
    if bundle is None:
        print("               MISSING, EXPIRED OR INVALID, run 'tigstack deploy --regenerate-creds'")
        return 1

    remaining = bundle.not_after - datetime.now(timezone.utc)
    print(f"  Expires:     {bundle.not_after:%Y-%m-%d} ({remaining.days} days)")
    print(f"  Names:       {', '.join(sorted(bundle.san_names))}")
    if bundle.is_stale(timedelta(days=cfg.cert.renew_days)):
        print(f"               Renewal due (within {cfg.cert.renew_days} days)")
        return 1
    print("               OK")
    return 0


if __name__ == "__main__":
    sys.exit(main())
