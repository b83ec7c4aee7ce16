"""
Centralized configuration for tigstack.

All configuration is loaded from environment variables with sensible defaults.
The loaded Config is passed explicitly to every component.

Usage:
    from tigstack.config import get_config
    cfg = get_config()
    print(cfg.namespace)          # "tig-stack-k3s-dev"
    print(cfg.paths.cert_dir)     # "<home>/certs" or $TIGSTACK_CERT_DIR
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class PathsConfig:
    """On-disk locations. Everything is relative to the tigstack home by default."""

    home: Path = field(default_factory=Path.cwd)
    manifest: Path | None = None
    rendered_manifest: Path | None = None
    credentials_file: Path | None = None
    cert_dir: Path | None = None

    def __post_init__(self) -> None:
        # frozen: fill derived defaults via object.__setattr__
        defaults = {
            "manifest": self.home / "tig-stack-manifests.yaml",
            "rendered_manifest": self.home / "tig-stack-manifests-ready.yaml",
            "credentials_file": self.home / ".k3s-credentials",
            "cert_dir": self.home / "certs",
        }
        for name, value in defaults.items():
            if getattr(self, name) is None:
                object.__setattr__(self, name, value)


@dataclass(frozen=True)
class CertConfig:
    """Self-signed certificate parameters."""

    validity_days: int = 365
    key_size: int = 4096
    renew_days: int = 30
    country: str = "NL"
    state: str = "Gelderland"
    locality: str = "Apeldoorn"
    organization: str = "Development"


@dataclass(frozen=True)
class GrafanaConfig:
    """Grafana admin API access for the token exchange."""

    host_prefix: str = "tig-grafana"
    user: str = "admin"
    service_account: str = "tig-grafana-sa"
    service_account_role: str = "Admin"
    token_secret: str = "grafana-sa-token"
    settle_seconds: float = 5.0
    timeout: float = 10.0


@dataclass(frozen=True)
class Config:
    """Top-level tigstack configuration."""

    namespace: str = "tig-stack-k3s-dev"
    domain: str = "tig-influx.test"
    storage_class: str = "local-path"
    ingress_class: str = "traefik"
    kubectl: str = "kubectl"
    poll_interval: float = 2.0
    explorer_host_prefix: str = "tig-explorer"

    paths: PathsConfig = field(default_factory=PathsConfig)
    cert: CertConfig = field(default_factory=CertConfig)
    grafana: GrafanaConfig = field(default_factory=GrafanaConfig)

    @property
    def grafana_host(self) -> str:
        return f"{self.grafana.host_prefix}.{self.domain}"

    @property
    def explorer_host(self) -> str:
        return f"{self.explorer_host_prefix}.{self.domain}"

    @property
    def grafana_url(self) -> str:
        return f"https://{self.grafana_host}"

    @property
    def explorer_url(self) -> str:
        return f"https://{self.explorer_host}"

    @property
    def alternate_names(self) -> list[str]:
        """Hostnames the TLS certificate must cover besides the domain itself."""
        return [f"*.{self.domain}", self.grafana_host, self.explorer_host]


# Singleton
_config: Config | None = None


def get_config() -> Config:
    """Get or create the singleton config from environment variables."""
    global _config
    if _config is not None:
        return _config
    _config = _load_from_env()
    return _config


def _optional_path(name: str) -> Path | None:
    value = os.environ.get(name)
    return Path(value).expanduser() if value else None


def _load_from_env() -> Config:
    """Load configuration from environment variables."""
    home = Path(os.environ.get("TIGSTACK_HOME", Path.cwd())).expanduser()

    paths = PathsConfig(
        home=home,
        manifest=_optional_path("TIGSTACK_MANIFEST"),
        rendered_manifest=_optional_path("TIGSTACK_RENDERED_MANIFEST"),
        credentials_file=_optional_path("TIGSTACK_CREDENTIALS_FILE"),
        cert_dir=_optional_path("TIGSTACK_CERT_DIR"),
    )

    cert = CertConfig(
        validity_days=int(os.environ.get("TIGSTACK_CERT_DAYS", "365")),
        key_size=int(os.environ.get("TIGSTACK_CERT_KEY_SIZE", "4096")),
        renew_days=int(os.environ.get("TIGSTACK_CERT_RENEW_DAYS", "30")),
    )

    grafana = GrafanaConfig(
        user=os.environ.get("TIGSTACK_GRAFANA_USER", "admin"),
        service_account=os.environ.get("TIGSTACK_GRAFANA_SA", "tig-grafana-sa"),
        settle_seconds=float(os.environ.get("TIGSTACK_TOKEN_SETTLE", "5")),
    )

    return Config(
        namespace=os.environ.get("TIGSTACK_NAMESPACE", "tig-stack-k3s-dev"),
        domain=os.environ.get("TIGSTACK_DOMAIN", "tig-influx.test"),
        storage_class=os.environ.get("TIGSTACK_STORAGE_CLASS", "local-path"),
        ingress_class=os.environ.get("TIGSTACK_INGRESS_CLASS", "traefik"),
        kubectl=os.environ.get("TIGSTACK_KUBECTL", "kubectl"),
        poll_interval=float(os.environ.get("TIGSTACK_POLL_INTERVAL", "2.0")),
        paths=paths,
        cert=cert,
        grafana=grafana,
    )


def reset_config() -> None:
    """Reset the singleton config (for testing)."""
    global _config
    _config = None
