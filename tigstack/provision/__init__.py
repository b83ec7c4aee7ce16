"""
Credential and certificate provisioning.

Public API:
    SecretMaterializer().obtain(store, force)           → CredentialSet
    CertificateIssuer(cert_dir).obtain(domain, names)   → CertificateBundle
    CredentialStore(path)                               → env-style credential file
"""

from __future__ import annotations

from tigstack.provision.certs import CertificateBundle, CertificateIssuer
from tigstack.provision.secrets import (
    DEFAULT_CREDENTIALS,
    GRAFANA_PASSWORD,
    GRAFANA_SA_TOKEN,
    INFLUXDB_TOKEN,
    CredentialSet,
    CredentialSpec,
    SecretMaterializer,
    preview,
)
from tigstack.provision.store import CredentialStore

__all__ = [
    "CertificateBundle",
    "CertificateIssuer",
    "CredentialSet",
    "CredentialSpec",
    "CredentialStore",
    "DEFAULT_CREDENTIALS",
    "GRAFANA_PASSWORD",
    "GRAFANA_SA_TOKEN",
    "INFLUXDB_TOKEN",
    "SecretMaterializer",
    "preview",
]
