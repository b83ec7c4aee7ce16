"""
Root-level shared test fixtures.

Inherited by the provision, kube and top-level test suites.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from tigstack.config import CertConfig, Config, GrafanaConfig, PathsConfig, reset_config

MANIFEST_TEMPLATE = """\
apiVersion: v1
kind: Namespace
metadata:
  name: CHANGE_THIS_TO_NAMESPACE
---
apiVersion: v1
kind: Secret
metadata:
  name: tig-credentials
  namespace: CHANGE_THIS_TO_NAMESPACE
type: Opaque
stringData:
  influxdb-token: "apiv3_CHANGE_THIS_TO_SECURE_GENERATED_TOKEN"
  grafana-admin-password: "CHANGE_THIS_TO_SECURE_PASSWORD"
---
apiVersion: v1
kind: Secret
metadata:
  name: tig-tls
  namespace: CHANGE_THIS_TO_NAMESPACE
type: kubernetes.io/tls
data:
  tls.crt: CERT_BASE64_PLACEHOLDER
  tls.key: KEY_BASE64_PLACEHOLDER
---
apiVersion: v1
kind: ConfigMap
metadata:
  name: tig-init-script
  namespace: CHANGE_THIS_TO_NAMESPACE
data:
  init.sh: |
    curl -H "Authorization: Bearer $INFLUXDB_TOKEN" http://tig-influxdb:8181/health
---
apiVersion: networking.k8s.io/v1
kind: Ingress
metadata:
  name: tig-grafana
  namespace: CHANGE_THIS_TO_NAMESPACE
spec:
  ingressClassName: traefik
  tls:
    - hosts:
        - tig-grafana.CHANGE_THIS_TO_DOMAIN
      secretName: tig-tls
  rules:
    - host: tig-grafana.CHANGE_THIS_TO_DOMAIN
---
apiVersion: networking.k8s.io/v1
kind: Ingress
metadata:
  name: tig-explorer
  namespace: CHANGE_THIS_TO_NAMESPACE
spec:
  ingressClassName: traefik
  tls:
    - hosts:
        - tig-explorer.CHANGE_THIS_TO_DOMAIN
      secretName: tig-tls
  rules:
    - host: tig-explorer.CHANGE_THIS_TO_DOMAIN
"""


@pytest.fixture(autouse=True)
def _reset_config_singleton():
    reset_config()
    yield
    reset_config()


@pytest.fixture
def clean_env(monkeypatch):
    """Remove TIGSTACK_* env vars that leak in from the developer's shell."""
    import os

    for key in list(os.environ):
        if key.startswith("TIGSTACK_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """Config rooted in a temp dir, with fast key generation and no settle delay."""
    return Config(
        paths=PathsConfig(home=tmp_path),
        cert=CertConfig(key_size=2048),
        grafana=GrafanaConfig(settle_seconds=0),
        poll_interval=0,
    )


@pytest.fixture
def template_text() -> str:
    return MANIFEST_TEMPLATE


@pytest.fixture
def manifest_file(config: Config, template_text: str) -> Path:
    """Write the sample template where the config expects the manifest."""
    config.paths.manifest.write_text(template_text)
    return config.paths.manifest
