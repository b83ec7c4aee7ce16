"""Mint a Grafana service account token after deployment.

Best effort: every failure surfaces as TokenExchangeFailed so the deploy run
can finish with a warning. The step is safe to repeat with ``tigstack token``:
the service account is looked up by name before it is created, and each run
mints a new, uniquely named token.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

import httpx

from tigstack.config import Config
from tigstack.errors import ProvisionError, TokenExchangeFailed
from tigstack.kube import ResourceApplier
from tigstack.provision import GRAFANA_PASSWORD, GRAFANA_SA_TOKEN, CredentialStore

logger = logging.getLogger(__name__)


class GrafanaClient:
    """Minimal Grafana admin API client (self-signed TLS, basic auth)."""

    def __init__(
        self,
        base_url: str,
        user: str,
        password: str,
        *,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self._client = httpx.Client(
            base_url=base_url,
            auth=(user, password),
            verify=False,
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> GrafanaClient:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def health(self) -> bool:
        try:
            resp = self._client.get("/api/health")
            return resp.status_code == 200
        except httpx.HTTPError as e:
            logger.debug("Grafana health check failed: %s", e)
            return False

    def find_service_account(self, name: str) -> int | None:
        resp = self._client.get("/api/serviceaccounts/search", params={"query": name})
        resp.raise_for_status()
        for sa in resp.json().get("serviceAccounts", []):
            if sa.get("name") == name or sa.get("login") == f"sa-{name}":
                return int(sa["id"])
        return None

    def create_service_account(self, name: str, role: str = "Admin") -> int:
        resp = self._client.post("/api/serviceaccounts", json={"name": name, "role": role})
        resp.raise_for_status()
        return int(resp.json()["id"])

    def create_token(self, sa_id: int, token_name: str) -> str:
        resp = self._client.post(
            f"/api/serviceaccounts/{sa_id}/tokens", json={"name": token_name}
        )
        resp.raise_for_status()
        key = resp.json().get("key")
        if not key:
            raise TokenExchangeFailed(f"Grafana returned no token key: {resp.text[:200]}")
        return key


@dataclass
class ServiceToken:
    service_account: str
    service_account_id: int
    token_name: str
    token: str
    created: datetime


def exchange_token(
    config: Config,
    store: CredentialStore,
    applier: ResourceApplier | None,
    *,
    client_factory: Callable[[Config, str], GrafanaClient] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> ServiceToken:
    """Create a service account token and persist it locally and in-cluster.

    Raises TokenExchangeFailed on any failure.
    """
    gcfg = config.grafana
    if not store.exists():
        raise TokenExchangeFailed(f"Credential file {store.path} not found; deploy first")
    try:
        values, _ = store.read()
    except OSError as e:
        raise TokenExchangeFailed(f"Cannot read {store.path}: {e}") from e
    password = values.get(GRAFANA_PASSWORD)
    if not password:
        raise TokenExchangeFailed(f"{GRAFANA_PASSWORD} missing from {store.path}")

    if gcfg.settle_seconds > 0:
        sleep(gcfg.settle_seconds)

    factory = client_factory or _default_client
    try:
        with factory(config, password) as client:
            if not client.health():
                raise TokenExchangeFailed(
                    f"Cannot reach Grafana at {config.grafana_url}",
                    hint="Check DNS/hosts entries for the ingress, then run 'tigstack token'",
                )
            sa_id = client.find_service_account(gcfg.service_account)
            if sa_id is None:
                logger.info("Service account %s not found, creating it", gcfg.service_account)
                sa_id = client.create_service_account(gcfg.service_account, gcfg.service_account_role)
            logger.info("Using service account %s (id %d)", gcfg.service_account, sa_id)

            created = datetime.now().astimezone().replace(microsecond=0)
            token_name = f"{gcfg.service_account}-token-{created:%Y%m%d-%H%M%S}"
            token = client.create_token(sa_id, token_name)
    except httpx.HTTPStatusError as e:
        raise TokenExchangeFailed(
            f"Grafana API error {e.response.status_code}: {e.response.text[:200]}",
            hint="Run 'tigstack token' once the init job has finished",
        ) from e
    except (httpx.HTTPError, ValueError, KeyError) as e:
        raise TokenExchangeFailed(
            f"Grafana token exchange failed: {e}",
            hint="Run 'tigstack token' later",
        ) from e

    result = ServiceToken(gcfg.service_account, sa_id, token_name, token, created)
    _persist(config, store, applier, result)
    return result


def _persist(
    config: Config,
    store: CredentialStore,
    applier: ResourceApplier | None,
    token: ServiceToken,
) -> None:
    try:
        store.append(
            GRAFANA_SA_TOKEN,
            token.token,
            comment=f"Grafana Service Account Token (created {token.created.isoformat()})",
        )
        if applier is not None:
            applier.upsert_secret(
                config.grafana.token_secret,
                config.namespace,
                {
                    "token": token.token,
                    "service-account-id": str(token.service_account_id),
                    "service-account-name": token.service_account,
                    "token-name": token.token_name,
                    "created": token.created.isoformat(),
                },
            )
    except ProvisionError as e:
        raise TokenExchangeFailed(
            f"Token {token.token_name} was created but not saved: {e}",
            hint="Run 'tigstack token' to mint and save a new one",
        ) from e


def _default_client(config: Config, password: str) -> GrafanaClient:
    return GrafanaClient(
        config.grafana_url,
        config.grafana.user,
        password,
        timeout=config.grafana.timeout,
    )
