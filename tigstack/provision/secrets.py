"""Credential generation and loading.

A CredentialSet is generated once and then reused on every run until
regeneration is forced. Values are drawn from ``secrets`` and stripped of
characters that break shell, YAML or URL embedding.
"""

from __future__ import annotations

import base64
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone

from tigstack.errors import StoreUnwritable
from tigstack.provision.store import CredentialStore, store_lock

logger = logging.getLogger(__name__)

INFLUXDB_TOKEN = "INFLUXDB_TOKEN"
GRAFANA_PASSWORD = "GRAFANA_PASSWORD"
GRAFANA_SA_TOKEN = "GRAFANA_SA_TOKEN"


@dataclass(frozen=True)
class CredentialSpec:
    """How to generate one credential."""

    name: str
    nbytes: int
    strip: str = "=+/"
    prefix: str = ""
    length: int | None = None  # fixed length of the random part, topped up if short

    def generate(self) -> str:
        body = _random_chars(self.nbytes, self.strip)
        if self.length is not None:
            while len(body) < self.length:
                body += _random_chars(self.nbytes, self.strip)
            body = body[: self.length]
        return self.prefix + body


DEFAULT_CREDENTIALS = (
    CredentialSpec(name=INFLUXDB_TOKEN, nbytes=74, strip="=+/", prefix="apiv3_"),
    CredentialSpec(name=GRAFANA_PASSWORD, nbytes=24, strip="=+/@", length=32),
)


def _random_chars(nbytes: int, strip: str) -> str:
    encoded = base64.b64encode(secrets.token_bytes(nbytes)).decode("ascii")
    return encoded.translate({ord(c): None for c in strip + "\n"})


@dataclass(frozen=True)
class CredentialSet:
    values: dict[str, str] = field(default_factory=dict)
    created_at: datetime | None = None

    def __getitem__(self, name: str) -> str:
        return self.values[name]

    def get(self, name: str, default: str | None = None) -> str | None:
        return self.values.get(name, default)


def preview(value: str | None, chars: int = 15) -> str:
    """First few characters of a secret, safe for terminal output."""
    if not value:
        return "(unset)"
    return f"{value[:chars]}..."


class SecretMaterializer:
    """Produce or load the credentials a deployment needs."""

    def __init__(self, specs: tuple[CredentialSpec, ...] = DEFAULT_CREDENTIALS):
        self.specs = specs
        self.generated = False

    def obtain(self, store: CredentialStore, force_regenerate: bool = False) -> CredentialSet:
        self.generated = False
        if store.exists() and not force_regenerate:
            values, created = self._read(store)
            missing = [s for s in self.specs if s.name not in values]
            if not missing:
                logger.info("Loaded %d credentials from %s", len(values), store.path)
                return CredentialSet(values=values, created_at=created)
            # older files may predate a credential; fill the gap only
            with store_lock(store.path):
                values, created = self._read(store)
                for spec in missing:
                    if spec.name not in values:
                        logger.warning("Credential %s missing from %s, generating", spec.name, store.path)
                        store.append(
                            spec.name, spec.generate(), comment="added by tigstack", locked=True
                        )
                values, created = self._read(store)
            self.generated = True
            return CredentialSet(values=values, created_at=created)

        with store_lock(store.path):
            values = {spec.name: spec.generate() for spec in self.specs}
            created = store.write(values)
        self.generated = True
        logger.info("Generated %d credentials into %s", len(values), store.path)
        return CredentialSet(values=values, created_at=created)

    @staticmethod
    def _read(store: CredentialStore) -> tuple[dict[str, str], datetime | None]:
        try:
            values, created = store.read()
        except OSError as e:
            raise StoreUnwritable(f"Cannot read {store.path}: {e}") from e
        return values, created or datetime.fromtimestamp(store.path.stat().st_mtime, timezone.utc)
