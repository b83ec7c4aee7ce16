"""Render the stack manifest template.

Placeholders are literal tokens. Substitution is a single pass, longest token
first, and any placeholder syntax left afterwards is an error.
"""

from __future__ import annotations

import base64
import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping

import yaml  # type: ignore[import-untyped]

from tigstack.config import Config
from tigstack.errors import InvalidManifest, UnboundPlaceholder
from tigstack.provision import (
    GRAFANA_PASSWORD,
    INFLUXDB_TOKEN,
    CertificateBundle,
    CredentialSet,
)

logger = logging.getLogger(__name__)


class Field(str, Enum):
    NAMESPACE = "namespace"
    DOMAIN = "domain"
    PRIMARY_TOKEN = "primary-token"
    PRIMARY_PASSWORD = "primary-password"
    CERT_BASE64 = "certificate-bytes-encoded"
    KEY_BASE64 = "key-bytes-encoded"


# Literal token -> semantic field
PLACEHOLDERS: dict[str, Field] = {
    "CHANGE_THIS_TO_NAMESPACE": Field.NAMESPACE,
    "CHANGE_THIS_TO_DOMAIN": Field.DOMAIN,
    "apiv3_CHANGE_THIS_TO_SECURE_GENERATED_TOKEN": Field.PRIMARY_TOKEN,
    "apiv3_CHANGE_THIS": Field.PRIMARY_TOKEN,
    "$INFLUXDB_TOKEN": Field.PRIMARY_TOKEN,
    "CHANGE_THIS_TO_SECURE_PASSWORD": Field.PRIMARY_PASSWORD,
    "CERT_BASE64_PLACEHOLDER": Field.CERT_BASE64,
    "KEY_BASE64_PLACEHOLDER": Field.KEY_BASE64,
}

# Anything that looks like a placeholder after substitution
LEFTOVER_RE = re.compile(
    r"(?<![A-Za-z0-9_])(?:apiv3_)?CHANGE_THIS(?:_[A-Z0-9]+)*(?![A-Za-z0-9_])"
    r"|(?<![A-Za-z0-9_])[A-Z][A-Z0-9_]*_PLACEHOLDER(?![A-Za-z0-9_])"
)


@dataclass
class RenderResult:
    text: str
    unused: list[str] = field(default_factory=list)


def render(template: str, bindings: Mapping[str, str]) -> RenderResult:
    """Substitute every binding into ``template``.

    Raises UnboundPlaceholder if placeholder syntax survives. Bindings with
    no occurrence in the template are returned in ``unused``.
    """
    unused = [token for token in bindings if token not in template]
    for token in unused:
        logger.warning("Binding %s has no placeholder in the template", token)

    if bindings:
        keys = sorted(bindings, key=len, reverse=True)
        pattern = re.compile("|".join(re.escape(k) for k in keys))
        text = pattern.sub(lambda m: bindings[m.group(0)], template)
    else:
        text = template

    leftovers = find_placeholders(text)
    if leftovers:
        raise UnboundPlaceholder(leftovers)
    return RenderResult(text=text, unused=unused)


def find_placeholders(text: str) -> list[tuple[int, str]]:
    """(line number, token) for each placeholder-looking token in ``text``."""
    found = []
    for lineno, line in enumerate(text.splitlines(), 1):
        for m in LEFTOVER_RE.finditer(line):
            found.append((lineno, m.group(0)))
    return found


def field_values(
    config: Config,
    credentials: CredentialSet,
    bundle: CertificateBundle,
) -> dict[Field, str]:
    return {
        Field.NAMESPACE: config.namespace,
        Field.DOMAIN: config.domain,
        Field.PRIMARY_TOKEN: credentials[INFLUXDB_TOKEN],
        Field.PRIMARY_PASSWORD: credentials[GRAFANA_PASSWORD],
        Field.CERT_BASE64: base64.b64encode(bundle.certificate).decode("ascii"),
        Field.KEY_BASE64: base64.b64encode(bundle.private_key).decode("ascii"),
    }


def build_bindings(
    config: Config,
    credentials: CredentialSet,
    bundle: CertificateBundle,
) -> dict[str, str]:
    """Map every known placeholder token to its value."""
    values = field_values(config, credentials, bundle)
    return {token: values[f] for token, f in PLACEHOLDERS.items()}


def bindings_for(template: str, bindings: Mapping[str, str]) -> dict[str, str]:
    """Drop alias tokens that the template never uses.

    The token aliases are alternatives, so only a field with none of its
    tokens present is worth a warning.
    """
    present = {t for t in bindings if t in template}
    used_fields = {PLACEHOLDERS[t] for t in present if t in PLACEHOLDERS}
    return {
        t: v for t, v in bindings.items()
        if t in present or PLACEHOLDERS.get(t) not in used_fields
    }


@dataclass
class ManifestSummary:
    kinds: Counter = field(default_factory=Counter)
    ingress_hosts: list[str] = field(default_factory=list)
    namespaces: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(self.kinds.values())


def describe_manifest(text: str) -> ManifestSummary:
    """Parse the rendered manifest and inventory its resources."""
    try:
        docs = [d for d in yaml.safe_load_all(text) if d]
    except yaml.YAMLError as e:
        raise InvalidManifest(f"Rendered manifest is not valid YAML: {e}") from e

    summary = ManifestSummary()
    for doc in docs:
        if not isinstance(doc, dict) or "kind" not in doc:
            raise InvalidManifest("Rendered manifest contains a document without a kind")
        kind = doc["kind"]
        summary.kinds[kind] += 1
        if kind == "Namespace":
            summary.namespaces.append(doc.get("metadata", {}).get("name", ""))
        elif kind == "Ingress":
            spec = doc.get("spec") or {}
            for rule in spec.get("rules") or []:
                host = rule.get("host")
                if host and host not in summary.ingress_hosts:
                    summary.ingress_hosts.append(host)
            for tls in spec.get("tls") or []:
                for host in tls.get("hosts") or []:
                    if host not in summary.ingress_hosts:
                        summary.ingress_hosts.append(host)
    return summary
