"""Self-signed TLS certificate for the stack's ingress hosts.

The certificate and key are read from ``<cert_dir>/<domain>.crt`` and ``.key``.
Both are symlinks through ``<domain>.live``, which points at a generation
directory holding one matching pair. A new pair is written to a fresh
generation directory and published by repointing ``<domain>.live`` with a
single ``os.replace``.

The pair is reused until it expires, stops matching, or no longer covers the
requested hostnames.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from tigstack.config import CertConfig
from tigstack.errors import IssuanceFailed, StoreUnwritable
from tigstack.provision.store import store_lock

logger = logging.getLogger(__name__)


def hostname_matches(pattern: str, hostname: str) -> bool:
    """DNS SAN matching with single-label wildcards (``*.example.test``)."""
    pattern = pattern.lower().rstrip(".")
    hostname = hostname.lower().rstrip(".")
    if pattern == hostname:
        return True
    if pattern.startswith("*."):
        head, _, rest = hostname.partition(".")
        return bool(head) and rest == pattern[2:]
    return False


@dataclass(frozen=True)
class CertificateBundle:
    subject_domain: str
    alternate_names: frozenset[str]
    certificate: bytes
    private_key: bytes
    not_after: datetime

    @property
    def san_names(self) -> frozenset[str]:
        """DNS names in the certificate's subjectAltName extension."""
        cert = x509.load_pem_x509_certificate(self.certificate)
        try:
            ext = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
        except x509.ExtensionNotFound:
            return frozenset()
        return frozenset(ext.value.get_values_for_type(x509.DNSName))

    def covers(self, hostnames: Iterable[str]) -> bool:
        return not self.uncovered(hostnames)

    def uncovered(self, hostnames: Iterable[str]) -> list[str]:
        names = self.san_names
        return sorted(h for h in set(hostnames) if not any(hostname_matches(n, h) for n in names))

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.not_after

    def is_stale(self, horizon: timedelta, now: datetime | None = None) -> bool:
        """True once ``not_after`` is within ``horizon`` of ``now``."""
        now = now or datetime.now(timezone.utc)
        return now + horizon >= self.not_after


class CertificateIssuer:
    """Generate or reuse a self-signed certificate and key pair."""

    def __init__(self, cert_dir: Path, config: CertConfig | None = None):
        self.cert_dir = cert_dir
        self.config = config or CertConfig()
        self.generated = False

    def paths(self, domain: str) -> tuple[Path, Path]:
        return self.cert_dir / f"{domain}.crt", self.cert_dir / f"{domain}.key"

    def obtain(
        self,
        domain: str,
        alternate_names: Iterable[str] = (),
        force_regenerate: bool = False,
    ) -> CertificateBundle:
        self.generated = False
        alternate = frozenset(alternate_names)
        if not force_regenerate:
            existing = self.load(domain, alternate)
            if existing is not None:
                logger.info("Using existing certificate for %s", domain)
                return existing

        cert_path, key_path = self.paths(domain)
        with store_lock(cert_path):
            bundle = self._issue(domain, alternate)
            self._persist(bundle)
        self.generated = True
        logger.info("Issued self-signed certificate for %s (expires %s)", domain, bundle.not_after.date())
        return bundle

    def load(self, domain: str, alternate_names: Iterable[str] = ()) -> CertificateBundle | None:
        """Return the stored bundle if it is usable for ``domain``, else None."""
        cert_path, key_path = self._live_pair(domain)
        if not cert_path.is_file() or not key_path.is_file():
            return None
        try:
            cert_pem = cert_path.read_bytes()
            key_pem = key_path.read_bytes()
            cert = x509.load_pem_x509_certificate(cert_pem)
            key = serialization.load_pem_private_key(key_pem, password=None)
        except (OSError, ValueError, TypeError) as e:
            logger.warning("Stored certificate for %s is unreadable: %s", domain, e)
            return None

        if cert.public_key().public_numbers() != key.public_key().public_numbers():
            logger.warning("Stored certificate and key for %s do not match", domain)
            return None

        bundle = CertificateBundle(
            subject_domain=domain,
            alternate_names=frozenset(alternate_names),
            certificate=cert_pem,
            private_key=key_pem,
            not_after=cert.not_valid_after_utc,
        )
        if bundle.is_expired():
            logger.warning("Stored certificate for %s expired on %s", domain, bundle.not_after)
            return None
        if not bundle.covers([domain, *alternate_names]):
            logger.warning("Stored certificate for %s misses %s", domain, bundle.uncovered([domain, *alternate_names]))
            return None
        return bundle

    def _issue(self, domain: str, alternate: frozenset[str]) -> CertificateBundle:
        cfg = self.config
        try:
            key = rsa.generate_private_key(public_exponent=65537, key_size=cfg.key_size)
            name = x509.Name([
                x509.NameAttribute(x509.NameOID.COUNTRY_NAME, cfg.country),
                x509.NameAttribute(x509.NameOID.STATE_OR_PROVINCE_NAME, cfg.state),
                x509.NameAttribute(x509.NameOID.LOCALITY_NAME, cfg.locality),
                x509.NameAttribute(x509.NameOID.ORGANIZATION_NAME, cfg.organization),
                x509.NameAttribute(x509.NameOID.COMMON_NAME, f"*.{domain}"),
            ])
            dns_names = [f"*.{domain}", domain]
            dns_names += sorted(n for n in alternate if n not in dns_names)
            now = datetime.now(timezone.utc).replace(microsecond=0)
            not_after = now + timedelta(days=cfg.validity_days)
            cert = (
                x509.CertificateBuilder()
                .subject_name(name)
                .issuer_name(name)
                .public_key(key.public_key())
                .serial_number(x509.random_serial_number())
                .not_valid_before(now - timedelta(minutes=5))
                .not_valid_after(not_after)
                .add_extension(
                    x509.SubjectAlternativeName([x509.DNSName(n) for n in dns_names]),
                    critical=False,
                )
                .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
                .add_extension(
                    x509.ExtendedKeyUsage([x509.ExtendedKeyUsageOID.SERVER_AUTH]),
                    critical=False,
                )
                .sign(key, hashes.SHA256())
            )
            key_pem = key.private_bytes(
                serialization.Encoding.PEM,
                serialization.PrivateFormat.PKCS8,
                serialization.NoEncryption(),
            )
            cert_pem = cert.public_bytes(serialization.Encoding.PEM)
        except (ValueError, TypeError) as e:
            raise IssuanceFailed(f"Certificate generation for {domain} failed: {e}") from e

        return CertificateBundle(
            subject_domain=domain,
            alternate_names=alternate,
            certificate=cert_pem,
            private_key=key_pem,
            not_after=not_after,
        )

    def _live_link(self, domain: str) -> Path:
        return self.cert_dir / f"{domain}.live"

    def _live_pair(self, domain: str) -> tuple[Path, Path]:
        """Files of the published generation, resolved once so both come from it."""
        live = self._live_link(domain)
        if not live.is_symlink():
            return self.paths(domain)
        generation = self.cert_dir / os.readlink(live)
        return generation / f"{domain}.crt", generation / f"{domain}.key"

    def _persist(self, bundle: CertificateBundle) -> None:
        """Publish the new pair with one atomic symlink swap.

        Must be called with the store lock held.
        """
        domain = bundle.subject_domain
        live = self._live_link(domain)
        try:
            self.cert_dir.mkdir(parents=True, exist_ok=True)
            generation = self._write_generation(domain, bundle.certificate, bundle.private_key)
            if not live.is_symlink():
                self._adopt_plain_files(domain)
            for path in self.paths(domain):
                _repoint(path, f"{live.name}/{path.name}")
            _repoint(live, generation.name)
        except OSError as e:
            raise StoreUnwritable(f"Cannot write certificate to {self.cert_dir}: {e}") from e
        finally:
            self._prune(domain)

    def _write_generation(self, domain: str, cert_pem: bytes, key_pem: bytes) -> Path:
        generation = Path(tempfile.mkdtemp(dir=self.cert_dir, prefix=f".{domain}-"))
        os.chmod(generation, 0o755)
        for name, data, mode in (
            (f"{domain}.key", key_pem, 0o600),
            (f"{domain}.crt", cert_pem, 0o644),
        ):
            fd = os.open(generation / name, os.O_WRONLY | os.O_CREAT | os.O_EXCL, mode)
            with os.fdopen(fd, "wb") as fp:
                os.fchmod(fp.fileno(), mode)
                fp.write(data)
                fp.flush()
                os.fsync(fp.fileno())
        return generation

    def _adopt_plain_files(self, domain: str) -> None:
        """Move a pair of regular files behind ``<domain>.live``.

        Replacing the two paths with symlinks one at a time then never exposes
        a new file next to an old one.
        """
        cert_path, key_path = self.paths(domain)
        if not (cert_path.is_file() and key_path.is_file()):
            return
        generation = self._write_generation(domain, cert_path.read_bytes(), key_path.read_bytes())
        _repoint(self._live_link(domain), generation.name)
        logger.info("Moved existing certificate files for %s into %s", domain, generation.name)

    def _prune(self, domain: str) -> None:
        """Remove generation directories other than the published one."""
        live = self._live_link(domain)
        current = os.readlink(live) if live.is_symlink() else None
        for generation in self.cert_dir.glob(f".{domain}-*"):
            if generation.name == current or not generation.is_dir():
                continue
            try:
                shutil.rmtree(generation)
            except OSError as e:
                logger.warning("Cannot remove old certificate generation %s: %s", generation, e)


def _repoint(link: Path, target: str) -> None:
    """Atomically make ``link`` a symlink to ``target``."""
    if link.is_symlink() and os.readlink(link) == target:
        return
    tmp = link.with_name(f".{link.name}.{os.getpid()}.tmp")
    if tmp.is_symlink() or tmp.exists():
        tmp.unlink()
    os.symlink(target, tmp)
    try:
        os.replace(tmp, link)
    except OSError:
        tmp.unlink()
        raise
