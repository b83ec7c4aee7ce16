"""On-disk persistence for credential and certificate material.

Every write goes through a temp file in the target directory followed by
``os.replace``, so readers see either the old file or the complete new one.
Generation steps hold an advisory ``flock`` on a sibling ``.lock`` file.
"""

from __future__ import annotations

import fcntl
import logging
import os
import re
import tempfile
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from tigstack.errors import StoreUnwritable

logger = logging.getLogger(__name__)

_ENTRY_RE = re.compile(r'^([A-Z][A-Z0-9_]*)="([^"]*)"\s*$')
_GENERATED_RE = re.compile(r"^#.*\bgenerated\s+(\S+)", re.IGNORECASE)


def atomic_write(path: Path, data: bytes, mode: int = 0o600) -> None:
    """Atomically replace ``path`` with ``data`` and the given permissions."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}-", suffix=".tmp")
    except OSError as e:
        raise StoreUnwritable(f"Cannot write {path}: {e}") from e
    try:
        os.fchmod(fd, mode)
        os.write(fd, data)
        os.fsync(fd)
        os.close(fd)
        os.replace(tmp, path)
    except OSError as e:
        try:
            os.close(fd)
        except OSError:
            pass
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise StoreUnwritable(f"Cannot write {path}: {e}") from e


@contextmanager
def store_lock(path: Path) -> Iterator[None]:
    """Hold an exclusive advisory lock on ``<path>.lock`` for the block."""
    lock_path = path.with_name(path.name + ".lock")
    try:
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o600)
    except OSError as e:
        raise StoreUnwritable(f"Cannot lock {path}: {e}") from e
    try:
        logger.debug("Acquiring lock %s", lock_path)
        fcntl.flock(fd, fcntl.LOCK_EX)
        yield
    finally:
        fcntl.flock(fd, fcntl.LOCK_UN)
        os.close(fd)


def parse_env_file(text: str) -> tuple[dict[str, str], datetime | None]:
    """Parse ``NAME="value"`` lines. Returns (values, generation time)."""
    values: dict[str, str] = {}
    created: datetime | None = None
    for lineno, line in enumerate(text.splitlines(), 1):
        line = line.strip()
        if not line:
            continue
        if line.startswith("#"):
            m = _GENERATED_RE.match(line)
            if m and created is None:
                try:
                    created = datetime.fromisoformat(m.group(1))
                except ValueError:
                    pass
            continue
        m = _ENTRY_RE.match(line)
        if m:
            values[m.group(1)] = m.group(2)
        else:
            logger.warning("Ignoring malformed credential line %d", lineno)
    return values, created


def format_entry(name: str, value: str) -> str:
    if '"' in value or "\n" in value:
        raise ValueError(f"Credential {name} contains characters unsafe for the store")
    return f'{name}="{value}"\n'


class CredentialStore:
    """A permission-restricted env-style credential file."""

    title = "TIG Stack K3s Credentials"

    def __init__(self, path: Path):
        self.path = path

    def exists(self) -> bool:
        return self.path.is_file()

    def read(self) -> tuple[dict[str, str], datetime | None]:
        return parse_env_file(self.path.read_text())

    def write(self, values: dict[str, str], created: datetime | None = None) -> datetime:
        """Replace the whole file. Returns the recorded generation time."""
        created = created or datetime.now(timezone.utc).replace(microsecond=0)
        body = f"# {self.title} - generated {created.isoformat()}\n"
        body += "".join(format_entry(k, v) for k, v in values.items())
        atomic_write(self.path, body.encode("utf-8"))
        return created

    def append(self, name: str, value: str, comment: str = "", *, locked: bool = False) -> None:
        """Add or replace one entry after the existing content.

        A replaced entry takes its comment lines with it. Pass ``locked=True``
        when the caller already holds ``store_lock(self.path)``.
        """
        if not locked:
            with store_lock(self.path):
                self.append(name, value, comment, locked=True)
            return

        existing = self.path.read_text() if self.exists() else ""
        kept: list[str] = []
        for line in existing.splitlines():
            if line.startswith(f"{name}="):
                while kept and kept[-1].startswith("#") and not _GENERATED_RE.match(kept[-1]):
                    kept.pop()
                while kept and not kept[-1].strip():
                    kept.pop()
                continue
            kept.append(line)
        while kept and not kept[-1].strip():
            kept.pop()
        body = "".join(f"{line}\n" for line in kept)
        if body:
            body += "\n"
        if comment:
            body += f"# {comment}\n"
        body += format_entry(name, value)
        atomic_write(self.path, body.encode("utf-8"))
        logger.info("Saved %s to %s", name, self.path)
