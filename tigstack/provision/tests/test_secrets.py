"""Tests for SecretMaterializer."""

from __future__ import annotations

import re
import stat
from pathlib import Path
from unittest.mock import patch

import pytest

from tigstack.errors import StoreUnwritable
from tigstack.provision import (
    GRAFANA_PASSWORD,
    INFLUXDB_TOKEN,
    CredentialSpec,
    CredentialStore,
    SecretMaterializer,
    preview,
)


@pytest.fixture
def store(tmp_path: Path) -> CredentialStore:
    return CredentialStore(tmp_path / ".k3s-credentials")


class TestGeneration:
    def test_fresh_store_generates_all(self, store: CredentialStore):
        mat = SecretMaterializer()
        creds = mat.obtain(store)
        assert mat.generated is True
        assert set(creds.values) == {INFLUXDB_TOKEN, GRAFANA_PASSWORD}
        assert store.exists()

    def test_token_format(self, store: CredentialStore):
        creds = SecretMaterializer().obtain(store)
        assert re.fullmatch(r"apiv3_[A-Za-z0-9]+", creds[INFLUXDB_TOKEN])
        # 74 random bytes -> ~100 base64 chars before stripping
        assert len(creds[INFLUXDB_TOKEN]) > 80

    def test_password_fixed_length_and_safe(self, store: CredentialStore):
        creds = SecretMaterializer().obtain(store)
        password = creds[GRAFANA_PASSWORD]
        assert len(password) == 32
        assert not set(password) & set("=+/@\n\"'$")

    def test_password_topped_up_when_stripping_shortens(self):
        spec = CredentialSpec(name="P", nbytes=24, strip="=+/@", length=32)
        # first draw is all stripped characters, second is clean
        draws = iter(["////" * 8, "A" * 32])
        with patch("tigstack.provision.secrets._random_chars") as rand:
            rand.side_effect = lambda n, s: next(draws).translate({ord(c): None for c in s})
            assert spec.generate() == "A" * 32

    def test_store_permissions(self, store: CredentialStore):
        SecretMaterializer().obtain(store)
        mode = store.path.stat().st_mode
        assert mode & stat.S_IRGRP == 0
        assert mode & stat.S_IROTH == 0

    def test_records_creation_time(self, store: CredentialStore):
        creds = SecretMaterializer().obtain(store)
        assert creds.created_at is not None
        assert creds.created_at.tzinfo is not None


class TestIdempotence:
    def test_second_call_returns_identical_set(self, store: CredentialStore):
        first = SecretMaterializer().obtain(store)
        mat = SecretMaterializer()
        second = mat.obtain(store)
        assert second == first
        assert mat.generated is False

    def test_load_does_not_write(self, store: CredentialStore):
        SecretMaterializer().obtain(store)
        before = store.path.read_bytes()
        mtime = store.path.stat().st_mtime_ns
        with patch("tigstack.provision.store.atomic_write") as write:
            SecretMaterializer().obtain(store)
        write.assert_not_called()
        assert store.path.read_bytes() == before
        assert store.path.stat().st_mtime_ns == mtime

    def test_existing_extra_entries_preserved(self, store: CredentialStore):
        SecretMaterializer().obtain(store)
        store.append("GRAFANA_SA_TOKEN", "glsa_abc")
        creds = SecretMaterializer().obtain(store)
        assert creds.get("GRAFANA_SA_TOKEN") == "glsa_abc"


class TestRegeneration:
    def test_force_yields_disjoint_values(self, store: CredentialStore):
        first = SecretMaterializer().obtain(store)
        second = SecretMaterializer().obtain(store, force_regenerate=True)
        for name in (INFLUXDB_TOKEN, GRAFANA_PASSWORD):
            assert second[name] != first[name]

    def test_force_persists_new_values(self, store: CredentialStore):
        SecretMaterializer().obtain(store)
        second = SecretMaterializer().obtain(store, force_regenerate=True)
        third = SecretMaterializer().obtain(store)
        assert third.values == second.values


class TestMissingEntries:
    def test_fills_only_missing(self, store: CredentialStore):
        store.path.write_text('INFLUXDB_TOKEN="apiv3_existing"\n')
        mat = SecretMaterializer()
        creds = mat.obtain(store)
        assert creds[INFLUXDB_TOKEN] == "apiv3_existing"
        assert len(creds[GRAFANA_PASSWORD]) == 32
        assert mat.generated is True
        # persisted
        values, _ = store.read()
        assert values[GRAFANA_PASSWORD] == creds[GRAFANA_PASSWORD]


class TestFailures:
    def test_unwritable_store_raises_and_returns_nothing(self, store: CredentialStore):
        with patch("os.replace", side_effect=OSError("read-only file system")):
            with pytest.raises(StoreUnwritable):
                SecretMaterializer().obtain(store)
        assert not store.exists()


class TestPreview:
    def test_truncates(self):
        assert preview("apiv3_abcdefghijklmnopqrstuvwxyz") == "apiv3_abcdefghi..."

    def test_unset(self):
        assert preview(None) == "(unset)"
