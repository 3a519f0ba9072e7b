from __future__ import annotations

from pathlib import Path

import pytest

from webosctl.core.credentials import (
    CLIENT_KEY_NAME,
    MemoryCredentialStore,
    YamlCredentialStore,
    default_credentials_path,
)
from webosctl.core.errors import CredentialStoreError


def test_memory_store() -> None:
    store = MemoryCredentialStore()
    assert store.get(CLIENT_KEY_NAME) is None
    store.set(CLIENT_KEY_NAME, "abc")
    assert store.get(CLIENT_KEY_NAME) == "abc"


def test_yaml_store_round_trip_keeps_other_keys(tmp_path: Path) -> None:
    path = tmp_path / "data" / "credentials.yaml"
    path.parent.mkdir(parents=True)
    path.write_text("other: value\n", encoding="utf-8")

    store = YamlCredentialStore(path)
    assert store.get(CLIENT_KEY_NAME) is None
    store.set(CLIENT_KEY_NAME, "first")
    store.set(CLIENT_KEY_NAME, "second")

    reopened = YamlCredentialStore(path)
    assert reopened.get(CLIENT_KEY_NAME) == "second"
    assert reopened.get("other") == "value"
    assert [p.name for p in path.parent.iterdir()] == ["credentials.yaml"]


def test_yaml_store_creates_directories(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "xdg"))
    assert default_credentials_path() == tmp_path / "xdg" / "webosctl" / "credentials.yaml"

    store = YamlCredentialStore()
    store.set(CLIENT_KEY_NAME, "abc")
    assert default_credentials_path().exists()
    assert store.get(CLIENT_KEY_NAME) == "abc"


def test_yaml_store_rejects_non_mapping(tmp_path: Path) -> None:
    path = tmp_path / "credentials.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(CredentialStoreError):
        YamlCredentialStore(path).get(CLIENT_KEY_NAME)
