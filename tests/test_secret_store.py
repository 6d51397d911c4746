import json
import os
import stat

import pytest

from colasseum.secret_store import SecretStore


def test_put_and_get(tmp_path):
    store = SecretStore(tmp_path / "nested" / "secrets.json")
    assert store.get(1) is None
    store.put(1, "alpha")
    store.put("2", "beta")
    assert store.get(1) == "alpha"
    assert SecretStore(store.path).get(2) == "beta"


def test_keys_use_entry_prefixes(tmp_path):
    store = SecretStore(tmp_path / "secrets.json")
    store.put(7, "s")
    store.store_result(7, True)
    store.mark_reveal_seen(7)
    data = json.loads(store.path.read_text(encoding="utf-8"))
    assert data["miladycola_passphrase_7"] == "s"
    assert data["miladycola_win_result_7"] == "win"
    assert "miladycola_reveal_seen_7" in data


def test_results(tmp_path):
    store = SecretStore(tmp_path / "secrets.json")
    assert store.stored_result(3) is None
    assert not store.has_seen_reveal(3)
    store.store_result(3, False)
    store.mark_reveal_seen(3)
    assert store.stored_result(3) is False
    assert store.has_seen_reveal(3)


@pytest.mark.skipif(os.name != "posix", reason="POSIX permissions")
def test_file_is_private(tmp_path):
    store = SecretStore(tmp_path / "secrets.json")
    store.put(1, "x")
    assert stat.S_IMODE(store.path.stat().st_mode) == 0o600


def test_rejects_non_object_file(tmp_path):
    path = tmp_path / "secrets.json"
    path.write_text("[]", encoding="utf-8")
    with pytest.raises(RuntimeError):
        SecretStore(path).get(1)


def test_failed_write_leaves_no_temp_file(tmp_path):
    store = SecretStore(tmp_path / "secrets.json")
    store.put(1, "kept")
    with pytest.raises(TypeError):
        store.put(2, object())
    assert list(tmp_path.glob(".secrets-*")) == []
    assert store.get(1) == "kept"
