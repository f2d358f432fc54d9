import json
import os

import pytest

from cc_switch.errors import (
    CannotDeleteActiveProvider,
    DuplicateProviderId,
    InvalidAppType,
    ProviderNotFound,
    StoreFailure,
)
from cc_switch.services import provider_store as provider_store_module
from cc_switch.services.app_types import AppType
from cc_switch.services.provider_store import Provider, ProviderStore


@pytest.fixture
def store(tmp_path):
    return ProviderStore(data_dir=tmp_path)


def _provider(name, pid="", **settings):
    return Provider(id=pid, name=name, settings=settings)


def test_empty_set_is_created_lazily(store, tmp_path):
    assert store.list_all(AppType.CLAUDE) == {}
    assert store.get_current("claude") is None
    assert not os.path.exists(store.record_path(AppType.CLAUDE))


def test_insert_generates_id_and_get_returns_equal(store):
    created = store.insert(AppType.CLAUDE, _provider("A", key="x"))
    assert created.id
    assert created.created_at is not None
    assert store.get(AppType.CLAUDE, created.id) == created
    assert list(store.list_all(AppType.CLAUDE)) == [created.id]


def test_insert_keeps_supplied_id(store):
    created = store.insert("codex", _provider("B", pid="my-id"))
    assert created.id == "my-id"


def test_insert_duplicate_id_fails_and_keeps_set(store):
    store.insert(AppType.CLAUDE, _provider("A", pid="p1"))
    with pytest.raises(DuplicateProviderId):
        store.insert(AppType.CLAUDE, _provider("B", pid="p1"))
    assert store.get(AppType.CLAUDE, "p1").name == "A"
    assert len(store.list_all(AppType.CLAUDE)) == 1


def test_insert_appends_in_order(store):
    ids = [store.insert(AppType.CLAUDE, _provider(n)).id for n in ("A", "B", "C")]
    assert list(store.list_all(AppType.CLAUDE)) == ids


def test_apps_are_isolated(store):
    store.insert(AppType.CLAUDE, _provider("A", pid="same"))
    store.insert(AppType.GEMINI, _provider("G", pid="same"))
    assert store.get(AppType.CLAUDE, "same").name == "A"
    assert store.get(AppType.GEMINI, "same").name == "G"
    assert store.list_all(AppType.CODEX) == {}


def test_get_missing_raises(store):
    with pytest.raises(ProviderNotFound) as exc_info:
        store.get(AppType.CLAUDE, "nope")
    assert exc_info.value.provider_id == "nope"


def test_invalid_app_type_raises(store):
    with pytest.raises(InvalidAppType):
        store.list_all("vscode")


def test_list_all_returns_snapshot(store):
    created = store.insert(AppType.CLAUDE, _provider("A", key="x"))
    snapshot = store.list_all(AppType.CLAUDE)
    snapshot[created.id].settings["key"] = "changed"
    snapshot.clear()
    assert store.get(AppType.CLAUDE, created.id).settings == {"key": "x"}


def test_replace_preserves_id_position_and_size(store):
    a = store.insert(AppType.CLAUDE, _provider("A"))
    b = store.insert(AppType.CLAUDE, _provider("B"))
    c = store.insert(AppType.CLAUDE, _provider("C"))

    updated = store.replace(AppType.CLAUDE, Provider(id=b.id, name="B2", settings={"k": 1}))

    assert updated.id == b.id
    assert updated.created_at == b.created_at
    listed = store.list_all(AppType.CLAUDE)
    assert list(listed) == [a.id, b.id, c.id]
    assert listed[b.id].name == "B2"
    assert listed[b.id].settings == {"k": 1}


def test_replace_missing_raises(store):
    with pytest.raises(ProviderNotFound):
        store.replace(AppType.CLAUDE, _provider("ghost", pid="ghost"))
    with pytest.raises(ProviderNotFound):
        store.replace(AppType.CLAUDE, _provider("no id"))
    assert store.list_all(AppType.CLAUDE) == {}


def test_remove_non_current(store):
    a = store.insert(AppType.CLAUDE, _provider("A"))
    b = store.insert(AppType.CLAUDE, _provider("B"))
    store.set_current(AppType.CLAUDE, a.id)

    store.remove(AppType.CLAUDE, b.id)

    assert list(store.list_all(AppType.CLAUDE)) == [a.id]
    assert store.get_current(AppType.CLAUDE) == a.id


def test_remove_current_is_rejected(store):
    a = store.insert(AppType.CLAUDE, _provider("A"))
    b = store.insert(AppType.CLAUDE, _provider("B"))
    store.set_current(AppType.CLAUDE, a.id)
    before = store.list_all(AppType.CLAUDE)

    with pytest.raises(CannotDeleteActiveProvider):
        store.remove(AppType.CLAUDE, a.id)

    assert store.list_all(AppType.CLAUDE) == before
    assert list(before) == [a.id, b.id]


def test_remove_missing_raises(store):
    with pytest.raises(ProviderNotFound):
        store.remove(AppType.CLAUDE, "nope")


def test_set_current_missing_raises(store):
    store.insert(AppType.CLAUDE, _provider("A", pid="a"))
    store.set_current(AppType.CLAUDE, "a")
    with pytest.raises(ProviderNotFound):
        store.set_current(AppType.CLAUDE, "b")
    assert store.get_current(AppType.CLAUDE) == "a"


def test_write_failure_leaves_state_unchanged(store, monkeypatch):
    a = store.insert(AppType.CLAUDE, _provider("A"))

    def boom(*args, **kwargs):
        raise OSError("disk full")

    monkeypatch.setattr(provider_store_module, "atomic_write_json", boom)

    with pytest.raises(StoreFailure):
        store.insert(AppType.CLAUDE, _provider("B"))
    with pytest.raises(StoreFailure):
        store.set_current(AppType.CLAUDE, a.id)
    with pytest.raises(StoreFailure):
        store.remove(AppType.CLAUDE, a.id)

    assert list(store.list_all(AppType.CLAUDE)) == [a.id]
    assert store.get_current(AppType.CLAUDE) is None

    store.reload(AppType.CLAUDE)
    assert list(store.list_all(AppType.CLAUDE)) == [a.id]


def test_record_layout_on_disk(store):
    a = store.insert(AppType.CLAUDE, Provider(id="a", name="A", settings={"env": {"X": "1"}}, notes="n"))
    store.set_current(AppType.CLAUDE, a.id)

    with open(store.record_path(AppType.CLAUDE), "r", encoding="utf-8") as f:
        record = json.load(f)

    assert record["current"] == "a"
    assert record["providers"]["a"]["settingsConfig"] == {"env": {"X": "1"}}
    assert record["providers"]["a"]["notes"] == "n"
    assert "settings" not in record["providers"]["a"]


def test_unknown_fields_are_preserved(store):
    raw = {"id": "x", "name": "X", "settingsConfig": {}, "customFlag": True}
    store.insert(AppType.CLAUDE, Provider.model_validate(raw))
    assert store.get(AppType.CLAUDE, "x").to_json()["customFlag"] is True


def test_concurrent_cold_loads_recover_once(tmp_path, monkeypatch):
    import threading
    import time

    store = ProviderStore(data_dir=tmp_path)
    path = store.record_path(AppType.GEMINI)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w") as f:
        f.write("not json")

    calls = []
    original = ProviderStore._recover_record

    def slow_recover(self, app, record_path):
        calls.append(app)
        time.sleep(0.05)
        return original(self, app, record_path)

    monkeypatch.setattr(ProviderStore, "_recover_record", slow_recover)

    barrier = threading.Barrier(2)
    results, errors = [], []

    def reader():
        barrier.wait()
        try:
            results.append(store.list_all(AppType.GEMINI))
        except Exception as e:  # collected for the assertion below
            errors.append(e)

    threads = [threading.Thread(target=reader) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert results == [{}, {}]
    assert calls == [AppType.GEMINI]
    names = os.listdir(os.path.dirname(path))
    assert sum(n.startswith("gemini.json.corrupt.") for n in names) == 1
