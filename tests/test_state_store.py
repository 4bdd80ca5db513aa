"""Tests for the key-value state stores."""

import json
import threading

import pytest

from smart_router.core.state_store import InMemoryStore, JsonFileStore, KeyValueStore


class TestInMemoryStore:
    def test_get_set_items(self):
        store = InMemoryStore()
        store.set("a", {"x": 1})
        store.set("b", [1, 2])
        assert store.get("a") == {"x": 1}
        assert store.get("missing") is None
        assert dict(store.items()) == {"a": {"x": 1}, "b": [1, 2]}
        assert len(store) == 2

    def test_values_are_copies(self):
        store = InMemoryStore()
        value = {"x": 1}
        store.set("a", value)
        value["x"] = 2
        assert store.get("a") == {"x": 1}

    def test_unserializable_values_rejected(self):
        with pytest.raises(TypeError):
            InMemoryStore().set("a", object())

    def test_satisfies_protocol(self):
        assert isinstance(InMemoryStore(), KeyValueStore)

    def test_replace_all_drops_absent_keys(self):
        store = InMemoryStore()
        store.set("old", 1)
        store.replace_all({"new": 2})
        assert dict(store.items()) == {"new": 2}


class TestJsonFileStore:
    def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "nested" / "state.json"
        JsonFileStore(path).set("model-a", {"success_rate": 0.9})
        assert JsonFileStore(path).get("model-a") == {"success_rate": 0.9}
        assert json.loads(path.read_text()) == {"model-a": {"success_rate": 0.9}}

    def test_set_many_writes_once(self, tmp_path):
        store = JsonFileStore(tmp_path / "state.json")
        store.set_many({"a": 1, "b": 2})
        assert dict(JsonFileStore(tmp_path / "state.json").items()) == {"a": 1, "b": 2}

    def test_no_temp_files_left_behind(self, tmp_path):
        store = JsonFileStore(tmp_path / "state.json")
        store.set("a", 1)
        store.set("b", 2)
        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]

    def test_unreadable_file_starts_empty(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")
        assert dict(JsonFileStore(path).items()) == {}

    def test_non_object_file_starts_empty(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("[1, 2, 3]")
        assert JsonFileStore(path).get("0") is None

    def test_reload_picks_up_external_changes(self, tmp_path):
        path = tmp_path / "state.json"
        store = JsonFileStore(path)
        path.write_text(json.dumps({"external": True}))
        assert store.get("external") is None
        store.reload()
        assert store.get("external") is True

    def test_replace_all_rewrites_file(self, tmp_path):
        path = tmp_path / "state.json"
        store = JsonFileStore(path)
        store.set_many({"stale": 1, "kept": 2})
        store.replace_all({"kept": 3})
        assert json.loads(path.read_text()) == {"kept": 3}
        assert dict(JsonFileStore(path).items()) == {"kept": 3}

    def test_concurrent_writes_leave_latest_state_on_disk(self, tmp_path):
        """The file always ends up matching the in-memory contents."""
        path = tmp_path / "state.json"
        store = JsonFileStore(path)

        def writer(prefix):
            for i in range(25):
                store.set(f"{prefix}-{i}", i)

        threads = [threading.Thread(target=writer, args=(f"t{n}",)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        on_disk = json.loads(path.read_text())
        assert len(on_disk) == 100
        assert on_disk == dict(store.items())
