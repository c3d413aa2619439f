"""
Tests for state persistence in radmm/store.py.

Tests cover:
- InMemoryStateStore load/save/delete/keys
- JsonFileStateStore file layout and atomic replacement
- Key isolation between users and instruments
"""
import json
import os

import pytest

from radmm.store import InMemoryStateStore, JsonFileStateStore


@pytest.fixture(params=["memory", "file"])
def store(request, temp_dir):
    if request.param == "memory":
        return InMemoryStateStore()
    return JsonFileStateStore(str(temp_dir / "state"))


class TestStateStore:
    """Behaviour shared by every StateStore."""

    @pytest.mark.unit
    def test_load_missing_returns_none(self, store):
        """Test that an unknown key loads as None."""
        assert store.load("alice", "RAD") is None

    @pytest.mark.unit
    def test_save_and_load(self, store):
        """Test that a saved snapshot loads back with the same content."""
        snap = {"version": 1, "state": "running", "ledger": {"base_balance": 0.5}}
        store.save("alice", "RAD", snap)
        loaded = store.load("alice", "RAD")
        assert loaded["state"] == "running"
        assert loaded["ledger"] == {"base_balance": 0.5}

    @pytest.mark.unit
    def test_loaded_snapshot_is_a_copy(self, store):
        """Test that mutating a loaded snapshot does not touch the store."""
        store.save("alice", "RAD", {"cycles": 1})
        loaded = store.load("alice", "RAD")
        loaded["cycles"] = 99
        assert store.load("alice", "RAD")["cycles"] == 1

    @pytest.mark.unit
    def test_keys_are_isolated(self, store):
        """Test that users and instruments never share a snapshot."""
        store.save("alice", "RAD", {"cycles": 1})
        store.save("alice", "DOG", {"cycles": 2})
        store.save("bob", "RAD", {"cycles": 3})
        assert store.load("alice", "RAD")["cycles"] == 1
        assert store.load("alice", "DOG")["cycles"] == 2
        assert store.load("bob", "RAD")["cycles"] == 3
        assert sorted(store.keys()) == [("alice", "DOG"), ("alice", "RAD"), ("bob", "RAD")]

    @pytest.mark.unit
    def test_delete(self, store):
        """Test that delete removes one key and tolerates missing ones."""
        store.save("alice", "RAD", {"cycles": 1})
        store.delete("alice", "RAD")
        store.delete("alice", "RAD")
        assert store.load("alice", "RAD") is None
        assert store.keys() == []

    @pytest.mark.unit
    def test_overwrite(self, store):
        """Test that saving again replaces the snapshot."""
        store.save("alice", "RAD", {"cycles": 1})
        store.save("alice", "RAD", {"cycles": 2})
        assert store.load("alice", "RAD")["cycles"] == 2


class TestJsonFileStateStore:
    """Test the file-backed store specifics."""

    @pytest.mark.unit
    def test_one_file_per_key(self, temp_dir):
        """Test the <user>_<instrument>.json layout."""
        store = JsonFileStateStore(str(temp_dir / "state"))
        store.save("alice", "RAD", {"cycles": 1})
        path = temp_dir / "state" / "alice_RAD.json"
        assert path.exists()
        with open(path) as f:
            doc = json.load(f)
        assert doc["user_id"] == "alice"
        assert doc["instrument_id"] == "RAD"

    @pytest.mark.unit
    def test_unsafe_characters_are_replaced(self, temp_dir):
        """Test that ids cannot escape the state directory."""
        store = JsonFileStateStore(str(temp_dir / "state"))
        path = store.path_for("../evil", "RAD/BTC")
        assert os.path.dirname(path) == str(temp_dir / "state")
        assert "/" not in os.path.basename(path)
        store.save("../evil", "RAD/BTC", {"cycles": 1})
        assert store.keys() == [("../evil", "RAD/BTC")]

    @pytest.mark.unit
    def test_no_temp_file_left_behind(self, temp_dir):
        """Test that the temp file is replaced into place."""
        store = JsonFileStateStore(str(temp_dir / "state"))
        store.save("alice", "RAD", {"cycles": 1})
        assert sorted(os.listdir(temp_dir / "state")) == ["alice_RAD.json"]

    @pytest.mark.unit
    def test_keys_skip_unrelated_files(self, temp_dir):
        """Test that foreign or corrupt files are ignored by keys()."""
        state_dir = temp_dir / "state"
        store = JsonFileStateStore(str(state_dir))
        (state_dir / "notes.txt").write_text("hello")
        (state_dir / "broken.json").write_text("{not json")
        store.save("alice", "RAD", {"cycles": 1})
        assert store.keys() == [("alice", "RAD")]
