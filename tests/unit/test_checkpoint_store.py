import json

import pytest

from rowcol_sync.cdc.checkpoint import InMemoryCheckpointStore, PersistentCheckpointStore


@pytest.mark.unit
def test_persistent_store_persists_across_instances(tmp_path):
    store_path = tmp_path / "resume_tokens.json"
    store = PersistentCheckpointStore(store_path)

    store.save("rowcol_slot", 12345)
    assert store.load("rowcol_slot") == 12345

    persisted = json.loads(store_path.read_text())
    assert persisted == {"rowcol_slot": 12345}

    reloaded = PersistentCheckpointStore(store_path)
    assert reloaded.load("rowcol_slot") == 12345


@pytest.mark.unit
def test_watermark_never_moves_backwards_on_save(tmp_path):
    store = PersistentCheckpointStore(tmp_path / "resume.json", fsync=True)

    store.save("slot", 300)
    store.save("slot", 200)

    assert store.load("slot") == 300
    assert json.loads((tmp_path / "resume.json").read_text()) == {"slot": 300}


@pytest.mark.unit
def test_manual_reset_requires_expected_lsn(tmp_path):
    store = PersistentCheckpointStore(tmp_path / "resume.json")
    slot = "rowcol_slot"
    store.save(slot, 200)

    with pytest.raises(ValueError):
        store.reset(slot)

    with pytest.raises(ValueError):
        store.reset(slot, expected_lsn=150)

    store.reset(slot, expected_lsn=200)
    assert store.load(slot) is None

    reloaded = PersistentCheckpointStore(tmp_path / "resume.json")
    assert reloaded.load(slot) is None


@pytest.mark.unit
def test_manual_reset_can_override_to_lower_lsn(tmp_path):
    store = PersistentCheckpointStore(tmp_path / "resume.json")
    slot = "rowcol_slot"
    store.save(slot, 500)

    store.reset(slot, expected_lsn=500, new_lsn=120)
    assert store.load(slot) == 120

    store.save(slot, 130)
    assert store.load(slot) == 130

    contents = json.loads((tmp_path / "resume.json").read_text())
    assert contents == {slot: 130}


@pytest.mark.unit
def test_manual_reset_refuses_to_raise_watermark(tmp_path):
    store = PersistentCheckpointStore(tmp_path / "resume.json")
    store.save("slot", 100)

    with pytest.raises(ValueError):
        store.reset("slot", expected_lsn=100, new_lsn=200)

    store.reset("slot", expected_lsn=None, new_lsn=200, force=True)
    assert store.load("slot") == 200


@pytest.mark.unit
def test_reset_without_watermark_needs_force_when_expecting_one():
    store = InMemoryCheckpointStore()

    with pytest.raises(ValueError):
        store.reset("slot", expected_lsn=10)

    store.reset("slot", expected_lsn=10, new_lsn=5, force=True)
    assert store.load("slot") == 5


@pytest.mark.unit
def test_corrupt_file_is_ignored(tmp_path):
    path = tmp_path / "resume.json"
    path.write_text("{not json")

    store = PersistentCheckpointStore(path)

    assert store.load("slot") is None
    store.save("slot", 7)
    assert json.loads(path.read_text()) == {"slot": 7}


@pytest.mark.unit
def test_non_integer_entries_are_dropped_on_load(tmp_path):
    path = tmp_path / "resume.json"
    path.write_text(json.dumps({"good": 5, "bad": "0/10"}))

    store = PersistentCheckpointStore(path)

    assert store.load("good") == 5
    assert store.load("bad") is None


@pytest.mark.unit
def test_in_memory_store_tracks_slots_independently():
    store = InMemoryCheckpointStore()
    store.save("a", 10)
    store.save("b", 20)
    store.save("a", 5)

    assert store.load("a") == 10
    assert store.load("b") == 20
