import json

import pytest

from auroraguard.contacts import ContactStore


def test_add_assigns_next_priority():
    store = ContactStore()
    a = store.add("Ada", "+1555")
    b = store.add("  Ben ", " +1556 ")
    assert (a.priority, b.priority) == (0, 1)
    assert b.name == "Ben" and b.phone == "+1556"
    assert a.id != b.id
    assert [c.id for c in store.list()] == [a.id, b.id]


def test_add_rejects_empty_fields():
    store = ContactStore()
    with pytest.raises(ValueError):
        store.add("", "+1555")
    with pytest.raises(ValueError):
        store.add("Ada", "   ")
    assert len(store) == 0


def test_reorder_round_trip():
    store = ContactStore()
    ids = [store.add(name, f"+1{i}").id for i, name in enumerate(["Ada", "Ben", "Cy"])]
    new_order = [ids[2], ids[0], ids[1]]
    store.reorder(new_order)
    listed = store.list()
    assert [c.id for c in listed] == new_order
    assert [c.priority for c in listed] == [0, 1, 2]


def test_reorder_requires_permutation():
    store = ContactStore()
    a = store.add("Ada", "+1")
    b = store.add("Ben", "+2")
    with pytest.raises(ValueError):
        store.reorder([a.id])
    with pytest.raises(ValueError):
        store.reorder([a.id, a.id])
    with pytest.raises(ValueError):
        store.reorder([a.id, b.id, "ghost"])


def test_delete_keeps_remaining_order():
    store = ContactStore()
    a = store.add("Ada", "+1")
    b = store.add("Ben", "+2")
    assert store.delete(a.id).name == "Ada"
    assert store.delete(a.id) is None
    assert [c.id for c in store.list()] == [b.id]
    c = store.add("Cy", "+3")
    assert c.priority == 2


def test_snapshot_is_detached():
    store = ContactStore()
    a = store.add("Ada", "+1")
    store.add("Ben", "+2")
    snap = store.snapshot()
    store.reorder([c.id for c in reversed(store.list())])
    assert snap[0].id == a.id
    assert snap[0].priority == 0


def test_persistence(tmp_path):
    path = tmp_path / "contacts.json"
    store = ContactStore(str(path))
    a = store.add("Ada", "+1")
    b = store.add("Ben", "+2")
    store.reorder([b.id, a.id])

    saved = json.loads(path.read_text(encoding="utf-8"))
    assert [row["name"] for row in saved] == ["Ben", "Ada"]

    reloaded = ContactStore(str(path))
    assert [(c.name, c.priority) for c in reloaded.list()] == [("Ben", 0), ("Ada", 1)]


def test_malformed_entries_are_skipped(tmp_path):
    path = tmp_path / "contacts.json"
    path.write_text(json.dumps([{"id": "x", "name": "Ada", "phone": "+1", "priority": 0}, {"name": "broken"}]))
    store = ContactStore(str(path))
    assert [c.id for c in store.list()] == ["x"]
