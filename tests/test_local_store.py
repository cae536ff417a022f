"""
Local durable store: cache upserts, queue ordering, dead letters, persistence.
"""
from datetime import datetime, timedelta

import pytest

from twokaj.client.local_store import LocalStore
from twokaj.client.operations import Operation, OperationKind, utcnow

from conftest import make_listing, make_message


def _listing_op(listing_id="abc-123", **extra):
    return Operation.new(OperationKind.CREATE_AD, make_listing(listing_id, **extra))


def test_put_overwrites_by_id(store):
    store.put("listings", make_listing())
    store.put("listings", make_listing(title="10kg rice for labor"))

    assert len(store.get_all("listings")) == 1
    assert store.get("listings", "abc-123")["title"] == "10kg rice for labor"


def test_collections_are_separate(store):
    store.put("listings", {"id": "x", "title": "a"})
    store.put("gallery", {"id": "x", "photo_url": "b"})

    assert store.get("listings", "x")["title"] == "a"
    assert store.get("gallery", "x")["photo_url"] == "b"


def test_unknown_collection_rejected(store):
    with pytest.raises(ValueError):
        store.put("ads", {"id": "x"})


def test_entity_without_id_rejected(store):
    with pytest.raises(ValueError):
        store.put("listings", {"title": "no id"})


def test_datetimes_are_stored_as_json(store):
    created = datetime(2024, 3, 1, 9, 30)
    store.put("listings", {"id": "x", "created_at": created})
    assert store.get("listings", "x")["created_at"] == created.isoformat()


def test_delete_and_clear(store):
    store.put_many("listings", [make_listing("a"), make_listing("b")])
    store.delete("listings", "a")
    assert [l["id"] for l in store.get_all("listings")] == ["b"]

    store.clear("listings")
    assert store.get_all("listings") == []


def test_replace_all_swaps_collection(store):
    store.put_many("listings", [make_listing("a"), make_listing("b")])
    store.replace_all("listings", [make_listing("c")])
    assert [l["id"] for l in store.get_all("listings")] == ["c"]


def test_replace_all_keeps_previous_snapshot_on_failure(store):
    store.put_many("listings", [make_listing("a"), make_listing("b")])

    with pytest.raises(ValueError):
        store.replace_all("listings", [make_listing("c"), {"title": "broken"}])

    assert sorted(l["id"] for l in store.get_all("listings")) == ["a", "b"]


def test_clear_all_keeps_queue(store):
    store.put("listings", make_listing())
    store.set_current_user({"id": "u-1"})
    store.enqueue(_listing_op())

    store.clear_all()

    assert store.get_all("listings") == []
    assert store.get_current_user() is None
    assert len(store.list_queue()) == 1


def test_queue_preserves_enqueue_order(store):
    ops = [_listing_op("l-1"), Operation.new(OperationKind.SEND_MESSAGE, make_message()), _listing_op("l-2")]
    for op in ops:
        store.enqueue(op)

    queued = store.list_queue()
    assert [op.id for op in queued] == [op.id for op in ops]
    assert [op.seq for op in queued] == sorted(op.seq for op in queued)


def test_sequence_numbers_are_never_reused(store):
    first = store.enqueue(_listing_op("l-1"))
    second = store.enqueue(_listing_op("l-2"))
    store.dequeue(second.id)

    third = store.enqueue(_listing_op("l-3"))

    assert first.seq < second.seq < third.seq


def test_dequeue_is_idempotent(store):
    op = store.enqueue(_listing_op())
    store.dequeue(op.id)
    store.dequeue(op.id)
    assert store.list_queue() == []


def test_record_failure_counts_attempts(store):
    op = store.enqueue(_listing_op())
    retry_at = utcnow() + timedelta(seconds=30)

    assert store.record_failure(op.id, "boom", retry_at) == 1
    assert store.record_failure(op.id, "boom again", retry_at) == 2

    stored = store.get_operation(op.id)
    assert stored.attempt_count == 2
    assert stored.last_error == "boom again"
    assert stored.next_attempt_at == retry_at
    assert store.record_failure("gone", "boom") == 0


def test_pending_entity_ids(store):
    store.enqueue(_listing_op("l-1"))
    store.enqueue(Operation.new(OperationKind.UPDATE_AD_STATUS, {"id": "l-9", "status": "closed"}))
    store.enqueue(Operation.new(OperationKind.SEND_MESSAGE, make_message()))

    assert store.pending_entity_ids("listings") == {"l-1", "l-9"}
    assert store.pending_entity_ids("messages") == {"m-1"}
    assert store.pending_entity_ids("gallery") == set()


def test_dead_letter_moves_operation(store):
    op = store.enqueue(_listing_op())
    store.record_failure(op.id, "boom")

    letter = store.dead_letter(op.id, "constraint violation")

    assert letter.id == op.id
    assert letter.kind == OperationKind.CREATE_AD
    assert letter.attempt_count == 1
    assert letter.entity_id == "abc-123"
    assert store.list_queue() == []
    assert [d.id for d in store.list_dead_letters()] == [op.id]
    assert store.dead_letter(op.id, "again") is None

    store.discard_dead_letter(op.id)
    assert store.list_dead_letters() == []


def test_values_and_current_user(store):
    store.set_value("tokens", {"access_token": "a"})
    assert store.get_value("tokens") == {"access_token": "a"}

    store.set_current_user({"id": "u-1", "pseudo": "jean"})
    assert store.get_current_user()["pseudo"] == "jean"

    store.set_current_user(None)
    assert store.get_current_user() is None


def test_state_survives_reopen(tmp_path):
    path = str(tmp_path / "restart.db")
    store = LocalStore(path)
    store.put("listings", make_listing())
    op = store.enqueue(_listing_op())
    store.set_current_user({"id": "u-1"})
    store.close()

    reopened = LocalStore(path)
    try:
        assert reopened.get("listings", "abc-123")["title"] == "5kg rice for labor"
        assert [o.id for o in reopened.list_queue()] == [op.id]
        assert reopened.list_queue()[0].payload == op.payload
        assert reopened.get_current_user() == {"id": "u-1"}
    finally:
        reopened.close()


def test_in_memory_store():
    store = LocalStore(":memory:")
    try:
        store.put("gallery", {"id": "g-1", "photo_url": "http://img/1.jpg"})
        assert store.get("gallery", "g-1")["photo_url"] == "http://img/1.jpg"
    finally:
        store.close()
