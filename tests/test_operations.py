import pytest

from twokaj.client.operations import Operation, OperationKind
from twokaj.core.errors import OperationValidationError

from conftest import make_listing, make_message


def test_new_operation_validates_and_normalizes_payload():
    op = Operation.new("CreateAd", make_listing(created_at="2024-01-01T10:00:00"))

    assert op.kind == OperationKind.CREATE_AD
    assert op.entity_id == "abc-123"
    assert op.group == "listings"
    assert op.collection == "listings"
    assert op.attempt_count == 0
    assert op.payload["created_at"] == "2024-01-01T10:00:00"
    assert op.payload["status"] == "open"
    assert "description" not in op.payload


def test_operations_get_distinct_ids():
    a = Operation.new(OperationKind.CREATE_AD, make_listing())
    b = Operation.new(OperationKind.CREATE_AD, make_listing())
    assert a.id != b.id


def test_unknown_kind_is_rejected():
    with pytest.raises(OperationValidationError, match="Unknown operation kind"):
        Operation.new("DeleteAd", {"id": "abc-123"})


@pytest.mark.parametrize("kind, payload", [
    (OperationKind.CREATE_AD, {"id": "abc-123", "title": "no owner"}),
    (OperationKind.SEND_MESSAGE, make_message(content="")),
    (OperationKind.UPDATE_AD_STATUS, {"id": "abc-123", "status": "sold"}),
    (OperationKind.CREATE_USER, {"id": "u-1", "pseudo": "jean"}),
    (OperationKind.CREATE_GALLERY_ITEM, {"photo_url": "http://img/1.jpg"}),
])
def test_malformed_payload_is_rejected(kind, payload):
    with pytest.raises(OperationValidationError):
        Operation.new(kind, payload)


def test_validation_error_is_a_value_error():
    with pytest.raises(ValueError):
        Operation.new(OperationKind.CREATE_AD, {})


def test_status_change_targets_listing_cache_but_own_group():
    op = Operation.new(OperationKind.UPDATE_AD_STATUS, {"id": "abc-123", "status": "closed"})

    assert op.collection == "listings"
    assert op.group == "listing_status"
    assert op.to_batch() == {"listing_status": [{"id": "abc-123", "status": "closed"}]}


def test_message_batch_body():
    op = Operation.new(OperationKind.SEND_MESSAGE, make_message())
    batch = op.to_batch()

    assert list(batch) == ["messages"]
    assert batch["messages"][0]["ad_id"] == "abc-123"
    assert batch["messages"][0]["type"] == "contact"
