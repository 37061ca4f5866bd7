from connectors.decoders import (
    PayloadShape,
    decode_collection,
    decode_record,
    extract_embedded,
)


def test_collection_is_found_at_any_envelope_depth() -> None:
    bare = decode_collection([{"id": 1}])
    wrapped = decode_collection({"data": [{"id": 1}]})
    double = decode_collection({"data": {"data": [{"id": 1}]}})

    assert [bare.depth, wrapped.depth, double.depth] == [0, 1, 2]
    assert all(decoded.shape is PayloadShape.COLLECTION for decoded in (bare, wrapped, double))
    assert double.items == [{"id": 1}]


def test_named_collection_keys_and_items_key() -> None:
    named = decode_collection({"data": {"backlogs": [{"id": "b1"}]}}, ("backlogs",))
    items = decode_collection({"items": [{"id": "i1"}]})

    assert named.items == [{"id": "b1"}]
    assert items.items == [{"id": "i1"}]


def test_empty_and_malformed_payloads_are_tagged() -> None:
    assert decode_collection(None).shape is PayloadShape.EMPTY
    assert decode_collection({"data": []}).shape is PayloadShape.EMPTY
    assert decode_collection({"message": "ok"}).shape is PayloadShape.MALFORMED
    assert decode_collection(["a", "b"]).shape is PayloadShape.MALFORMED


def test_decode_record_unwraps_data_envelopes() -> None:
    decoded = decode_record({"data": {"data": {"id": "p1", "name": "Apollo"}}})

    assert decoded.shape is PayloadShape.RECORD
    assert decoded.record == {"id": "p1", "name": "Apollo"}
    assert decoded.depth == 2


def test_decode_record_keeps_records_that_carry_a_data_field() -> None:
    payload = {"id": "p1", "data": {"extra": True}}

    assert decode_record(payload).record == payload


def test_decode_record_takes_first_object_of_a_list() -> None:
    decoded = decode_record({"data": [{"id": "p1"}, {"id": "p2"}]})

    assert decoded.record == {"id": "p1"}


def test_extract_embedded_flattens_children_and_tags_parent() -> None:
    sprints = [
        {"id": 10, "backlog_items": [{"id": "a"}, {"id": "b", "sprint_id": 99}]},
        {"id": 11, "backlogs": [], "items": [{"id": "c"}]},
        {"id": 12},
    ]

    items = extract_embedded(sprints)

    assert items == [
        {"id": "a", "sprint_id": 10},
        {"id": "b", "sprint_id": 99},
        {"id": "c", "sprint_id": 11},
    ]
