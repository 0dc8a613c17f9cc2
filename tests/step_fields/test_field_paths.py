import pytest

from stepflow.core.step_fields.paths import (
    decode_field_path,
    describe_field_path,
    encode_field_path,
    field_input_name,
    field_removal_name,
    find_field_at_path,
    is_file_field_required,
    is_index_segment,
    parse_step_field_doc_type,
    step_field_doc_type,
)
from stepflow.core.step_fields.schema import parse_step_field_schema


SCHEMA = parse_step_field_schema(
    {
        "fields": [
            {"id": "ref", "label": "Reference", "type": "text"},
            {
                "id": "trucks",
                "label": "Trucks",
                "type": "group",
                "repeatable": True,
                "fields": [
                    {"id": "plate", "label": "Plate", "type": "text"},
                    {"id": "cmr", "label": "CMR", "type": "file", "required": True},
                ],
            },
            {
                "id": "customs",
                "label": "Customs",
                "type": "choice",
                "options": [
                    {
                        "id": "cleared",
                        "label": "Cleared",
                        "fields": [{"id": "boe", "label": "BOE", "type": "file"}],
                    }
                ],
            },
        ]
    }
)


@pytest.mark.parametrize(
    "segments",
    [
        [],
        ["ref"],
        ["trucks", "0", "plate"],
        ["a.b", "c"],
        ["with space", "percent%2E", "colon:here"],
        ["ünïcode", "emoji🚚"],
        ["12", "007"],
    ],
)
def test_encode_decode_round_trip(segments):
    assert decode_field_path(encode_field_path(segments)) == segments


def test_encoded_path_escapes_separator_and_colon():
    encoded = encode_field_path(["a.b", "x:y"])
    assert encoded == "a%2Eb.x%3Ay"
    assert ":" not in encoded


def test_decode_empty_path():
    assert decode_field_path("") == []
    assert decode_field_path(None) == []


def test_form_key_names():
    assert field_input_name(["trucks", "1", "plate"]) == "field:trucks.1.plate"
    assert field_removal_name(["trucks", "1"]) == "field-remove:trucks.1"


def test_doc_type_round_trip():
    doc_type = step_field_doc_type(42, encode_field_path(["trucks", "0", "cmr"]))
    assert doc_type == "STEP_FIELD:42:trucks.0.cmr"
    ref = parse_step_field_doc_type(doc_type)
    assert ref is not None
    assert ref.step_id == 42
    assert decode_field_path(ref.path) == ["trucks", "0", "cmr"]


@pytest.mark.parametrize("doc_type", ["INVOICE", "STEP_FIELD:abc:x", "STEP_FIELD:12", ""])
def test_parse_doc_type_rejects_other_types(doc_type):
    assert parse_step_field_doc_type(doc_type) is None


def test_describe_field_path_uses_labels_and_item_numbers():
    assert describe_field_path(SCHEMA, ["trucks", "1", "plate"]) == "Trucks / Item 2 / Plate"
    assert describe_field_path(SCHEMA, ["customs", "cleared", "boe"]) == "Customs / Cleared / BOE"
    assert describe_field_path(SCHEMA, ["unknown"]) is None


def test_find_field_and_required_file():
    assert find_field_at_path(SCHEMA, ["trucks", "0", "plate"]).label == "Plate"
    assert find_field_at_path(SCHEMA, ["trucks", "plate"]) is None
    assert is_file_field_required(SCHEMA, ["trucks", "3", "cmr"]) is True
    assert is_file_field_required(SCHEMA, ["customs", "cleared", "boe"]) is False
    assert is_file_field_required(SCHEMA, ["ref"]) is False


@pytest.mark.parametrize(
    "segment,expected",
    [("0", True), ("12", True), ("", False), (None, False), ("1\n", False), ("١", False), ("1a", False)],
)
def test_index_segments_are_ascii_digits_only(segment, expected):
    assert is_index_segment(segment) is expected
