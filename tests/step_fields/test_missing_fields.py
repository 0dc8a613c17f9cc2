"""Requirement evaluation over step field schemas.

``required`` is applied the same way to every leaf type: text, number and
date need a non-blank value, checkboxes need a truthy value and files need a
received document.
"""

import pytest

from stepflow.core.step_fields.merge import StepFieldUpdate, merge_step_values
from stepflow.core.step_fields.paths import step_field_doc_type
from stepflow.core.step_fields.requirements import (
    RequirementContext,
    collect_boolean_field_options,
    collect_choice_resolutions,
    collect_flat_field_values,
    collect_missing_field_paths,
    has_any_field_value,
    has_missing_under_path,
)
from stepflow.core.step_fields.choices import OptionStatus
from stepflow.core.step_fields.schema import parse_step_field_schema

STEP_ID = 7


def _ctx(values, doc_paths=()):
    doc_types = frozenset(step_field_doc_type(STEP_ID, path) for path in doc_paths)
    return RequirementContext(step_id=STEP_ID, values=values, doc_types=doc_types)


def _schema(*fields):
    return parse_step_field_schema({"fields": list(fields)})


@pytest.mark.parametrize("field_type", ["text", "number", "date"])
@pytest.mark.parametrize(
    "value,missing",
    [(None, True), ("", True), ("   ", True), ("x", False), ("0", False)],
)
def test_required_text_like_leaves(field_type, value, missing):
    schema = _schema({"id": "f", "type": field_type, "required": True})
    values = {} if value is None else {"f": value}
    assert (collect_missing_field_paths(schema, _ctx(values)) == {"f"}) is missing


@pytest.mark.parametrize(
    "value,missing",
    [
        ("1", False),
        ("TRUE", False),
        ("Yes", False),
        ("on", False),
        (True, False),
        ("0", True),
        ("false", True),
        ("checked", True),
        (None, True),
    ],
)
def test_required_boolean_uses_truthy_set(value, missing):
    schema = _schema({"id": "ok", "type": "boolean", "required": True})
    values = {} if value is None else {"ok": value}
    assert (collect_missing_field_paths(schema, _ctx(values)) == {"ok"}) is missing


def test_optional_leaves_are_never_missing():
    schema = _schema({"id": "a", "type": "text"}, {"id": "b", "type": "boolean"}, {"id": "c", "type": "file"})
    assert collect_missing_field_paths(schema, _ctx({})) == set()


def test_file_presence_comes_from_documents_only():
    schema = _schema({"id": "doc", "type": "file", "required": True})
    assert collect_missing_field_paths(schema, _ctx({"doc": "uploaded.pdf"})) == {"doc"}
    assert collect_missing_field_paths(schema, _ctx({}, ["doc"])) == set()


def test_non_repeatable_group_recurses():
    schema = _schema(
        {
            "id": "seal",
            "type": "group",
            "fields": [
                {"id": "number", "type": "text", "required": True},
                {"id": "photo", "type": "file", "required": True},
            ],
        }
    )
    missing = collect_missing_field_paths(schema, _ctx({"seal": {"number": "S1"}}))
    assert missing == {"seal.photo"}


def test_repeatable_group_checks_each_live_item():
    schema = _schema(
        {
            "id": "trucks",
            "type": "group",
            "repeatable": True,
            "fields": [
                {"id": "plate", "type": "text", "required": True},
                {"id": "cmr", "type": "file", "required": True},
            ],
        }
    )
    values = {"trucks": [{"plate": "A"}, None, {"plate": ""}]}
    missing = collect_missing_field_paths(schema, _ctx(values, ["trucks.0.cmr"]))
    assert missing == {"trucks.2.plate", "trucks.2.cmr"}


def test_required_group_without_data_reports_itself():
    schema = _schema(
        {
            "id": "trucks",
            "type": "group",
            "repeatable": True,
            "required": True,
            "fields": [{"id": "plate", "type": "text"}],
        }
    )
    assert collect_missing_field_paths(schema, _ctx({"trucks": []})) == {"trucks"}
    assert collect_missing_field_paths(schema, _ctx({"trucks": [{"plate": "A"}]})) == set()


def test_removing_a_satisfying_value_makes_the_leaf_missing():
    schema = _schema(
        {"id": "ref", "type": "text", "required": True},
        {
            "id": "seal",
            "type": "group",
            "fields": [{"id": "number", "type": "text", "required": True}],
        },
    )
    values = merge_step_values(
        {},
        [
            StepFieldUpdate(path=("ref",), value="R"),
            StepFieldUpdate(path=("seal", "number"), value="S"),
        ],
        [],
    )
    assert collect_missing_field_paths(schema, _ctx(values)) == set()

    pruned = merge_step_values(values, [], [("seal", "number")])
    assert collect_missing_field_paths(schema, _ctx(pruned)) == {"seal.number"}
    pruned = merge_step_values(pruned, [], [("ref",)])
    assert collect_missing_field_paths(schema, _ctx(pruned)) == {"ref", "seal.number"}


CUSTOMS = {
    "id": "customs",
    "type": "choice",
    "options": [
        {
            "id": "inspection",
            "label": "Inspection",
            "fields": [
                {"id": "report", "type": "file", "required": True},
                {"id": "officer", "type": "text", "required": True},
            ],
        },
        {
            "id": "cleared",
            "label": "Cleared",
            "is_final": True,
            "fields": [{"id": "release", "type": "file", "required": True}],
        },
    ],
}


def test_choice_active_option_feeds_missing_set():
    schema = _schema(CUSTOMS)
    values = {"customs": {"inspection": {"officer": "Ann"}}}
    assert collect_missing_field_paths(schema, _ctx(values)) == {"customs.inspection.report"}


def test_choice_without_data_defaults_to_first_option():
    schema = _schema(CUSTOMS)
    assert collect_missing_field_paths(schema, _ctx({})) == {
        "customs.inspection.report",
        "customs.inspection.officer",
    }


def test_complete_final_option_supersedes_others():
    schema = _schema(CUSTOMS)
    values = {"customs": {"inspection": {"officer": "Ann"}}}
    ctx = _ctx(values, ["customs.cleared.release"])

    assert collect_missing_field_paths(schema, ctx) == set()
    resolution = collect_choice_resolutions(schema, ctx)["customs"]
    assert resolution.resolved
    assert resolution.status_of("inspection") is OptionStatus.SUPERSEDED
    # superseded values are kept
    assert values["customs"]["inspection"] == {"officer": "Ann"}


def test_incomplete_final_option_does_not_supersede():
    schema = _schema(
        {
            "id": "c",
            "type": "choice",
            "options": [
                {"id": "a", "fields": [{"id": "x", "type": "text", "required": True}]},
                {
                    "id": "b",
                    "is_final": True,
                    "fields": [
                        {"id": "y", "type": "text", "required": True},
                        {"id": "z", "type": "text", "required": True},
                    ],
                },
            ],
        }
    )
    values = {"c": {"b": {"y": "1"}}}
    assert collect_missing_field_paths(schema, _ctx(values)) == {"c.b.z"}


def test_required_choice_without_data_reports_itself():
    schema = _schema(
        {
            "id": "c",
            "type": "choice",
            "required": True,
            "options": [{"id": "a", "fields": [{"id": "x", "type": "text"}]}],
        }
    )
    assert collect_missing_field_paths(schema, _ctx({})) == {"c"}
    assert collect_missing_field_paths(schema, _ctx({"c": {"a": {"x": "v"}}})) == set()


def test_has_missing_under_path():
    missing = {"trucks.0.cmr", "customs"}
    assert has_missing_under_path(missing, "trucks")
    assert has_missing_under_path(missing, "trucks.0")
    assert has_missing_under_path(missing, "customs")
    assert not has_missing_under_path(missing, "truck")
    assert not has_missing_under_path(missing, "trucks.1")


def test_has_any_field_value_counts_documents():
    schema = _schema(CUSTOMS)
    ctx = _ctx({}, ["customs.cleared.release"])
    assert has_any_field_value(schema.fields, ctx, [], {})
    assert not has_any_field_value(schema.fields, _ctx({}), [], {"customs": {"cleared": {}}})


def test_shape_mismatch_degrades_to_no_value():
    schema = _schema(
        {"id": "g", "type": "group", "repeatable": True, "fields": [{"id": "x", "type": "text", "required": True}]},
        {"id": "h", "type": "group", "fields": [{"id": "y", "type": "text", "required": True}]},
    )
    values = {"g": {"0": {"x": "v"}}, "h": ["not", "a", "map"]}
    assert collect_missing_field_paths(schema, _ctx(values)) == {"h.y"}


def test_flat_values_and_boolean_options():
    schema = _schema(
        {"id": "container", "label": "Container No", "type": "text"},
        {"id": "done", "label": "Returned", "type": "boolean"},
        {
            "id": "g",
            "label": "Details",
            "type": "group",
            "fields": [{"id": "bl", "label": "BL Number", "type": "text"}, {"id": "ok", "label": "Checked", "type": "boolean"}],
        },
        {
            "id": "r",
            "type": "group",
            "repeatable": True,
            "fields": [{"id": "flag", "type": "boolean"}],
        },
    )
    flat = collect_flat_field_values(schema, {"container": "MSCU1", "g": {"bl": " B1 "}})
    assert flat == {"Container No": "MSCU1", "BL Number": " B1 "}

    options = collect_boolean_field_options(schema)
    assert [(o.encoded_path, o.label) for o in options] == [
        ("done", "Returned"),
        ("g.ok", "Details / Checked"),
    ]
