import json
from datetime import datetime, timezone

import pytest

from stepflow.config import reload_step_engine_config
from stepflow.core.models.step import StatusBlockReason, StepRecord, StepStatus
from stepflow.core.services.errors import INVALID_REQUEST, NOT_FOUND, StepEditError
from stepflow.core.services.step_edit import (
    ShipmentSnapshot,
    StepEditRequest,
    build_step_edit_request,
    process_step_edit,
)
from stepflow.core.step_fields.form_data import StepFieldUpload, UploadedFile
from stepflow.core.step_fields.goods import GoodsAllocation
from stepflow.core.step_fields.merge import StepFieldUpdate
from stepflow.core.step_fields.values import StepValues
from stepflow.core.telemetry.metrics import get_counters

NOW = datetime(2024, 5, 2, 8, 0, tzinfo=timezone.utc)

DELIVERY_SCHEMA = {
    "fields": [
        {"id": "ref", "label": "Container number", "type": "text", "required": True},
        {"id": "doc", "label": "Proof of delivery", "type": "file", "required": True},
        {"id": "eta", "label": "Arrival", "type": "date", "linkToGlobal": "eta"},
        {"id": "delivered", "label": "Delivered", "type": "boolean"},
        {"id": "goods", "label": "Goods", "type": "shipment_goods"},
        {
            "id": "trucks",
            "type": "group",
            "repeatable": True,
            "fields": [{"id": "plate", "type": "text"}, {"id": "cmr", "type": "file"}],
        },
    ]
}

DEMURRAGE_SCHEMA = {
    "fields": [
        {
            "id": "free_days",
            "type": "number",
            "linkToGlobal": "eta",
            "stopCountdownPath": "5:delivered",
        }
    ]
}

POD = UploadedFile(filename="pod.pdf", content=b"%PDF-1.4", content_type="application/pdf")


def make_step(**overrides):
    fields = dict(
        id=5,
        shipment_id=1,
        status=StepStatus.PENDING,
        name="Delivery",
        field_schema_json=json.dumps(DELIVERY_SCHEMA),
        field_values_json=json.dumps({"trucks": [{"plate": "A"}, {"plate": "B"}]}),
    )
    fields.update(overrides)
    return StepRecord(**fields)


def make_shipment(step, **overrides):
    demurrage = StepRecord(
        id=9,
        shipment_id=1,
        status=StepStatus.IN_PROGRESS,
        name="Demurrage",
        field_schema_json=json.dumps(DEMURRAGE_SCHEMA),
        field_values_json=json.dumps({"free_days": "7"}),
    )
    fields = dict(
        shipment_id=1,
        steps={step.id: step, 9: demurrage},
        global_variable_ids=frozenset({"eta"}),
        global_values={"eta": "2024-04-30"},
    )
    fields.update(overrides)
    return ShipmentSnapshot(**fields)


def make_request(*, status="DONE", uploads=(), **overrides):
    fields = dict(
        step_id=5,
        status=status,
        notes="Driver called ahead",
        updates=(
            StepFieldUpdate(("ref",), "MSCU1234567"),
            StepFieldUpdate(("eta",), "2024-05-01"),
            StepFieldUpdate(("goods", "good-12"), "4"),
        ),
        uploads=tuple(uploads),
    )
    fields.update(overrides)
    return StepEditRequest(**fields)


def test_done_with_required_upload_is_applied():
    step = make_step()
    outcome = process_step_edit(
        make_request(uploads=[StepFieldUpload(("doc",), POD)]), step, make_shipment(step), now=NOW
    )

    assert outcome.decision.applied is StepStatus.DONE
    assert outcome.decision.newly_done
    assert outcome.error_code is None
    assert outcome.requirements.satisfied
    assert [(d.document_type, d.is_required, d.source) for d in outcome.documents] == [
        ("STEP_FIELD:5:doc", True, "field")
    ]
    assert outcome.allocations == (GoodsAllocation(shipment_good_id=12, taken_quantity=4),)
    assert outcome.global_values == {"eta": "2024-05-01"}
    assert outcome.identifiers.container_number == "MSCU1234567"
    assert outcome.activity_message == 'Step "Delivery" → Done'
    assert get_counters() == {"step_edit.status_applied": 1}


def test_missing_upload_keeps_status_but_saves_values_and_notes():
    step = make_step()
    outcome = process_step_edit(make_request(), step, make_shipment(step), now=NOW)

    assert outcome.decision.applied is None
    assert outcome.decision.reason is StatusBlockReason.MISSING_REQUIREMENTS
    assert outcome.decision.resulting_status is StepStatus.PENDING
    assert outcome.error_code == "missing_requirements"
    assert outcome.requirements.missing_field_paths == {"doc"}
    assert outcome.notes == "Driver called ahead"
    assert outcome.values.values["ref"] == "MSCU1234567"
    assert outcome.allocations == ()
    assert outcome.activity_message == 'Step "Delivery" requirements saved'
    assert get_counters() == {"step_edit.refused.missing_requirements": 1}


def test_previously_received_document_satisfies_file_field():
    step = make_step()
    shipment = make_shipment(step, received_doc_types=frozenset({"STEP_FIELD:5:doc"}))
    outcome = process_step_edit(make_request(), step, shipment, now=NOW)
    assert outcome.decision.applied is StepStatus.DONE


def test_optional_repeatable_upload_is_registered_as_not_required():
    step = make_step()
    upload = StepFieldUpload(("trucks", "1", "cmr"), POD)
    outcome = process_step_edit(make_request(status="IN_PROGRESS", uploads=[upload]), step, make_shipment(step), now=NOW)
    assert [(d.document_type, d.is_required) for d in outcome.documents] == [
        ("STEP_FIELD:5:trucks.1.cmr", False)
    ]
    assert outcome.decision.applied is StepStatus.IN_PROGRESS


def test_blocking_exception_refuses_status_change():
    step = make_step()
    shipment = make_shipment(step, has_blocking_exception=True)
    outcome = process_step_edit(
        make_request(uploads=[StepFieldUpload(("doc",), POD)]), step, shipment, now=NOW
    )
    assert outcome.decision.reason is StatusBlockReason.BLOCKED_BY_EXCEPTION
    assert outcome.error_code == "blocked_by_exception"
    assert outcome.documents
    assert outcome.allocations == ()


def test_unmet_dependency_refuses_done():
    step = make_step(depends_on_step_ids_json="[9]")
    outcome = process_step_edit(
        make_request(uploads=[StepFieldUpload(("doc",), POD)]), step, make_shipment(step), now=NOW
    )
    assert outcome.decision.reason is StatusBlockReason.BLOCKED_BY_DEPENDENCIES
    assert outcome.activity_message == 'Step "Delivery" saved (waiting on dependencies)'


def test_allocations_only_on_transition_to_done():
    step = make_step(status=StepStatus.DONE)
    outcome = process_step_edit(
        make_request(uploads=[StepFieldUpload(("doc",), POD)]), step, make_shipment(step), now=NOW
    )
    assert outcome.decision.applied is StepStatus.DONE
    assert not outcome.decision.changed
    assert outcome.allocations == ()


def test_stop_condition_freezes_dependent_sibling():
    step = make_step()
    request = make_request(status="IN_PROGRESS", updates=(StepFieldUpdate(("delivered",), "on"),))
    outcome = process_step_edit(request, step, make_shipment(step), now=NOW)

    assert [u.step_id for u in outcome.sibling_updates] == [9]
    sibling = outcome.sibling_updates[0].values
    assert sibling.freeze == {"free_days": NOW.isoformat()}
    assert sibling.values == {"free_days": "7"}


def test_removal_leaves_gap_and_reports_index():
    step = make_step()
    request = make_request(status="PENDING", updates=(), removals=(("trucks", "0"),))
    outcome = process_step_edit(request, step, make_shipment(step), now=NOW)
    assert outcome.values.values["trucks"] == [None, {"plate": "B"}]
    assert outcome.removed_indices == {"trucks": {0}}
    stored = StepValues.from_json(outcome.values_json)
    assert stored.values["trucks"] == [None, {"plate": "B"}]


def test_removal_compacts_when_configured(monkeypatch):
    monkeypatch.setenv("STEPFLOW_COMPACT_REMOVED_ITEMS", "true")
    reload_step_engine_config()
    step = make_step()
    request = make_request(status="PENDING", updates=(), removals=(("trucks", "0"),))
    outcome = process_step_edit(request, step, make_shipment(step), now=NOW)
    assert outcome.values.values["trucks"] == [{"plate": "B"}]


def test_unchanged_globals_are_not_returned():
    step = make_step()
    shipment = make_shipment(step, global_values={"eta": "2024-05-01"})
    outcome = process_step_edit(make_request(status="PENDING"), step, shipment, now=NOW)
    assert outcome.global_values is None


@pytest.mark.parametrize(
    "request_overrides,shipment_id,code",
    [
        ({"step_id": 6}, 1, INVALID_REQUEST),
        ({"status": "FINISHED"}, 1, INVALID_REQUEST),
        ({}, 2, NOT_FOUND),
    ],
)
def test_invalid_requests_raise(request_overrides, shipment_id, code):
    step = make_step()
    shipment = make_shipment(step, shipment_id=shipment_id)
    with pytest.raises(StepEditError) as excinfo:
        process_step_edit(make_request(**request_overrides), step, shipment, now=NOW)
    assert excinfo.value.code == code


def test_build_request_from_form_entries():
    step = make_step(
        checklist_groups_json=json.dumps([{"name": "Port", "items": [{"label": "Gate out"}]}])
    )
    entries = [
        ("stepId", "5"),
        ("status", "done"),
        ("notes", "  "),
        ("field:ref", " MSCU1 "),
        ("field:doc", POD),
        ("field-remove:trucks.1", ""),
        ("checklist:PORT:GATE_OUT:date", "2024-05-02"),
        ("checklist:PORT:GATE_OUT:file", POD),
    ]
    request = build_step_edit_request(entries, step)
    assert request.step_id == 5
    assert request.status == "done"
    assert request.notes is None
    assert request.updates == (StepFieldUpdate(("ref",), "MSCU1"),)
    assert request.removals == (("trucks", "1"),)
    assert [u.path for u in request.uploads] == [("doc",)]
    assert request.checklist_dates == {"checklist:PORT:GATE_OUT:date": "2024-05-02"}
    assert [u.document_type for u in request.checklist_uploads] == ["PORT_GATE_OUT"]

    outcome = process_step_edit(request, step, make_shipment(step), now=NOW)
    assert outcome.decision.applied is StepStatus.DONE
    assert [d.source for d in outcome.documents] == ["checklist", "field"]
    assert outcome.values.values["checklist:PORT:GATE_OUT:date"] == "2024-05-02"


def test_build_request_rejects_bad_step_id():
    with pytest.raises(StepEditError) as excinfo:
        build_step_edit_request([("stepId", "abc")], make_step())
    assert excinfo.value.code == INVALID_REQUEST


def _fleet_step(**overrides):
    schema = {
        "fields": [
            {
                "id": "trucks",
                "type": "group",
                "repeatable": True,
                "fields": [
                    {"id": "plate", "type": "text"},
                    {"id": "cmr", "type": "file", "required": True},
                ],
            }
        ]
    }
    return make_step(
        field_schema_json=json.dumps(schema),
        field_values_json=json.dumps({"trucks": [{"plate": "A"}, {"plate": "B"}]}),
        **overrides,
    )


def test_compaction_skipped_when_items_hold_indexed_documents(monkeypatch):
    monkeypatch.setenv("STEPFLOW_COMPACT_REMOVED_ITEMS", "1")
    reload_step_engine_config()
    step = _fleet_step()
    shipment = make_shipment(step, received_doc_types=frozenset({"STEP_FIELD:5:trucks.0.cmr"}))
    request = make_request(updates=(), removals=(("trucks", "0"),))
    outcome = process_step_edit(request, step, shipment, now=NOW)

    assert outcome.values.values["trucks"] == [None, {"plate": "B"}]
    assert outcome.requirements.missing_field_paths == {"trucks.1.cmr"}
    assert outcome.decision.reason is StatusBlockReason.MISSING_REQUIREMENTS


def test_compaction_skipped_for_uploads_in_the_same_request(monkeypatch):
    monkeypatch.setenv("STEPFLOW_COMPACT_REMOVED_ITEMS", "1")
    reload_step_engine_config()
    step = _fleet_step()
    upload = StepFieldUpload(("trucks", "1", "cmr"), POD)
    request = make_request(updates=(), removals=(("trucks", "0"),), uploads=[upload])
    outcome = process_step_edit(request, step, make_shipment(step), now=NOW)

    assert outcome.values.values["trucks"] == [None, {"plate": "B"}]
    assert outcome.decision.applied is StepStatus.DONE
