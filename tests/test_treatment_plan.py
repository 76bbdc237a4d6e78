import json
import logging

import pytest
from sqlalchemy.exc import OperationalError

from clinicflow.database.models import (
    AppointmentStatus,
    LabPaymentStatus,
    LabRequest,
    OrderStatus,
    PharmacyOrder,
    TreatmentPlan,
)
from clinicflow.errors import ForbiddenError, NotFoundError, ValidationError
from clinicflow.services import treatment
from clinicflow.services.storage import UploadPayload

from conftest import PDF_BYTES


def save(db, storage, appointment, doctor_user, **fields):
    return treatment.save_plan(db, storage, appointment.id, doctor_user.id, **fields)


def lab_requests(db, appointment):
    return db.query(LabRequest).filter(LabRequest.appointment_id == appointment.id).all()


def pharmacy_orders(db, appointment):
    return db.query(PharmacyOrder).filter(PharmacyOrder.appointment_id == appointment.id).all()


# ==================== FAN-OUT ====================

def test_lab_tests_without_medications_creates_only_lab_request(db_session, storage, appointment, doctor_user):
    save(db_session, storage, appointment, doctor_user, lab_tests=json.dumps(["CBC"]), medications="[]")

    requests = lab_requests(db_session, appointment)
    assert len(requests) == 1
    assert requests[0].test_names == ["CBC"]
    assert requests[0].id.startswith("LAB")
    assert requests[0].user_id == appointment.user_id
    assert requests[0].doctor_user_id == doctor_user.id
    assert pharmacy_orders(db_session, appointment) == []


def test_second_save_replaces_tests_and_creates_order(db_session, storage, appointment, doctor_user):
    save(db_session, storage, appointment, doctor_user, lab_tests=json.dumps(["CBC"]), medications="[]")
    first_request = lab_requests(db_session, appointment)[0]

    save(
        db_session, storage, appointment, doctor_user,
        lab_tests=json.dumps(["CBC", "Lipid Profile"]),
        medications=json.dumps([{"medicineName": "Paracetamol"}]),
    )

    requests = lab_requests(db_session, appointment)
    assert [r.id for r in requests] == [first_request.id]
    assert requests[0].test_names == ["CBC", "Lipid Profile"]

    orders = pharmacy_orders(db_session, appointment)
    assert len(orders) == 1
    assert orders[0].id.startswith("ORD")
    assert orders[0].items == [{"medicine_name": "Paracetamol", "frequency": "", "duration": ""}]
    assert orders[0].order_status == OrderStatus.UPCOMING.value


def test_repeated_save_is_not_a_union(db_session, storage, appointment, doctor_user):
    save(db_session, storage, appointment, doctor_user, lab_tests=["CBC", "TSH"])
    save(db_session, storage, appointment, doctor_user, lab_tests=["TSH"])

    requests = lab_requests(db_session, appointment)
    assert len(requests) == 1
    assert requests[0].test_names == ["TSH"]


def test_update_keeps_lab_payment_and_order_state(db_session, storage, appointment, doctor_user):
    save(db_session, storage, appointment, doctor_user, lab_tests=["CBC"], medications=[{"name": "Folic Acid"}])
    request = lab_requests(db_session, appointment)[0]
    order = pharmacy_orders(db_session, appointment)[0]
    request.payment_status = LabPaymentStatus.PAID.value
    request.amount = 450
    order.order_status = OrderStatus.COMPLETED.value
    db_session.commit()

    save(db_session, storage, appointment, doctor_user, lab_tests=["CBC", "HbA1c"],
         medications=[{"medicine_name": "Folic Acid", "frequency": "1-0-0", "duration": "30 days"}])

    db_session.refresh(request)
    db_session.refresh(order)
    assert request.payment_status == LabPaymentStatus.PAID.value
    assert request.amount == 450
    assert request.test_names == ["CBC", "HbA1c"]
    assert order.order_status == OrderStatus.COMPLETED.value
    assert order.items[0]["frequency"] == "1-0-0"


def test_empty_medications_never_creates_order(db_session, storage, appointment, doctor_user):
    save(db_session, storage, appointment, doctor_user, medications="[]")
    save(db_session, storage, appointment, doctor_user)

    assert pharmacy_orders(db_session, appointment) == []
    assert lab_requests(db_session, appointment) == []


def test_lab_id_is_recorded_on_new_request(db_session, storage, appointment, doctor_user, laboratory):
    save(db_session, storage, appointment, doctor_user, lab_tests=["CBC"], lab_id=laboratory.id)
    assert lab_requests(db_session, appointment)[0].lab_id == laboratory.id


def test_unknown_lab_is_rejected_before_saving(db_session, storage, appointment, doctor_user):
    with pytest.raises(NotFoundError):
        save(db_session, storage, appointment, doctor_user, lab_tests=["CBC"], lab_id=999)
    assert treatment.get_plan(db_session, appointment.id) is None


def test_fan_out_failure_keeps_the_plan(db_session, storage, appointment, doctor_user, monkeypatch, caplog):
    real_commit = db_session.commit
    calls = []

    def flaky_commit():
        calls.append(1)
        # the plan commit goes through; the lab request commit fails
        if len(calls) == 2:
            raise OperationalError("INSERT INTO lab_requests", {}, Exception("database is locked"))
        real_commit()

    monkeypatch.setattr(db_session, "commit", flaky_commit)

    with caplog.at_level(logging.ERROR, logger="clinicflow.services.treatment"):
        plan = save(db_session, storage, appointment, doctor_user, diagnosis="PCOS",
                    lab_tests=["CBC"], medications=[{"medicineName": "Metformin"}])

    assert plan.diagnosis == "PCOS"
    assert db_session.query(TreatmentPlan).count() == 1
    assert lab_requests(db_session, appointment) == []
    assert len(pharmacy_orders(db_session, appointment)) == 1
    assert "Lab request sync failed" in caplog.text


def test_unexpected_fan_out_error_is_logged_not_raised(db_session, storage, appointment, doctor_user, monkeypatch, caplog):
    real_commit = db_session.commit
    calls = []

    def failing_commit():
        calls.append(1)
        if len(calls) == 3:
            raise RuntimeError("order service unavailable")
        real_commit()

    monkeypatch.setattr(db_session, "commit", failing_commit)

    with caplog.at_level(logging.ERROR, logger="clinicflow.services.treatment"):
        plan = save(db_session, storage, appointment, doctor_user, diagnosis="PCOS",
                    lab_tests=["CBC"], medications=[{"medicineName": "Metformin"}])

    assert plan.diagnosis == "PCOS"
    assert len(lab_requests(db_session, appointment)) == 1
    assert pharmacy_orders(db_session, appointment) == []
    assert "Pharmacy order sync failed" in caplog.text


# ==================== PLAN FIELDS ====================

def test_plan_is_mirrored_onto_appointment(db_session, storage, appointment, doctor_user):
    save(db_session, storage, appointment, doctor_user,
         diagnosis="Low AMH", prescription_description="Start stimulation",
         lab_tests=["AMH"], diet_plan=json.dumps(["High protein"]),
         medications=[{"medicineName": "Letrozole", "frequency": "1-0-0", "duration": "5 days"}],
         new_status="completed")

    db_session.refresh(appointment)
    assert appointment.diagnosis == "Low AMH"
    assert appointment.prescription_description == "Start stimulation"
    assert appointment.lab_tests == ["AMH"]
    assert appointment.diet_plan == ["High protein"]
    assert appointment.medications[0]["medicine_name"] == "Letrozole"
    assert appointment.status == AppointmentStatus.COMPLETED.value


def test_omitted_text_clears_previous_value(db_session, storage, appointment, doctor_user):
    save(db_session, storage, appointment, doctor_user, diagnosis="PCOS", prescription_description="Rest")
    plan = save(db_session, storage, appointment, doctor_user)

    assert plan.diagnosis == ""
    assert plan.prescription_description == ""


def test_unparseable_list_is_treated_as_empty(db_session, storage, appointment, doctor_user, caplog):
    with caplog.at_level(logging.WARNING, logger="clinicflow.services.treatment"):
        plan = save(db_session, storage, appointment, doctor_user, diagnosis="PCOS",
                    lab_tests="[not json", diet_plan=json.dumps(["Walk daily"]))

    assert plan.lab_tests == []
    assert plan.diet_plan == ["Walk daily"]
    assert plan.diagnosis == "PCOS"
    assert lab_requests(db_session, appointment) == []
    assert "labTests" in caplog.text


def test_invalid_status_is_rejected(db_session, storage, appointment, doctor_user):
    with pytest.raises(ValidationError):
        save(db_session, storage, appointment, doctor_user, new_status="archived")


def test_only_the_owning_doctor_may_save(db_session, storage, appointment, other_doctor_user):
    with pytest.raises(ForbiddenError):
        treatment.save_plan(db_session, storage, appointment.id, other_doctor_user.id, diagnosis="x")
    assert treatment.get_plan(db_session, appointment.id) is None


def test_missing_appointment(db_session, storage, doctor_user):
    with pytest.raises(NotFoundError):
        treatment.save_plan(db_session, storage, "APTNOPE", doctor_user.id)


# ==================== ATTACHMENTS ====================

def test_attachments_are_appended(db_session, storage, appointment, doctor_user):
    save(db_session, storage, appointment, doctor_user,
         attachment=UploadPayload(content=PDF_BYTES, filename="scan-1.pdf"))
    plan = save(db_session, storage, appointment, doctor_user,
                attachment=UploadPayload(content=PDF_BYTES, filename="scan-2.pdf"))

    assert [a["name"] for a in plan.attachments] == ["scan-1.pdf", "scan-2.pdf"]
    assert all(a["id"] and a["storage_id"] and a["url"] for a in plan.attachments)
    assert [folder for folder, _, _ in storage.files.values()] == ["treatment-plans", "treatment-plans"]


def test_save_without_attachment_keeps_existing(db_session, storage, appointment, doctor_user):
    save(db_session, storage, appointment, doctor_user,
         attachment=UploadPayload(content=PDF_BYTES, filename="scan.pdf"))
    plan = save(db_session, storage, appointment, doctor_user, diagnosis="updated")

    assert len(plan.attachments) == 1


def test_rejected_attachment_saves_nothing(db_session, storage, appointment, doctor_user):
    with pytest.raises(ValidationError):
        save(db_session, storage, appointment, doctor_user,
             attachment=UploadPayload(content=b"MZ\x90\x00", filename="virus.exe"))
    assert storage.files == {}
    assert treatment.get_plan(db_session, appointment.id) is None


def test_delete_plan_file_is_idempotent(db_session, storage, appointment, doctor_user):
    save(db_session, storage, appointment, doctor_user,
         attachment=UploadPayload(content=PDF_BYTES, filename="a.pdf"))
    plan = save(db_session, storage, appointment, doctor_user,
                attachment=UploadPayload(content=PDF_BYTES, filename="b.pdf"))
    first_id = plan.attachments[0]["id"]

    plan = treatment.delete_plan_file(db_session, appointment.id, first_id, doctor_user.id)
    assert [a["name"] for a in plan.attachments] == ["b.pdf"]

    plan = treatment.delete_plan_file(db_session, appointment.id, first_id, doctor_user.id)
    assert [a["name"] for a in plan.attachments] == ["b.pdf"]
    # nothing is removed from the store
    assert len(storage.files) == 2


def test_delete_file_without_plan_is_a_no_op(db_session, appointment, doctor_user):
    assert treatment.delete_plan_file(db_session, appointment.id, "missing", doctor_user.id) is None


# ==================== PARSING ====================

@pytest.mark.parametrize("raw, expected", [
    (None, []),
    ("", []),
    ('["CBC"]', ["CBC"]),
    (["CBC"], ["CBC"]),
    ('{"name": "CBC"}', []),
    ("CBC", []),
])
def test_parse_list_field(raw, expected):
    assert treatment.parse_list_field(raw, "labTests") == expected


def test_medication_name_aliases():
    medications = treatment.normalize_medications([
        {"medicineName": "A"},
        {"medicine_name": "B", "frequency": "1-1-1"},
        {"name": "C", "duration": "3 days"},
        "D",
        {"frequency": "no name"},
    ])
    assert [m["medicine_name"] for m in medications] == ["A", "B", "C", "D"]
    assert medications[1]["frequency"] == "1-1-1"
    assert medications[2]["duration"] == "3 days"
