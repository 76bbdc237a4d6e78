"""
Treatment plan synchronizer.

A doctor's plan save overwrites the clinical fields of the plan, mirrors them
onto the appointment, then fans out into the lab request and pharmacy order
for the same appointment. The plan commit comes first; the derived records
are committed separately and a failure there is logged, never raised.
"""
import json
import logging
import secrets
import uuid
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from clinicflow.config import settings
from clinicflow.database.models import (
    Appointment,
    AppointmentStatus,
    Laboratory,
    LabRequest,
    LabTestStatus,
    OrderPaymentStatus,
    OrderStatus,
    PharmacyOrder,
    TreatmentPlan,
)
from clinicflow.errors import ForbiddenError, NotFoundError, ValidationError
from clinicflow.services.storage import UploadPayload, validate_upload

logger = logging.getLogger(__name__)

PLAN_FOLDER = "treatment-plans"


# ==================== FIELD PARSING ====================

def parse_list_field(raw: Any, field_name: str) -> List[Any]:
    """
    Decode a list field from its transport form.

    Accepts a list, a JSON-encoded list or nothing. Anything unparseable is
    logged and treated as an empty list so the rest of the plan still saves.
    """
    if raw is None or raw == "":
        return []
    if isinstance(raw, list):
        return raw
    if isinstance(raw, (str, bytes)):
        try:
            value = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Could not parse {field_name}; treating it as empty")
            return []
        if isinstance(value, list):
            return value
    logger.warning(f"{field_name} is not a list; treating it as empty")
    return []


def normalize_lab_tests(entries: List[Any]) -> List[str]:
    names = []
    for entry in entries:
        if isinstance(entry, dict):
            entry = entry.get("name") or entry.get("testName") or entry.get("test_name")
        if isinstance(entry, str) and entry.strip():
            names.append(entry.strip())
    return names


def normalize_diet_plan(entries: List[Any]) -> List[Any]:
    plan = []
    for entry in entries:
        if isinstance(entry, str):
            if entry.strip():
                plan.append(entry.strip())
        elif isinstance(entry, dict) and entry:
            plan.append(entry)
    return plan


def normalize_medications(entries: List[Any]) -> List[dict]:
    """Map client medication shapes onto {medicine_name, frequency, duration}"""
    medications = []
    for entry in entries:
        if isinstance(entry, str):
            entry = {"name": entry}
        if not isinstance(entry, dict):
            continue
        name = entry.get("medicineName") or entry.get("medicine_name") or entry.get("name")
        if not name or not str(name).strip():
            continue
        medications.append({
            "medicine_name": str(name).strip(),
            "frequency": str(entry.get("frequency") or ""),
            "duration": str(entry.get("duration") or ""),
        })
    return medications


# ==================== FAN-OUT ====================

def _sync_lab_request(
    db: Session, appointment: Appointment, test_names: List[str], lab_id: Optional[int]
) -> Optional[LabRequest]:
    try:
        request = db.query(LabRequest).filter(LabRequest.appointment_id == appointment.id).first()
        if request:
            request.test_names = list(test_names)
        else:
            request = LabRequest(
                id=f"LAB{secrets.token_hex(5).upper()}",
                appointment_id=appointment.id,
                patient_id=appointment.patient_id or "N/A",
                user_id=appointment.user_id,
                doctor_user_id=appointment.doctor_user_id,
                lab_id=lab_id,
                test_names=list(test_names),
            )
            db.add(request)
        db.commit()
        logger.info(f"Lab request {request.id} synced for appointment {appointment.id}")
        return request
    except Exception:
        db.rollback()
        logger.exception(f"Lab request sync failed for appointment {appointment.id}")
        return None


def _sync_pharmacy_order(
    db: Session, appointment: Appointment, items: List[dict]
) -> Optional[PharmacyOrder]:
    try:
        order = db.query(PharmacyOrder).filter(PharmacyOrder.appointment_id == appointment.id).first()
        if order:
            order.items = list(items)
        else:
            order = PharmacyOrder(
                id=f"ORD{secrets.token_hex(5).upper()}",
                appointment_id=appointment.id,
                patient_id=appointment.patient_id or "N/A",
                user_id=appointment.user_id,
                doctor_user_id=appointment.doctor_user_id,
                items=list(items),
                payment_status=OrderPaymentStatus.PENDING.value,
                order_status=OrderStatus.UPCOMING.value,
            )
            db.add(order)
        db.commit()
        logger.info(f"Pharmacy order {order.id} synced for appointment {appointment.id}")
        return order
    except Exception:
        db.rollback()
        logger.exception(f"Pharmacy order sync failed for appointment {appointment.id}")
        return None


# ==================== OPERATIONS ====================

def get_plan(db: Session, appointment_id: str) -> Optional[TreatmentPlan]:
    return db.query(TreatmentPlan).filter(TreatmentPlan.appointment_id == appointment_id).first()


def save_plan(
    db: Session,
    storage,
    appointment_id: str,
    acting_user_id: int,
    diagnosis: Optional[str] = None,
    prescription_description: Optional[str] = None,
    lab_tests: Any = None,
    diet_plan: Any = None,
    medications: Any = None,
    attachment: Optional[UploadPayload] = None,
    new_status: Optional[str] = None,
    lab_id: Optional[int] = None,
) -> TreatmentPlan:
    """
    Save the doctor's plan for an appointment and fan it out.

    Omitted text fields are cleared and omitted lists become empty; the
    caller resends anything it wants to keep. Attachments are only ever
    appended here.
    """
    appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
    if not appointment:
        raise NotFoundError("Appointment not found")
    if appointment.doctor_user_id != acting_user_id:
        raise ForbiddenError("Not authorized to update this treatment plan")

    if new_status:
        try:
            new_status = AppointmentStatus(new_status).value
        except ValueError:
            raise ValidationError(f"Invalid appointment status: {new_status}")
    if lab_id is not None and not db.query(Laboratory).filter(Laboratory.id == lab_id).first():
        raise NotFoundError("Laboratory not found")

    plan = get_plan(db, appointment_id)
    attachments = list(plan.attachments or []) if plan else []

    # 1. attachment
    if attachment is not None:
        filename = validate_upload(attachment, settings.MAX_PLAN_ATTACHMENT_BYTES)
        stored = storage.store(attachment.content, filename, PLAN_FOLDER)
        attachments.append({
            "id": uuid.uuid4().hex,
            "url": stored.url,
            "storage_id": stored.storage_id,
            "name": filename,
            "uploaded_at": datetime.now().isoformat(),
        })

    # 2. text fields
    diagnosis = diagnosis or ""
    prescription_description = prescription_description or ""

    # 3. list fields
    lab_tests = normalize_lab_tests(parse_list_field(lab_tests, "labTests"))
    diet_plan = normalize_diet_plan(parse_list_field(diet_plan, "dietPlan"))
    medications = normalize_medications(parse_list_field(medications, "pharmacy"))

    # 4. upsert
    if plan is None:
        plan = TreatmentPlan(
            appointment_id=appointment.id,
            doctor_user_id=acting_user_id,
            patient_id=appointment.patient_id,
        )
        db.add(plan)
    plan.diagnosis = diagnosis
    plan.prescription_description = prescription_description
    plan.lab_tests = lab_tests
    plan.diet_plan = diet_plan
    plan.medications = medications
    plan.attachments = attachments

    # 5. mirror
    appointment.diagnosis = diagnosis
    appointment.prescription_description = prescription_description
    appointment.lab_tests = lab_tests
    appointment.diet_plan = diet_plan
    appointment.medications = medications

    # 6. status
    if new_status:
        appointment.status = new_status

    db.commit()
    db.refresh(plan)
    logger.info(
        f"Treatment plan saved for appointment {appointment.id}: "
        f"{len(lab_tests)} lab tests, {len(medications)} medications, {len(attachments)} attachments"
    )

    # 7. fan-out
    if lab_tests:
        _sync_lab_request(db, appointment, lab_tests, lab_id)
    if medications:
        _sync_pharmacy_order(db, appointment, medications)

    return plan


def delete_plan_file(db: Session, appointment_id: str, file_id: str, acting_user_id: int) -> Optional[TreatmentPlan]:
    """Drop one attachment by id; a missing id or plan is not an error"""
    plan = get_plan(db, appointment_id)
    if plan is None:
        return None
    if plan.doctor_user_id != acting_user_id:
        raise ForbiddenError("Not authorized to update this treatment plan")

    remaining = [item for item in (plan.attachments or []) if item.get("id") != file_id]
    if len(remaining) != len(plan.attachments or []):
        plan.attachments = remaining
        db.commit()
        db.refresh(plan)
        logger.info(f"Removed attachment {file_id} from plan for appointment {appointment_id}")
    return plan


def serialize_plan(plan: TreatmentPlan) -> dict:
    return {
        "id": plan.id,
        "appointment_id": plan.appointment_id,
        "doctor_user_id": plan.doctor_user_id,
        "patient_id": plan.patient_id,
        "diagnosis": plan.diagnosis,
        "prescription_description": plan.prescription_description,
        "lab_tests": plan.lab_tests or [],
        "diet_plan": plan.diet_plan or [],
        "medications": plan.medications or [],
        "attachments": plan.attachments or [],
        "updated_at": plan.updated_at.isoformat() if plan.updated_at else None,
    }
