"""
Slot booking engine.

A slot is a (doctor, date, time label) tuple. The application checks for a
live booking before inserting, and the partial unique index on
``appointments`` settles races between two requests that both pass the check.
"""
import logging
import secrets
from datetime import date, datetime
from typing import Callable, List, Optional, Sequence, Union

from sqlalchemy import and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clinicflow.config import settings
from clinicflow.database.models import (
    Appointment,
    AppointmentStatus,
    Doctor,
    PaymentStatus,
    Service,
    User,
    UserRole,
)
from clinicflow.errors import (
    DoctorNotFound,
    ForbiddenError,
    InvalidDate,
    NotFoundError,
    SlotConflict,
    ValidationError,
)

logger = logging.getLogger(__name__)

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]
SLOT_TAKEN_MESSAGE = "This slot is already booked. Please choose another time."
TIME_LABEL_MAX_LENGTH = 50


# ==================== DOCTOR RESOLUTION ====================

def _by_record_id(db: Session, identifier: str) -> Optional[Doctor]:
    if not identifier.isdigit():
        return None
    return db.query(Doctor).filter(Doctor.id == int(identifier)).first()


def _by_owner_user_id(db: Session, identifier: str) -> Optional[Doctor]:
    if not identifier.isdigit():
        return None
    return db.query(Doctor).filter(Doctor.user_id == int(identifier)).first()


def _by_legacy_code(db: Session, identifier: str) -> Optional[Doctor]:
    return db.query(Doctor).filter(Doctor.doctor_code == identifier).first()


DOCTOR_LOOKUPS: Sequence[Callable[[Session, str], Optional[Doctor]]] = (
    _by_record_id,
    _by_owner_user_id,
    _by_legacy_code,
)


def resolve_doctor(db: Session, doctor_identifier: Union[str, int, None]) -> Doctor:
    """Try each lookup strategy in order; the first match wins"""
    identifier = str(doctor_identifier).strip() if doctor_identifier is not None else ""
    if not identifier:
        raise ValidationError("Missing required field: doctor")

    for lookup in DOCTOR_LOOKUPS:
        doctor = lookup(db, identifier)
        if doctor is not None:
            return doctor

    raise DoctorNotFound(f"Doctor '{identifier}' not found")


# ==================== INPUT PARSING ====================

def parse_booking_date(value: Union[date, datetime, str, None]) -> date:
    """Accepts a date, a datetime, 'YYYY-MM-DD' or an ISO datetime string"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value or not isinstance(value, str):
        raise InvalidDate("Appointment date is required")

    raw = value.strip()
    try:
        return date.fromisoformat(raw)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).date()
    except ValueError:
        raise InvalidDate(f"Invalid appointment date: {value}")


def normalize_time_label(value: Optional[str]) -> str:
    label = (value or "").strip()
    if not label:
        raise ValidationError("Appointment time is required")
    if len(label) > TIME_LABEL_MAX_LENGTH:
        raise ValidationError(f"Appointment time must be at most {TIME_LABEL_MAX_LENGTH} characters")
    return label


def _to_minutes(label: str) -> Optional[int]:
    try:
        hours, minutes = label.split(":")[:2]
        return int(hours) * 60 + int(minutes)
    except (ValueError, AttributeError):
        return None


def check_availability(doctor: Doctor, day: date, time_label: str):
    """
    Check a weekday/time against the doctor's weekly schedule.
    Days without an entry are treated as open.
    """
    day_name = WEEKDAYS[day.weekday()]
    schedule = (doctor.availability or {}).get(day_name)
    if not schedule:
        return

    if not schedule.get("available", False):
        raise ValidationError(f"Doctor is not available on {day_name}s.")

    start, end = schedule.get("start_time"), schedule.get("end_time")
    requested, lo, hi = _to_minutes(time_label), _to_minutes(start), _to_minutes(end)
    if None in (requested, lo, hi):
        return
    if requested < lo or requested >= hi:
        raise ValidationError(f"Doctor is only available between {start} and {end}")


# ==================== CONFLICT CHECK ====================

def generate_booking_id() -> str:
    """Unique appointment ID like APT1A2B3C4D5E"""
    return f"APT{secrets.token_hex(5).upper()}"


def find_slot_conflict(
    db: Session,
    doctor_id: int,
    day: date,
    time_label: str,
    exclude_id: Optional[str] = None,
) -> Optional[Appointment]:
    filters = [
        Appointment.doctor_id == doctor_id,
        Appointment.date == day,
        Appointment.time == time_label,
        Appointment.status != AppointmentStatus.CANCELLED.value,
    ]
    if exclude_id:
        filters.append(Appointment.id != exclude_id)
    return db.query(Appointment).filter(and_(*filters)).first()


def _commit_slot(db: Session, appointment: Appointment):
    """Commit, turning a unique-index violation into SlotConflict"""
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.warning(
            f"Slot race lost for doctor {appointment.doctor_id} on {appointment.date} at {appointment.time}"
        )
        raise SlotConflict(SLOT_TAKEN_MESSAGE)
    db.refresh(appointment)


def _service_title(db: Session, service_id: Optional[str]) -> Optional[str]:
    if not service_id:
        return None
    service = db.query(Service).filter(Service.code == service_id).first()
    return service.title if service else None


# ==================== OPERATIONS ====================

def book_slot(
    db: Session,
    patient: User,
    doctor_identifier: Union[str, int],
    appointment_date: Union[date, str],
    appointment_time: str,
    service_id: Optional[str] = None,
    service_name: Optional[str] = None,
    amount: Optional[int] = None,
    notes: Optional[str] = None,
    symptoms: Optional[str] = None,
) -> Appointment:
    """Book a slot for ``patient``; raises SlotConflict if it is taken"""
    doctor = resolve_doctor(db, doctor_identifier)
    day = parse_booking_date(appointment_date)
    time_label = normalize_time_label(appointment_time)

    if find_slot_conflict(db, doctor.id, day, time_label):
        logger.info(f"Rejected booking for doctor {doctor.id} on {day} at {time_label}: slot taken")
        raise SlotConflict(SLOT_TAKEN_MESSAGE)

    service_id = service_id or (doctor.services[0] if doctor.services else "general")
    service_name = service_name or _service_title(db, service_id) or "General Consultation"
    if amount is None:
        amount = doctor.consultation_fee or settings.DEFAULT_CONSULTATION_FEE

    appointment = Appointment(
        id=generate_booking_id(),
        user_id=patient.id,
        patient_id=patient.patient_id,
        doctor_id=doctor.id,
        doctor_user_id=doctor.user_id,
        doctor_name=doctor.name,
        service_id=service_id,
        service_name=service_name,
        date=day,
        time=time_label,
        amount=amount,
        notes=notes or "",
        symptoms=symptoms or "",
        status=AppointmentStatus.PENDING.value,
        payment_status=PaymentStatus.PENDING.value,
        lab_tests=[],
        diet_plan=[],
        medications=[],
        documents=[],
    )
    db.add(appointment)
    _commit_slot(db, appointment)

    logger.info(f"Appointment {appointment.id} booked with {doctor.name} on {day} at {time_label}")
    return appointment


def get_appointment(db: Session, appointment_id: str) -> Appointment:
    appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
    if not appointment:
        raise NotFoundError("Appointment not found")
    return appointment


def cancel_appointment(db: Session, appointment_id: str, acting_user: User) -> Appointment:
    """Doctors cancel their own appointments; reception and admin cancel any"""
    appointment = get_appointment(db, appointment_id)

    if acting_user.role == UserRole.DOCTOR.value:
        if appointment.doctor_user_id != acting_user.id:
            raise ForbiddenError("Not authorized to cancel this appointment")
    elif acting_user.role not in (UserRole.RECEPTION.value, UserRole.ADMIN.value):
        raise ForbiddenError("Not authorized to cancel this appointment")

    appointment.status = AppointmentStatus.CANCELLED.value
    appointment.cancelled_at = datetime.now()
    db.commit()
    db.refresh(appointment)

    logger.info(f"Appointment {appointment.id} cancelled by user {acting_user.id}")
    return appointment


def reschedule_appointment(
    db: Session,
    appointment_id: str,
    new_date: Union[date, str],
    new_time: str,
) -> Appointment:
    """Move an appointment to another slot of the same doctor"""
    appointment = get_appointment(db, appointment_id)
    day = parse_booking_date(new_date)
    time_label = normalize_time_label(new_time)

    if day < date.today():
        raise ValidationError("Cannot reschedule to a past date.")

    doctor = appointment.doctor
    check_availability(doctor, day, time_label)

    if find_slot_conflict(db, doctor.id, day, time_label, exclude_id=appointment.id):
        raise SlotConflict(SLOT_TAKEN_MESSAGE)

    appointment.date = day
    appointment.time = time_label
    if appointment.status == AppointmentStatus.CANCELLED.value:
        appointment.status = AppointmentStatus.CONFIRMED.value
        appointment.cancelled_at = None
    _commit_slot(db, appointment)

    logger.info(f"Appointment {appointment.id} rescheduled to {day} at {time_label}")
    return appointment


def booked_slots(db: Session, doctor_identifier: Union[str, int], day: Union[date, str]) -> List[str]:
    """Time labels already held on ``day``"""
    doctor = resolve_doctor(db, doctor_identifier)
    day = parse_booking_date(day)
    rows = db.query(Appointment.time).filter(
        and_(
            Appointment.doctor_id == doctor.id,
            Appointment.date == day,
            Appointment.status != AppointmentStatus.CANCELLED.value,
        )
    ).order_by(Appointment.time).all()
    return [row[0] for row in rows]


def list_patient_appointments(db: Session, user_id: int) -> List[Appointment]:
    return db.query(Appointment).filter(
        Appointment.user_id == user_id
    ).order_by(Appointment.date.desc(), Appointment.time.desc()).all()


def list_doctor_appointments(db: Session, doctor_user_id: int) -> List[Appointment]:
    return db.query(Appointment).filter(
        Appointment.doctor_user_id == doctor_user_id
    ).order_by(Appointment.date, Appointment.time).all()


def list_all_appointments(db: Session) -> List[Appointment]:
    return db.query(Appointment).order_by(Appointment.date.desc(), Appointment.time.desc()).all()


# ==================== DOCTOR'S PATIENTS ====================

def list_doctor_patients(db: Session, doctor_user_id: int) -> List[dict]:
    """
    Unique patients the doctor has appointments with, most recent first.

    Each entry carries the patient, their appointment count with this doctor
    and their latest appointment.
    """
    appointments = db.query(Appointment).filter(
        Appointment.doctor_user_id == doctor_user_id
    ).order_by(Appointment.date.desc(), Appointment.time.desc()).all()

    patients = {}
    for appointment in appointments:
        if appointment.user is None:
            continue
        entry = patients.get(appointment.user_id)
        if entry is None:
            patients[appointment.user_id] = {
                "patient": appointment.user,
                "total_appointments": 1,
                "last_appointment": appointment,
            }
        else:
            entry["total_appointments"] += 1
    return list(patients.values())


def patient_history(db: Session, doctor_user_id: int, patient_identifier: str) -> List[Appointment]:
    """A doctor's appointments with one patient, by 'P-' display id or user id"""
    identifier = (patient_identifier or "").strip()
    query = db.query(Appointment).filter(Appointment.doctor_user_id == doctor_user_id)
    if identifier.startswith("P-"):
        query = query.filter(Appointment.patient_id == identifier)
    elif identifier.isdigit():
        query = query.filter(Appointment.user_id == int(identifier))
    else:
        raise ValidationError(f"Invalid patient identifier: {patient_identifier}")
    return query.order_by(Appointment.date.desc(), Appointment.time.desc()).all()
