import logging
from datetime import date
from typing import Optional, Union

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from clinicflow.api.auth import get_current_user, require_roles
from clinicflow.database.connection import get_db
from clinicflow.database.models import Appointment, User, UserRole
from clinicflow.services import booking
from clinicflow.services.booking import TIME_LABEL_MAX_LENGTH

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/appointments", tags=["Appointments"])

# ==================== PYDANTIC MODELS (Request/Response) ====================

class AppointmentCreateRequest(BaseModel):
    doctor: Union[int, str] = Field(..., description="Doctor record id, doctor's user id or legacy code")
    date: str = Field(..., description="YYYY-MM-DD")
    time: str = Field(..., max_length=TIME_LABEL_MAX_LENGTH, description="Slot label, e.g. 10:00")
    service_id: Optional[str] = None
    service_name: Optional[str] = None
    amount: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = None
    symptoms: Optional[str] = None

class RescheduleRequest(BaseModel):
    date: str
    time: str = Field(..., max_length=TIME_LABEL_MAX_LENGTH)

# ==================== HELPER FUNCTIONS ====================

def serialize_appointment(appointment: Appointment) -> dict:
    patient = appointment.user
    return {
        "id": appointment.id,
        "patient_id": appointment.patient_id,
        "patient_name": patient.name if patient else None,
        "doctor_id": appointment.doctor_id,
        "doctor_name": appointment.doctor_name,
        "service_id": appointment.service_id,
        "service_name": appointment.service_name,
        "date": appointment.date.isoformat(),
        "time": appointment.time,
        "status": appointment.status,
        "payment_status": appointment.payment_status,
        "amount": appointment.amount,
        "notes": appointment.notes,
        "symptoms": appointment.symptoms,
        "diagnosis": appointment.diagnosis,
        "prescription_description": appointment.prescription_description,
        "lab_tests": appointment.lab_tests or [],
        "diet_plan": appointment.diet_plan or [],
        "medications": appointment.medications or [],
        "documents": appointment.documents or [],
    }

# ==================== API ENDPOINTS ====================

@router.post("/create", response_model=dict, status_code=201)
async def create_appointment(
    request: AppointmentCreateRequest,
    current_user: User = Depends(require_roles(UserRole.PATIENT)),
    db: Session = Depends(get_db)
):
    """
    Book a slot with a doctor.

    409 when the slot is already held by a non-cancelled appointment,
    404 for an unknown doctor, 400 for an unparseable date.
    """
    appointment = booking.book_slot(
        db,
        patient=current_user,
        doctor_identifier=request.doctor,
        appointment_date=request.date,
        appointment_time=request.time,
        service_id=request.service_id,
        service_name=request.service_name,
        amount=request.amount,
        notes=request.notes,
        symptoms=request.symptoms,
    )
    return {
        "status": "success",
        "message": "Appointment booked successfully",
        "appointment": serialize_appointment(appointment),
    }


@router.get("/my-appointments", response_model=dict)
async def get_my_appointments(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    appointments = booking.list_patient_appointments(db, current_user.id)
    return {
        "status": "success",
        "appointments": [serialize_appointment(a) for a in appointments],
    }


@router.get("/doctor", response_model=dict)
async def get_doctor_appointments(
    current_user: User = Depends(require_roles(UserRole.DOCTOR)),
    db: Session = Depends(get_db)
):
    appointments = booking.list_doctor_appointments(db, current_user.id)
    return {
        "status": "success",
        "appointments": [serialize_appointment(a) for a in appointments],
    }


@router.get("/reception/all", response_model=dict)
async def get_all_appointments(
    current_user: User = Depends(require_roles(UserRole.RECEPTION, UserRole.ADMIN)),
    db: Session = Depends(get_db)
):
    appointments = booking.list_all_appointments(db)
    return {
        "status": "success",
        "total": len(appointments),
        "appointments": [serialize_appointment(a) for a in appointments],
    }


@router.get("/doctors/{doctor_identifier}/booked-slots", response_model=dict)
async def get_booked_slots(
    doctor_identifier: str,
    day: date = Query(..., alias="date"),
    db: Session = Depends(get_db)
):
    """Time labels already taken, so the client can grey them out"""
    return {
        "status": "success",
        "date": day.isoformat(),
        "booked_slots": booking.booked_slots(db, doctor_identifier, day),
    }


@router.patch("/{appointment_id}/cancel", response_model=dict)
async def cancel_appointment(
    appointment_id: str,
    current_user: User = Depends(require_roles(UserRole.DOCTOR, UserRole.RECEPTION, UserRole.ADMIN)),
    db: Session = Depends(get_db)
):
    appointment = booking.cancel_appointment(db, appointment_id, current_user)
    return {
        "status": "success",
        "message": "Appointment cancelled successfully",
        "appointment": serialize_appointment(appointment),
    }


@router.patch("/{appointment_id}/reschedule", response_model=dict)
async def reschedule_appointment(
    appointment_id: str,
    request: RescheduleRequest,
    current_user: User = Depends(require_roles(UserRole.RECEPTION, UserRole.ADMIN)),
    db: Session = Depends(get_db)
):
    appointment = booking.reschedule_appointment(db, appointment_id, request.date, request.time)
    return {
        "status": "success",
        "message": "Appointment rescheduled successfully",
        "appointment": serialize_appointment(appointment),
    }
