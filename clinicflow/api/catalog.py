import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from sqlalchemy.orm import Session

from clinicflow.api.appointments import serialize_appointment
from clinicflow.api.auth import require_roles
from clinicflow.database.connection import get_db
from clinicflow.database.models import Doctor, Service, User, UserRole
from clinicflow.errors import NotFoundError
from clinicflow.services import booking
from clinicflow.services.booking import WEEKDAYS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/public", tags=["Catalog"])

CACHE_HEADER = "public, max-age=300"
TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


def serialize_doctor(doctor: Doctor) -> dict:
    return {
        "id": doctor.id,
        "doctor_code": doctor.doctor_code,
        "user_id": doctor.user_id,
        "name": doctor.name,
        "specialty": doctor.specialty,
        "services": doctor.services or [],
        "availability": doctor.availability or {},
        "consultation_fee": doctor.consultation_fee,
        "bio": doctor.bio,
    }


@router.get("/services", response_model=dict)
async def get_services(response: Response, db: Session = Depends(get_db)):
    """Active services for the public site"""
    response.headers["Cache-Control"] = CACHE_HEADER
    services = db.query(Service).filter(Service.is_active == True).order_by(Service.created_at.desc()).all()
    return {
        "status": "success",
        "count": len(services),
        "services": [
            {
                "id": s.code,
                "title": s.title,
                "description": s.description,
                "price": s.price,
                "duration": s.duration,
                "category": s.category,
            }
            for s in services
        ],
    }


@router.get("/doctors", response_model=dict)
async def get_doctors(
    service: Optional[str] = Query(None, description="Only doctors offering this service code"),
    db: Session = Depends(get_db)
):
    """Doctors with their weekly availability, used by the client to offer slots"""
    doctors = db.query(Doctor).order_by(Doctor.name).all()
    if service:
        doctors = [d for d in doctors if service in (d.services or [])]
    return {
        "status": "success",
        "count": len(doctors),
        "doctors": [serialize_doctor(d) for d in doctors],
    }


# ==================== DOCTOR SELF-SERVICE ====================

doctors_router = APIRouter(prefix="/api/doctors", tags=["Doctors"])


class DaySchedule(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    available: bool = False
    start_time: Optional[str] = Field(None, alias="startTime", pattern=TIME_PATTERN)
    end_time: Optional[str] = Field(None, alias="endTime", pattern=TIME_PATTERN)

    @model_validator(mode="after")
    def check_window(self):
        if self.available and self.start_time and self.end_time and self.start_time >= self.end_time:
            raise ValueError(f"start_time {self.start_time} must be before end_time {self.end_time}")
        return self


class AvailabilityRequest(BaseModel):
    availability: Dict[str, DaySchedule]

    @field_validator("availability")
    @classmethod
    def known_weekdays(cls, value):
        unknown = set(value) - set(WEEKDAYS)
        if unknown:
            raise ValueError(f"Unknown weekday(s): {', '.join(sorted(unknown))}")
        return value


@doctors_router.put("/availability", response_model=dict)
async def update_availability(
    request: AvailabilityRequest,
    current_user: User = Depends(require_roles(UserRole.DOCTOR)),
    db: Session = Depends(get_db)
):
    """Replace the weekly schedule of the calling doctor"""
    doctor = db.query(Doctor).filter(Doctor.user_id == current_user.id).first()
    if not doctor:
        raise NotFoundError("Doctor profile not found")

    doctor.availability = {
        day: schedule.model_dump(exclude_none=True) for day, schedule in request.availability.items()
    }
    db.commit()
    db.refresh(doctor)

    logger.info(f"Doctor {doctor.id} updated availability")
    return {
        "status": "success",
        "message": "Availability updated",
        "availability": doctor.availability,
    }


@doctors_router.get("/patients", response_model=dict)
async def get_my_patients(
    current_user: User = Depends(require_roles(UserRole.DOCTOR)),
    db: Session = Depends(get_db)
):
    """Unique patients of the calling doctor"""
    patients = booking.list_doctor_patients(db, current_user.id)
    return {
        "status": "success",
        "count": len(patients),
        "patients": [
            {
                "id": entry["patient"].id,
                "patient_id": entry["patient"].patient_id or "N/A",
                "name": entry["patient"].name,
                "email": entry["patient"].email,
                "phone": entry["patient"].phone,
                "total_appointments": entry["total_appointments"],
                "last_appointment_id": entry["last_appointment"].id,
                "last_appointment_date": entry["last_appointment"].date.isoformat(),
            }
            for entry in patients
        ],
    }


@doctors_router.get("/patients/{patient_identifier}/history", response_model=dict)
async def get_patient_history(
    patient_identifier: str,
    current_user: User = Depends(require_roles(UserRole.DOCTOR)),
    db: Session = Depends(get_db)
):
    history = booking.patient_history(db, current_user.id, patient_identifier)
    return {
        "status": "success",
        "history": [serialize_appointment(a) for a in history],
    }
