import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.orm import Session

from clinicflow.api.auth import get_current_user, require_roles
from clinicflow.api.upload import read_upload
from clinicflow.database.connection import get_db
from clinicflow.database.models import User, UserRole
from clinicflow.services import treatment
from clinicflow.services.storage import get_file_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/treatment-plans", tags=["Treatment Plans"])


@router.get("/{appointment_id}", response_model=dict)
async def get_treatment_plan(
    appointment_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """No plan yet is not an error; ``plan`` is null"""
    plan = treatment.get_plan(db, appointment_id)
    return {
        "status": "success",
        "plan": treatment.serialize_plan(plan) if plan else None,
    }


@router.post("/{appointment_id}", response_model=dict)
async def save_treatment_plan(
    appointment_id: str,
    diagnosis: Optional[str] = Form(None),
    prescription_description: Optional[str] = Form(None, alias="prescriptionDescription"),
    lab_tests: Optional[str] = Form(None, alias="labTests"),
    diet_plan: Optional[str] = Form(None, alias="dietPlan"),
    pharmacy: Optional[str] = Form(None),
    new_status: Optional[str] = Form(None, alias="status"),
    lab_id: Optional[int] = Form(None, alias="labId"),
    prescription_file: Optional[UploadFile] = File(None, alias="prescriptionFile"),
    current_user: User = Depends(require_roles(UserRole.DOCTOR)),
    db: Session = Depends(get_db),
    storage=Depends(get_file_storage),
):
    """
    Save / update the plan for an appointment (multipart form).

    labTests, dietPlan and pharmacy are JSON-encoded arrays. Text fields
    that are left out are cleared.
    """
    plan = treatment.save_plan(
        db,
        storage,
        appointment_id=appointment_id,
        acting_user_id=current_user.id,
        diagnosis=diagnosis,
        prescription_description=prescription_description,
        lab_tests=lab_tests,
        diet_plan=diet_plan,
        medications=pharmacy,
        attachment=await read_upload(prescription_file),
        new_status=new_status,
        lab_id=lab_id,
    )
    return {
        "status": "success",
        "message": "Treatment plan saved successfully",
        "plan": treatment.serialize_plan(plan),
    }


@router.delete("/{appointment_id}/files/{file_id}", response_model=dict)
async def delete_treatment_plan_file(
    appointment_id: str,
    file_id: str,
    current_user: User = Depends(require_roles(UserRole.DOCTOR)),
    db: Session = Depends(get_db)
):
    plan = treatment.delete_plan_file(db, appointment_id, file_id, current_user.id)
    return {
        "status": "success",
        "plan": treatment.serialize_plan(plan) if plan else None,
    }
