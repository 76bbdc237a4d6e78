import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from clinicflow.api.auth import get_current_user, require_roles
from clinicflow.api.upload import read_upload
from clinicflow.database.connection import get_db
from clinicflow.database.models import LabPaymentMode, LabPaymentStatus, User, UserRole
from clinicflow.services import fulfillment
from clinicflow.services.storage import get_file_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/lab", tags=["Lab"])

lab_staff = require_roles(UserRole.LAB)

# ==================== PYDANTIC MODELS ====================

class UpdatePaymentRequest(BaseModel):
    payment_status: LabPaymentStatus
    payment_mode: Optional[LabPaymentMode] = None
    amount: Optional[float] = Field(None, ge=0.0)

# ==================== API ENDPOINTS ====================

@router.get("/stats", response_model=dict)
async def get_lab_stats(
    current_user: User = Depends(lab_staff),
    db: Session = Depends(get_db)
):
    return {"status": "success", "stats": fulfillment.lab_stats(db)}


@router.get("/requests", response_model=dict)
async def get_lab_requests(
    status: Optional[Literal["pending", "completed"]] = Query(None),
    current_user: User = Depends(lab_staff),
    db: Session = Depends(get_db)
):
    requests = fulfillment.list_lab_requests(db, status)
    return {
        "status": "success",
        "requests": [fulfillment.serialize_lab_request(r) for r in requests],
    }


@router.patch("/update-payment/{request_id}", response_model=dict)
async def update_payment(
    request_id: str,
    request: UpdatePaymentRequest,
    current_user: User = Depends(lab_staff),
    db: Session = Depends(get_db)
):
    lab_request = fulfillment.update_lab_payment(
        db,
        request_id,
        payment_status=request.payment_status.value,
        payment_mode=request.payment_mode.value if request.payment_mode else None,
        amount=request.amount,
    )
    return {
        "status": "success",
        "message": "Payment details updated successfully",
        "request": fulfillment.serialize_lab_request(lab_request),
    }


@router.post("/upload-report/{request_id}", response_model=dict)
async def upload_report(
    request_id: str,
    report_file: Optional[UploadFile] = File(None, alias="reportFile"),
    notes: Optional[str] = Form(None),
    current_user: User = Depends(lab_staff),
    db: Session = Depends(get_db),
    storage=Depends(get_file_storage),
):
    """Rejected with 402 until the lab has marked the request PAID"""
    lab_request = fulfillment.upload_lab_report(
        db, storage, request_id, await read_upload(report_file), notes=notes
    )
    return {
        "status": "success",
        "message": "Report uploaded and synced successfully",
        "request": fulfillment.serialize_lab_request(lab_request),
    }


@router.get("/my-reports", response_model=dict)
async def get_my_reports(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    reports = fulfillment.list_patient_reports(db, current_user.id)
    return {
        "status": "success",
        "reports": [fulfillment.serialize_lab_request(r) for r in reports],
    }
