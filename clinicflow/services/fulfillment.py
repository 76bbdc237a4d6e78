"""
Lab and pharmacy fulfilment: lab payments and report uploads, pharmacy order
completion and the pharmacy's own inventory.
"""
import logging
import uuid
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from clinicflow.config import settings
from clinicflow.database.models import (
    Appointment,
    InventoryItem,
    LabPaymentMode,
    LabPaymentStatus,
    LabReportStatus,
    LabRequest,
    LabTestStatus,
    OrderPaymentStatus,
    OrderStatus,
    PharmacyOrder,
)
from clinicflow.errors import NotFoundError, PaymentRequiredError, StorageError, ValidationError
from clinicflow.services.storage import UploadPayload, validate_upload

logger = logging.getLogger(__name__)

LAB_REPORT_FOLDER = "lab-reports"
PAYMENT_REQUIRED_MESSAGE = "Payment not received: mark payment as received before uploading the report"


# ==================== LAB ====================

def get_lab_request(db: Session, request_id: str, for_update: bool = False) -> LabRequest:
    query = db.query(LabRequest).filter(LabRequest.id == request_id)
    if for_update:
        query = query.with_for_update()
    request = query.first()
    if not request:
        raise NotFoundError("Lab request not found")
    return request


def update_lab_payment(
    db: Session,
    request_id: str,
    payment_status: str,
    payment_mode: Optional[str] = None,
    amount: Optional[float] = None,
) -> LabRequest:
    """Set payment fields as given; any status transition is allowed"""
    request = get_lab_request(db, request_id)

    try:
        status = LabPaymentStatus(payment_status).value
        mode = LabPaymentMode(payment_mode).value if payment_mode is not None else None
    except ValueError as e:
        raise ValidationError(str(e))
    if amount is not None and amount < 0:
        raise ValidationError("Amount cannot be negative")

    request.payment_status = status
    if mode is not None:
        request.payment_mode = mode
    if amount is not None:
        request.amount = amount

    db.commit()
    db.refresh(request)
    logger.info(f"Lab request {request.id} payment set to {request.payment_status} ({request.payment_mode})")
    return request


def upload_lab_report(
    db: Session,
    storage,
    request_id: str,
    report: Optional[UploadPayload],
    notes: Optional[str] = None,
) -> LabRequest:
    """
    Attach the report file to a paid lab request and copy a reference onto
    the originating appointment's documents.
    """
    request = get_lab_request(db, request_id, for_update=True)

    if request.payment_status != LabPaymentStatus.PAID.value:
        db.rollback()
        logger.info(f"Report upload refused for lab request {request_id}: payment {request.payment_status}")
        raise PaymentRequiredError(PAYMENT_REQUIRED_MESSAGE)

    if report is None:
        db.rollback()
        raise ValidationError("No file uploaded")
    try:
        filename = validate_upload(report, settings.MAX_LAB_REPORT_BYTES)
        stored = storage.store(report.content, filename, LAB_REPORT_FOLDER)
    except (ValidationError, StorageError):
        db.rollback()
        raise

    uploaded_at = datetime.now().isoformat()
    request.report_file = {
        "url": stored.url,
        "storage_id": stored.storage_id,
        "name": filename,
        "uploaded_at": uploaded_at,
    }
    request.report_status = LabReportStatus.UPLOADED.value
    request.test_status = LabTestStatus.DONE.value
    if notes:
        request.notes = notes

    appointment = db.query(Appointment).filter(Appointment.id == request.appointment_id).first()
    if appointment:
        appointment.documents = list(appointment.documents or []) + [{
            "id": uuid.uuid4().hex,
            "url": stored.url,
            "storage_id": stored.storage_id,
            "name": f"Lab Report: {filename}",
            "uploaded_at": uploaded_at,
            "type": "lab_report",
        }]

    db.commit()
    db.refresh(request)
    logger.info(f"Report uploaded for lab request {request.id} (appointment {request.appointment_id})")
    return request


def lab_stats(db: Session) -> dict:
    total = db.query(LabRequest).count()
    pending = db.query(LabRequest).filter(LabRequest.test_status == LabTestStatus.PENDING.value).count()
    completed = db.query(LabRequest).filter(LabRequest.test_status == LabTestStatus.DONE.value).count()
    return {"total": total, "pending": pending, "completed": completed}


def list_lab_requests(db: Session, status: Optional[str] = None) -> List[LabRequest]:
    """``status`` is ``pending``, ``completed`` or None for everything"""
    query = db.query(LabRequest)
    if status == "completed":
        query = query.filter(LabRequest.test_status == LabTestStatus.DONE.value)
    elif status == "pending":
        query = query.filter(LabRequest.test_status == LabTestStatus.PENDING.value)
    return query.order_by(LabRequest.created_at.desc()).all()


def list_patient_reports(db: Session, user_id: int) -> List[LabRequest]:
    return db.query(LabRequest).filter(
        LabRequest.user_id == user_id
    ).order_by(LabRequest.created_at.desc()).all()


def serialize_lab_request(request: LabRequest) -> dict:
    appointment = request.appointment
    return {
        "id": request.id,
        "appointment_id": request.appointment_id,
        "patient_id": request.patient_id,
        "patient_name": request.user.name if request.user else None,
        "doctor_name": appointment.doctor_name if appointment else None,
        "appointment_date": appointment.date.isoformat() if appointment else None,
        "lab_id": request.lab_id,
        "test_names": request.test_names or [],
        "test_status": request.test_status,
        "report_status": request.report_status,
        "payment_status": request.payment_status,
        "payment_mode": request.payment_mode,
        "amount": request.amount,
        "report_file": request.report_file,
        "notes": request.notes,
        "created_at": request.created_at.isoformat() if request.created_at else None,
    }


# ==================== PHARMACY ORDERS ====================

def complete_pharmacy_order(db: Session, order_id: str) -> PharmacyOrder:
    """Mark paid and completed; no payment check happens first"""
    order = db.query(PharmacyOrder).filter(PharmacyOrder.id == order_id).first()
    if not order:
        raise NotFoundError("Order not found")

    order.payment_status = OrderPaymentStatus.PAID.value
    order.order_status = OrderStatus.COMPLETED.value
    db.commit()
    db.refresh(order)
    logger.info(f"Pharmacy order {order.id} completed")
    return order


def list_pharmacy_orders(db: Session) -> List[PharmacyOrder]:
    return db.query(PharmacyOrder).order_by(PharmacyOrder.created_at.desc()).all()


def list_patient_orders(db: Session, user_id: int) -> List[PharmacyOrder]:
    return db.query(PharmacyOrder).filter(
        PharmacyOrder.user_id == user_id
    ).order_by(PharmacyOrder.created_at.desc()).all()


def serialize_order(order: PharmacyOrder) -> dict:
    return {
        "id": order.id,
        "appointment_id": order.appointment_id,
        "patient_id": order.patient_id,
        "patient_name": order.user.name if order.user else None,
        "doctor_name": order.appointment.doctor_name if order.appointment else None,
        "items": order.items or [],
        "payment_status": order.payment_status,
        "order_status": order.order_status,
        "created_at": order.created_at.isoformat() if order.created_at else None,
    }


# ==================== INVENTORY ====================

def _blank_to_none(value):
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


class InventoryItemRequest(BaseModel):
    """Inventory item as sent by the pharmacy form; numbers may arrive as strings"""
    name: str = Field(..., min_length=1, max_length=200)
    category: str = Field(..., min_length=1, max_length=100)
    stock: int = Field(0, ge=0)
    unit: str = Field("Tablets", max_length=30)
    buying_price: float = Field(..., ge=0.0)
    selling_price: float = Field(..., ge=0.0)
    vendor: str = Field(..., min_length=1, max_length=100)
    batch_number: str = Field(..., min_length=1, max_length=100)
    expiry_date: date
    purchase_date: Optional[date] = None

    @field_validator("stock", mode="before")
    @classmethod
    def coerce_stock(cls, value):
        value = _blank_to_none(value)
        if value is None:
            return 0
        # "12.0" from number inputs
        if isinstance(value, str):
            return int(float(value))
        return value

    @field_validator("buying_price", "selling_price", "purchase_date", mode="before")
    @classmethod
    def strip_blank(cls, value):
        return _blank_to_none(value)


class InventoryItemUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    category: Optional[str] = Field(None, min_length=1, max_length=100)
    stock: Optional[int] = Field(None, ge=0)
    unit: Optional[str] = Field(None, max_length=30)
    buying_price: Optional[float] = Field(None, ge=0.0)
    selling_price: Optional[float] = Field(None, ge=0.0)
    vendor: Optional[str] = Field(None, max_length=100)
    batch_number: Optional[str] = Field(None, max_length=100)
    expiry_date: Optional[date] = None
    purchase_date: Optional[date] = None

    @field_validator("stock", mode="before")
    @classmethod
    def coerce_stock(cls, value):
        value = _blank_to_none(value)
        if isinstance(value, str):
            return int(float(value))
        return value

    @field_validator(
        "buying_price", "selling_price", "expiry_date", "purchase_date", mode="before"
    )
    @classmethod
    def strip_blank(cls, value):
        return _blank_to_none(value)


def add_inventory_item(db: Session, pharmacy_user_id: int, item: InventoryItemRequest) -> InventoryItem:
    data = item.model_dump()
    if data["purchase_date"] is None:
        data["purchase_date"] = date.today()
    record = InventoryItem(pharmacy_user_id=pharmacy_user_id, **data)
    db.add(record)
    db.commit()
    db.refresh(record)
    logger.info(f"Inventory item {record.id} '{record.name}' added ({record.stock} {record.unit}, {record.status})")
    return record


def list_inventory(db: Session, pharmacy_user_id: int) -> List[InventoryItem]:
    return db.query(InventoryItem).filter(
        InventoryItem.pharmacy_user_id == pharmacy_user_id
    ).order_by(InventoryItem.created_at.desc()).all()


def _owned_item(db: Session, pharmacy_user_id: int, item_id: int) -> InventoryItem:
    record = db.query(InventoryItem).filter(
        InventoryItem.id == item_id,
        InventoryItem.pharmacy_user_id == pharmacy_user_id,
    ).first()
    if not record:
        raise NotFoundError("Inventory item not found")
    return record


def update_inventory_item(
    db: Session, pharmacy_user_id: int, item_id: int, changes: InventoryItemUpdate
) -> InventoryItem:
    record = _owned_item(db, pharmacy_user_id, item_id)
    for field, value in changes.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(record, field, value)
    db.commit()
    db.refresh(record)
    logger.info(f"Inventory item {record.id} updated ({record.stock} {record.unit}, {record.status})")
    return record


def delete_inventory_item(db: Session, pharmacy_user_id: int, item_id: int):
    record = _owned_item(db, pharmacy_user_id, item_id)
    db.delete(record)
    db.commit()
    logger.info(f"Inventory item {item_id} deleted")


def serialize_inventory_item(record: InventoryItem) -> dict:
    return {
        "id": record.id,
        "name": record.name,
        "category": record.category,
        "stock": record.stock,
        "unit": record.unit,
        "buying_price": record.buying_price,
        "selling_price": record.selling_price,
        "vendor": record.vendor,
        "batch_number": record.batch_number,
        "expiry_date": record.expiry_date.isoformat() if record.expiry_date else None,
        "purchase_date": record.purchase_date.isoformat() if record.purchase_date else None,
        "status": record.status,
    }
