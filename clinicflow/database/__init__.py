# Database Package - Centralized imports
# Allows easy importing of models, connection utilities, and ORM objects

from .connection import (
    engine,
    Base,
    SessionLocal,
    get_db,
)

from .models import (
    # Enums
    UserRole,
    AppointmentStatus,
    PaymentStatus,
    LabTestStatus,
    LabReportStatus,
    LabPaymentStatus,
    LabPaymentMode,
    OrderPaymentStatus,
    OrderStatus,
    StockStatus,

    # Identity
    User,
    Laboratory,

    # Catalog
    Service,
    Doctor,

    # Appointments & plans
    Appointment,
    TreatmentPlan,

    # Fulfilment
    LabRequest,
    PharmacyOrder,
    InventoryItem,

    # Files
    UploadedFile,
)

__all__ = [
    # Connection
    "engine",
    "Base",
    "SessionLocal",
    "get_db",

    # Enums
    "UserRole",
    "AppointmentStatus",
    "PaymentStatus",
    "LabTestStatus",
    "LabReportStatus",
    "LabPaymentStatus",
    "LabPaymentMode",
    "OrderPaymentStatus",
    "OrderStatus",
    "StockStatus",

    # Identity
    "User",
    "Laboratory",

    # Catalog
    "Service",
    "Doctor",

    # Appointments & plans
    "Appointment",
    "TreatmentPlan",

    # Fulfilment
    "LabRequest",
    "PharmacyOrder",
    "InventoryItem",

    # Files
    "UploadedFile",
]
