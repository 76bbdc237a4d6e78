"""
Clinicflow - Database Models
Identity, catalog, appointment and fulfilment schema
"""
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text, Boolean, Date, Float, JSON, Index
from sqlalchemy import event, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from datetime import datetime
from .connection import Base
import enum

# JSONB on PostgreSQL, plain JSON everywhere else (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


# ============================================
# ENUMS
# ============================================

class UserRole(str, enum.Enum):
    PATIENT = "patient"
    DOCTOR = "doctor"
    LAB = "lab"
    PHARMACY = "pharmacy"
    RECEPTION = "reception"
    ADMIN = "admin"


class AppointmentStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"


class LabTestStatus(str, enum.Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"


class LabReportStatus(str, enum.Enum):
    PENDING = "PENDING"
    UPLOADED = "UPLOADED"


class LabPaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"


class LabPaymentMode(str, enum.Enum):
    CASH = "CASH"
    ONLINE = "ONLINE"
    UPI = "UPI"
    CARD = "CARD"
    NONE = "NONE"


class OrderPaymentStatus(str, enum.Enum):
    PENDING = "Pending"
    PAID = "Paid"


class OrderStatus(str, enum.Enum):
    UPCOMING = "Upcoming"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class StockStatus(str, enum.Enum):
    IN_STOCK = "In Stock"
    LOW_STOCK = "Low Stock"
    OUT_OF_STOCK = "Out of Stock"


LOW_STOCK_THRESHOLD = 50


# ============================================
# IDENTITY
# ============================================

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(100), unique=True, index=True, nullable=False)
    phone = Column(String(15))
    password_hash = Column(String(255), nullable=False, default="")

    role = Column(String(20), default=UserRole.PATIENT.value)  # patient | doctor | lab | pharmacy | reception | admin
    patient_id = Column(String(20), unique=True, nullable=True)  # P-1001, patients only
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    # Relationships
    appointments = relationship("Appointment", back_populates="user", foreign_keys="Appointment.user_id")
    doctor_profile = relationship("Doctor", back_populates="user", uselist=False)
    lab_profile = relationship("Laboratory", back_populates="user", uselist=False)
    inventory_items = relationship("InventoryItem", back_populates="pharmacy_user")
    uploaded_files = relationship("UploadedFile", back_populates="user")


class Laboratory(Base):
    __tablename__ = "laboratories"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True)
    name = Column(String(200), nullable=False)
    phone = Column(String(15))
    address = Column(Text)
    created_at = Column(DateTime, default=datetime.now)

    user = relationship("User", back_populates="lab_profile")
    lab_requests = relationship("LabRequest", back_populates="laboratory")


# ============================================
# CATALOG
# ============================================

class Service(Base):
    __tablename__ = "services"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), unique=True, nullable=False)  # "ivf", "general"
    title = Column(String(200), nullable=False)
    description = Column(Text, default="")
    price = Column(Integer, default=0)
    duration = Column(String(50), default="")
    category = Column(String(50), default="")
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.now)


class Doctor(Base):
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True, index=True)
    doctor_code = Column(String(50), unique=True, nullable=False, index=True)  # legacy id, e.g. "D1"
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=True)

    name = Column(String(100), nullable=False)
    email = Column(String(100), nullable=False)
    phone = Column(String(15), default="")
    specialty = Column(String(100), default="")
    services = Column(JSONType, default=list)  # ["ivf", "iui"]
    # {"monday": {"available": true, "start_time": "09:00", "end_time": "17:00"}, ...}
    availability = Column(JSONType, default=dict)
    consultation_fee = Column(Integer, default=0)
    bio = Column(Text, default="")

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    # Relationships
    user = relationship("User", back_populates="doctor_profile")
    appointments = relationship("Appointment", back_populates="doctor")


# ============================================
# APPOINTMENTS
# ============================================

class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(String(20), primary_key=True)  # APT format
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    patient_id = Column(String(20), index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)
    doctor_user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    doctor_name = Column(String(100), nullable=False)
    service_id = Column(String(50))
    service_name = Column(String(200))

    date = Column(Date, nullable=False)
    time = Column(String(50), nullable=False)  # slot label, "14:30"

    status = Column(String(20), default=AppointmentStatus.PENDING.value, index=True)
    payment_status = Column(String(20), default=PaymentStatus.PENDING.value)
    amount = Column(Integer, default=0)

    notes = Column(Text, default="")
    symptoms = Column(Text, default="")

    # Mirror of the treatment plan, kept for list views
    diagnosis = Column(Text, default="")
    prescription_description = Column(Text, default="")
    lab_tests = Column(JSONType, default=list)
    diet_plan = Column(JSONType, default=list)
    medications = Column(JSONType, default=list)
    documents = Column(JSONType, default=list)

    cancelled_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    __table_args__ = (
        # One live booking per slot; cancelled rows don't hold the slot
        Index(
            "uq_appointments_active_slot",
            "doctor_id", "date", "time",
            unique=True,
            postgresql_where=text("status <> 'cancelled'"),
            sqlite_where=text("status <> 'cancelled'"),
        ),
    )

    # Relationships
    user = relationship("User", back_populates="appointments", foreign_keys=[user_id])
    doctor_user = relationship("User", foreign_keys=[doctor_user_id])
    doctor = relationship("Doctor", back_populates="appointments")
    treatment_plan = relationship("TreatmentPlan", back_populates="appointment", uselist=False)
    lab_request = relationship("LabRequest", back_populates="appointment", uselist=False)
    pharmacy_order = relationship("PharmacyOrder", back_populates="appointment", uselist=False)


class TreatmentPlan(Base):
    __tablename__ = "treatment_plans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    appointment_id = Column(String(20), ForeignKey("appointments.id"), unique=True, nullable=False)
    doctor_user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    patient_id = Column(String(20))

    diagnosis = Column(Text, default="")
    prescription_description = Column(Text, default="")
    lab_tests = Column(JSONType, default=list)
    diet_plan = Column(JSONType, default=list)
    medications = Column(JSONType, default=list)  # [{"medicine_name", "frequency", "duration"}]
    attachments = Column(JSONType, default=list)  # [{"id", "url", "storage_id", "name", "uploaded_at"}]

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    appointment = relationship("Appointment", back_populates="treatment_plan")


# ============================================
# LAB FULFILMENT
# ============================================

class LabRequest(Base):
    __tablename__ = "lab_requests"

    id = Column(String(20), primary_key=True)  # LAB format
    appointment_id = Column(String(20), ForeignKey("appointments.id"), unique=True, nullable=False)
    patient_id = Column(String(20), default="N/A")
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    doctor_user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    lab_id = Column(Integer, ForeignKey("laboratories.id"), nullable=True)

    test_names = Column(JSONType, default=list)
    test_status = Column(String(20), default=LabTestStatus.PENDING.value, index=True)
    report_status = Column(String(20), default=LabReportStatus.PENDING.value)
    payment_status = Column(String(20), default=LabPaymentStatus.PENDING.value, index=True)
    payment_mode = Column(String(20), default=LabPaymentMode.NONE.value)
    amount = Column(Float, default=0)
    report_file = Column(JSONType, nullable=True)  # {"url", "storage_id", "name", "uploaded_at"}
    notes = Column(Text, default="")

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    appointment = relationship("Appointment", back_populates="lab_request")
    user = relationship("User", foreign_keys=[user_id])
    doctor_user = relationship("User", foreign_keys=[doctor_user_id])
    laboratory = relationship("Laboratory", back_populates="lab_requests")


# ============================================
# PHARMACY FULFILMENT
# ============================================

class PharmacyOrder(Base):
    __tablename__ = "pharmacy_orders"

    id = Column(String(20), primary_key=True)  # ORD format
    appointment_id = Column(String(20), ForeignKey("appointments.id"), unique=True, nullable=False)
    patient_id = Column(String(20), default="N/A")
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    doctor_user_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    items = Column(JSONType, default=list)  # [{"medicine_name", "frequency", "duration"}]
    payment_status = Column(String(20), default=OrderPaymentStatus.PENDING.value)
    order_status = Column(String(20), default=OrderStatus.UPCOMING.value)

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    appointment = relationship("Appointment", back_populates="pharmacy_order")
    user = relationship("User", foreign_keys=[user_id])
    doctor_user = relationship("User", foreign_keys=[doctor_user_id])


class InventoryItem(Base):
    """Pharmacy stock, scoped to the owning pharmacy user"""
    __tablename__ = "inventory_items"

    id = Column(Integer, primary_key=True, index=True)
    pharmacy_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    category = Column(String(100), nullable=False)
    stock = Column(Integer, nullable=False, default=0)
    unit = Column(String(30), default="Tablets")
    buying_price = Column(Float, nullable=False)
    selling_price = Column(Float, nullable=False)
    vendor = Column(String(100), nullable=False)
    batch_number = Column(String(100), nullable=False)
    expiry_date = Column(Date, nullable=False)
    purchase_date = Column(Date, default=lambda: datetime.now().date())
    status = Column(String(20), default=StockStatus.IN_STOCK.value)

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    pharmacy_user = relationship("User", back_populates="inventory_items")


def stock_status(stock) -> str:
    """Derive the stock label from a quantity"""
    stock = stock or 0
    if stock <= 0:
        return StockStatus.OUT_OF_STOCK.value
    if stock < LOW_STOCK_THRESHOLD:
        return StockStatus.LOW_STOCK.value
    return StockStatus.IN_STOCK.value


@event.listens_for(InventoryItem, "before_insert")
@event.listens_for(InventoryItem, "before_update")
def _refresh_stock_status(mapper, connection, target):
    target.status = stock_status(target.stock)


# ============================================
# FILE UPLOAD MANAGEMENT
# ============================================

class UploadedFile(Base):
    __tablename__ = "uploaded_files"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"))
    filename = Column(String(255), nullable=False)
    storage_id = Column(String(100), nullable=False)
    file_url = Column(Text, nullable=False)
    thumbnail_url = Column(Text, nullable=True)
    file_size = Column(Integer, nullable=False)
    content_type = Column(String(100))
    category = Column(String(50), nullable=False, default="general")
    created_at = Column(DateTime, default=datetime.now)

    user = relationship("User", back_populates="uploaded_files")
