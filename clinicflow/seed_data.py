# clinicflow/seed_data.py
"""
Demo data: catalog services, one doctor with a weekly schedule, and one
login per role. Every seeded account uses the password ``password123``.

    python -m clinicflow.seed_data [--reset]
"""
import argparse
import logging

from sqlalchemy.orm import Session

from clinicflow.api.auth import hash_password
from clinicflow.database.connection import Base, SessionLocal, engine
from clinicflow.database.models import (
    Appointment,
    Doctor,
    InventoryItem,
    Laboratory,
    LabRequest,
    PharmacyOrder,
    Service,
    TreatmentPlan,
    UploadedFile,
    User,
    UserRole,
)

logger = logging.getLogger(__name__)

DEMO_PASSWORD = "password123"

SERVICES = [
    {"code": "general", "title": "General Consultation", "price": 500, "duration": "30 min", "category": "consultation",
     "description": "First visit and fertility assessment"},
    {"code": "ivf", "title": "IVF Treatment", "price": 150000, "duration": "4-6 weeks", "category": "treatment",
     "description": "In vitro fertilisation cycle"},
    {"code": "iui", "title": "IUI Treatment", "price": 15000, "duration": "2 weeks", "category": "treatment",
     "description": "Intrauterine insemination"},
    {"code": "genetic-testing", "title": "Genetic Testing", "price": 25000, "duration": "1 week", "category": "diagnostics",
     "description": "Pre-implantation genetic screening"},
]

WEEKLY_SCHEDULE = {
    "monday": {"available": True, "start_time": "09:00", "end_time": "17:00"},
    "tuesday": {"available": True, "start_time": "09:00", "end_time": "17:00"},
    "wednesday": {"available": True, "start_time": "09:00", "end_time": "17:00"},
    "thursday": {"available": True, "start_time": "09:00", "end_time": "17:00"},
    "friday": {"available": True, "start_time": "09:00", "end_time": "15:00"},
    "saturday": {"available": True, "start_time": "10:00", "end_time": "13:00"},
    "sunday": {"available": False},
}

STAFF = [
    {"name": "Dr. Ananya Rao", "email": "doctor@clinicflow.dev", "phone": "9000000001", "role": UserRole.DOCTOR},
    {"name": "City Diagnostics", "email": "lab@clinicflow.dev", "phone": "9000000002", "role": UserRole.LAB},
    {"name": "Clinic Pharmacy", "email": "pharmacy@clinicflow.dev", "phone": "9000000003", "role": UserRole.PHARMACY},
    {"name": "Front Desk", "email": "reception@clinicflow.dev", "phone": "9000000004", "role": UserRole.RECEPTION},
    {"name": "Clinic Admin", "email": "admin@clinicflow.dev", "phone": "9000000005", "role": UserRole.ADMIN},
]


def clear_all_data(db: Session):
    """Delete rows child tables first"""
    for model in (LabRequest, PharmacyOrder, TreatmentPlan, Appointment, InventoryItem,
                  UploadedFile, Laboratory, Doctor, Service, User):
        db.query(model).delete()
    db.commit()
    print("Cleared existing data")


def seed_data(db: Session, reset: bool = False) -> dict:
    """Insert demo rows; returns counts, or an empty dict when skipped"""
    existing_users = db.query(User).count()
    if existing_users and not reset:
        print(f"Database already has {existing_users} users. Skipping seeding (use --reset to re-seed).")
        return {}
    if existing_users:
        clear_all_data(db)

    password_hash = hash_password(DEMO_PASSWORD)

    # ==================== SERVICES ====================
    for service_data in SERVICES:
        db.add(Service(**service_data))

    # ==================== USERS ====================
    users = {}
    for staff in STAFF:
        user = User(
            name=staff["name"],
            email=staff["email"],
            phone=staff["phone"],
            role=staff["role"].value,
            password_hash=password_hash,
        )
        db.add(user)
        users[staff["role"]] = user

    patient = User(
        name="Meera Iyer",
        email="patient@clinicflow.dev",
        phone="9000000010",
        role=UserRole.PATIENT.value,
        patient_id="P-1001",
        password_hash=password_hash,
    )
    db.add(patient)
    db.flush()

    # ==================== PROFILES ====================
    doctor_user = users[UserRole.DOCTOR]
    db.add(Doctor(
        doctor_code="D1",
        user_id=doctor_user.id,
        name=doctor_user.name,
        email=doctor_user.email,
        phone=doctor_user.phone,
        specialty="Reproductive Medicine",
        services=["general", "ivf", "iui"],
        availability=WEEKLY_SCHEDULE,
        consultation_fee=800,
        bio="Fertility specialist with 12 years of practice",
    ))
    # Catalog-only doctor without a login
    db.add(Doctor(
        doctor_code="D2",
        name="Dr. Vikram Sen",
        email="vikram.sen@clinicflow.dev",
        specialty="Andrology",
        services=["genetic-testing"],
        availability=WEEKLY_SCHEDULE,
        consultation_fee=0,
    ))

    lab_user = users[UserRole.LAB]
    db.add(Laboratory(
        user_id=lab_user.id,
        name=lab_user.name,
        phone=lab_user.phone,
        address="12 MG Road, Bengaluru",
    ))

    db.commit()

    summary = {
        "services": len(SERVICES),
        "users": len(STAFF) + 1,
        "doctors": 2,
        "laboratories": 1,
    }
    print("Database seeding completed:")
    for name, count in summary.items():
        print(f"   {name}: {count}")
    return summary


def main():
    parser = argparse.ArgumentParser(description="Seed the clinic database with demo data")
    parser.add_argument("--reset", action="store_true", help="clear existing data first")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        seed_data(db, reset=args.reset)
    except Exception:
        db.rollback()
        logger.exception("Error during seeding")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
