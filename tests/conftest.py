import os
import tempfile
import uuid

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="clinicflow-uploads-"))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from clinicflow.api.auth import hash_password, token_for
from clinicflow.database.connection import Base, get_db
from clinicflow.database.models import Appointment, Doctor, Laboratory, User, UserRole
from clinicflow.errors import StorageError
from clinicflow.main import app
from clinicflow.services.storage import StoredFile, get_file_storage

PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<<>>\nendobj\n%%EOF"
PASSWORD = "password123"

WEEKDAY_SCHEDULE = {
    day: {"available": True, "start_time": "09:00", "end_time": "17:00"}
    for day in ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday")
}
WEEKDAY_SCHEDULE["sunday"] = {"available": False}


class InMemoryStorage:
    """Stands in for the file store; keeps bytes in a dict"""

    def __init__(self):
        self.files = {}

    def store(self, content, suggested_name, folder):
        storage_id = uuid.uuid4().hex
        self.files[storage_id] = (folder, suggested_name, content)
        return StoredFile(
            url=f"/uploads/{folder}/{storage_id[:8]}_{suggested_name}",
            storage_id=storage_id,
            size=len(content),
        )


class BrokenStorage:
    def store(self, content, suggested_name, folder):
        raise StorageError("File save failed: disk full")


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(engine):
    TestingSession = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = TestingSession()
    yield session
    session.close()


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def client(db_session, storage):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_file_storage] = lambda: storage
    yield TestClient(app)
    app.dependency_overrides.clear()


# ==================== FACTORIES ====================

def make_user(db, role, email, name=None, patient_id=None):
    user = User(
        name=name or email.split("@")[0].title(),
        email=email,
        phone="9000000000",
        role=role.value,
        patient_id=patient_id,
        password_hash=hash_password(PASSWORD),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_doctor(db, code, user=None, fee=800, services=None, availability=None):
    doctor = Doctor(
        doctor_code=code,
        user_id=user.id if user else None,
        name=user.name if user else f"Dr. {code}",
        email=user.email if user else f"{code.lower()}@clinicflow.dev",
        specialty="Reproductive Medicine",
        services=services if services is not None else ["general"],
        availability=availability if availability is not None else WEEKDAY_SCHEDULE,
        consultation_fee=fee,
    )
    db.add(doctor)
    db.commit()
    db.refresh(doctor)
    return doctor


def auth_headers(user):
    return {"Authorization": f"Bearer {token_for(user)}"}


@pytest.fixture
def patient(db_session):
    return make_user(db_session, UserRole.PATIENT, "meera@clinicflow.dev", name="Meera Iyer", patient_id="P-1001")


@pytest.fixture
def doctor_user(db_session):
    return make_user(db_session, UserRole.DOCTOR, "rao@clinicflow.dev", name="Dr. Ananya Rao")


@pytest.fixture
def doctor(db_session, doctor_user):
    return make_doctor(db_session, "D1", user=doctor_user)


@pytest.fixture
def other_doctor_user(db_session):
    return make_user(db_session, UserRole.DOCTOR, "sen@clinicflow.dev", name="Dr. Vikram Sen")


@pytest.fixture
def lab_user(db_session):
    return make_user(db_session, UserRole.LAB, "lab@clinicflow.dev", name="City Diagnostics")


@pytest.fixture
def laboratory(db_session, lab_user):
    lab = Laboratory(user_id=lab_user.id, name=lab_user.name, phone="9000000002", address="12 MG Road")
    db_session.add(lab)
    db_session.commit()
    db_session.refresh(lab)
    return lab


@pytest.fixture
def pharmacy_user(db_session):
    return make_user(db_session, UserRole.PHARMACY, "pharmacy@clinicflow.dev", name="Clinic Pharmacy")


@pytest.fixture
def reception_user(db_session):
    return make_user(db_session, UserRole.RECEPTION, "desk@clinicflow.dev", name="Front Desk")


@pytest.fixture
def appointment(db_session, patient, doctor):
    from clinicflow.services.booking import book_slot

    return book_slot(db_session, patient, "D1", "2024-06-01", "10:00")


def active_count(db, doctor_id, day, time_label):
    return db.query(Appointment).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.date == day,
        Appointment.time == time_label,
        Appointment.status != "cancelled",
    ).count()
