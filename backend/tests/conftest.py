import json
import os
import tempfile
from datetime import datetime

import pytest
from fastapi.testclient import TestClient

os.environ["DATABASE_URL"] = f"sqlite:///{tempfile.mkdtemp()}/mindwatch_test.db"
os.environ["SEED_DEMO_DATA"] = "false"

from database.session import SessionLocal, engine  # noqa: E402
from main import app  # noqa: E402
from models import Base, Consultation, Medication, User  # noqa: E402
from models.consultation import CONSULTATION_DRAFT  # noqa: E402
from services import notification_service  # noqa: E402
from services.auth_service import create_access_token, hash_password  # noqa: E402

PASSWORD = "password"


class RecordingHub:
    def __init__(self):
        self.events: list[tuple[str, dict]] = []

    def publish(self, clinician_id, payload):
        self.events.append((clinician_id, payload))
        return 1

    def of_type(self, event_type):
        return [(cid, p) for cid, p in self.events if p["type"] == event_type]


@pytest.fixture(autouse=True)
def hub(monkeypatch):
    recording = RecordingHub()
    monkeypatch.setattr(notification_service, "event_hub", recording)
    return recording


@pytest.fixture(scope="function")
def db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(db):
    return TestClient(app)


def make_clinician(db, email="clinician@test.example.com", crm="CRM-SP 123456", name="Dr. Test") -> User:
    u = User(email=email, name=name, role="clinician", hashed_password=hash_password(PASSWORD), crm=crm)
    db.add(u)
    db.commit()
    db.refresh(u)
    return u


def make_patient(db, clinician=None, email="patient@test.example.com", name="Test Patient") -> User:
    u = User(
        email=email,
        name=name,
        role="patient",
        hashed_password=hash_password(PASSWORD),
        clinician_id=clinician.id if clinician else None,
    )
    db.add(u)
    db.commit()
    db.refresh(u)
    return u


def make_medication(db, name, indications, tags=(), controlled=False) -> Medication:
    m = Medication(
        name=name,
        indication_codes_json=json.dumps(list(indications)),
        interaction_tags_json=json.dumps(list(tags)),
        is_controlled=controlled,
    )
    db.add(m)
    db.commit()
    db.refresh(m)
    return m


def make_consultation(
    db,
    doctor,
    patient,
    anamnesis="Paciente relata humor deprimido há três semanas.",
    treatment_plan="Iniciar ISRS e retorno em 30 dias.",
    codes=("F32.1",),
    status=CONSULTATION_DRAFT,
) -> Consultation:
    c = Consultation(
        patient_id=patient.id,
        doctor_id=doctor.id,
        date_time=datetime(2026, 10, 1, 14, 0),
        duration_minutes=50,
        modality="PRESENCIAL",
        status=status,
        anamnesis=anamnesis,
        diagnostic_hypothesis="Episódio depressivo moderado",
        treatment_plan=treatment_plan,
        icd10_codes_json=json.dumps(list(codes)),
    )
    db.add(c)
    db.commit()
    db.refresh(c)
    return c


def auth_headers(user) -> dict:
    token = create_access_token(sub=str(user.id), role=user.role, email=user.email)
    return {"Authorization": f"Bearer {token}"}
