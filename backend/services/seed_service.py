import json

from sqlalchemy.orm import Session

from core.logging import get_logger
from models.medication import Medication
from models.user import User
from services.auth_service import hash_password

logger = get_logger(__name__)

DEMO_PASSWORD = "Password123!"
DEMO_PATIENT_EMAIL = "demo.patient@mindwatch.health"
DEMO_CLINICIAN_EMAIL = "demo.clinician@mindwatch.health"
DEMO_CLINICIAN_CRM = "CRM-SP 123456"

# (name, active ingredient, concentration, form, indication codes, interaction tags, controlled)
DEMO_MEDICATIONS = [
    ("Sertralina 50mg", "sertralina", "50mg", "comprimido", ["F32", "F32.1", "F33", "F41.1"], ["ssri"], False),
    ("Escitalopram 10mg", "escitalopram", "10mg", "comprimido", ["F32", "F32.1", "F41.1"], ["ssri"], False),
    ("Clonazepam 2mg", "clonazepam", "2mg", "comprimido", ["F41.0", "F41.1"], ["benzodiazepine"], True),
    ("Carbonato de Lítio 300mg", "carbonato de lítio", "300mg", "comprimido", ["F31", "F31.1"], ["narrow_therapeutic_index"], True),
    ("Quetiapina 25mg", "quetiapina", "25mg", "comprimido", ["F31", "F20"], ["antipsychotic"], True),
    ("Amoxicilina 500mg", "amoxicilina", "500mg", "cápsula", ["J01", "J02"], ["antibiotic"], False),
]


def seed_demo_data(db: Session) -> None:
    clinician = db.query(User).filter(User.email == DEMO_CLINICIAN_EMAIL).first()
    if not clinician:
        clinician = User(
            email=DEMO_CLINICIAN_EMAIL,
            name="Dra. Demo Clinician",
            role="clinician",
            hashed_password=hash_password(DEMO_PASSWORD),
            crm=DEMO_CLINICIAN_CRM,
        )
        db.add(clinician)
        db.flush()

    patient = db.query(User).filter(User.email == DEMO_PATIENT_EMAIL).first()
    if not patient:
        patient = User(
            email=DEMO_PATIENT_EMAIL,
            name="Demo Patient",
            role="patient",
            hashed_password=hash_password(DEMO_PASSWORD),
            clinician_id=clinician.id,
        )
        db.add(patient)

    if db.query(Medication).count() == 0:
        for name, ingredient, concentration, form, codes, tags, controlled in DEMO_MEDICATIONS:
            db.add(
                Medication(
                    name=name,
                    active_ingredient=ingredient,
                    concentration=concentration,
                    form=form,
                    indication_codes_json=json.dumps(codes),
                    interaction_tags_json=json.dumps(tags),
                    is_controlled=controlled,
                )
            )

    db.commit()
    logger.info("Demo data ready (clinician %s, patient %s)", DEMO_CLINICIAN_EMAIL, DEMO_PATIENT_EMAIL)
