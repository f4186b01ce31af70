from models.alert import Alert
from models.audit import AuditEvent
from models.base import Base
from models.consultation import Consultation
from models.daily_report import DailyReport
from models.medication import Medication
from models.prescription import ActivePrescription, FormalPrescription, PrescriptionItem
from models.user import User

__all__ = [
    "ActivePrescription",
    "Alert",
    "AuditEvent",
    "Base",
    "Consultation",
    "DailyReport",
    "FormalPrescription",
    "Medication",
    "PrescriptionItem",
    "User",
]
