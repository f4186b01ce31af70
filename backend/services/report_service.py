from __future__ import annotations

from io import BytesIO

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import inch
from reportlab.pdfgen import canvas
from sqlalchemy.orm import Session

from models.consultation import Consultation
from models.user import User
from services import prescription_service
from services.consultation_service import diagnosis_codes

DISCLAIMER = "Digitally signed document. Verify the signature hash against the issuing system."


def build_prescription_export_json(db: Session, prescription_id: str, requester: User) -> dict:
    p = prescription_service.get_prescription(db, prescription_id, requester)
    patient = db.get(User, p.patient_id)
    prescriber = db.get(User, p.prescriber_id)
    consultation = db.get(Consultation, p.consultation_id)
    body = prescription_service.to_response(db, p).model_dump()

    return {
        "disclaimer": DISCLAIMER,
        "prescription": {
            **body,
            "patient_name": patient.name if patient else None,
            "prescriber_name": prescriber.name if prescriber else None,
            "prescriber_crm": p.signed_credential,
            "diagnoses": diagnosis_codes(consultation) if consultation else [],
            "signature_valid": prescription_service.verify_signature(p),
        },
    }


def build_prescription_pdf_bytes(db: Session, prescription_id: str, requester: User) -> bytes:
    export = build_prescription_export_json(db, prescription_id=prescription_id, requester=requester)
    rx = export["prescription"]

    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    w, h = A4

    y = h - 0.75 * inch
    c.setFont("Helvetica-Bold", 16)
    c.drawString(0.75 * inch, y, f"Receituário {rx['type']}")

    y -= 0.3 * inch
    c.setFont("Helvetica", 9)
    c.setFillGray(0.25)
    c.drawString(0.75 * inch, y, export["disclaimer"])
    c.setFillGray(0)

    y -= 0.45 * inch
    c.setFont("Helvetica", 10)
    header = [
        f"Prescription ID: {rx['id']}",
        f"Patient: {rx.get('patient_name') or '-'} ({rx['patient_id']})",
        f"Prescriber: {rx.get('prescriber_name') or '-'}  CRM {rx.get('prescriber_crm') or '-'}",
        f"Diagnoses: {', '.join(rx['diagnoses']) or '-'}",
        f"Issued: {rx['created_at']}",
        f"Valid until: {rx['valid_until']}",
    ]
    if not rx["is_valid"]:
        header.append(f"REVOKED at {rx['revoked_at']}: {rx.get('revoked_reason') or '-'}")
    for line in header:
        c.drawString(0.75 * inch, y, line)
        y -= 0.2 * inch

    y -= 0.15 * inch
    c.setFont("Helvetica-Bold", 11)
    c.drawString(0.75 * inch, y, "Medications")
    y -= 0.25 * inch

    for item in rx["items"]:
        lines = [
            f"{item['position'] + 1}. {item.get('medication_name') or item['medication_id']}  {item['dosage']}  ({item['quantity']})",
            f"    {item.get('frequency') or '-'}; {item.get('duration') or '-'}; {item.get('instructions') or ''}",
        ]
        c.setFont("Helvetica", 10)
        for line in lines:
            c.drawString(0.75 * inch, y, line[:110])
            y -= 0.2 * inch
            if y < 1.2 * inch:
                c.showPage()
                y = h - 0.75 * inch

    y -= 0.3 * inch
    c.setFont("Helvetica", 8)
    c.drawString(0.75 * inch, y, f"Signed at {rx.get('signed_at') or '-'}")
    y -= 0.16 * inch
    c.drawString(0.75 * inch, y, f"SHA-256 {rx.get('signature_hash') or '-'}")

    c.showPage()
    c.save()
    return buf.getvalue()
