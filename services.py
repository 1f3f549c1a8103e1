"""Dental service catalogue, per-patient service history and medical history."""
from flask import Blueprint, jsonify, request
from sqlalchemy import desc

from db import SessionLocal
from errors import Forbidden, NotFound, ValidationError
from models import (DentalService, ServiceRecord, MedicalHistory, User,
                    SERVICE_CATEGORIES, RECORD_STATUSES, STAFF_ROLES, utcnow)
from security import require_user
from validation import require, normalize_email, check_text

bp = Blueprint("services", __name__)

DEFAULT_SERVICES = [
    {"name": "Routine Cleaning", "category": "preventive",
     "description": "Regular dental cleaning and examination", "defaultPrice": 120, "estimatedDuration": 60},
    {"name": "Dental Filling", "category": "restorative",
     "description": "Tooth restoration using composite or amalgam filling", "defaultPrice": 180, "estimatedDuration": 45},
    {"name": "Root Canal Treatment", "category": "restorative",
     "description": "Endodontic treatment to save infected tooth", "defaultPrice": 800, "estimatedDuration": 90},
    {"name": "Teeth Whitening", "category": "cosmetic",
     "description": "Professional teeth whitening treatment", "defaultPrice": 350, "estimatedDuration": 75},
    {"name": "Tooth Extraction", "category": "surgical",
     "description": "Surgical removal of tooth", "defaultPrice": 250, "estimatedDuration": 30},
    {"name": "Dental Crown", "category": "restorative",
     "description": "Crown restoration for damaged tooth", "defaultPrice": 950, "estimatedDuration": 120},
    {"name": "Orthodontic Consultation", "category": "orthodontic",
     "description": "Initial consultation for braces or aligners", "defaultPrice": 150, "estimatedDuration": 45},
]


def _number(value, field_name, minimum=0, cast=float):
    try:
        parsed = cast(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field_name} must be a valid number") from exc
    if parsed < minimum:
        raise ValidationError(f"{field_name} must be at least {minimum}")
    return parsed

def _mapping(value, field_name):
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError(f"{field_name} must be an object")
    return value

def _string_list(value, field_name):
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValidationError(f"{field_name} must be a list of strings")
    return [v.strip() for v in value if v.strip()]

# ---------------- Catalogue ----------------
def _apply_service_fields(service, data):
    if "name" in data:
        require(data, "name")
        service.name = data["name"].strip()
    if "category" in data:
        if data["category"] not in SERVICE_CATEGORIES:
            raise ValidationError(f"Category must be one of: {', '.join(SERVICE_CATEGORIES)}")
        service.category = data["category"]
    if "description" in data:
        service.description = data["description"] or ""
    if "defaultPrice" in data:
        service.default_price = _number(data["defaultPrice"], "Default price")
    if "estimatedDuration" in data:
        service.estimated_duration = _number(data["estimatedDuration"], "Estimated duration", minimum=1, cast=int)
    if "isActive" in data:
        service.is_active = bool(data["isActive"])

def list_services(db, active_only=False):
    q = db.query(DentalService)
    if active_only:
        q = q.filter(DentalService.is_active.is_(True))
    return [s.to_dict() for s in q.order_by(DentalService.name).all()]

def create_service(db, data):
    require(data, "name", "category")
    service = DentalService(is_active=True)
    _apply_service_fields(service, data)
    db.add(service)
    db.commit()
    return service.to_dict()

def update_service(db, service_id, data):
    service = db.get(DentalService, service_id)
    if service is None:
        raise NotFound("Service not found")
    _apply_service_fields(service, data or {})
    db.commit()
    return service.to_dict()

def seed_default_services(db):
    """Add the default catalogue to an empty services table."""
    if db.query(DentalService).count():
        return 0
    for item in DEFAULT_SERVICES:
        service = DentalService(is_active=True)
        _apply_service_fields(service, item)
        db.add(service)
    db.commit()
    return len(DEFAULT_SERVICES)

# ---------------- Service history ----------------
def _apply_record_fields(record, data):
    check_text(data, "notes", "appointmentId")
    if "notes" in data:
        record.notes = data["notes"] or ""
    if "cost" in data:
        record.cost = _number(data["cost"], "Cost")
    if "status" in data:
        if data["status"] not in RECORD_STATUSES:
            raise ValidationError(f"Status must be one of: {', '.join(RECORD_STATUSES)}")
        record.status = data["status"]
    if "date" in data:
        require(data, "date")
        record.date = data["date"]
    if "appointmentId" in data:
        record.appointment_id = data["appointmentId"]

def list_service_history(db, patient_email=None):
    q = db.query(ServiceRecord)
    if patient_email:
        q = q.filter(ServiceRecord.patient_email == normalize_email(patient_email))
    return [r.to_dict() for r in q.order_by(desc(ServiceRecord.date), desc(ServiceRecord.created_at)).all()]

def create_service_record(db, data, performed_by, performed_by_name):
    require(data, "patientEmail", "date")
    check_text(data, "serviceId", "serviceName", "performedBy", "performedByName")
    if not data.get("serviceId") and not data.get("serviceName"):
        raise ValidationError("A service is required")
    service = None
    if data.get("serviceId"):
        service = db.get(DentalService, data["serviceId"])
        if service is None:
            raise NotFound("Service not found")
    record = ServiceRecord(
        patient_email=normalize_email(data["patientEmail"]),
        service_id=service.id if service else None,
        service_name=data.get("serviceName") or service.name,
        performed_by=data.get("performedBy") or performed_by,
        performed_by_name=data.get("performedByName") or performed_by_name,
        cost=service.default_price if service else 0,
        status="completed",
    )
    _apply_record_fields(record, data)
    db.add(record)
    db.commit()
    return record.to_dict()

def update_service_record(db, record_id, data):
    record = db.get(ServiceRecord, record_id)
    if record is None:
        raise NotFound("Service record not found")
    _apply_record_fields(record, data or {})
    record.updated_at = utcnow()
    db.commit()
    return record.to_dict()

# ---------------- Medical history ----------------
def get_medical_history(db, patient_email):
    history = db.query(MedicalHistory).filter_by(patient_email=normalize_email(patient_email)).first()
    return history.to_dict() if history else None

def update_medical_history(db, patient_email, data, updated_by):
    email = normalize_email(patient_email)
    if db.query(User).filter_by(email=email).first() is None:
        raise NotFound("Patient not found")
    history = db.query(MedicalHistory).filter_by(patient_email=email).first()
    if history is None:
        history = MedicalHistory(patient_email=email)
        db.add(history)
    history.allergies = _string_list(data.get("allergies"), "Allergies")
    history.medications = _string_list(data.get("medications"), "Medications")
    history.medical_conditions = _string_list(data.get("medicalConditions"), "Medical conditions")
    contact = _mapping(data.get("emergencyContact"), "Emergency contact")
    history.emergency_contact = {k: contact.get(k, "") for k in ("name", "phone", "relationship")}
    insurance = _mapping(data.get("insuranceInfo"), "Insurance info")
    if insurance:
        require(insurance, "provider", "policyNumber")
        history.insurance_info = {k: insurance.get(k) for k in ("provider", "policyNumber", "groupNumber")
                                  if insurance.get(k)}
    else:
        history.insurance_info = None
    history.notes = data.get("notes") or ""
    history.last_updated = utcnow()
    history.updated_by = updated_by
    db.commit()
    return history.to_dict()

def _check_own(current, email):
    if current.role == "patient" and normalize_email(email) != current.email:
        raise Forbidden("You can only access your own records")

# ---------------- Routes ----------------
@bp.get("/services")
@require_user()
def services_list(current):
    active_only = request.args.get("active") == "true"
    with SessionLocal() as db:
        return jsonify({"services": list_services(db, active_only)})

@bp.post("/services")
@require_user("admin")
def services_create(current):
    with SessionLocal() as db:
        return jsonify({"service": create_service(db, request.get_json(silent=True) or {})}), 201

@bp.put("/services/<service_id>")
@require_user("admin")
def services_update(service_id, current):
    with SessionLocal() as db:
        return jsonify({"service": update_service(db, service_id, request.get_json(silent=True) or {})})

@bp.get("/service-history")
@require_user()
def history_list(current):
    email = request.args.get("patientEmail")
    if current.role == "patient":
        email = current.email
    with SessionLocal() as db:
        return jsonify({"serviceHistory": list_service_history(db, email)})

@bp.post("/service-history")
@require_user(*STAFF_ROLES)
def history_create(current):
    data = request.get_json(silent=True) or {}
    with SessionLocal() as db:
        record = create_service_record(db, data, current.email, current.name)
    return jsonify({"record": record}), 201

@bp.put("/service-history/<record_id>")
@require_user(*STAFF_ROLES)
def history_update(record_id, current):
    with SessionLocal() as db:
        return jsonify({"record": update_service_record(db, record_id, request.get_json(silent=True) or {})})

@bp.get("/medical-history/<email>")
@require_user()
def medical_history_get(email, current):
    _check_own(current, email)
    with SessionLocal() as db:
        return jsonify({"medicalHistory": get_medical_history(db, email)})

@bp.put("/medical-history/<email>")
@require_user()
def medical_history_update(email, current):
    _check_own(current, email)
    data = request.get_json(silent=True) or {}
    with SessionLocal() as db:
        return jsonify({"medicalHistory": update_medical_history(db, email, data, current.email)})
