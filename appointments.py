from flask import Blueprint, jsonify, request, current_app
from sqlalchemy import func, or_

from db import SessionLocal
from errors import Forbidden, NotFound, ValidationError
from models import Appointment, AppointmentNote, User, APPOINTMENT_STATUSES, STAFF_ROLES, utcnow
from security import require_api_key, require_user
from validation import require, normalize_email, check_email, check_text, check_flag

bp = Blueprint("appointments", __name__)

# wire name -> column
UPDATABLE = {
    "status": "status",
    "date": "date",
    "time": "time",
    "dentistId": "dentist_id",
    "dentistName": "dentist_name",
    "needsStaffConfirmation": "needs_staff_confirmation",
    "reason": "reason",
    "message": "message",
    "patientName": "patient_name",
    "patientPhone": "patient_phone",
}

TEXT_FIELDS = ("patientPhone", "message", "date", "time", "dentistId", "dentistName")


def _check_status(status):
    if status not in APPOINTMENT_STATUSES:
        raise ValidationError(f"Status must be one of: {', '.join(APPOINTMENT_STATUSES)}")

def get_appointment(db, appointment_id):
    appt = db.get(Appointment, appointment_id)
    if appt is None:
        raise NotFound("Appointment not found")
    return appt

def create_appointment(db, data):
    """Store a booking request. Status always starts as pending."""
    require(data, "reason")
    check_text(data, *TEXT_FIELDS)
    check_flag(data, "needsStaffConfirmation")
    email = normalize_email(data.get("patientEmail")) or None
    name = data.get("patientName")
    if email:
        check_email(email)
        if not name:
            patient = db.query(User).filter_by(email=email).first()
            name = patient.name if patient else None
    require({"patientName": name}, "patientName")
    appt = Appointment(
        patient_name=name.strip(),
        patient_email=email,
        patient_phone=data.get("patientPhone") or "",
        reason=data["reason"].strip(),
        message=data.get("message"),
        date=data.get("date"),
        time=data.get("time"),
        dentist_id=data.get("dentistId"),
        dentist_name=data.get("dentistName"),
        needs_staff_confirmation=data.get("needsStaffConfirmation", True),
        status="pending",
    )
    db.add(appt)
    db.commit()
    return appt.to_dict()

def list_appointments(db, role, user_email=None, status=None, search=None):
    q = db.query(Appointment)
    if role == "patient":
        q = q.filter(Appointment.patient_email == normalize_email(user_email))
    if status and status != "all":
        _check_status(status)
        q = q.filter(Appointment.status == status)
    if search:
        like = f"%{search.strip().lower()}%"
        q = q.filter(or_(func.lower(Appointment.patient_name).like(like),
                         func.lower(Appointment.patient_email).like(like),
                         func.lower(Appointment.reason).like(like)))
    return [a.to_dict() for a in q.order_by(Appointment.created_at).all()]

def update_appointment(db, appointment_id, updates, role=None, user_email=None):
    """Merge ``updates`` into the appointment; the last write wins."""
    appt = get_appointment(db, appointment_id)
    updates = updates or {}
    changes = {UPDATABLE[k]: v for k, v in updates.items() if k in UPDATABLE}
    if role == "patient":
        if appt.patient_email != normalize_email(user_email):
            raise Forbidden("You can only change your own appointments")
        if set(changes) != {"status"} or changes["status"] != "cancelled":
            raise Forbidden("Patients can only cancel their appointments")
    if "status" in changes:
        _check_status(changes["status"])
    for field in ("reason", "patientName"):
        if field in updates:
            require(updates, field)
            changes[UPDATABLE[field]] = updates[field].strip()
    check_text(updates, *TEXT_FIELDS)
    check_flag(updates, "needsStaffConfirmation")
    for attr, value in changes.items():
        setattr(appt, attr, value)
    appt.updated_at = utcnow()
    db.commit()
    return appt.to_dict()

# ---------------- Notes ----------------
def add_note(db, appointment_id, content, author_email, author_role):
    get_appointment(db, appointment_id)
    require({"content": content}, "content")
    note = AppointmentNote(appointment_id=appointment_id, content=content.strip(),
                           author_email=author_email, author_role=author_role)
    db.add(note)
    db.commit()
    return note.to_dict()

def list_notes(db, appointment_id):
    get_appointment(db, appointment_id)
    notes = (db.query(AppointmentNote)
             .filter_by(appointment_id=appointment_id)
             .order_by(AppointmentNote.created_at)
             .all())
    return [n.to_dict() for n in notes]

# ---------------- Dashboard ----------------
def dashboard_stats(db):
    by_status = dict(db.query(Appointment.status, func.count(Appointment.id))
                     .group_by(Appointment.status).all())
    by_role = dict(db.query(User.role, func.count(User.id)).group_by(User.role).all())
    return {
        "totalAppointments": sum(by_status.values()),
        "pendingAppointments": by_status.get("pending", 0),
        "confirmedAppointments": by_status.get("confirmed", 0),
        "completedAppointments": by_status.get("completed", 0),
        "cancelledAppointments": by_status.get("cancelled", 0),
        "totalPatients": by_role.get("patient", 0),
        "totalStaff": by_role.get("staff", 0),
        "totalDentists": by_role.get("dentist", 0),
    }

def _check_visible(appt, current):
    if current.role == "patient" and appt.patient_email != current.email:
        raise NotFound("Appointment not found")

# ---------------- Routes ----------------
@bp.get("/appointments")
@require_user()
def appointments_list(current):
    with SessionLocal() as db:
        items = list_appointments(db, current.role, current.email,
                                  status=request.args.get("status"),
                                  search=request.args.get("search"))
    return jsonify({"appointments": items})

@bp.post("/appointments")
@require_api_key
def appointments_create():
    data = request.get_json(silent=True) or {}
    with SessionLocal() as db:
        appt = create_appointment(db, data)
    current_app.logger.info("Appointment %s requested for %s", appt["id"], appt["patientEmail"])
    return jsonify({"appointment": appt}), 201

@bp.put("/appointments/<appointment_id>")
@require_user()
def appointments_update(appointment_id, current):
    data = request.get_json(silent=True) or {}
    with SessionLocal() as db:
        appt = update_appointment(db, appointment_id, data, role=current.role, user_email=current.email)
    current_app.logger.info("Appointment %s updated by %s", appointment_id, current.email)
    return jsonify({"appointment": appt})

@bp.get("/appointments/<appointment_id>/notes")
@require_user()
def notes_list(appointment_id, current):
    with SessionLocal() as db:
        _check_visible(get_appointment(db, appointment_id), current)
        return jsonify({"notes": list_notes(db, appointment_id)})

@bp.post("/appointments/<appointment_id>/notes")
@require_user()
def notes_create(appointment_id, current):
    data = request.get_json(silent=True) or {}
    with SessionLocal() as db:
        _check_visible(get_appointment(db, appointment_id), current)
        note = add_note(db, appointment_id, data.get("content"), current.email, current.role)
    return jsonify({"note": note}), 201

@bp.get("/stats")
@require_user(*STAFF_ROLES)
def stats(current):
    with SessionLocal() as db:
        return jsonify({"stats": dashboard_stats(db)})
