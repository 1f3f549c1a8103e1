from flask import Blueprint, jsonify, request, current_app
from sqlalchemy import func, or_

from db import SessionLocal
from errors import Conflict, Forbidden, NotFound, ValidationError
from models import User, STAFF_ROLES, utcnow
from security import hash_secret, require_user
from validation import require, normalize_email, check_email, check_text, check_password_policy

bp = Blueprint("patients", __name__)

# fields a profile update may touch; role, email and login flags are not among them
PROFILE_FIELDS = {"name": "name", "phone": "phone", "birthdate": "birthdate", "address": "address"}
ADDRESS_FIELDS = ("street", "city", "state", "zipCode", "country")
CREATABLE_STAFF_ROLES = ("staff", "dentist")


def list_patients(db, search=None):
    q = db.query(User).filter(User.role == "patient")
    if search:
        like = f"%{search.strip().lower()}%"
        q = q.filter(or_(func.lower(User.name).like(like),
                         func.lower(User.email).like(like),
                         func.lower(User.phone).like(like)))
    return [u.to_dict() for u in q.order_by(User.created_at).all()]

def create_walk_in(db, name, email, phone, staff_email):
    """Register someone at the front desk. They cannot sign in until they sign up."""
    require({"name": name, "email": email}, "name", "email")
    check_text({"phone": phone}, "phone")
    email = normalize_email(email)
    check_email(email)
    if db.query(User).filter_by(email=email).first():
        raise Conflict("A patient already exists with this email")
    patient = User(email=email, name=name.strip(), phone=phone or "", role="patient",
                   can_login=False, is_walk_in=True, created_by=staff_email)
    db.add(patient)
    db.commit()
    return patient.to_dict()

def update_profile(db, email, updates):
    user = db.query(User).filter_by(email=normalize_email(email)).first()
    if user is None:
        raise NotFound("User not found")
    changes = {PROFILE_FIELDS[k]: v for k, v in (updates or {}).items() if k in PROFILE_FIELDS}
    check_text(updates or {}, "phone", "birthdate")
    if "name" in changes:
        require(changes, "name")
        changes["name"] = changes["name"].strip()
    if "address" in changes and changes["address"] is not None:
        if not isinstance(changes["address"], dict):
            raise ValidationError("Address must be an object")
        changes["address"] = {k: changes["address"].get(k) for k in ADDRESS_FIELDS
                              if changes["address"].get(k) is not None}
    for attr, value in changes.items():
        setattr(user, attr, value)
    user.updated_at = utcnow()
    db.commit()
    return user.to_dict()

# ---------------- Admin: staff & dentists ----------------
def create_staff_user(db, email, password, name, role, created_by):
    require({"email": email, "password": password, "name": name, "role": role},
            "email", "password", "name", "role")
    if role not in CREATABLE_STAFF_ROLES:
        raise ValidationError("Admin can only create staff and dentist users")
    email = normalize_email(email)
    check_email(email)
    check_password_policy(password)
    if db.query(User).filter_by(email=email).first():
        raise Conflict("User already exists with this email")
    user = User(email=email, name=name.strip(), role=role, password_hash=hash_secret(password),
                can_login=True, created_by=created_by)
    db.add(user)
    db.commit()
    return user.to_dict()

def list_staff_users(db):
    users = (db.query(User)
             .filter(User.role.in_(CREATABLE_STAFF_ROLES))
             .order_by(User.created_at)
             .all())
    return [u.to_dict() for u in users]

# ---------------- Routes ----------------
@bp.get("/patients")
@require_user(*STAFF_ROLES)
def patients_list(current):
    with SessionLocal() as db:
        return jsonify({"patients": list_patients(db, request.args.get("search"))})

@bp.post("/walk-in-patient")
@require_user(*STAFF_ROLES)
def walk_in_create(current):
    data = request.get_json(silent=True) or {}
    with SessionLocal() as db:
        patient = create_walk_in(db, data.get("name"), data.get("email"), data.get("phone"), current.email)
    current_app.logger.info("Walk-in patient %s created by %s", patient["email"], current.email)
    return jsonify({"patient": patient}), 201

@bp.put("/profile/<email>")
@require_user()
def profile_update(email, current):
    if current.role == "patient" and normalize_email(email) != current.email:
        raise Forbidden("You can only update your own profile")
    data = request.get_json(silent=True) or {}
    with SessionLocal() as db:
        return jsonify({"user": update_profile(db, email, data)})

@bp.get("/admin/users")
@require_user("admin")
def admin_users_list(current):
    with SessionLocal() as db:
        return jsonify({"users": list_staff_users(db)})

@bp.post("/admin/users")
@require_user("admin")
def admin_users_create(current):
    data = request.get_json(silent=True) or {}
    with SessionLocal() as db:
        user = create_staff_user(db, data.get("email"), data.get("password"), data.get("name"),
                                 data.get("role"), current.email)
    current_app.logger.info("%s account %s created by %s", user["role"], user["email"], current.email)
    return jsonify({"user": user}), 201
