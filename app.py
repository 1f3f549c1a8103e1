import os
from datetime import datetime, timezone
import click
from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException
from dotenv import load_dotenv

from db import SessionLocal, init_engine
from errors import ApiError
from models import User, Appointment
from security import hash_secret
from auth import bp as auth_bp, log_otp_sender
from appointments import bp as appointments_bp
from patients import bp as patients_bp
from services import bp as services_bp, seed_default_services

load_dotenv()

# ---------------- Config ----------------
DATABASE_URL   = os.getenv("DATABASE_URL", "sqlite:///dental.sqlite3")
API_KEY        = os.getenv("API_KEY", "")
API_PREFIX     = os.getenv("API_PREFIX", "")
FRONTEND_URL   = os.getenv("FRONTEND_URL", "http://localhost:3000")
PORT           = int(os.getenv("PORT", "8000"))

REQUIRE_OTP    = os.getenv("REQUIRE_OTP", "false").lower() in ("1", "true", "yes")
OTP_TTL        = int(os.getenv("OTP_TTL_SECONDS", "300"))  # 5 min
OTP_ATTEMPTS   = int(os.getenv("OTP_MAX_ATTEMPTS", "5"))
RESET_TTL      = int(os.getenv("RESET_TOKEN_TTL_SECONDS", "3600"))  # 1h

ADMIN_USER     = os.getenv("ADMIN_USER", "")
ADMIN_PASS     = os.getenv("ADMIN_PASSWORD", "")
DEMO_PASS      = os.getenv("DEMO_PASSWORD", "Password123!")
CLINIC         = os.getenv("CLINIC_NAME", "SmileCare Dental")

BLUEPRINTS = (auth_bp, appointments_bp, patients_bp, services_bp)

DEMO_STAFF = [
    ("dentist@dentalclinic.com", "Dr. Sarah Johnson", "dentist", ""),
    ("staff@dentalclinic.com", "Mary Chen", "staff", ""),
    ("patient@example.com", "John Smith", "patient", "(555) 123-4567"),
]


# ---------------- Seeding ----------------
def seed_data(db, admin_email=None, admin_password=None, demo=False, demo_password=DEMO_PASS):
    """Create the admin account, the service catalogue and optional demo data.

    Existing accounts are left untouched. Returns the emails created.
    """
    created = []

    def add_user(email, name, role, password, phone=""):
        email = email.strip().lower()
        if db.query(User).filter_by(email=email).first():
            return
        db.add(User(email=email, name=name, role=role, phone=phone, can_login=True,
                    password_hash=hash_secret(password), created_by="seed"))
        created.append(email)

    if admin_email and admin_password:
        add_user(admin_email, "System Administrator", "admin", admin_password)
    if demo:
        for email, name, role, phone in DEMO_STAFF:
            add_user(email, name, role, demo_password, phone)
        if not db.query(Appointment).filter_by(patient_email="patient@example.com").first():
            db.add(Appointment(patient_name="John Smith", patient_email="patient@example.com",
                               patient_phone="(555) 123-4567", reason="Routine checkup and cleaning",
                               status="pending", needs_staff_confirmation=True))
    db.commit()
    seed_default_services(db)
    return created


# ---------------- App ----------------
def create_app(overrides=None):
    app = Flask(__name__)
    app.config.update(
        DATABASE_URL=DATABASE_URL,
        API_KEY=API_KEY,
        API_PREFIX=API_PREFIX,
        FRONTEND_URL=FRONTEND_URL,
        REQUIRE_OTP=REQUIRE_OTP,
        OTP_TTL_SECONDS=OTP_TTL,
        OTP_MAX_ATTEMPTS=OTP_ATTEMPTS,
        RESET_TOKEN_TTL_SECONDS=RESET_TTL,
        ADMIN_USER=ADMIN_USER,
        ADMIN_PASSWORD=ADMIN_PASS,
        CLINIC_NAME=CLINIC,
    )
    if overrides:
        app.config.update(overrides)

    init_engine(app.config["DATABASE_URL"])
    app.extensions.setdefault("otp_sender", log_otp_sender)

    prefix = app.config["API_PREFIX"].rstrip("/")
    for bp in BLUEPRINTS:
        app.register_blueprint(bp, url_prefix=prefix + (bp.url_prefix or ""))

    register_error_handlers(app)

    # ---------------- Health ----------------
    @app.get(prefix + "/health")
    def health():
        with SessionLocal() as db:
            user_count = db.query(User).count()
        return jsonify({
            "status": "ok",
            "service": app.config["CLINIC_NAME"],
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "userCount": user_count,
        })

    # ---------------- CLI ----------------
    @app.cli.command("seed")
    @click.option("--demo", is_flag=True, help="Also create demo dentist/staff/patient accounts.")
    def seed_command(demo):
        """Create the admin account and default dental services."""
        with SessionLocal() as db:
            created = seed_data(db, app.config["ADMIN_USER"], app.config["ADMIN_PASSWORD"], demo=demo)
        for email in created:
            click.echo(f"Created user: {email}")
        if not app.config["ADMIN_USER"]:
            click.echo("ADMIN_USER / ADMIN_PASSWORD not set; no admin account created")

    return app


def register_error_handlers(app):
    @app.errorhandler(ApiError)
    def handle_api_error(e):
        app.logger.warning("%s %s -> %s: %s", request.method, request.path, e.status, e.message)
        return jsonify(e.to_dict()), e.status

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({"error": e.description, "code": e.name.lower().replace(" ", "_")}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        app.logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify({"error": "Internal server error", "code": "error"}), 500


if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=PORT)
