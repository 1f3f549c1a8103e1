import secrets
import time
from urllib.parse import quote
from flask import Blueprint, jsonify, request, current_app

from db import SessionLocal
from errors import BadRequest, Conflict, ExpiredToken, Forbidden, NotFound, Unauthorized, ValidationError
from models import User, UserSession, OtpChallenge, PasswordResetToken, utcnow
from security import hash_secret, verify_secret, issue_session, end_session, new_token, require_api_key, require_user
from validation import require, normalize_email, normalize_otp, check_email, check_text, check_password_policy

bp = Blueprint("auth", __name__, url_prefix="/auth")

OTP_PURPOSES = ("signin", "signup")


def now_ms() -> int:
    return int(time.time() * 1000)

def get_user(db, email):
    return db.query(User).filter_by(email=normalize_email(email)).first()

def log_otp_sender(method, value, code):
    """Development delivery: write the code to the application log."""
    current_app.logger.info("Verification code for %s %s: %s", method, value, code)

# ---------------- OTP ----------------
def _contact(user):
    if user.phone:
        return "phone", user.phone
    return "email", user.email

def start_otp(db, user, purpose, ttl_seconds, sender):
    code = f"{secrets.randbelow(10 ** 6):06d}"
    challenge = db.get(OtpChallenge, (user.email, purpose))
    # attempts carry over when a code is re-sent
    if challenge is None:
        challenge = OtpChallenge(email=user.email, purpose=purpose, attempts=0, created_at=utcnow())
        db.add(challenge)
    challenge.code_hash = hash_secret(code)
    challenge.expires = now_ms() + ttl_seconds * 1000
    db.commit()
    method, value = _contact(user)
    if sender is not None:
        sender(method, value, code)
    return {"success": True, "requiresOTP": True, "contactMethod": method, "contactValue": value}

def verify_otp(db, email, otp, purpose, max_attempts=5):
    otp = normalize_otp(otp)
    require({"email": email, "otp": otp, "type": purpose}, "email", "otp", "type",
            label="Email, verification code, and type")
    if purpose not in OTP_PURPOSES:
        raise ValidationError("Verification type must be signin or signup")
    email = normalize_email(email)
    challenge = db.get(OtpChallenge, (email, purpose))
    if challenge is None or now_ms() > challenge.expires:
        if challenge is not None:
            db.delete(challenge)
            db.commit()
        raise ExpiredToken("Verification code has expired. Please request a new one.")
    if not verify_secret(challenge.code_hash, str(otp).strip()):
        challenge.attempts += 1
        if challenge.attempts >= max_attempts:
            db.delete(challenge)
        db.commit()
        raise Unauthorized("Invalid verification code")
    db.delete(challenge)
    user = get_user(db, email)
    if user is None or not user.can_login:
        db.commit()
        raise Forbidden("This account cannot login")
    token = issue_session(db, user)
    db.commit()
    return {"success": True, "user": user.to_dict(), "token": token}

def resend_otp(db, email, purpose, ttl_seconds, sender):
    require({"email": email, "type": purpose}, "email", "type")
    if purpose not in OTP_PURPOSES:
        raise ValidationError("Verification type must be signin or signup")
    email = normalize_email(email)
    # only an already started verification may be re-sent
    if db.get(OtpChallenge, (email, purpose)) is None:
        raise NotFound("No verification in progress for this email")
    user = get_user(db, email)
    if user is None or not user.can_login:
        raise Forbidden("This account cannot login")
    return start_otp(db, user, purpose, ttl_seconds, sender)

# ---------------- Sign in / up ----------------
def sign_in(db, email, password, otp_required=False, otp_ttl=300, sender=None):
    require({"email": email, "password": password}, "email", "password")
    user = get_user(db, email)
    if user is None:
        raise Unauthorized("No account exists with this email address")
    if not user.can_login:
        raise Forbidden("This account cannot login. Please register yourself if you are a walk-in patient.")
    if not verify_secret(user.password_hash, password):
        raise Unauthorized("Incorrect password")
    if otp_required:
        return start_otp(db, user, "signin", otp_ttl, sender)
    token = issue_session(db, user)
    db.commit()
    return {"success": True, "user": user.to_dict(), "token": token}

def sign_up(db, email, password, name, phone=None, otp_required=False, otp_ttl=300, sender=None):
    require({"email": email, "password": password, "name": name}, "email", "password", "name")
    check_text({"phone": phone}, "phone")
    email = normalize_email(email)
    check_email(email)
    check_password_policy(password)
    user = get_user(db, email)
    if user is not None and (user.can_login or not user.is_walk_in):
        raise Conflict("Account already exists with this email")
    if user is not None:
        # a walk-in registering with the same email claims the record
        user.name = name.strip()
        if phone:
            user.phone = phone
        user.password_hash = hash_secret(password)
        user.can_login = True
        user.updated_at = utcnow()
    else:
        user = User(email=email, name=name.strip(), phone=phone or "", role="patient",
                    password_hash=hash_secret(password), can_login=True, is_walk_in=False)
        db.add(user)
    db.flush()
    if otp_required:
        return start_otp(db, user, "signup", otp_ttl, sender)
    token = issue_session(db, user)
    db.commit()
    return {"success": True, "user": user.to_dict(), "token": token}

def sign_out(db, token):
    end_session(db, token)
    db.commit()
    return {"success": True}

# ---------------- Passwords ----------------
def change_password(db, email, current_password, new_password):
    require({"email": email, "currentPassword": current_password, "newPassword": new_password},
            "email", "currentPassword", "newPassword")
    user = get_user(db, email)
    if user is None:
        raise NotFound("User not found")
    if not verify_secret(user.password_hash, current_password):
        raise BadRequest("Current password is incorrect")
    check_password_policy(new_password)
    user.password_hash = hash_secret(new_password)
    user.updated_at = utcnow()
    db.commit()
    return {"success": True}

def forgot_password(db, email, origin, ttl_seconds=3600):
    require({"email": email}, "email")
    email = normalize_email(email)
    if get_user(db, email) is None:
        raise NotFound("No account exists with this email address")
    token = new_token()
    db.add(PasswordResetToken(token=token, email=email, expires=now_ms() + ttl_seconds * 1000))
    db.commit()
    reset_link = f"{origin.rstrip('/')}/reset-password?token={token}&email={quote(email)}"
    return {"success": True, "resetLink": reset_link}

def reset_password(db, token, email, new_password):
    require({"token": token, "email": email, "newPassword": new_password},
            "token", "email", "newPassword")
    record = db.get(PasswordResetToken, token)
    if record is None:
        raise BadRequest("Invalid or expired reset token")
    if now_ms() > record.expires:
        db.delete(record)
        db.commit()
        raise ExpiredToken("Reset token has expired")
    if record.email != normalize_email(email):
        raise Unauthorized("Token does not match email address")
    check_password_policy(new_password)
    user = get_user(db, record.email)
    if user is None:
        raise NotFound("User not found")
    user.password_hash = hash_secret(new_password)
    user.updated_at = user.password_reset_at = utcnow()
    db.delete(record)
    # sessions opened with the old password end here
    db.query(UserSession).filter_by(email=user.email).delete()
    db.commit()
    return {"success": True}

# ---------------- Routes ----------------
def _otp_required(data):
    return bool(current_app.config.get("REQUIRE_OTP") or data.get("requireOTP"))

def _otp_sender():
    return current_app.extensions.get("otp_sender")

@bp.post("/signin")
@require_api_key
def signin_route():
    data = request.get_json(silent=True) or {}
    current_app.logger.info("Sign-in attempt for email: %s", data.get("email"))
    with SessionLocal() as db:
        result = sign_in(db, data.get("email"), data.get("password"),
                         otp_required=_otp_required(data),
                         otp_ttl=current_app.config["OTP_TTL_SECONDS"], sender=_otp_sender())
    if "user" in result:
        current_app.logger.info("Sign-in successful for %s (%s)", result["user"]["email"], result["user"]["role"])
    return jsonify(result)

@bp.post("/signup")
@require_api_key
def signup_route():
    data = request.get_json(silent=True) or {}
    with SessionLocal() as db:
        result = sign_up(db, data.get("email"), data.get("password"), data.get("name"), data.get("phone"),
                         otp_required=_otp_required(data),
                         otp_ttl=current_app.config["OTP_TTL_SECONDS"], sender=_otp_sender())
    current_app.logger.info("Account registered: %s", normalize_email(data.get("email")))
    return jsonify(result), 201

@bp.post("/verify-otp")
@require_api_key
def verify_otp_route():
    data = request.get_json(silent=True) or {}
    with SessionLocal() as db:
        result = verify_otp(db, data.get("email"), data.get("otp"), data.get("type"),
                            max_attempts=current_app.config["OTP_MAX_ATTEMPTS"])
    return jsonify(result)

@bp.post("/resend-otp")
@require_api_key
def resend_otp_route():
    data = request.get_json(silent=True) or {}
    with SessionLocal() as db:
        result = resend_otp(db, data.get("email"), data.get("type"),
                            current_app.config["OTP_TTL_SECONDS"], _otp_sender())
    return jsonify(result)

@bp.post("/signout")
@require_user()
def signout_route(current):
    with SessionLocal() as db:
        return jsonify(sign_out(db, current.token))

@bp.get("/me")
@require_user()
def me_route(current):
    with SessionLocal() as db:
        return jsonify({"user": get_user(db, current.email).to_dict()})

@bp.post("/change-password")
@require_user()
def change_password_route(current):
    data = request.get_json(silent=True) or {}
    email = normalize_email(data.get("email") or current.email)
    if email != current.email:
        raise Forbidden("You can only change your own password")
    with SessionLocal() as db:
        result = change_password(db, email, data.get("currentPassword"), data.get("newPassword"))
    current_app.logger.info("Password changed for user: %s", email)
    return jsonify(result)

@bp.post("/forgot-password")
@require_api_key
def forgot_password_route():
    data = request.get_json(silent=True) or {}
    origin = request.headers.get("Origin") or current_app.config["FRONTEND_URL"]
    with SessionLocal() as db:
        result = forgot_password(db, data.get("email"), origin,
                                 current_app.config["RESET_TOKEN_TTL_SECONDS"])
    current_app.logger.info("Password reset token generated for: %s", normalize_email(data.get("email")))
    return jsonify(result)

@bp.post("/reset-password")
@require_api_key
def reset_password_route():
    data = request.get_json(silent=True) or {}
    with SessionLocal() as db:
        result = reset_password(db, data.get("token"), data.get("email"), data.get("newPassword"))
    current_app.logger.info("Password successfully reset for user: %s", normalize_email(data.get("email")))
    return jsonify(result)
