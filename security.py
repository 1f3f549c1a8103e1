import secrets
from collections import namedtuple
from functools import wraps
from flask import request, current_app
from werkzeug.security import generate_password_hash, check_password_hash

from db import SessionLocal
from errors import Unauthorized, Forbidden
from models import User, UserSession

# The authenticated caller, handed to route handlers explicitly.
Principal = namedtuple("Principal", "id email name role token")


def hash_secret(value: str) -> str:
    # pbkdf2 rather than the scrypt default, which some OpenSSL builds lack
    return generate_password_hash(value, method="pbkdf2:sha256")

def verify_secret(hashed: str, value: str) -> bool:
    if not hashed or value is None:
        return False
    return check_password_hash(hashed, value)

def new_token() -> str:
    return secrets.token_urlsafe(32)

# ---------------- Sessions ----------------
def issue_session(db, user: User) -> str:
    token = new_token()
    db.add(UserSession(token=token, email=user.email))
    return token

def lookup_session(db, token: str):
    if not token:
        return None
    sess = db.get(UserSession, token)
    if not sess:
        return None
    user = db.query(User).filter_by(email=sess.email).first()
    if not user or not user.can_login:
        return None
    return Principal(user.id, user.email, user.name, user.role, token)

def end_session(db, token: str) -> bool:
    sess = db.get(UserSession, token)
    if not sess:
        return False
    db.delete(sess)
    return True

# ---------------- Request guards ----------------
def _extract_token():
    # Header
    hdr = request.headers.get("Authorization", "")
    if hdr.startswith("Bearer "):
        return hdr[7:].strip()
    # Cookie
    c = request.cookies.get("Authorization", "")
    if c.startswith("Bearer "):
        return c[7:].strip()
    return ""

def _is_api_key(tok):
    key = current_app.config.get("API_KEY", "")
    # an unset key leaves anonymous routes open
    if not key:
        return True
    return bool(tok) and secrets.compare_digest(tok, key)

def require_api_key(f):
    """Accept the shared anonymous key or any live session token."""
    @wraps(f)
    def wrapper(*args, **kwargs):
        tok = _extract_token()
        if not _is_api_key(tok):
            with SessionLocal() as db:
                if lookup_session(db, tok) is None:
                    raise Unauthorized("Missing or invalid authorization token")
        return f(*args, **kwargs)
    return wrapper

def require_user(*roles):
    """Resolve the session bearer token and pass it on as ``current``.

    With ``roles`` given, other roles get a 403.
    """
    def decorator(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            tok = _extract_token()
            with SessionLocal() as db:
                current = lookup_session(db, tok)
            if current is None:
                raise Unauthorized("Sign in required")
            if roles and current.role not in roles:
                raise Forbidden("You do not have access to this resource")
            return f(*args, current=current, **kwargs)
        return wrapper
    return decorator
