import re
from errors import ValidationError

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+$")
SPECIAL_RE = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")

PASSWORD_RULES = [
    (lambda pw: len(pw) >= 8, "Password must be at least 8 characters long"),
    (lambda pw: re.search(r"[a-z]", pw), "Password must contain at least one lowercase letter"),
    (lambda pw: re.search(r"[A-Z]", pw), "Password must contain at least one uppercase letter"),
    (lambda pw: re.search(r"\d", pw), "Password must contain at least one number"),
    (lambda pw: SPECIAL_RE.search(pw), "Password must contain at least one special character"),
]


def password_problems(password):
    """Return the list of password rules ``password`` breaks."""
    password = password or ""
    return [msg for check, msg in PASSWORD_RULES if not check(password)]

def check_password_policy(password):
    problems = password_problems(password)
    if problems:
        raise ValidationError(problems[0])

def normalize_email(email):
    if email is not None and not isinstance(email, str):
        raise ValidationError("A valid email address is required")
    return (email or "").strip().lower()

def check_email(email):
    if not EMAIL_RE.match(email or ""):
        raise ValidationError("A valid email address is required")

def require(data, *fields, label=None):
    """Raise ValidationError unless every field in ``data`` is a non-blank string.

    The message names the fields the way the clinic forms word them,
    e.g. "Email and password are required".
    """
    missing = [f for f in fields if data.get(f) is None or
               (isinstance(data.get(f), str) and not data.get(f).strip())]
    if missing:
        raise ValidationError(f"{label or _join(fields)} {'is' if len(fields) == 1 else 'are'} required")
    wrong = [f for f in fields if not isinstance(data[f], str)]
    if wrong:
        raise ValidationError(f"{_join(wrong[:1])} must be text")

def _join(fields):
    names = [_humanize(f) for f in fields]
    if len(names) == 1:
        return names[0].capitalize()
    text = ", ".join(names[:-1]) + (", and " if len(names) > 2 else " and ") + names[-1]
    return text[0].upper() + text[1:]

def _humanize(field):
    return re.sub(r"(?<!^)([A-Z])", r" \1", field).lower()

def normalize_otp(code):
    """Accept a verification code sent as a number as well as a string."""
    if isinstance(code, int) and not isinstance(code, bool):
        return f"{code:06d}"
    return code

def check_text(data, *fields):
    """Optional fields may be missing or null, but otherwise must be strings."""
    for f in fields:
        if data.get(f) is not None and not isinstance(data[f], str):
            raise ValidationError(f"{_join([f])} must be text")

def check_flag(data, field):
    if field in data and not isinstance(data[field], bool):
        raise ValidationError(f"{_join([field])} must be true or false")
