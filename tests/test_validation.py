import pytest

from errors import (ApiError, BadRequest, Conflict, ExpiredToken, NotFound, Unauthorized, ValidationError,
                    from_response)
from validation import (check_email, check_flag, check_password_policy, check_text, normalize_email, normalize_otp,
                        password_problems, require)


@pytest.mark.parametrize("password, message", [
    ("Sh0rt!", "Password must be at least 8 characters long"),
    ("NOLOWER1!", "Password must contain at least one lowercase letter"),
    ("noupper1!", "Password must contain at least one uppercase letter"),
    ("NoDigits!", "Password must contain at least one number"),
    ("NoSpecial1", "Password must contain at least one special character"),
])
def test_password_policy_messages(password, message):
    with pytest.raises(ValidationError) as exc:
        check_password_policy(password)
    assert exc.value.message == message


def test_password_problems_lists_every_rule():
    assert password_problems("Passw0rd!") == []
    assert len(password_problems("")) == 5
    assert len(password_problems(None)) == 5


def test_require_messages():
    with pytest.raises(ValidationError, match="^Email and password are required$"):
        require({"email": "a@b.c", "password": " "}, "email", "password")
    with pytest.raises(ValidationError, match="^Email, password, and name are required$"):
        require({}, "email", "password", "name")
    with pytest.raises(ValidationError, match="^Current password and new password are required$"):
        require({}, "currentPassword", "newPassword")
    with pytest.raises(ValidationError, match="^Note is required$"):
        require({"content": ""}, "content", label="Note")
    require({"email": "a@b.c"}, "email")


def test_emails():
    assert normalize_email("  Alice@Example.COM ") == "alice@example.com"
    assert normalize_email(None) == ""
    check_email("alice@example.com")
    with pytest.raises(ValidationError):
        check_email("alice.example.com")


def test_error_round_trip_through_response_fields():
    for cls in (BadRequest, ValidationError, ExpiredToken, Unauthorized, NotFound, Conflict):
        err = cls("boom")
        body = err.to_dict()
        rebuilt = from_response(err.status, body["error"], body["code"])
        assert type(rebuilt) is cls
        assert rebuilt.message == "boom"


def test_from_response_falls_back_to_status():
    assert type(from_response(404, "gone")) is NotFound
    assert type(from_response(502, "bad gateway")) is ApiError
    assert isinstance(from_response(400, "x", "expired_token"), BadRequest)


def test_non_text_values():
    with pytest.raises(ValidationError, match="^Reason must be text$"):
        require({"reason": 5}, "reason")
    with pytest.raises(ValidationError, match="^Patient phone must be text$"):
        check_text({"patientPhone": 5550101}, "patientPhone")
    check_text({"patientPhone": None}, "patientPhone", "message")
    with pytest.raises(ValidationError, match="^Needs staff confirmation must be true or false$"):
        check_flag({"needsStaffConfirmation": None}, "needsStaffConfirmation")
    check_flag({}, "needsStaffConfirmation")
    with pytest.raises(ValidationError):
        normalize_email(["a@b.c"])


def test_numeric_otp_keeps_leading_zeros():
    assert normalize_otp(4321) == "004321"
    assert normalize_otp("004321") == "004321"
    assert normalize_otp(True) is True
