"""Client-side state containers.

Each container keeps a non-authoritative copy of one slice of server data,
plus ``is_loading`` and ``error``. Mutators call the API client and merge
the response into local state, and return ``{"success": bool, ...}`` rather
than raising. Containers are not thread-safe and do not queue or
de-duplicate calls.
"""
import logging

from errors import ApiError, ValidationError
from models import STAFF_ROLES, APPOINTMENT_STATUSES
from validation import require, check_email, normalize_email, normalize_otp, password_problems

log = logging.getLogger(__name__)

PENDING_BOOKING_ERROR = ("You already have a pending appointment. "
                         "Please wait for confirmation before booking another appointment.")


class Container:
    def __init__(self, api):
        self.api = api
        self.is_loading = False
        self.error = None

    def clear_error(self):
        self.error = None

    def _run(self, call, loading=True, record_error=True):
        """Run ``call`` and turn its outcome into a result dict.

        ``call`` returns a dict of extra result fields (or None) and may
        raise ApiError, including ValidationError before any request is made.
        """
        if loading:
            self.is_loading = True
        if record_error:
            self.error = None
        try:
            return {"success": True, **(call() or {})}
        except ApiError as e:
            log.info("%s: %s", type(self).__name__, e.message)
            if record_error:
                self.error = e.message
            return {"success": False, "error": e.message}
        finally:
            if loading:
                self.is_loading = False


def _check_new_password(password):
    problems = password_problems(password)
    if problems:
        raise ValidationError(problems[0])


class AuthContainer(Container):
    """Session state: anonymous -> pending-otp -> authenticated."""

    def __init__(self, api):
        super().__init__(api)
        self.user = None
        self.pending_otp = None  # {"email", "type"} while a code is outstanding

    @property
    def state(self):
        if self.user is not None:
            return "authenticated"
        if self.pending_otp is not None:
            return "pending-otp"
        return "anonymous"

    def _establish(self, data):
        self.user = data["user"]
        self.api.token = data.get("token")
        self.pending_otp = None

    def _after_credentials(self, data, email, kind):
        if data.get("requiresOTP"):
            self.pending_otp = {"email": email, "type": kind}
            return {"requiresOTP": True, "contactMethod": data.get("contactMethod"),
                    "contactValue": data.get("contactValue")}
        self._establish(data)
        return None

    def sign_in(self, email, password, require_otp=False):
        def call():
            require({"email": email, "password": password}, "email", "password")
            data = self.api.sign_in(email, password, require_otp=require_otp)
            return self._after_credentials(data, email, "signin")
        return self._run(call)

    def sign_up(self, email, password, name, phone=None, require_otp=False):
        def call():
            require({"email": email, "password": password, "name": name}, "email", "password", "name")
            check_email(email.strip())
            _check_new_password(password)
            data = self.api.sign_up(email, password, name, phone, require_otp=require_otp)
            return self._after_credentials(data, email, "signup")
        return self._run(call)

    def verify_otp(self, email, otp, type_):
        def call():
            code = normalize_otp(otp)
            require({"otp": code}, "otp", label="Verification code")
            self._establish(self.api.verify_otp(email, code, type_))
        return self._run(call)

    def resend_otp(self, email, type_):
        def call():
            self.api.resend_otp(email, type_)
        return self._run(call, loading=False, record_error=False)

    def change_password(self, current_password, new_password):
        if self.user is None:
            return {"success": False, "error": "No user logged in"}

        def call():
            require({"currentPassword": current_password, "newPassword": new_password},
                    "currentPassword", "newPassword")
            _check_new_password(new_password)
            self.api.change_password(self.user["email"], current_password, new_password)
        return self._run(call)

    def forgot_password(self, email):
        def call():
            require({"email": email}, "email")
            data = self.api.forgot_password(email)
            log.info("Password reset link issued for %s", email)
            return {"resetLink": data.get("resetLink")}
        return self._run(call)

    def reset_password(self, token, email, new_password):
        def call():
            require({"token": token, "email": email, "newPassword": new_password},
                    "token", "email", "newPassword")
            _check_new_password(new_password)
            self.api.reset_password(token, email, new_password)
        return self._run(call)

    def update_profile(self, updates):
        if self.user is None:
            return {"success": False, "error": "No user logged in"}

        def call():
            self.user = self.api.update_profile(self.user["email"], updates)
        return self._run(call, loading=False)

    def sign_out(self):
        if self.api.token:
            try:
                self.api.sign_out()
            except ApiError as e:
                # the local session ends regardless
                log.warning("Sign-out request failed: %s", e.message)
        self.user = None
        self.pending_otp = None
        self.api.token = None
        self.error = None


class _UserScoped(Container):
    def __init__(self, api, auth):
        super().__init__(api)
        self.auth = auth

    @property
    def user(self):
        return self.auth.user

    @property
    def is_staff(self):
        return self.user is not None and self.user["role"] in STAFF_ROLES


class PatientContainer(_UserScoped):
    def __init__(self, api, auth):
        super().__init__(api, auth)
        self.patients = []
        self.search_term = ""

    @property
    def filtered_patients(self):
        term = self.search_term.lower()
        return [p for p in self.patients
                if term in p["name"].lower() or term in p["email"].lower()
                or term in (p.get("phone") or "").lower()]

    def fetch_patients(self):
        if not self.is_staff:
            return {"success": False, "error": "Unauthorized"}

        def call():
            self.patients = self.api.fetch_patients()
        return self._run(call)

    refresh_patients = fetch_patients

    def create_walk_in_patient(self, name, email, phone=""):
        if not self.is_staff:
            return {"success": False, "error": "Unauthorized"}

        def call():
            require({"name": name, "email": email}, "name", "email")
            check_email(email.strip())
            patient = self.api.create_walk_in(name, email, phone, self.user["email"])
            self.patients.append(patient)
            return {"patient": patient}
        return self._run(call)

    def update_patient_profile(self, patient_email, updates):
        if self.user is None:
            return {"success": False, "error": "Unauthorized"}
        if self.user["role"] == "patient" and self.user["email"] != normalize_email(patient_email):
            return {"success": False, "error": "Unauthorized"}

        def call():
            updated = self.api.update_profile(patient_email, updates)
            self.patients = [{**p, **updated} if p["email"] == updated["email"] else p
                             for p in self.patients]
            if self.user["email"] == updated["email"]:
                self.auth.user = updated
            return {"patient": updated}
        return self._run(call)

    def get_patient_by_email(self, email):
        return next((p for p in self.patients if p["email"] == email), None)

    def get_patient_by_id(self, patient_id):
        return next((p for p in self.patients if p["id"] == patient_id), None)


class AppointmentContainer(_UserScoped):
    def __init__(self, api, auth):
        super().__init__(api, auth)
        self.appointments = []
        self.search_term = ""
        self.status_filter = "all"

    @property
    def filtered_appointments(self):
        term = self.search_term.lower()
        return [a for a in self.appointments
                if (not term or term in (a["patientName"] or "").lower()
                    or term in (a["patientEmail"] or "").lower()
                    or term in (a["reason"] or "").lower())
                and (self.status_filter == "all" or a["status"] == self.status_filter)]

    def fetch_appointments(self):
        if self.user is None:
            return {"success": False, "error": "User not authenticated"}

        def call():
            self.appointments = self.api.fetch_appointments()
        return self._run(call)

    refresh_appointments = fetch_appointments

    def create_appointment(self, data):
        def call():
            require(data, "reason")
            appointment = self.api.create_appointment(data)
            self.appointments.append(appointment)
            return {"appointment": appointment}
        return self._run(call)

    def book_appointment(self, name, email, phone, reason, message=None):
        """Submit a booking request from the booking form.

        A signed-in user with a pending appointment is turned away. The check
        reads before it writes, so two quick submissions can both pass.
        """
        def call():
            require({"name": name, "email": email, "reason": reason}, "name", "email", "reason")
            if self.user is not None:
                existing = self.api.fetch_appointments()
                self.appointments = existing
                if any(a["patientEmail"] == self.user["email"] and a["status"] == "pending"
                       for a in existing):
                    raise ValidationError(PENDING_BOOKING_ERROR)
            appointment = self.api.create_appointment({
                "patientName": name, "patientEmail": email, "patientPhone": phone,
                "reason": reason, "message": message, "needsStaffConfirmation": True,
            })
            self.appointments.append(appointment)
            return {"appointment": appointment}
        return self._run(call)

    def update_appointment(self, appointment_id, updates):
        def call():
            if "status" in updates and updates["status"] not in APPOINTMENT_STATUSES:
                raise ValidationError(f"Status must be one of: {', '.join(APPOINTMENT_STATUSES)}")
            updated = self.api.update_appointment(appointment_id, updates)
            self.appointments = [{**a, **updated} if a["id"] == appointment_id else a
                                 for a in self.appointments]
            return {"appointment": updated}
        return self._run(call)

    def fetch_appointment_notes(self, appointment_id):
        try:
            return self.api.fetch_notes(appointment_id)
        except ApiError as e:
            log.error("Failed to fetch appointment notes: %s", e.message)
            return []

    def create_appointment_note(self, appointment_id, content):
        if self.user is None:
            return {"success": False, "error": "User not authenticated"}

        def call():
            require({"content": content}, "content", label="Note")
            return {"note": self.api.create_note(appointment_id, content)}
        return self._run(call, loading=False, record_error=False)

    def get_appointment_by_id(self, appointment_id):
        return next((a for a in self.appointments if a["id"] == appointment_id), None)

    def get_appointments_by_patient(self, patient_email):
        return [a for a in self.appointments if a["patientEmail"] == patient_email]

    def stats(self):
        """Counts per status over the cached appointments."""
        counts = {status: 0 for status in APPOINTMENT_STATUSES}
        for a in self.appointments:
            counts[a["status"]] = counts.get(a["status"], 0) + 1
        return {"total": len(self.appointments), **counts}


class ServiceContainer(_UserScoped):
    def __init__(self, api, auth):
        super().__init__(api, auth)
        self.services = []
        self.service_history = []
        self.medical_histories = {}

    def fetch_services(self):
        def call():
            self.services = self.api.fetch_services()
        return self._run(call)

    def create_service(self, service):
        def call():
            require(service, "name", "category")
            created = self.api.create_service(service)
            self.services.append(created)
            return {"service": created}
        return self._run(call, loading=False)

    def update_service(self, service_id, updates):
        def call():
            updated = self.api.update_service(service_id, updates)
            self.services = [updated if s["id"] == service_id else s for s in self.services]
            return {"service": updated}
        return self._run(call, loading=False)

    def fetch_service_history(self, patient_email=None):
        def call():
            records = self.api.fetch_service_history(patient_email)
            if patient_email:
                self.service_history = [r for r in self.service_history
                                        if r["patientEmail"] != patient_email] + records
            else:
                self.service_history = records
        return self._run(call)

    def create_service_record(self, record):
        def call():
            require(record, "patientEmail", "date")
            created = self.api.create_service_record(record)
            self.service_history.append(created)
            return {"record": created}
        return self._run(call, loading=False)

    def update_service_record(self, record_id, updates):
        def call():
            updated = self.api.update_service_record(record_id, updates)
            self.service_history = [updated if r["id"] == record_id else r for r in self.service_history]
            return {"record": updated}
        return self._run(call, loading=False)

    def get_patient_service_history(self, patient_email):
        records = [r for r in self.service_history if r["patientEmail"] == patient_email]
        return sorted(records, key=lambda r: r["date"], reverse=True)

    def fetch_medical_history(self, patient_email):
        """Return the patient's medical history, or None if there is none or the call failed."""
        result = self._run(lambda: {"history": self.api.fetch_medical_history(patient_email)})
        history = result.get("history")
        if history is not None:
            self.medical_histories[patient_email] = history
        return history

    def update_medical_history(self, patient_email, data):
        def call():
            history = self.api.update_medical_history(patient_email, data)
            self.medical_histories[patient_email] = history
            return {"medicalHistory": history}
        return self._run(call, loading=False)

    def refresh_all(self):
        return self.fetch_services()
