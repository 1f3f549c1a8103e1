"""Thin HTTP client for the clinic API.

One method per endpoint. Non-2xx responses raise the matching class from
``errors``; transport failures and non-JSON bodies raise ``NetworkError``.
"""
import logging
from urllib.parse import quote
import requests

from errors import NetworkError, from_response

log = logging.getLogger(__name__)


class ApiClient:
    def __init__(self, base_url, api_key="", session=None, timeout=10):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.token = None  # session token once signed in
        self.http = session or requests.Session()
        self.timeout = timeout

    @property
    def headers(self):
        bearer = self.token or self.api_key
        hdrs = {"Content-Type": "application/json"}
        if bearer:
            hdrs["Authorization"] = f"Bearer {bearer}"
        return hdrs

    def _request(self, method, path, json=None, params=None, fallback="Request failed"):
        url = f"{self.base_url}{path}"
        try:
            response = self.http.request(method, url, json=json, params=params,
                                         headers=self.headers, timeout=self.timeout)
        except requests.RequestException as exc:
            log.warning("%s %s failed: %s", method, url, exc)
            raise NetworkError() from exc
        try:
            data = response.json()
        except ValueError as exc:
            raise NetworkError(f"Response was not JSON: {response.text[:200]}") from exc
        if not response.ok:
            raise from_response(response.status_code, data.get("error") or fallback, data.get("code"))
        return data

    # ---------------- Auth ----------------
    def sign_in(self, email, password, require_otp=False):
        return self._request("POST", "/auth/signin",
                             json={"email": email, "password": password, "requireOTP": require_otp},
                             fallback="Authentication failed")

    def sign_up(self, email, password, name, phone=None, require_otp=False):
        return self._request("POST", "/auth/signup",
                             json={"email": email, "password": password, "name": name,
                                   "phone": phone, "requireOTP": require_otp},
                             fallback="Registration failed")

    def verify_otp(self, email, otp, type_):
        return self._request("POST", "/auth/verify-otp", json={"email": email, "otp": otp, "type": type_},
                             fallback="Invalid verification code")

    def resend_otp(self, email, type_):
        return self._request("POST", "/auth/resend-otp", json={"email": email, "type": type_},
                             fallback="Failed to resend verification code")

    def sign_out(self):
        return self._request("POST", "/auth/signout")

    def me(self):
        return self._request("GET", "/auth/me")["user"]

    def change_password(self, email, current_password, new_password):
        return self._request("POST", "/auth/change-password",
                             json={"email": email, "currentPassword": current_password,
                                   "newPassword": new_password},
                             fallback="Failed to change password")

    def forgot_password(self, email):
        return self._request("POST", "/auth/forgot-password", json={"email": email},
                             fallback="Failed to process password reset request")

    def reset_password(self, token, email, new_password):
        return self._request("POST", "/auth/reset-password",
                             json={"token": token, "email": email, "newPassword": new_password},
                             fallback="Failed to reset password")

    # ---------------- Patients ----------------
    def fetch_patients(self, search=None):
        params = {"search": search} if search else None
        data = self._request("GET", "/patients", params=params, fallback="Failed to fetch patients")
        return [p for p in data["patients"] if p.get("role") == "patient"]

    def create_walk_in(self, name, email, phone, staff_email):
        data = self._request("POST", "/walk-in-patient",
                             json={"name": name, "email": email, "phone": phone, "staffEmail": staff_email},
                             fallback="Failed to create walk-in patient")
        return data["patient"]

    def update_profile(self, email, updates):
        data = self._request("PUT", f"/profile/{quote(email)}", json=updates,
                             fallback="Failed to update profile")
        return data["user"]

    def fetch_staff_users(self):
        return self._request("GET", "/admin/users", fallback="Failed to fetch users")["users"]

    def create_staff_user(self, email, password, name, role):
        data = self._request("POST", "/admin/users",
                             json={"email": email, "password": password, "name": name, "role": role},
                             fallback="Failed to create user")
        return data["user"]

    # ---------------- Appointments ----------------
    def fetch_appointments(self, status=None, search=None):
        params = {k: v for k, v in (("status", status), ("search", search)) if v}
        data = self._request("GET", "/appointments", params=params or None,
                             fallback="Failed to fetch appointments")
        return data["appointments"]

    def create_appointment(self, appointment):
        data = self._request("POST", "/appointments", json=appointment,
                             fallback="Failed to create appointment")
        return data["appointment"]

    def update_appointment(self, appointment_id, updates):
        data = self._request("PUT", f"/appointments/{quote(appointment_id)}", json=updates,
                             fallback="Failed to update appointment")
        return data["appointment"]

    def fetch_notes(self, appointment_id):
        data = self._request("GET", f"/appointments/{quote(appointment_id)}/notes",
                             fallback="Failed to fetch notes")
        return data["notes"]

    def create_note(self, appointment_id, content):
        data = self._request("POST", f"/appointments/{quote(appointment_id)}/notes",
                             json={"content": content}, fallback="Failed to create note")
        return data["note"]

    def fetch_stats(self):
        return self._request("GET", "/stats", fallback="Failed to load dashboard data")["stats"]

    # ---------------- Services & history ----------------
    def fetch_services(self, active_only=False):
        params = {"active": "true"} if active_only else None
        return self._request("GET", "/services", params=params, fallback="Failed to fetch services")["services"]

    def create_service(self, service):
        return self._request("POST", "/services", json=service, fallback="Failed to create service")["service"]

    def update_service(self, service_id, updates):
        return self._request("PUT", f"/services/{quote(service_id)}", json=updates,
                             fallback="Failed to update service")["service"]

    def fetch_service_history(self, patient_email=None):
        params = {"patientEmail": patient_email} if patient_email else None
        return self._request("GET", "/service-history", params=params,
                             fallback="Failed to fetch service history")["serviceHistory"]

    def create_service_record(self, record):
        return self._request("POST", "/service-history", json=record,
                             fallback="Failed to create service record")["record"]

    def update_service_record(self, record_id, updates):
        return self._request("PUT", f"/service-history/{quote(record_id)}", json=updates,
                             fallback="Failed to update service record")["record"]

    def fetch_medical_history(self, patient_email):
        return self._request("GET", f"/medical-history/{quote(patient_email)}",
                             fallback="Failed to fetch medical history")["medicalHistory"]

    def update_medical_history(self, patient_email, history):
        return self._request("PUT", f"/medical-history/{quote(patient_email)}", json=history,
                             fallback="Failed to update medical history")["medicalHistory"]

    def health(self):
        return self._request("GET", "/health")
