import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, BigInteger, String, Text, Boolean, Float, DateTime, JSON, ForeignKey
from db import Base

ROLES = ("patient", "staff", "dentist", "admin")
STAFF_ROLES = ("staff", "dentist", "admin")
APPOINTMENT_STATUSES = ("pending", "confirmed", "completed", "cancelled")
SERVICE_CATEGORIES = ("preventive", "restorative", "cosmetic", "surgical", "orthodontic")
RECORD_STATUSES = ("completed", "in-progress", "planned", "cancelled")


def new_id():
    return str(uuid.uuid4())

def utcnow():
    return datetime.now(timezone.utc)

def iso(value):
    return value.isoformat() if value is not None else None


class User(Base):
    __tablename__ = "users"
    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(254), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    password_hash = Column(String(255))
    role = Column(String(20), nullable=False, default="patient")
    phone = Column(String(50), default="")
    birthdate = Column(String(20))
    address = Column(JSON)
    can_login = Column(Boolean, nullable=False, default=True)
    is_walk_in = Column(Boolean, nullable=False, default=False)
    created_by = Column(String(254))
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime)
    password_reset_at = Column(DateTime)

    def to_dict(self):
        # password_hash never leaves the server
        return {
            "id": self.id, "email": self.email, "name": self.name,
            "role": self.role, "phone": self.phone or "",
            "birthdate": self.birthdate, "address": self.address,
            "canLogin": self.can_login, "isWalkIn": self.is_walk_in,
            "createdBy": self.created_by,
            "createdAt": iso(self.created_at), "updatedAt": iso(self.updated_at),
        }


class UserSession(Base):
    __tablename__ = "user_sessions"
    token = Column(String(64), primary_key=True)
    email = Column(String(254), ForeignKey("users.email"), nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow)


class OtpChallenge(Base):
    __tablename__ = "otp_challenges"
    email = Column(String(254), primary_key=True)
    purpose = Column(String(10), primary_key=True)  # signin | signup
    code_hash = Column(String(255), nullable=False)
    expires = Column(BigInteger, nullable=False)  # epoch ms
    attempts = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow)


class PasswordResetToken(Base):
    __tablename__ = "password_reset_tokens"
    token = Column(String(64), primary_key=True)
    email = Column(String(254), nullable=False, index=True)
    expires = Column(BigInteger, nullable=False)  # epoch ms
    created_at = Column(DateTime, default=utcnow)


class Appointment(Base):
    __tablename__ = "appointments"
    id = Column(String(36), primary_key=True, default=new_id)
    patient_name = Column(String(200), nullable=False)
    patient_email = Column(String(254), index=True)
    patient_phone = Column(String(50), default="")
    reason = Column(String(500), nullable=False)
    message = Column(Text)
    status = Column(String(20), nullable=False, default="pending")
    date = Column(String(20))
    time = Column(String(10))
    dentist_id = Column(String(36))
    dentist_name = Column(String(200))
    needs_staff_confirmation = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id, "patientName": self.patient_name,
            "patientEmail": self.patient_email, "patientPhone": self.patient_phone or "",
            "reason": self.reason, "message": self.message, "status": self.status,
            "date": self.date, "time": self.time,
            "dentistId": self.dentist_id, "dentistName": self.dentist_name,
            "needsStaffConfirmation": self.needs_staff_confirmation,
            "createdAt": iso(self.created_at), "updatedAt": iso(self.updated_at),
        }


class AppointmentNote(Base):
    __tablename__ = "appointment_notes"
    id = Column(String(36), primary_key=True, default=new_id)
    appointment_id = Column(String(36), ForeignKey("appointments.id"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    author_email = Column(String(254))
    author_role = Column(String(20))
    created_at = Column(DateTime, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id, "appointmentId": self.appointment_id, "content": self.content,
            "authorEmail": self.author_email, "authorRole": self.author_role,
            "createdAt": iso(self.created_at),
        }


class DentalService(Base):
    __tablename__ = "dental_services"
    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(200), nullable=False)
    category = Column(String(20), nullable=False)
    description = Column(String(500), default="")
    default_price = Column(Float, nullable=False, default=0)
    estimated_duration = Column(Integer, nullable=False, default=30)  # minutes
    is_active = Column(Boolean, nullable=False, default=True)

    def to_dict(self):
        return {
            "id": self.id, "name": self.name, "category": self.category,
            "description": self.description or "", "defaultPrice": self.default_price,
            "estimatedDuration": self.estimated_duration, "isActive": self.is_active,
        }


class ServiceRecord(Base):
    __tablename__ = "service_records"
    id = Column(String(36), primary_key=True, default=new_id)
    patient_email = Column(String(254), nullable=False, index=True)
    service_id = Column(String(36), ForeignKey("dental_services.id"))
    service_name = Column(String(200), nullable=False)
    appointment_id = Column(String(36))
    performed_by = Column(String(254))
    performed_by_name = Column(String(200))
    date = Column(String(20), nullable=False)
    notes = Column(Text, default="")
    cost = Column(Float, nullable=False, default=0)
    status = Column(String(20), nullable=False, default="completed")
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id, "patientEmail": self.patient_email,
            "serviceId": self.service_id, "serviceName": self.service_name,
            "appointmentId": self.appointment_id,
            "performedBy": self.performed_by, "performedByName": self.performed_by_name,
            "date": self.date, "notes": self.notes or "", "cost": self.cost,
            "status": self.status,
            "createdAt": iso(self.created_at), "updatedAt": iso(self.updated_at),
        }


class MedicalHistory(Base):
    __tablename__ = "medical_histories"
    id = Column(String(36), primary_key=True, default=new_id)
    patient_email = Column(String(254), unique=True, nullable=False)
    allergies = Column(JSON, default=list)
    medications = Column(JSON, default=list)
    medical_conditions = Column(JSON, default=list)
    emergency_contact = Column(JSON)
    insurance_info = Column(JSON)
    notes = Column(Text, default="")
    last_updated = Column(DateTime, default=utcnow)
    updated_by = Column(String(254))

    def to_dict(self):
        return {
            "id": self.id, "patientEmail": self.patient_email,
            "allergies": self.allergies or [], "medications": self.medications or [],
            "medicalConditions": self.medical_conditions or [],
            "emergencyContact": self.emergency_contact or {"name": "", "phone": "", "relationship": ""},
            "insuranceInfo": self.insurance_info,
            "notes": self.notes or "",
            "lastUpdated": iso(self.last_updated), "updatedBy": self.updated_by,
        }
