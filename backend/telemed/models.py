from datetime import datetime, date, timezone
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field


APPOINTMENT_STATUSES = ("pending", "confirmed", "rejected", "cancelled")
ACTIVE_APPOINTMENT_STATUSES = ("pending", "confirmed")


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every datetime column is stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    role: str = Field(default="patient", index=True)  # patient, doctor
    full_name: str
    email: str = Field(index=True, unique=True)
    phone: Optional[str] = Field(default=None, unique=True, max_length=32)
    password_hash: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    failed_login_attempts: int = Field(default=0)
    lock_count: int = Field(default=0)
    locked_until: Optional[datetime] = Field(default=None)


class Specialty(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)


class DoctorSpecialty(SQLModel, table=True):
    doctor_id: int = Field(foreign_key="user.id", primary_key=True)
    specialty_id: int = Field(foreign_key="specialty.id", primary_key=True)


class DoctorSlot(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("doctor_id", "start_time", "end_time", name="uq_doctorslot_range"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    doctor_id: int = Field(foreign_key="user.id", index=True)
    start_time: datetime
    end_time: datetime
    status: str = Field(default="available")  # available, booked, closed
    created_at: datetime = Field(default_factory=utcnow)


class Appointment(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("slot_id", "chosen_date", name="uq_appointment_slot_date"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    patient_id: int = Field(foreign_key="user.id", index=True)
    doctor_id: int = Field(foreign_key="user.id", index=True)
    slot_id: int = Field(foreign_key="doctorslot.id", index=True)
    chosen_date: date = Field(index=True)
    status: str = Field(default="pending")  # pending, confirmed, rejected, cancelled
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
