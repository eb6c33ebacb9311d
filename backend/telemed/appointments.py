from datetime import date, datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlmodel import SQLModel, Session, Field
import logging

from .auth import get_current_user, require_role
from .booking import (
    AppointmentListItem,
    AvailabilityDay,
    book_appointment,
    create_slot,
    day_bounds,
    list_appointments_for_user,
    list_availability,
    update_appointment_status,
)
from .database import get_session
from .errors import Forbidden
from .models import Appointment, User
from .notification_service import notification_service

router = APIRouter()
logger = logging.getLogger(__name__)


# ---------- SCHEMAS ----------

class SlotCreate(SQLModel):
    start_time: str = Field(min_length=10)
    end_time: str = Field(min_length=10)


class SlotRead(SQLModel):
    id: int
    doctor_id: int
    start_time: datetime
    end_time: datetime
    status: str


class SlotResponse(SQLModel):
    slot: SlotRead


class AvailabilityResponse(SQLModel):
    data: List[AvailabilityDay]


class AppointmentBook(SQLModel):
    slot_id: int
    chosen_date: str  # YYYY-MM-DD


class AppointmentRead(SQLModel):
    id: int
    patient_id: int
    doctor_id: int
    slot_id: int
    chosen_date: date
    status: str
    start_time: datetime
    end_time: datetime


class AppointmentResponse(SQLModel):
    appointment: AppointmentRead


class AppointmentStatusUpdate(SQLModel):
    status: Literal["pending", "confirmed", "rejected", "cancelled"]


class AppointmentListResponse(SQLModel):
    data: List[AppointmentListItem]


def appointment_read(appt: Appointment) -> AppointmentRead:
    start_time, end_time = day_bounds(appt.chosen_date)
    return AppointmentRead(
        id=appt.id,
        patient_id=appt.patient_id,
        doctor_id=appt.doctor_id,
        slot_id=appt.slot_id,
        chosen_date=appt.chosen_date,
        status=appt.status,
        start_time=start_time,
        end_time=end_time,
    )


# ---------- SLOT ENDPOINTS ----------

@router.post("/doctors/{doctor_id}/slots", response_model=SlotResponse, status_code=status.HTTP_201_CREATED)
def open_slot(
    doctor_id: int,
    slot_in: SlotCreate,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_role("doctor")),
):
    """
    Open an availability range for the current doctor.
    Date-only values cover whole days.
    """
    if doctor_id != current_user.id:
        raise Forbidden("You cannot manage another doctor's slots.")

    slot = create_slot(session, current_user.id, slot_in.start_time, slot_in.end_time)
    return SlotResponse(slot=SlotRead.model_validate(slot, from_attributes=True))


@router.get("/doctors/{doctor_id}/slots", response_model=AvailabilityResponse)
def get_doctor_availability(
    doctor_id: int,
    from_: Optional[str] = Query(None, alias="from"),
    to: Optional[str] = Query(None),
    session: Session = Depends(get_session),
):
    """
    List a doctor's bookable days, one entry per day.
    """
    return AvailabilityResponse(data=list_availability(session, doctor_id, from_, to))


# ---------- APPOINTMENT ENDPOINTS ----------

@router.post("/appointments", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
async def create_appointment(
    booking: AppointmentBook,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_role("patient")),
):
    """
    Book one day of a doctor's slot for the current patient.
    """
    appt = book_appointment(session, current_user.id, booking.slot_id, booking.chosen_date)
    result = appointment_read(appt)

    doctor = session.get(User, appt.doctor_id)
    await notification_service.send_booking_received(
        patient_email=current_user.email,
        patient_phone=current_user.phone,
        patient_name=current_user.full_name,
        chosen_date=appt.chosen_date,
        doctor_name=doctor.full_name if doctor else "your doctor",
    )

    return AppointmentResponse(appointment=result)


@router.patch("/appointments/{appointment_id}/status")
async def change_appointment_status(
    appointment_id: int,
    body: AppointmentStatusUpdate,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_role("doctor")),
):
    """
    Confirm, reject, cancel or reopen one of the current doctor's appointments.
    """
    appt = update_appointment_status(session, current_user.id, appointment_id, body.status)

    patient = session.get(User, appt.patient_id)
    if patient:
        await notification_service.send_status_update(
            patient_email=patient.email,
            patient_name=patient.full_name,
            chosen_date=appt.chosen_date,
            doctor_name=current_user.full_name,
            status=appt.status,
        )

    return {"ok": True}


@router.get("/appointments/me", response_model=AppointmentListResponse)
def list_my_appointments(
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """
    List the current user's appointments, as a patient or as a doctor.
    """
    return AppointmentListResponse(data=list_appointments_for_user(session, current_user.id, current_user.role))


@router.get("/appointments/doctor/me", response_model=AppointmentListResponse)
def list_doctor_appointments(
    session: Session = Depends(get_session),
    current_user: User = Depends(require_role("doctor")),
):
    return AppointmentListResponse(data=list_appointments_for_user(session, current_user.id, "doctor"))


@router.get("/appointments/patient/me", response_model=AppointmentListResponse)
def list_patient_appointments(
    session: Session = Depends(get_session),
    current_user: User = Depends(require_role("patient")),
):
    return AppointmentListResponse(data=list_appointments_for_user(session, current_user.id, "patient"))
