"""
Slot publishing and appointment booking.

Booking runs as one transaction with the parent slot row locked, so
concurrent requests for the same slot are serialized. The first booking
inside a parent range marks the whole range ``booked``; availability listing
relies on that and shows every day of such a range as taken.
"""

import logging
from datetime import date, datetime, timedelta
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import SQLModel, Session, select

from .errors import (
    BookingTooSoon,
    DateOutOfRange,
    InvalidTimeRange,
    NotFound,
    PatientAlreadyBookedOnDate,
    SlotAlreadyBooked,
    SlotNotAvailable,
    SlotNotFound,
    ValidationFailed,
)
from .models import (
    ACTIVE_APPOINTMENT_STATUSES,
    APPOINTMENT_STATUSES,
    Appointment,
    DoctorSlot,
    User,
    utcnow,
)
from .slots import (
    DATE_ONLY,
    END_OF_DAY,
    DateLike,
    booked_days,
    close_expired_slots,
    enumerate_days,
    find_slots,
    lock_slot,
    parse_day,
    parse_slot_bound,
)

logger = logging.getLogger(__name__)

Day = date
MAX_APPOINTMENTS_LISTED = 200


class AvailabilityDay(SQLModel):
    id: str
    slot_id: int
    doctor_id: int
    date: Day
    start_time: datetime
    end_time: datetime
    status: str


class AppointmentListItem(SQLModel):
    id: int
    status: str
    chosen_date: Day
    start_time: datetime
    end_time: datetime
    created_at: datetime
    doctor_id: Optional[int] = None
    doctor_name: Optional[str] = None
    patient_id: Optional[int] = None
    patient_name: Optional[str] = None


def day_bounds(day: date):
    return datetime.combine(day, datetime.min.time()), datetime.combine(day, END_OF_DAY)


def parse_chosen_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and DATE_ONLY.match(value.strip()):
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            pass
    raise ValidationFailed(details=[{"field": "chosen_date", "message": "Invalid date format (YYYY-MM-DD)."}])


def create_slot(session: Session, doctor_id: int, start: DateLike, end: DateLike) -> DoctorSlot:
    """
    Publish an availability range. Date-only bounds cover whole days.
    Publishing the exact same range twice returns the existing slot.
    """
    start_time = parse_slot_bound(start)
    end_time = parse_slot_bound(end, end=True)
    if end_time < start_time:
        raise InvalidTimeRange("The end of the range is before its start.")

    slot = DoctorSlot(doctor_id=doctor_id, start_time=start_time, end_time=end_time, status="available")
    try:
        session.add(slot)
        session.commit()
    except IntegrityError:
        session.rollback()
        existing = session.exec(
            select(DoctorSlot).where(
                DoctorSlot.doctor_id == doctor_id,
                DoctorSlot.start_time == start_time,
                DoctorSlot.end_time == end_time,
            )
        ).first()
        if existing is None:
            raise
        return existing

    session.refresh(slot)
    logger.info(f"Doctor {doctor_id} opened slot {slot.id}: {start_time} - {end_time}")
    return slot


def list_availability(
    session: Session,
    doctor_id: int,
    from_date: Optional[DateLike] = None,
    to_date: Optional[DateLike] = None,
    today: Optional[date] = None,
) -> List[AvailabilityDay]:
    """Expand a doctor's parent slots into one entry per day, ordered by date."""
    today = today or date.today()
    from_day = parse_day(from_date, "from")
    to_day = parse_day(to_date, "to")

    close_expired_slots(session, doctor_id, today)

    slots = find_slots(session, doctor_id, from_day, to_day)
    if not slots:
        return []
    taken = booked_days(session, doctor_id, from_day, to_day)

    out = []
    for slot in slots:
        for day in enumerate_days(slot.start_time, slot.end_time):
            if from_day and day < from_day:
                continue
            if to_day and day > to_day:
                continue

            if day < today:
                status = "closed"
            elif (slot.id, day) in taken or slot.status not in ("available", "closed"):
                status = "booked"
            elif slot.status == "closed":
                status = "closed"
            else:
                status = "available"

            start_time, end_time = day_bounds(day)
            out.append(
                AvailabilityDay(
                    id=f"{slot.id}:{day.isoformat()}",
                    slot_id=slot.id,
                    doctor_id=slot.doctor_id,
                    date=day,
                    start_time=start_time,
                    end_time=end_time,
                    status=status,
                )
            )

    out.sort(key=lambda entry: (entry.date, entry.slot_id))
    return out


def book_appointment(
    session: Session,
    patient_id: int,
    slot_id: int,
    chosen_date: DateLike,
    today: Optional[date] = None,
) -> Appointment:
    """
    Reserve one day of a parent slot for a patient.

    Everything happens in a single transaction holding the slot row lock;
    any failure rolls the whole booking back.
    """
    day = parse_chosen_date(chosen_date)
    today = today or date.today()

    try:
        slot = lock_slot(session, slot_id)
        if slot is None:
            raise SlotNotFound()
        if slot.status != "available":
            raise SlotNotAvailable()

        if day not in enumerate_days(slot.start_time, slot.end_time):
            raise DateOutOfRange()

        if day < today + timedelta(days=1):
            raise BookingTooSoon()

        clash = session.exec(
            select(Appointment.id).where(
                Appointment.patient_id == patient_id,
                Appointment.chosen_date == day,
                Appointment.status.in_(ACTIVE_APPOINTMENT_STATUSES),
            )
        ).first()
        if clash is not None:
            raise PatientAlreadyBookedOnDate()

        appt = Appointment(
            patient_id=patient_id,
            doctor_id=slot.doctor_id,
            slot_id=slot.id,
            chosen_date=day,
            status="pending",
        )
        session.add(appt)
        session.flush()

        slot.status = "booked"
        session.add(slot)
        session.commit()
    except IntegrityError:
        session.rollback()
        logger.warning(f"Slot {slot_id} on {day} was booked concurrently")
        raise SlotAlreadyBooked()
    except Exception:
        session.rollback()
        raise

    session.refresh(appt)
    logger.info(f"Patient {patient_id} booked slot {slot_id} on {day} (appointment {appt.id})")
    return appt


def update_appointment_status(session: Session, doctor_id: int, appointment_id: int, new_status: str) -> Appointment:
    """
    Set an appointment's status on behalf of its doctor. Appointments the
    doctor does not own are reported as missing.
    """
    if new_status not in APPOINTMENT_STATUSES:
        raise ValidationFailed(details=[{"field": "status", "message": "Invalid status."}])

    appt = session.get(Appointment, appointment_id)
    if appt is None or appt.doctor_id != doctor_id:
        raise NotFound("Appointment not found.")

    appt.status = new_status
    appt.updated_at = utcnow()
    session.add(appt)
    session.commit()
    session.refresh(appt)
    logger.info(f"Doctor {doctor_id} set appointment {appointment_id} to {new_status}")
    return appt


def list_appointments_for_user(session: Session, user_id: int, role: str) -> List[AppointmentListItem]:
    if role == "patient":
        own_column, other_column = Appointment.patient_id, Appointment.doctor_id
    elif role == "doctor":
        own_column, other_column = Appointment.doctor_id, Appointment.patient_id
    else:
        return []

    stmt = (
        select(
            Appointment.id,
            Appointment.status,
            Appointment.chosen_date,
            Appointment.created_at,
            User.id,
            User.full_name,
        )
        .join(User, User.id == other_column)
        .where(own_column == user_id)
        .order_by(Appointment.chosen_date.desc(), Appointment.created_at.desc())
        .limit(MAX_APPOINTMENTS_LISTED)
    )

    results: List[AppointmentListItem] = []
    for appt_id, status_value, chosen_date, created_at, other_id, other_name in session.exec(stmt).all():
        start_time, end_time = day_bounds(chosen_date)
        item = AppointmentListItem(
            id=appt_id,
            status=status_value,
            chosen_date=chosen_date,
            start_time=start_time,
            end_time=end_time,
            created_at=created_at,
        )
        if role == "patient":
            item.doctor_id, item.doctor_name = other_id, other_name
        else:
            item.patient_id, item.patient_name = other_id, other_name
        results.append(item)
    return results
