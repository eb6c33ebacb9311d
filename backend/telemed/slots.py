"""
Doctor availability storage.

A ``DoctorSlot`` row is a parent range covering one or more whole days. The
bookable unit is a single day inside that range; those daily slots are derived
on read and never stored.
"""

import logging
import re
from datetime import date, datetime, time, timedelta
from typing import List, Optional, Set, Tuple, Union

from sqlalchemy import update
from sqlmodel import Session, select

from .errors import InvalidTimeRange, ValidationFailed
from .models import ACTIVE_APPOINTMENT_STATUSES, Appointment, DoctorSlot

logger = logging.getLogger(__name__)

DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")
END_OF_DAY = time(23, 59, 59)
MAX_SLOTS_PER_QUERY = 500

DateLike = Union[str, date, datetime]


def _to_local_naive(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


def parse_slot_bound(value: DateLike, end: bool = False) -> datetime:
    """
    Turn a slot boundary into a naive local datetime. Date-only values
    become the start of the day, or its last second when ``end`` is set.
    """
    if isinstance(value, datetime):
        return _to_local_naive(value)
    if isinstance(value, date):
        return datetime.combine(value, END_OF_DAY if end else time.min)
    if isinstance(value, str):
        value = value.strip()
        try:
            if DATE_ONLY.match(value):
                return datetime.combine(date.fromisoformat(value), END_OF_DAY if end else time.min)
            return _to_local_naive(datetime.fromisoformat(value))
        except ValueError:
            pass
    raise InvalidTimeRange("Invalid date/time format.")


def parse_day(value: Optional[DateLike], field: str) -> Optional[date]:
    """Reduce an optional date or datetime filter to its calendar day."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _to_local_naive(value).date()
    if isinstance(value, date):
        return value
    try:
        return parse_slot_bound(value).date()
    except InvalidTimeRange:
        raise ValidationFailed(details=[{"field": field, "message": "Invalid date/time format."}])


def enumerate_days(start: datetime, end: datetime) -> List[date]:
    """Every calendar day from start to end, both ends included."""
    days = []
    day = start.date()
    while day <= end.date():
        days.append(day)
        day += timedelta(days=1)
    return days


def find_slots(
    session: Session,
    doctor_id: int,
    from_day: Optional[date] = None,
    to_day: Optional[date] = None,
) -> List[DoctorSlot]:
    """Parent slots of a doctor that overlap the [from_day, to_day] window."""
    stmt = select(DoctorSlot).where(DoctorSlot.doctor_id == doctor_id)
    if from_day:
        stmt = stmt.where(DoctorSlot.end_time >= datetime.combine(from_day, time.min))
    if to_day:
        stmt = stmt.where(DoctorSlot.start_time < datetime.combine(to_day + timedelta(days=1), time.min))
    stmt = stmt.order_by(DoctorSlot.start_time).limit(MAX_SLOTS_PER_QUERY)
    return list(session.exec(stmt).all())


def booked_days(
    session: Session,
    doctor_id: int,
    from_day: Optional[date] = None,
    to_day: Optional[date] = None,
) -> Set[Tuple[int, date]]:
    """(slot_id, day) pairs holding a pending or confirmed appointment."""
    stmt = select(Appointment.slot_id, Appointment.chosen_date).where(
        Appointment.doctor_id == doctor_id,
        Appointment.status.in_(ACTIVE_APPOINTMENT_STATUSES),
    )
    if from_day:
        stmt = stmt.where(Appointment.chosen_date >= from_day)
    if to_day:
        stmt = stmt.where(Appointment.chosen_date <= to_day)
    return {(slot_id, chosen_date) for slot_id, chosen_date in session.exec(stmt).all()}


def close_expired_slots(session: Session, doctor_id: Optional[int] = None, today: Optional[date] = None) -> int:
    """Mark available parent slots whose last day has passed as closed."""
    today = today or date.today()
    stmt = (
        update(DoctorSlot)
        .where(
            DoctorSlot.status == "available",
            DoctorSlot.end_time < datetime.combine(today, time.min),
        )
        .values(status="closed")
    )
    if doctor_id is not None:
        stmt = stmt.where(DoctorSlot.doctor_id == doctor_id)
    result = session.execute(stmt)
    session.commit()
    if result.rowcount:
        logger.info(f"Closed {result.rowcount} expired slot(s)")
    return result.rowcount


def lock_slot(session: Session, slot_id: int) -> Optional[DoctorSlot]:
    """Load a parent slot with an exclusive row lock held until commit or rollback."""
    stmt = (
        select(DoctorSlot)
        .where(DoctorSlot.id == slot_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return session.exec(stmt).first()
