"""
Account store: lookups and lockout-state updates for ``User`` rows.

Every counter change is a single SQL statement or runs under a row lock, so
concurrent login attempts against one account never lose an update.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from .errors import Duplicate, ValidationFailed
from .lockout import lock_duration_seconds
from .models import DoctorSpecialty, Specialty, User, utcnow
from .security import hash_password

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def get_user_by_email(session: Session, email: str) -> Optional[User]:
    statement = select(User).where(User.email == normalize_email(email))
    return session.exec(statement).first()


def record_failed_attempt(session: Session, user_id: int) -> int:
    """Increment the failure counter in place and return the new value."""
    session.execute(
        update(User)
        .where(User.id == user_id)
        .values(failed_login_attempts=User.failed_login_attempts + 1)
    )
    failed = session.exec(select(User.failed_login_attempts).where(User.id == user_id)).one()
    session.commit()
    return failed


def lock_account(session: Session, user_id: int, now: Optional[datetime] = None) -> int:
    """
    Lock the account for the next escalation step and return the lock length
    in seconds. If another attempt locked it first, the existing lock is kept
    and its remaining seconds are returned instead.
    """
    now = now or utcnow()
    statement = (
        select(User)
        .where(User.id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    user = session.exec(statement).one()

    if user.locked_until and user.locked_until > now:
        remaining = math.ceil((user.locked_until - now).total_seconds())
        session.commit()
        return remaining

    duration = lock_duration_seconds(user.lock_count or 0)
    user.locked_until = now + timedelta(seconds=duration)
    user.lock_count = (user.lock_count or 0) + 1
    session.add(user)
    session.commit()
    logger.warning(f"🔒 Account {user.email} locked for {duration}s (lock #{user.lock_count})")
    return duration


def reset_lockout(session: Session, user_id: int) -> None:
    session.execute(
        update(User)
        .where(User.id == user_id)
        .values(failed_login_attempts=0, lock_count=0, locked_until=None)
    )
    session.commit()


def update_password_hash(session: Session, user_id: int, password_hash: str) -> None:
    session.execute(
        update(User)
        .where(User.id == user_id)
        .values(password_hash=password_hash, updated_at=utcnow())
    )
    session.commit()


def check_specialty_ids(session: Session, specialty_ids: List[int]) -> List[int]:
    """De-duplicate ids and make sure every one of them exists."""
    ids = list(dict.fromkeys(specialty_ids))
    if not ids:
        return ids
    found = session.exec(select(Specialty.id).where(Specialty.id.in_(ids))).all()
    if len(found) != len(ids):
        raise ValidationFailed(
            "Some specialty ids are invalid.",
            details=[{"field": "specialty_ids", "message": "Unknown specialty id."}],
        )
    return ids


def create_user(
    session: Session,
    role: str,
    full_name: str,
    email: str,
    password: str,
    phone: Optional[str] = None,
    specialty_ids: Optional[List[int]] = None,
) -> User:
    """Register a patient or doctor. Doctors get their specialty mapping in the same commit."""
    ids = check_specialty_ids(session, specialty_ids or []) if role == "doctor" else []

    user = User(
        role=role,
        full_name=full_name,
        email=normalize_email(email),
        phone=phone or None,
        password_hash=hash_password(password),
    )
    try:
        session.add(user)
        session.flush()
        for specialty_id in ids:
            session.add(DoctorSpecialty(doctor_id=user.id, specialty_id=specialty_id))
        session.commit()
    except IntegrityError:
        session.rollback()
        raise Duplicate("This email or phone number is already in use.")

    session.refresh(user)
    logger.info(f"Registered {role} account {user.email}")
    return user
