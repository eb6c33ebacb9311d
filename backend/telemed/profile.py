from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlmodel import SQLModel, Session, Field, select

from .accounts import check_specialty_ids
from .auth import get_current_user
from .database import get_session
from .errors import Duplicate, Forbidden
from .models import DoctorSpecialty, Specialty, User, utcnow

router = APIRouter()

MAX_DOCTORS_LISTED = 100


class SpecialtyRead(SQLModel):
    id: int
    name: str


class UserProfileRead(SQLModel):
    id: int
    role: str
    full_name: str
    email: str
    phone: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    specialties: List[SpecialtyRead] = []


class UserProfileResponse(SQLModel):
    user: UserProfileRead


class UserProfileUpdate(SQLModel):
    full_name: Optional[str] = Field(default=None, min_length=1)
    phone: Optional[str] = Field(default=None, min_length=9, max_length=32)
    specialty_ids: Optional[List[int]] = Field(default=None, max_length=10)


class DoctorRead(SQLModel):
    id: int
    full_name: str
    email: str
    phone: Optional[str] = None


class DoctorListResponse(SQLModel):
    data: List[DoctorRead]


class SpecialtyListResponse(SQLModel):
    data: List[SpecialtyRead]


def doctor_specialties(session: Session, doctor_id: int) -> List[Specialty]:
    stmt = (
        select(Specialty)
        .join(DoctorSpecialty, DoctorSpecialty.specialty_id == Specialty.id)
        .where(DoctorSpecialty.doctor_id == doctor_id)
        .order_by(Specialty.name)
    )
    return list(session.exec(stmt).all())


def build_profile(session: Session, user: User) -> UserProfileRead:
    profile = UserProfileRead.model_validate(user, from_attributes=True)
    if user.role == "doctor":
        profile.specialties = [
            SpecialtyRead(id=s.id, name=s.name) for s in doctor_specialties(session, user.id)
        ]
    return profile


def update_profile(session: Session, user: User, patch: UserProfileUpdate) -> User:
    """
    Apply a partial profile update. A doctor's specialty list is replaced
    as a whole in the same transaction.
    """
    fields = patch.model_fields_set
    if "specialty_ids" in fields and patch.specialty_ids is not None and user.role != "doctor":
        raise Forbidden("Only doctors can set specialties.")

    try:
        if patch.full_name:
            user.full_name = patch.full_name
        if "phone" in fields:
            user.phone = patch.phone or None
        user.updated_at = utcnow()
        session.add(user)

        if "specialty_ids" in fields and patch.specialty_ids is not None:
            ids = check_specialty_ids(session, patch.specialty_ids)
            session.execute(delete(DoctorSpecialty).where(DoctorSpecialty.doctor_id == user.id))
            for specialty_id in ids:
                session.add(DoctorSpecialty(doctor_id=user.id, specialty_id=specialty_id))

        session.commit()
    except IntegrityError:
        session.rollback()
        raise Duplicate("This email or phone number is already in use.")
    except Exception:
        session.rollback()
        raise

    session.refresh(user)
    return user


def search_doctors(
    session: Session,
    q: Optional[str] = None,
    specialty_id: Optional[int] = None,
    specialty_name: Optional[str] = None,
) -> List[User]:
    stmt = select(User).where(User.role == "doctor")
    if specialty_id is not None or specialty_name:
        stmt = (
            stmt.join(DoctorSpecialty, DoctorSpecialty.doctor_id == User.id)
            .join(Specialty, Specialty.id == DoctorSpecialty.specialty_id)
            .distinct()
        )
    if q:
        stmt = stmt.where(User.full_name.ilike(f"%{q}%"))
    if specialty_id is not None:
        stmt = stmt.where(Specialty.id == specialty_id)
    elif specialty_name:
        stmt = stmt.where(Specialty.name.ilike(f"%{specialty_name}%"))
    stmt = stmt.order_by(User.full_name).limit(MAX_DOCTORS_LISTED)
    return list(session.exec(stmt).all())


@router.get("/users/me", response_model=UserProfileResponse)
def get_my_profile(
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """
    Get the current user's profile, with specialties for doctors.
    """
    return UserProfileResponse(user=build_profile(session, current_user))


@router.put("/users/me", response_model=UserProfileResponse)
def update_my_profile(
    profile_in: UserProfileUpdate,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    """
    Update name, phone and (doctors only) specialties.
    """
    user = update_profile(session, current_user, profile_in)
    return UserProfileResponse(user=build_profile(session, user))


@router.get("/doctors", response_model=DoctorListResponse)
def list_doctors(
    q: Optional[str] = Query(None, description="Search by doctor name"),
    specialty_id: Optional[int] = Query(None),
    specialty_name: Optional[str] = Query(None),
    specialty: Optional[str] = Query(None, description="Specialty id or name"),
    session: Session = Depends(get_session),
):
    """
    Search doctors by name and specialty.
    """
    if specialty and specialty_id is None and not specialty_name:
        if specialty.isdigit():
            specialty_id = int(specialty)
        else:
            specialty_name = specialty

    doctors = search_doctors(session, q, specialty_id, specialty_name)
    return DoctorListResponse(data=[DoctorRead.model_validate(d, from_attributes=True) for d in doctors])


@router.get("/specialties", response_model=SpecialtyListResponse)
def list_specialties(session: Session = Depends(get_session)):
    specialties = session.exec(select(Specialty).order_by(Specialty.name)).all()
    return SpecialtyListResponse(data=[SpecialtyRead(id=s.id, name=s.name) for s in specialties])
