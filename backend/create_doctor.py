import argparse
from typing import List

from sqlmodel import Session, select

from telemed.database import engine, init_db
from telemed.models import DoctorSpecialty, Specialty, User
from telemed.security import hash_password


def get_or_create_specialties(session: Session, names: List[str]) -> List[Specialty]:
    specialties = []
    for name in names:
        specialty = session.exec(select(Specialty).where(Specialty.name == name)).first()
        if specialty is None:
            specialty = Specialty(name=name)
            session.add(specialty)
            session.flush()
            print(f"✅ Created specialty {name}")
        specialties.append(specialty)
    return specialties


def create_doctor(session: Session, email: str, password: str, full_name: str, specialties: List[str]) -> User:
    """Create a doctor account, or promote an existing user to doctor"""
    email = email.strip().lower()
    existing = session.exec(select(User).where(User.email == email)).first()

    if existing:
        print(f"User {email} already exists. Updating to doctor role...")
        existing.role = "doctor"
        user = existing
    else:
        user = User(
            email=email,
            full_name=full_name,
            password_hash=hash_password(password),
            role="doctor",
        )
        print(f"✅ Created new doctor user: {email}")
    session.add(user)
    session.flush()

    for specialty in get_or_create_specialties(session, specialties):
        if session.get(DoctorSpecialty, (user.id, specialty.id)) is None:
            session.add(DoctorSpecialty(doctor_id=user.id, specialty_id=specialty.id))

    session.commit()
    session.refresh(user)
    return user


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create or promote a doctor account")
    parser.add_argument("email")
    parser.add_argument("password")
    parser.add_argument("full_name")
    parser.add_argument("--specialty", action="append", default=[], help="may be repeated")
    args = parser.parse_args()

    init_db()
    with Session(engine) as session:
        doctor = create_doctor(session, args.email, args.password, args.full_name, args.specialty or ["General Practice"])

    print("\n" + "=" * 50)
    print("Doctor account ready!")
    print(f"Email: {doctor.email}")
    print("=" * 50)
