import asyncio
import math
from datetime import datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from pydantic import EmailStr, ValidationError, model_validator
from sqlmodel import SQLModel, Session, Field
import logging

from .accounts import (
    create_user,
    get_user_by_email,
    lock_account,
    record_failed_attempt,
    reset_lockout,
    update_password_hash,
)
from .config import settings
from .database import get_session
from .errors import (
    AccountLocked,
    Forbidden,
    InvalidCredentials,
    IPBlocked,
    TooManyAttempts,
    Unauthorized,
    ValidationFailed,
    format_validation_errors,
)
from .lockout import IPBlockRegistry, get_client_ip, get_ip_block_registry
from .models import User, utcnow
from .notification_service import notification_service
from .rate_limit import limiter
from .security import (
    create_access_token,
    decode_access_token,
    hash_password,
    password_needs_rehash,
    verify_password,
)


router = APIRouter()
logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


# --- Pydantic / SQLModel schemas (not DB tables) ---

class RegisterRequest(SQLModel):
    role: Literal["patient", "doctor"]
    full_name: str = Field(min_length=1)
    email: EmailStr
    phone: Optional[str] = Field(default=None, min_length=9, max_length=10)
    password: str = Field(min_length=4)
    specialties: Optional[List[int]] = None

    @model_validator(mode="after")
    def doctors_need_a_specialty(self):
        if self.role == "doctor" and not self.specialties:
            raise ValueError("Doctors must choose at least one specialty.")
        return self


class LoginForm(SQLModel):
    email: str = ""
    password: str = ""


class LoginCredentials(SQLModel):
    email: EmailStr
    password: str = Field(min_length=1)


class UserRead(SQLModel):
    id: int
    role: str
    full_name: str
    email: str
    phone: Optional[str] = None
    created_at: datetime


class RegisterResponse(SQLModel):
    user: UserRead


class AccountSummary(SQLModel):
    id: int
    email: str
    full_name: str
    role: str


class LoginResult(SQLModel):
    token: str
    user: AccountSummary


# --- Login state machine ---

def validate_credentials(email: str, password: str) -> LoginCredentials:
    try:
        return LoginCredentials.model_validate({"email": (email or "").strip(), "password": password})
    except ValidationError as exc:
        raise ValidationFailed(details=format_validation_errors(exc.errors()))


async def attempt_login(
    session: Session,
    ip_blocks: IPBlockRegistry,
    email: str,
    password: str,
    client_ip: str,
    now: Optional[datetime] = None,
) -> LoginResult:
    """
    Run one login attempt. The checks happen in a fixed order:

    1. input validation
    2. account lookup (unknown emails are delayed before failing)
    3. account lock, without looking at the password
    4. password; a correct one resets the lockout state and unblocks the IP
    5. IP block, only consulted after a wrong password
    6. failure accounting, which locks the account and blocks the IP once
       the threshold is reached
    """
    credentials = validate_credentials(email, password)

    user = get_user_by_email(session, credentials.email)
    if not user:
        await asyncio.sleep(settings.UNKNOWN_EMAIL_DELAY_SECONDS)
        logger.warning(f"⚠️ Login attempt for unknown email from {client_ip}")
        raise InvalidCredentials()

    now = now or utcnow()
    if user.locked_until and user.locked_until > now:
        minutes_left = math.ceil((user.locked_until - now).total_seconds() / 60)
        logger.warning(f"🔒 Locked account login attempt: {user.email} from {client_ip}")
        raise AccountLocked(f"Account is temporarily locked. Try again in {minutes_left} minutes.")

    if verify_password(credentials.password, user.password_hash):
        summary = AccountSummary(id=user.id, email=user.email, full_name=user.full_name, role=user.role)
        if password_needs_rehash(user.password_hash):
            update_password_hash(session, user.id, hash_password(credentials.password))
        reset_lockout(session, summary.id)
        ip_blocks.unblock(client_ip)
        logger.info(f"✅ Successful login for {summary.email}")
        token = create_access_token(summary.id, summary.role)
        return LoginResult(token=token, user=summary)

    if ip_blocks.is_blocked(client_ip):
        logger.warning(f"🚫 Wrong password for {user.email} from blocked IP {client_ip}")
        raise IPBlocked()

    user_id, user_email = user.id, user.email
    failed = record_failed_attempt(session, user_id)
    if failed >= settings.LOGIN_MAX_FAILED_ATTEMPTS:
        duration = lock_account(session, user_id, now)
        ip_blocks.block(client_ip, duration)
        logger.warning(f"🚫 IP {client_ip} blocked for {duration}s after {failed} failures on {user_email}")
        raise TooManyAttempts(
            f"Too many failed login attempts. The account is locked for {round(duration / 60)} minutes."
        )

    logger.warning(f"⚠️ Failed login attempt {failed}/{settings.LOGIN_MAX_FAILED_ATTEMPTS} for {user_email}")
    raise InvalidCredentials()


# --- Dependencies ---

def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    session: Session = Depends(get_session),
) -> User:
    if credentials is None or not credentials.credentials:
        raise Unauthorized()

    try:
        payload = decode_access_token(credentials.credentials)
        user_id = int(payload.get("sub"))
    except (JWTError, TypeError, ValueError):
        raise Unauthorized("Invalid or expired token. Please log in again.")

    user = session.get(User, user_id)
    if user is None:
        raise Unauthorized("Invalid or expired token. Please log in again.")
    return user


def require_role(*roles: str):
    def dependency(current_user: User = Depends(get_current_user)) -> User:
        if roles and current_user.role not in roles:
            raise Forbidden()
        return current_user

    return dependency


# --- Routes ---

@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register(user_in: RegisterRequest, session: Session = Depends(get_session)):
    """
    Create a patient or doctor account.
    """
    user = create_user(
        session,
        role=user_in.role,
        full_name=user_in.full_name,
        email=user_in.email,
        password=user_in.password,
        phone=user_in.phone,
        specialty_ids=user_in.specialties,
    )

    sent = await notification_service.send_welcome_email(email=user.email, name=user.full_name, role=user.role)
    if not sent:
        logger.info(f"Welcome email not sent to {user.email}")

    return RegisterResponse(user=UserRead.model_validate(user, from_attributes=True))


@router.post("/login", response_model=LoginResult)
@limiter.limit(settings.LOGIN_RATE_LIMIT)
async def login(
    request: Request,
    form: LoginForm,
    session: Session = Depends(get_session),
    ip_blocks: IPBlockRegistry = Depends(get_ip_block_registry),
):
    """
    Login with escalating account lockout and IP blocking.
    """
    return await attempt_login(session, ip_blocks, form.email, form.password, get_client_ip(request))


@router.get("/me", response_model=UserRead)
def read_me(current_user: User = Depends(get_current_user)):
    """
    Get the current logged-in user info.
    """
    return current_user
