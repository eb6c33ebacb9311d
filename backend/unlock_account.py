import argparse
from typing import Optional

from sqlmodel import Session

from telemed.accounts import get_user_by_email, reset_lockout, update_password_hash
from telemed.database import engine
from telemed.lockout import get_ip_block_registry
from telemed.security import hash_password


def unlock_account(session: Session, email: str, new_password: Optional[str] = None, ip: Optional[str] = None) -> bool:
    """Clear an account's lockout state, optionally setting a new password"""
    user = get_user_by_email(session, email)

    if not user:
        print(f"❌ User {email} not found!")
        return False

    user_id = user.id
    if new_password:
        update_password_hash(session, user_id, hash_password(new_password))
        print(f"✅ Reset password for {email}")

    reset_lockout(session, user_id)
    if ip:
        get_ip_block_registry().unblock(ip)
        print(f"✅ Unblocked {ip}")

    print(f"✅ Unlocked {email}")
    return True


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Clear lockout state for an account")
    parser.add_argument("email")
    parser.add_argument("--password", help="also set a new password")
    parser.add_argument("--ip", help="also lift the block on this client IP")
    args = parser.parse_args()

    with Session(engine) as session:
        unlock_account(session, args.email, args.password, args.ip)
