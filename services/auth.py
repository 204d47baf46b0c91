"""
Authentication service for Sophia.
Handles user registration, login, bearer-token issuance and account management.
"""

import logging
import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, List, Tuple, Dict, Any

import jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from services.config import JWT_SECRET, JWT_ALGORITHM, JWT_EXPIRES_DAYS
from services.database import User, get_db
from services.errors import AuthenticationError, BusinessRuleError, ConflictError

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
SPECIAL_CHARACTERS = re.compile(r"[!@#$%^&*(),.?\":{}|<>_\-+=\[\]\\/;'`~]")

bearer_scheme = HTTPBearer(auto_error=False)


def validate_password_strength(password: str) -> List[str]:
    """Return the list of rules the password breaks; empty when it is strong enough."""
    problems = []
    if len(password) < 8:
        problems.append("Password must be at least 8 characters long")
    if not re.search(r"[A-Z]", password):
        problems.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        problems.append("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        problems.append("Password must contain at least one number")
    if not SPECIAL_CHARACTERS.search(password):
        problems.append("Password must contain at least one special character")
    return problems


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_PATTERN.match(email or ""))


def create_access_token(user: User) -> str:
    """Issue a signed JWT carrying the user's id and email."""
    now = datetime.now(timezone.utc)
    payload = {
        "userId": user.id,
        "email": user.email,
        "iat": now,
        "exp": now + timedelta(days=JWT_EXPIRES_DAYS),
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid token")


def register_user(
    db: Session,
    email: str,
    password: str,
    name: Optional[str] = None
) -> Tuple[User, str]:
    """Create a new user account and return it with a fresh access token."""
    email = email.lower().strip()
    if not is_valid_email(email):
        raise BusinessRuleError("Invalid email format")

    problems = validate_password_strength(password)
    if problems:
        raise BusinessRuleError("Password validation failed: " + ", ".join(problems))

    existing = db.query(User).filter(User.email == email).first()
    if existing:
        raise ConflictError("User with this email already exists")

    user = User(email=email, name=name)
    user.set_password(password)

    db.add(user)
    db.commit()
    db.refresh(user)

    logger.info("Registered user %s", user.id)
    return user, create_access_token(user)


def login_user(db: Session, email: str, password: str) -> Tuple[User, str]:
    """Authenticate with email and password. Unknown email and wrong password look the same."""
    user = db.query(User).filter(User.email == email.lower().strip()).first()
    if not user or not user.verify_password(password):
        raise AuthenticationError("Invalid credentials")

    user.last_login_at = datetime.utcnow()
    db.commit()

    return user, create_access_token(user)


def get_user_by_id(db: Session, user_id: str) -> Optional[User]:
    return db.query(User).filter(User.id == user_id).first()


def update_profile(
    db: Session,
    user: User,
    name: Optional[str] = None,
    avatar: Optional[str] = None
) -> User:
    if name is not None:
        user.name = name
    if avatar is not None:
        user.avatar = avatar
    db.commit()
    db.refresh(user)
    return user


def change_password(db: Session, user: User, current_password: str, new_password: str) -> None:
    if not user.verify_password(current_password):
        raise BusinessRuleError("Current password is incorrect")

    problems = validate_password_strength(new_password)
    if problems:
        raise BusinessRuleError("Password validation failed: " + ", ".join(problems))

    user.set_password(new_password)
    db.commit()
    logger.info("Password changed for user %s", user.id)


def refresh_token(user: User) -> str:
    return create_access_token(user)


def delete_account(db: Session, user: User) -> None:
    """Delete the user; their businesses and everything hanging off them go too."""
    db.delete(user)
    db.commit()
    logger.info("Deleted user %s", user.id)


def require_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db)
) -> User:
    """Require a valid bearer token. Raises AuthenticationError if not authenticated."""
    if not credentials or not credentials.credentials:
        raise AuthenticationError("Access token is required")

    payload = decode_access_token(credentials.credentials)
    user = get_user_by_id(db, payload.get("userId"))
    if not user:
        raise AuthenticationError("User not found")
    return user
