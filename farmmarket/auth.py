"""
Authentication and authorization utilities.

Provides password hashing, JWT token creation/validation, and FastAPI dependencies
for protecting back-office endpoints.
"""
from datetime import datetime, timedelta
from typing import Optional
import logging
from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from . import crud, models, schemas
from .database import get_db
from .config import SECRET_KEY, ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES, ADMIN_EMAIL, ADMIN_PASSWORD, ADMIN_NAME
from .errors import Forbidden, Unauthorized

logger = logging.getLogger(__name__)

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Security scheme for JWT bearer tokens; missing headers are reported as 401 below
security = HTTPBearer(auto_error=False)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a plain password against a hashed password.

    Args:
        plain_password: The plain text password to verify
        hashed_password: The hashed password to compare against

    Returns:
        True if the password matches, False otherwise
    """
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """
    Hash a password for secure storage.

    Args:
        password: The plain text password to hash

    Returns:
        The hashed password
    """
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Args:
        data: Dictionary containing the claims to encode in the token
        expires_delta: Optional custom expiration time delta

    Returns:
        Encoded JWT token string
    """
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def issue_token(user: models.User) -> schemas.Token:
    access_token = create_access_token(
        data={"sub": str(user.id), "email": user.email, "role": user.role}
    )
    return schemas.Token(access_token=access_token, user=schemas.User.model_validate(user))


def authenticate_user(db: Session, email: str, password: str) -> Optional[models.User]:
    """
    Authenticate a user by email and password.

    Args:
        db: Database session
        email: User's email address
        password: Plain text password to verify

    Returns:
        User object if authentication succeeds, None otherwise
    """
    user = crud.get_user_by_email(db, email)
    if not user:
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> models.User:
    """
    FastAPI dependency to get the current authenticated user from JWT token.

    Args:
        credentials: HTTP Authorization credentials (injected)
        db: Database session (injected)

    Returns:
        Current authenticated user

    Raises:
        Unauthorized: 401 if the token is missing or invalid, or the user is gone
        Forbidden: 403 if the account is inactive
    """
    if credentials is None:
        raise Unauthorized("Not authenticated")

    try:
        payload = jwt.decode(credentials.credentials, SECRET_KEY, algorithms=[ALGORITHM])
        user_id_str: str = payload.get("sub")
        if user_id_str is None:
            logger.error("No 'sub' claim in token")
            raise Unauthorized()
        token_data = schemas.TokenData(
            user_id=int(user_id_str),
            email=payload.get("email"),
            role=payload.get("role")
        )
    except (JWTError, ValueError) as e:
        logger.error(f"JWT validation error: {e}")
        raise Unauthorized()

    user = crud.get_user(db, token_data.user_id)
    if user is None:
        raise Unauthorized()
    if not user.is_active:
        raise Forbidden("User account is inactive")
    return user


def require_admin(current_user: models.User = Depends(get_current_user)) -> models.User:
    """
    FastAPI dependency to require admin role.

    Args:
        current_user: Current authenticated user (injected)

    Returns:
        Current user if they are an admin

    Raises:
        Forbidden: 403 if user is not an admin
    """
    if current_user.role != "admin":
        raise Forbidden("Admin privileges required")
    return current_user


def bootstrap_admin(db: Session) -> Optional[models.User]:
    """
    Create the configured admin account if it doesn't exist yet.

    Does nothing unless both ADMIN_EMAIL and ADMIN_PASSWORD are set.
    """
    if not ADMIN_EMAIL or not ADMIN_PASSWORD:
        return None
    existing = crud.get_user_by_email(db, ADMIN_EMAIL)
    if existing:
        return existing
    user = crud.create_user(
        db,
        name=ADMIN_NAME,
        email=ADMIN_EMAIL,
        password_hash=get_password_hash(ADMIN_PASSWORD),
        role="admin",
    )
    logger.info(f"Bootstrapped admin account {user.email}")
    return user
