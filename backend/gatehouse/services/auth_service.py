"""
Accounts: buyers, organizers and door staff.

Emails are stored lowercased so login is case-insensitive. Roles gate the
organizer endpoints and the scanner; the token carries the user id only,
the role is always read back from the database.
"""

from datetime import timedelta

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from gatehouse.core.config import get_settings
from gatehouse.core.errors import AccountDisabledError, ConflictError, InvalidCredentialsError
from gatehouse.core.logging import get_logger
from gatehouse.core.security import create_access_token, hash_password, verify_password
from gatehouse.models.user import User
from gatehouse.schemas.user import Token, UserCreate, UserLogin

logger = get_logger(__name__)
settings = get_settings()


async def register_user(db: AsyncSession, user_data: UserCreate) -> User:
    email = user_data.email.lower()

    clash = (await db.execute(
        select(User.email, User.username).where(
            or_(User.email == email, User.username == user_data.username)
        )
    )).first()
    if clash is not None:
        field = "email" if clash.email == email else "username"
        logger.warning("registration_rejected", reason=f"{field}_taken", username=user_data.username)
        raise ConflictError(f"This {field} is already registered")

    user = User(
        email=email,
        username=user_data.username,
        hashed_password=hash_password(user_data.password),
        full_name=user_data.full_name,
        phone=user_data.phone,
        role=user_data.role.value,
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        # Lost a race with an identical registration
        await db.rollback()
        raise ConflictError("This email or username is already registered")
    await db.refresh(user)

    logger.info("user_registered", user_id=user.id, role=user.role)
    return user


async def authenticate_user(db: AsyncSession, login_data: UserLogin) -> Token:
    """Check credentials and issue a bearer token."""
    result = await db.execute(select(User).where(User.email == login_data.email.lower()))
    user = result.scalar_one_or_none()

    if user is None or not verify_password(login_data.password, user.hashed_password):
        logger.warning("login_rejected", email=login_data.email, security_event=True)
        raise InvalidCredentialsError()
    if not user.is_active:
        logger.warning("login_rejected", user_id=user.id, reason="inactive")
        raise AccountDisabledError()

    lifetime = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    token = create_access_token(data={"sub": str(user.id)}, expires_delta=lifetime)
    logger.info("user_logged_in", user_id=user.id, role=user.role)
    return Token(access_token=token, expires_in=int(lifetime.total_seconds()))


async def get_user(db: AsyncSession, user_id: int) -> User | None:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()
