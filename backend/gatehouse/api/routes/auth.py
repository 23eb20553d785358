"""
Account endpoints.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from gatehouse.db.session import get_db
from gatehouse.schemas.user import Token, UserCreate, UserLogin, UserResponse
from gatehouse.services import auth_service
from gatehouse.core.errors import InvalidCredentialsError
from gatehouse.core.security import get_current_user_id

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(user_data: UserCreate, db: AsyncSession = Depends(get_db)):
    """Create an attendee, organizer or door-staff account."""
    return await auth_service.register_user(db, user_data)


@router.post("/login", response_model=Token)
async def login(login_data: UserLogin, db: AsyncSession = Depends(get_db)):
    return await auth_service.authenticate_user(db, login_data)


@router.get("/me", response_model=UserResponse)
async def me(user_id: int = Depends(get_current_user_id), db: AsyncSession = Depends(get_db)):
    """The account behind the bearer token."""
    user = await auth_service.get_user(db, user_id)
    if user is None:
        raise InvalidCredentialsError("Account no longer exists")
    return user
