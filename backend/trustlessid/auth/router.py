import logging

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from trustlessid.database import get_db
from trustlessid.models import User
from trustlessid.tokens.service import TokenService, get_token_service

from .dependencies import get_current_user
from .schemas import LoginRequest, TokenResponse, UserResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    db: AsyncSession = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
):
    """Passwordless demo login: the first login for an email creates the account."""
    email = body.email.lower()
    user = await _find_user(db, email)
    if user is None:
        user = User(email=email, name=body.name or email.split("@")[0], verified=False)
        db.add(user)
        try:
            await db.commit()
        except IntegrityError:
            # another first login for the same email committed in between
            await db.rollback()
            user = await _find_user(db, email)
            if user is None:
                raise
            logger.info("Concurrent first login for %s, reusing account", email)
        else:
            await db.refresh(user)
            logger.info("Created account for %s", email)

    return TokenResponse(
        access_token=tokens.issue_session_token(str(user.id), user.email),
        user=UserResponse.model_validate(user),
    )


@router.get("/me", response_model=UserResponse)
async def me(user: User = Depends(get_current_user)):
    return user


async def _find_user(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()
