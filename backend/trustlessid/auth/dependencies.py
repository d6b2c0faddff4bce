from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from trustlessid.database import get_db
from trustlessid.errors import Unauthorized
from trustlessid.models import User, parse_uuid
from trustlessid.tokens.service import TokenService, get_token_service

security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: AsyncSession = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
) -> User:
    if credentials is None:
        raise Unauthorized("Not authenticated")
    user_id = parse_uuid(tokens.verify_session_token(credentials.credentials))
    if user_id is None:
        raise Unauthorized("Invalid token")
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise Unauthorized("User not found")
    return user
