import uuid
from datetime import datetime

from pydantic import EmailStr, Field

from trustlessid.schemas import CamelModel


class LoginRequest(CamelModel):
    email: EmailStr
    name: str | None = Field(default=None, max_length=255)


class UserResponse(CamelModel):
    id: uuid.UUID
    email: str
    name: str
    verified: bool
    created_at: datetime


class TokenResponse(CamelModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse
