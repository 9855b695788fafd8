"""Pydantic schemas for auth requests and responses.

Learn: Pydantic v2 models validate request/response data. JSON uses
camelCase (companyName, accessToken) for wire compatibility with
existing clients; Python code uses snake_case. populate_by_name lets
either form in.
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from tenantauth.db.models import Role

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ─── Requests ───────────────────────────────────────────

class SignupCompanyRequest(CamelModel):
    company_name: str = Field(..., min_length=2, max_length=120)
    company_slug: Optional[str] = Field(
        None, min_length=2, max_length=80, pattern=r"^[a-z0-9-]+$"
    )
    full_name: str = Field(..., min_length=2, max_length=120)
    email: str = Field(..., max_length=320, pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=8, max_length=128)


class LoginRequest(CamelModel):
    email: str = Field(..., max_length=320, pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=8, max_length=128)


class RefreshRequest(CamelModel):
    """Body fallback for clients that can't hold the httpOnly cookie."""
    refresh_token: Optional[str] = None


# ─── Responses ──────────────────────────────────────────

class UserRead(CamelModel):
    id: uuid.UUID
    full_name: str
    email: str
    company_id: uuid.UUID
    role: Role

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


class AuthResponse(CamelModel):
    access_token: str
    token_type: str = "bearer"
    refresh_expires_at: datetime
    user: UserRead


class LogoutResponse(CamelModel):
    logged_out: bool = True


class AuthContextRead(CamelModel):
    user_id: uuid.UUID
    company_id: uuid.UUID
    role: Role
    session_id: uuid.UUID

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )
