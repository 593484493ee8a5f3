"""Pydantic schemas for Users."""
from datetime import datetime
from typing import Optional

from eventpass.schemas.common import CamelModel


class UserCreate(CamelModel):
    display_name: str
    email: Optional[str] = None


class UserOut(CamelModel):
    user_id: str
    display_name: str
    email: Optional[str] = None
    created_at: Optional[datetime] = None
