from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict


class UserRole(str, Enum):
    USER = "USER"
    PRO = "PRO"


class User(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    email: str
    name: Optional[str] = None
    role: UserRole = UserRole.USER
    created_at: datetime
