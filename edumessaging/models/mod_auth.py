from enum import Enum
from pydantic import BaseModel
from typing import Optional

class ActorRole(str, Enum):
    STUDENT = "student"
    ADMIN = "admin"
    SCHOOL = "school"

class Actor(BaseModel):
    id: str
    role: ActorRole = ActorRole.STUDENT
    school_id: Optional[str] = None  # set for school accounts
    name: Optional[str] = None

class TokenData(BaseModel):
    id: str
    role: ActorRole = ActorRole.STUDENT
    school_id: Optional[str] = None
    name: Optional[str] = None
    exp: Optional[float] = None
