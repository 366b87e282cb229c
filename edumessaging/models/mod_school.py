from pydantic import BaseModel
from typing import List
from datetime import datetime

class School(BaseModel):
    id: str  # the school id
    school_name: str
    email: str
    programs: List[str] = []
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
