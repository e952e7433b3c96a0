from datetime import datetime
from typing import Optional
from pydantic import BaseModel


class Session(BaseModel):
    """A user work session. Owned by session management; read-only here."""

    id: int
    name: str
    template_id: Optional[str] = None
    status: str = "ACTIVE"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class SessionCreateModel(BaseModel):
    """Model for creating a new session."""

    name: str
    template_id: Optional[str] = None
    status: Optional[str] = None
