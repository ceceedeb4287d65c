from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel


class SessionResponse(BaseModel):
    id: UUID
    device_name: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime
    last_used_at: datetime
    is_current: bool = False


class SessionListResponse(BaseModel):
    sessions: List[SessionResponse]
    total: int


class RevokedSessionsResponse(BaseModel):
    revoked: int
