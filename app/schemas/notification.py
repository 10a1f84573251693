from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    loan_id: UUID | None = None
    notification_type: str
    subject: str
    body: str
    status: str
    opened_at: datetime | None = None
    created_at: datetime | None = None


class ClearedResponse(BaseModel):
    deleted: int
