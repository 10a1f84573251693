from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class ActivityOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID | None = None
    action: str
    description: str | None = None
    resource_type: str
    resource_id: str
    loan_id: UUID | None = None
    old_values: dict[str, Any] | list[Any] | None = None
    new_values: dict[str, Any] | list[Any] | None = None
    changes: dict[str, Any] | None = None
    ip_address: str | None = None
    created_at: datetime | None = None
