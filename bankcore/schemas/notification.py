"""
Pydantic schemas for the in-app notification inbox.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel


class NotificationResponse(BaseModel):
    id: uuid.UUID
    template_kind: str
    title: str
    message: str
    payload: dict
    is_read: bool
    created_at: datetime

    model_config = {"from_attributes": True}
