from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class NotificationResponse(BaseModel):
    id: int
    title: str
    message: str
    type: str
    related_type: Optional[str] = None
    related_id: Optional[str] = None
    action_url: Optional[str] = None
    extra_metadata: Optional[Dict[str, Any]] = None
    is_read: bool
    email_sent: bool
    created_at: datetime

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True
