from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import Field

from invoicehub.models.base import StoreModel

NotificationType = Literal["info", "success", "warning", "error"]


class Notification(StoreModel):
    id: Optional[str] = None
    message: str
    type: NotificationType = "info"
    read: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
