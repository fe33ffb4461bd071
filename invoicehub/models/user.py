from datetime import datetime
from typing import Literal, Optional

from invoicehub.models.base import StoreModel

UserRole = Literal["admin", "reviewer"]


class User(StoreModel):
    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    role: UserRole = "reviewer"
    organization: Optional[str] = None
    department: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
