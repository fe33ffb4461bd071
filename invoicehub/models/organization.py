from datetime import datetime
from typing import Annotated, Optional

from pydantic import BeforeValidator, Field

from invoicehub.models.base import StoreModel, as_list
from invoicehub.models.user import UserRole


class Member(StoreModel):
    role: UserRole = "reviewer"
    joined_at: Optional[datetime] = None


class Organization(StoreModel):
    id: Optional[str] = None
    name: str
    created_by: Optional[str] = None
    admin_ids: Annotated[list[str], BeforeValidator(as_list)] = Field(default_factory=list)
    members: dict[str, Member] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_member(self, uid: str) -> bool:
        return uid in self.members
