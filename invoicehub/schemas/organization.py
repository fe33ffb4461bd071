from typing import Optional
from pydantic import EmailStr, Field

from invoicehub.models.user import UserRole
from invoicehub.schemas.common import ApiModel


class OrganizationCreate(ApiModel):
    name: str = Field(..., min_length=1, max_length=200)


class OrganizationUpdate(ApiModel):
    name: str = Field(..., min_length=1, max_length=200)


class MemberCreate(ApiModel):
    uid: str = Field(..., min_length=1)
    email: EmailStr
    display_name: Optional[str] = None
    role: UserRole = "reviewer"


class MemberRoleUpdate(ApiModel):
    role: UserRole


class ProfileUpdate(ApiModel):
    display_name: Optional[str] = Field(default=None, max_length=200)
    department: Optional[str] = Field(default=None, max_length=200)
