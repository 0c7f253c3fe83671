"""
RBAC (Role-Based Access Control) Models
Users, roles, permissions and departments
"""
from pydantic import BaseModel, Field, EmailStr
from typing import List, Optional
from datetime import datetime


class RoleCreate(BaseModel):
    """Create a role"""
    name: str = Field(..., min_length=2, max_length=100)


class RoleUpdate(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)


class PermissionCreate(BaseModel):
    """Create a permission"""
    name: str = Field(..., min_length=2, max_length=100)

    class Config:
        json_schema_extra = {"example": {"name": "deviation.create"}}


class PermissionUpdate(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)


class RolePermissionAssign(BaseModel):
    role_id: str
    permission_id: str


class RolePermissionBulk(BaseModel):
    role_id: str
    permission_ids: List[str] = Field(..., min_length=1)


class DepartmentCreate(BaseModel):
    """Create a department; its reference code is derived from the name"""
    name: str = Field(..., min_length=2, max_length=150)
    description: Optional[str] = Field(None, max_length=500)


class DepartmentUpdate(BaseModel):
    """The reference code never changes once assigned"""
    name: Optional[str] = Field(None, min_length=2, max_length=150)
    description: Optional[str] = Field(None, max_length=500)


class UserOut(BaseModel):
    """User output"""
    id: str
    email: EmailStr
    name: str
    role: Optional[dict] = None
    department: Optional[dict] = None
    is_active: bool
    created_at: Optional[datetime] = None


# Roles created at startup when missing
DEFAULT_ROLES = ["System Admin", "Creator", "Reviewer", "Approver"]
