"""
RBAC API Endpoints
Roles, permissions, role-permission links and departments
"""
from fastapi import APIRouter, Depends, status
from motor.motor_asyncio import AsyncIOMotorDatabase
from datetime import datetime, timezone
import uuid

from eqms.api.v1.deps import get_current_user, require_roles
from eqms.core.exceptions import ConflictError, NotFoundError
from eqms.core.responses import envelope
from eqms.db.mongo import Collections, NO_ID, get_db, get_or_404, strip_id
from eqms.models.rbac import (
    DepartmentCreate, DepartmentUpdate,
    PermissionCreate, PermissionUpdate,
    RoleCreate, RoleUpdate,
    RolePermissionAssign, RolePermissionBulk,
)
from eqms.models.workflow import RoleName
from eqms.services.rbac_service import RBACService


router = APIRouter(tags=["RBAC"])

admin_only = require_roles(RoleName.SYSTEM_ADMIN)


async def create_named(db: AsyncIOMotorDatabase, collection: str, label: str, name: str) -> dict:
    """Insert a {name} record, refusing duplicates"""
    if await db[collection].find_one({"name": name}):
        raise ConflictError(label, "name", name)
    now = datetime.now(timezone.utc)
    doc = {"id": str(uuid.uuid4()), "name": name, "created_at": now, "updated_at": now}
    await db[collection].insert_one(doc)
    return strip_id(doc)


async def rename(db: AsyncIOMotorDatabase, collection: str, label: str, record_id: str, name: str) -> dict:
    await get_or_404(db, collection, record_id, label)
    if await db[collection].find_one({"name": name, "id": {"$ne": record_id}}):
        raise ConflictError(label, "name", name)
    await db[collection].update_one(
        {"id": record_id},
        {"$set": {"name": name, "updated_at": datetime.now(timezone.utc)}}
    )
    return await get_or_404(db, collection, record_id, label)


# ============================================================================
# ROLES
# ============================================================================

@router.get("/roles")
async def list_roles(db: AsyncIOMotorDatabase = Depends(get_db)):
    """
    List roles (public, the signup form needs them)
    """
    roles = await db[Collections.ROLES].find({}, NO_ID).sort("name", 1).to_list(length=None)
    return envelope(roles)


@router.post("/roles", status_code=status.HTTP_201_CREATED)
async def create_role(
    data: RoleCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(admin_only)
):
    role = await create_named(db, Collections.ROLES, "Role", data.name)
    return envelope(role, "Role created successfully")


@router.get("/roles/{role_id}")
async def get_role(
    role_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    return envelope(await get_or_404(db, Collections.ROLES, role_id, "Role"))


@router.put("/roles/{role_id}")
async def update_role(
    role_id: str,
    data: RoleUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(admin_only)
):
    role = await rename(db, Collections.ROLES, "Role", role_id, data.name)
    return envelope(role, "Role updated successfully")


@router.delete("/roles/{role_id}")
async def delete_role(
    role_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(admin_only)
):
    """
    Delete a role together with its permission links
    """
    result = await db[Collections.ROLES].delete_one({"id": role_id})
    if result.deleted_count == 0:
        raise NotFoundError("Role", role_id)
    await db[Collections.ROLE_PERMISSIONS].delete_many({"role_id": role_id})
    return envelope(message="Role deleted successfully")


# ============================================================================
# PERMISSIONS
# ============================================================================

@router.get("/permissions")
async def list_permissions(
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    permissions = await db[Collections.PERMISSIONS].find({}, NO_ID).sort("name", 1).to_list(length=None)
    return envelope(permissions)


@router.post("/permissions", status_code=status.HTTP_201_CREATED)
async def create_permission(
    data: PermissionCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(admin_only)
):
    permission = await create_named(db, Collections.PERMISSIONS, "Permission", data.name)
    return envelope(permission, "Permission created successfully")


@router.get("/permissions/{permission_id}")
async def get_permission(
    permission_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    return envelope(await get_or_404(db, Collections.PERMISSIONS, permission_id, "Permission"))


@router.put("/permissions/{permission_id}")
async def update_permission(
    permission_id: str,
    data: PermissionUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(admin_only)
):
    permission = await rename(db, Collections.PERMISSIONS, "Permission", permission_id, data.name)
    return envelope(permission, "Permission updated successfully")


@router.delete("/permissions/{permission_id}")
async def delete_permission(
    permission_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(admin_only)
):
    result = await db[Collections.PERMISSIONS].delete_one({"id": permission_id})
    if result.deleted_count == 0:
        raise NotFoundError("Permission", permission_id)
    await db[Collections.ROLE_PERMISSIONS].delete_many({"permission_id": permission_id})
    return envelope(message="Permission deleted successfully")


# ============================================================================
# ROLE PERMISSIONS
# ============================================================================

@router.post("/role-permissions", status_code=status.HTTP_201_CREATED)
async def assign_permission(
    data: RolePermissionAssign,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(admin_only)
):
    link = await RBACService(db).assign_permission(data.role_id, data.permission_id)
    return envelope(link, "Permission assigned to role")


@router.delete("/role-permissions")
async def remove_permission(
    data: RolePermissionAssign,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(admin_only)
):
    await RBACService(db).remove_permission(data.role_id, data.permission_id)
    return envelope(message="Permission removed from role")


@router.post("/role-permissions/bulk", status_code=status.HTTP_201_CREATED)
async def bulk_assign_permissions(
    data: RolePermissionBulk,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(admin_only)
):
    links = await RBACService(db).bulk_assign(data.role_id, data.permission_ids)
    return envelope(links, f"{len(links)} permissions assigned to role")


@router.delete("/role-permissions/bulk")
async def bulk_remove_permissions(
    data: RolePermissionBulk,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(admin_only)
):
    removed = await RBACService(db).bulk_remove(data.role_id, data.permission_ids)
    return envelope(message=f"{removed} permissions removed from role")


@router.get("/role-permissions/role/{role_id}")
async def permissions_for_role(
    role_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    return envelope(await RBACService(db).permissions_for_role(role_id))


# ============================================================================
# DEPARTMENTS
# ============================================================================

@router.get("/departments")
async def list_departments(db: AsyncIOMotorDatabase = Depends(get_db)):
    """
    List departments (public, the signup form needs them)
    """
    departments = await db[Collections.DEPARTMENTS].find({}, NO_ID).sort("name", 1).to_list(length=None)
    return envelope(departments)


@router.post("/departments", status_code=status.HTTP_201_CREATED)
async def create_department(
    data: DepartmentCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(admin_only)
):
    department = await RBACService(db).create_department(data)
    return envelope(department, "Department created successfully")


@router.get("/departments/{department_id}")
async def get_department(
    department_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    return envelope(await get_or_404(db, Collections.DEPARTMENTS, department_id, "Department"))


@router.put("/departments/{department_id}")
async def update_department(
    department_id: str,
    data: DepartmentUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(admin_only)
):
    department = await RBACService(db).update_department(department_id, data)
    return envelope(department, "Department updated successfully")


@router.delete("/departments/{department_id}")
async def delete_department(
    department_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(admin_only)
):
    result = await db[Collections.DEPARTMENTS].delete_one({"id": department_id})
    if result.deleted_count == 0:
        raise NotFoundError("Department", department_id)
    return envelope(message="Department deleted successfully")
