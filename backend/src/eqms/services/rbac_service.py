"""
RBAC Service - roles, permissions, departments and the user context
"""
from datetime import datetime, timezone
from typing import List, Optional, Set
import logging
import re
import uuid

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from eqms.core.exceptions import ConflictError, NotFoundError
from eqms.db.mongo import Collections, NO_ID, get_or_404, strip_id
from eqms.models.rbac import DepartmentCreate, DepartmentUpdate
from eqms.services.numbering import NumberingService

logger = logging.getLogger(__name__)

# Never returned to clients
PRIVATE_USER_FIELDS = {"_id": 0, "password": 0}


class RBACService:
    """RBAC business logic"""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    # ========================================================================
    # USER CONTEXT
    # ========================================================================

    async def load_user_context(self, user_id: str) -> Optional[dict]:
        """
        User with its role and department joined in
        This is the shape every permission check reads.
        """
        user = await self.db[Collections.USERS].find_one({"id": user_id}, PRIVATE_USER_FIELDS)
        if not user:
            return None

        role = None
        if user.get("role_id"):
            role = await self.db[Collections.ROLES].find_one(
                {"id": user["role_id"]}, {"_id": 0, "id": 1, "name": 1}
            )
        department = None
        if user.get("department_id"):
            department = await self.db[Collections.DEPARTMENTS].find_one(
                {"id": user["department_id"]}, {"_id": 0, "id": 1, "name": 1, "code": 1}
            )

        user["role"] = role
        user["department"] = department
        return user

    async def get_user_permissions(self, user: dict) -> Set[str]:
        """Permission names granted through the user's role"""
        if not user.get("role_id"):
            return set()
        links = await self.db[Collections.ROLE_PERMISSIONS].find(
            {"role_id": user["role_id"]}, NO_ID
        ).to_list(length=None)
        if not links:
            return set()
        permissions = await self.db[Collections.PERMISSIONS].find(
            {"id": {"$in": [link["permission_id"] for link in links]}}, NO_ID
        ).to_list(length=None)
        return {p["name"] for p in permissions}

    # ========================================================================
    # DEPARTMENTS
    # ========================================================================

    async def create_department(self, data: DepartmentCreate) -> dict:
        """The reference code is derived from the name once, here"""
        existing = await self.db[Collections.DEPARTMENTS].find_one(
            {"name": {"$regex": f"^{re.escape(data.name.strip())}$", "$options": "i"}}
        )
        if existing:
            raise ConflictError("Department", "name", data.name)

        now = datetime.now(timezone.utc)
        department = {
            "id": str(uuid.uuid4()),
            "name": data.name.strip(),
            "description": data.description,
            "code": await NumberingService(self.db).derive_department_code(data.name),
            "created_at": now,
            "updated_at": now,
        }
        await self.db[Collections.DEPARTMENTS].insert_one(department)
        logger.info(f"Department {department['name']} created with code {department['code']}")
        return strip_id(department)

    async def update_department(self, department_id: str, data: DepartmentUpdate) -> dict:
        updates = data.model_dump(exclude_unset=True, exclude_none=True)
        if "name" in updates:
            updates["name"] = updates["name"].strip()
            clash = await self.db[Collections.DEPARTMENTS].find_one({
                "name": {"$regex": f"^{re.escape(updates['name'])}$", "$options": "i"},
                "id": {"$ne": department_id},
            })
            if clash:
                raise ConflictError("Department", "name", updates["name"])
        updates["updated_at"] = datetime.now(timezone.utc)

        department = await self.db[Collections.DEPARTMENTS].find_one_and_update(
            {"id": department_id}, {"$set": updates},
            return_document=ReturnDocument.AFTER,
        )
        if department is None:
            raise NotFoundError("Department", department_id)
        return strip_id(department)

    # ========================================================================
    # ROLE PERMISSIONS
    # ========================================================================

    async def assign_permission(self, role_id: str, permission_id: str) -> dict:
        await get_or_404(self.db, Collections.ROLES, role_id, "Role")
        await get_or_404(self.db, Collections.PERMISSIONS, permission_id, "Permission")

        existing = await self.db[Collections.ROLE_PERMISSIONS].find_one(
            {"role_id": role_id, "permission_id": permission_id}, NO_ID
        )
        if existing:
            raise ConflictError("Role permission", "permission_id", permission_id)

        link = {
            "id": str(uuid.uuid4()),
            "role_id": role_id,
            "permission_id": permission_id,
            "created_at": datetime.now(timezone.utc),
        }
        await self.db[Collections.ROLE_PERMISSIONS].insert_one(link)
        return strip_id(link)

    async def remove_permission(self, role_id: str, permission_id: str) -> None:
        result = await self.db[Collections.ROLE_PERMISSIONS].delete_one(
            {"role_id": role_id, "permission_id": permission_id}
        )
        if result.deleted_count == 0:
            raise NotFoundError("Role permission", f"{role_id}/{permission_id}")

    async def bulk_assign(self, role_id: str, permission_ids: List[str]) -> List[dict]:
        """Assign every listed permission the role does not have yet"""
        await get_or_404(self.db, Collections.ROLES, role_id, "Role")
        permission_ids = list(dict.fromkeys(permission_ids))
        found = await self.db[Collections.PERMISSIONS].count_documents({"id": {"$in": permission_ids}})
        if found != len(permission_ids):
            raise NotFoundError("Permission")

        current = await self.db[Collections.ROLE_PERMISSIONS].find(
            {"role_id": role_id, "permission_id": {"$in": permission_ids}}, NO_ID
        ).to_list(length=None)
        already = {link["permission_id"] for link in current}

        now = datetime.now(timezone.utc)
        links = [
            {"id": str(uuid.uuid4()), "role_id": role_id, "permission_id": pid, "created_at": now}
            for pid in permission_ids if pid not in already
        ]
        if links:
            await self.db[Collections.ROLE_PERMISSIONS].insert_many(links)
        return [strip_id(link) for link in links]

    async def bulk_remove(self, role_id: str, permission_ids: List[str]) -> int:
        result = await self.db[Collections.ROLE_PERMISSIONS].delete_many(
            {"role_id": role_id, "permission_id": {"$in": permission_ids}}
        )
        return result.deleted_count

    async def permissions_for_role(self, role_id: str) -> List[dict]:
        await get_or_404(self.db, Collections.ROLES, role_id, "Role")
        links = await self.db[Collections.ROLE_PERMISSIONS].find(
            {"role_id": role_id}, NO_ID
        ).to_list(length=None)
        return await self.db[Collections.PERMISSIONS].find(
            {"id": {"$in": [link["permission_id"] for link in links]}}, NO_ID
        ).sort("name", 1).to_list(length=None)
