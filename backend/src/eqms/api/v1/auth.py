"""
Authentication API
Signup, login, password reset and account activation
"""
from fastapi import APIRouter, Depends, HTTPException, status
from motor.motor_asyncio import AsyncIOMotorDatabase
from datetime import datetime, timezone
import uuid

from eqms.api.v1.deps import get_current_user, require_roles
from eqms.core.config import validate_password
from eqms.core.responses import envelope
from eqms.core.security import create_access_token, hash_password, verify_password
from eqms.db.mongo import Collections, get_db, get_or_404
from eqms.models.auth import LoginRequest, ResetPasswordRequest, SignupRequest
from eqms.models.workflow import RoleName
from eqms.services.rbac_service import RBACService


router = APIRouter(prefix="/auth", tags=["Auth"])


def check_password(password: str) -> None:
    is_valid, error_message = validate_password(password)
    if not is_valid:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_message
        )


@router.post("/signup", status_code=status.HTTP_201_CREATED)
async def signup(
    data: SignupRequest,
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Register a user; the account stays inactive until an admin activates it
    """
    email = data.email.lower()
    if await db[Collections.USERS].find_one({"email": email}):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User already exists with this email"
        )
    check_password(data.password)

    if data.role_id:
        await get_or_404(db, Collections.ROLES, data.role_id, "Role")
    if data.department_id:
        await get_or_404(db, Collections.DEPARTMENTS, data.department_id, "Department")

    now = datetime.now(timezone.utc)
    user_doc = {
        "id": str(uuid.uuid4()),
        "email": email,
        "password": hash_password(data.password),
        "name": data.name,
        "role_id": data.role_id,
        "department_id": data.department_id,
        "is_active": False,
        "created_at": now,
        "updated_at": now,
    }
    await db[Collections.USERS].insert_one(user_doc)

    user = await RBACService(db).load_user_context(user_doc["id"])
    return envelope(user, "User registered successfully. Awaiting activation")


@router.post("/login")
async def login(
    data: LoginRequest,
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Log in with email and password
    """
    user = await db[Collections.USERS].find_one({"email": data.email.lower()})
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )

    if not user.get("is_active", False):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is not active"
        )

    if not verify_password(data.password, user["password"]):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token, expires_in = create_access_token(user["id"])

    await db[Collections.USERS].update_one(
        {"id": user["id"]},
        {"$set": {"last_login": datetime.now(timezone.utc)}}
    )

    return envelope(
        {
            "access_token": access_token,
            "token_type": "bearer",
            "expires_in": expires_in,
            "user": await RBACService(db).load_user_context(user["id"]),
        },
        "Login successful",
    )


@router.put("/reset-password")
async def reset_password(
    data: ResetPasswordRequest,
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Set a new password (the client verifies an OTP first)
    """
    if data.new_password != data.confirm_password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Passwords do not match"
        )
    check_password(data.new_password)

    result = await db[Collections.USERS].update_one(
        {"email": data.email.lower()},
        {"$set": {
            "password": hash_password(data.new_password),
            "updated_at": datetime.now(timezone.utc),
        }}
    )
    if result.matched_count == 0:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )

    return envelope(message="Password reset successfully")


@router.put("/activate-user/{user_id}")
async def activate_user(
    user_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(require_roles(RoleName.SYSTEM_ADMIN))
):
    """
    Toggle a user's is_active flag
    """
    user = await get_or_404(db, Collections.USERS, user_id, "User")
    is_active = not user.get("is_active", False)

    await db[Collections.USERS].update_one(
        {"id": user_id},
        {"$set": {"is_active": is_active, "updated_at": datetime.now(timezone.utc)}}
    )

    user = await RBACService(db).load_user_context(user_id)
    return envelope(user, "User activated" if is_active else "User deactivated")


@router.get("/me")
async def get_me(
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    """
    Current user with role, department and permissions
    """
    permissions = await RBACService(db).get_user_permissions(current_user)
    return envelope({**current_user, "permissions": sorted(permissions)})
