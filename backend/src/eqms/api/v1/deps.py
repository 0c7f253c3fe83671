"""
FastAPI Dependencies
JWT verification, user context and role checks
"""
from typing import Type, TypeVar
import json

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from eqms.core.exceptions import ValidationError
from eqms.core.security import decode_access_token
from eqms.db.mongo import get_db
from eqms.models.workflow import RoleName
from eqms.services.rbac_service import RBACService
from eqms.services.workflow_engine import is_qa, role_name

ModelT = TypeVar("ModelT", bound=BaseModel)

ALL_ROLES = tuple(RoleName)

# Security scheme
security = HTTPBearer(auto_error=True)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncIOMotorDatabase = Depends(get_db)
) -> dict:
    """
    Current user from the JWT, with role and department joined in
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Authentication failed",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = decode_access_token(credentials.credentials)

        user_id: str = payload.get("sub")
        token_type: str = payload.get("type")

        if user_id is None or token_type != "access":
            raise credentials_exception

    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError:
        raise credentials_exception

    user = await RBACService(db).load_user_context(user_id)
    if user is None:
        raise credentials_exception

    if not user.get("is_active", False):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is not active"
        )

    return user


def require_roles(*roles: RoleName):
    """
    Dependency factory that admits only the given roles

    Usage:
    @router.post("/")
    async def create(current_user: dict = Depends(require_roles(RoleName.APPROVER))):
        ...
    """
    allowed = {RoleName(r).value for r in roles}

    async def role_checker(current_user: dict = Depends(get_current_user)) -> dict:
        if role_name(current_user) not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"This action requires one of the roles: {', '.join(sorted(allowed))}"
            )
        return current_user

    return role_checker


def department_filter(user: dict) -> dict:
    """Creators outside QA only see records of their own department"""
    if role_name(user) == RoleName.CREATOR.value and not is_qa(user):
        return {"department_id": user.get("department_id")}
    return {}


def parse_form_model(model: Type[ModelT], raw: str) -> ModelT:
    """
    Validate the JSON `data` field of a multipart request
    Bad JSON or a schema mismatch becomes a 400 like any other input error.
    """
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError):
        raise ValidationError("Field 'data' must be a JSON object")

    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationError("Invalid request data", details={"errors": errors})


def check_department_access(user: dict, entity: dict) -> None:
    """403 when a department-scoped user reads another department's record"""
    scope = department_filter(user)
    if scope and entity.get("department_id") != scope["department_id"]:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only access records of your own department"
        )
