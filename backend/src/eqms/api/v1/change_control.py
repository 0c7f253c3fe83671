"""
Change Control API Endpoints
"""
from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from motor.motor_asyncio import AsyncIOMotorDatabase
from typing import List, Optional

from eqms.api.v1.deps import (
    ALL_ROLES, check_department_access, department_filter, get_current_user,
    parse_form_model, require_roles,
)
from eqms.core.responses import envelope
from eqms.db.mongo import get_db
from eqms.models.change_control import ChangeControlCreate
from eqms.models.workflow import ReviewRequest, RoleName, TransitionComment
from eqms.services.change_control_service import ChangeControlService
from eqms.services.workflow_engine import is_qa


router = APIRouter(prefix="/change-control", tags=["Change Control"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_change_control(
    data: str = Form(..., description="ChangeControlCreate as JSON"),
    detailedDescriptionAttachments: Optional[List[UploadFile]] = File(None),
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(require_roles(RoleName.CREATOR))
):
    payload = parse_form_model(ChangeControlCreate, data)
    service = ChangeControlService(db)
    change_control = await service.create(payload, current_user, detailedDescriptionAttachments)
    return envelope(change_control, "Change control created successfully")


@router.get("")
async def list_change_controls(
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(require_roles(*ALL_ROLES))
):
    service = ChangeControlService(db)
    return envelope(await service.list(department_filter(current_user)))


@router.get("/summary")
async def change_controls_summary(
    search: Optional[str] = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(require_roles(*ALL_ROLES))
):
    """
    Number, title and initiation date; non-QA users see their own department
    """
    query = {} if is_qa(current_user) else {"department_id": current_user.get("department_id")}
    service = ChangeControlService(db)
    return envelope(await service.summary(query, search))


@router.get("/{change_control_id}")
async def get_change_control(
    change_control_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(require_roles(*ALL_ROLES))
):
    service = ChangeControlService(db)
    change_control = await service.get(change_control_id)
    check_department_access(current_user, change_control)
    return envelope(change_control)


# ============================================================================
# WORKFLOW
# ============================================================================

@router.put("/{change_control_id}/submit")
async def submit_change_control(
    change_control_id: str,
    body: Optional[TransitionComment] = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    service = ChangeControlService(db)
    change_control = await service.workflow.submit(
        change_control_id, current_user, body.comments if body else None
    )
    return envelope(change_control, "Change control submitted for department head review")


@router.put("/{change_control_id}/review")
async def review_change_control(
    change_control_id: str,
    body: ReviewRequest,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    service = ChangeControlService(db)
    change_control = await service.workflow.department_review(
        change_control_id, body.action, current_user, body.comments
    )
    return envelope(change_control, f"Change control {body.action.value.lower()} by department head")


@router.put("/{change_control_id}/qa-review")
async def qa_review_change_control(
    change_control_id: str,
    body: ReviewRequest,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    service = ChangeControlService(db)
    change_control = await service.workflow.qa_review(
        change_control_id, body.action, current_user, body.comments
    )
    return envelope(change_control, f"Change control {body.action.value.lower()} by QA")


@router.put("/{change_control_id}/acknowledge")
async def acknowledge_change_control(
    change_control_id: str,
    body: Optional[TransitionComment] = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    """
    Historical Check Done -> Acknowledged By Approver
    """
    service = ChangeControlService(db)
    change_control = await service.acknowledge(
        change_control_id, current_user, body.comments if body else None
    )
    return envelope(change_control, "Change control acknowledged")


@router.put("/{change_control_id}/close")
async def close_change_control(
    change_control_id: str,
    body: Optional[TransitionComment] = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    service = ChangeControlService(db)
    change_control = await service.workflow.close(
        change_control_id, current_user, body.comments if body else None
    )
    return envelope(change_control, "Change control closed")
