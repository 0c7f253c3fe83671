"""
Deviation API Endpoints
Creation (multipart), reads and the review workflow
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
from eqms.models.deviation import DeviationCreate
from eqms.models.workflow import ReviewRequest, RoleName, TransitionComment
from eqms.services.deviation_service import DeviationService


router = APIRouter(prefix="/deviations", tags=["Deviations"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_deviation(
    data: str = Form(..., description="DeviationCreate as JSON"),
    detailedDescriptionAttachments: Optional[List[UploadFile]] = File(None),
    relatedRecordsAttachments: Optional[List[UploadFile]] = File(None),
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(require_roles(RoleName.CREATOR))
):
    """
    Create a deviation in Draft

    The JSON `data` field carries the deviation; files go in
    detailedDescriptionAttachments and relatedRecordsAttachments.
    """
    payload = parse_form_model(DeviationCreate, data)
    service = DeviationService(db)
    deviation = await service.create(
        payload, current_user, detailedDescriptionAttachments, relatedRecordsAttachments
    )
    return envelope(deviation, "Deviation created successfully")


@router.get("")
async def list_deviations(
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(require_roles(*ALL_ROLES))
):
    service = DeviationService(db)
    return envelope(await service.list(department_filter(current_user)))


@router.get("/summary")
async def deviations_summary(
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(require_roles(*ALL_ROLES))
):
    """
    Number, summary and status of each visible deviation
    """
    service = DeviationService(db)
    return envelope(await service.summary(department_filter(current_user)))


@router.get("/{deviation_id}")
async def get_deviation(
    deviation_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(require_roles(*ALL_ROLES))
):
    service = DeviationService(db)
    deviation = await service.get(deviation_id)
    check_department_access(current_user, deviation)
    return envelope(deviation)


# ============================================================================
# WORKFLOW
# ============================================================================

@router.put("/{deviation_id}/submit")
async def submit_deviation(
    deviation_id: str,
    body: Optional[TransitionComment] = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    """
    Draft -> Under Department Head Review (Creator of the owning department)
    """
    service = DeviationService(db)
    deviation = await service.workflow.submit(
        deviation_id, current_user, body.comments if body else None
    )
    return envelope(deviation, "Deviation submitted for department head review")


@router.put("/{deviation_id}/review")
async def review_deviation(
    deviation_id: str,
    body: ReviewRequest,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    """
    Department head review: Approved moves on to QA, Rejected returns to Draft
    """
    service = DeviationService(db)
    deviation = await service.workflow.department_review(
        deviation_id, body.action, current_user, body.comments
    )
    return envelope(deviation, f"Deviation {body.action.value.lower()} by department head")


@router.put("/{deviation_id}/qa-review")
async def qa_review_deviation(
    deviation_id: str,
    body: ReviewRequest,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    service = DeviationService(db)
    deviation = await service.workflow.qa_review(
        deviation_id, body.action, current_user, body.comments
    )
    return envelope(deviation, f"Deviation {body.action.value.lower()} by QA")


@router.put("/{deviation_id}/close")
async def close_deviation(
    deviation_id: str,
    body: Optional[TransitionComment] = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    service = DeviationService(db)
    deviation = await service.workflow.close(
        deviation_id, current_user, body.comments if body else None
    )
    return envelope(deviation, "Deviation closed")
