"""
CAPA API Endpoints
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
from eqms.models.capa import CapaCreate, ImmediateActionPlan
from eqms.models.change_control import LinkChangeControl
from eqms.models.workflow import ReviewRequest, RoleName, TransitionComment
from eqms.services.capa_service import CapaService


router = APIRouter(prefix="/capa", tags=["CAPA"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_capa(
    data: str = Form(..., description="CapaCreate as JSON"),
    supportingDocuments: Optional[List[UploadFile]] = File(None),
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(require_roles(RoleName.CREATOR))
):
    """
    Create a CAPA for a deviation; numbered {deviation number}-CAPA{NN}
    """
    payload = parse_form_model(CapaCreate, data)
    service = CapaService(db)
    capa = await service.create(payload, current_user, supportingDocuments)
    return envelope(capa, "CAPA created successfully")


@router.get("")
async def list_capas(
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(require_roles(*ALL_ROLES))
):
    service = CapaService(db)
    return envelope(await service.list(department_filter(current_user)))


@router.get("/{capa_id}")
async def get_capa(
    capa_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(require_roles(*ALL_ROLES))
):
    service = CapaService(db)
    capa = await service.get(capa_id)
    check_department_access(current_user, capa)
    return envelope(capa)


# ============================================================================
# WORKFLOW
# ============================================================================

@router.put("/{capa_id}/submit")
async def submit_capa(
    capa_id: str,
    body: Optional[TransitionComment] = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    service = CapaService(db)
    capa = await service.workflow.submit(capa_id, current_user, body.comments if body else None)
    return envelope(capa, "CAPA submitted for department head review")


@router.put("/{capa_id}/review")
async def review_capa(
    capa_id: str,
    body: ReviewRequest,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    service = CapaService(db)
    capa = await service.workflow.department_review(capa_id, body.action, current_user, body.comments)
    return envelope(capa, f"CAPA {body.action.value.lower()} by department head")


@router.put("/{capa_id}/qa-review")
async def qa_review_capa(
    capa_id: str,
    body: ReviewRequest,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    service = CapaService(db)
    capa = await service.workflow.qa_review(capa_id, body.action, current_user, body.comments)
    return envelope(capa, f"CAPA {body.action.value.lower()} by QA")


@router.post("/{capa_id}/immediate-actions")
async def start_immediate_actions(
    capa_id: str,
    body: ImmediateActionPlan,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    """
    Team Investigation Done -> Immediate Actions In Progress
    """
    service = CapaService(db)
    capa = await service.start_immediate_actions(capa_id, body, current_user)
    return envelope(capa, "Immediate actions started")


@router.post("/{capa_id}/change-control", status_code=status.HTTP_201_CREATED)
async def initiate_change_control(
    capa_id: str,
    body: LinkChangeControl,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    """
    Team Investigation Done -> Change Control Initiated
    Links an existing change control or raises a new one.
    """
    service = CapaService(db)
    result = await service.initiate_change_control(capa_id, body, current_user)
    return envelope(result, "Change control initiated")


@router.put("/{capa_id}/close")
async def close_capa(
    capa_id: str,
    body: Optional[TransitionComment] = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    service = CapaService(db)
    capa = await service.workflow.close(capa_id, current_user, body.comments if body else None)
    return envelope(capa, "CAPA closed")
