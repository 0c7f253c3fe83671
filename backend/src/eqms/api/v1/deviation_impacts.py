"""
Deviation Impact API
"""
from fastapi import APIRouter, Depends, status
from motor.motor_asyncio import AsyncIOMotorDatabase
from typing import Optional

from eqms.api.v1.deps import get_current_user
from eqms.core.responses import envelope
from eqms.db.mongo import get_db
from eqms.models.deviation import DeviationImpactCreate, DeviationImpactUpdate
from eqms.services.impact_service import DeviationImpactService


router = APIRouter(prefix="/deviation-impacts", tags=["Deviation Impacts"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_impact(
    data: DeviationImpactCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    service = DeviationImpactService(db)
    impact = await service.create(data.deviation_id, data.answers, current_user)
    return envelope(impact, "Deviation impact created successfully")


@router.get("")
async def list_impacts(
    deviation_id: Optional[str] = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    service = DeviationImpactService(db)
    return envelope(await service.list(deviation_id))


@router.get("/{impact_id}")
async def get_impact(
    impact_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    service = DeviationImpactService(db)
    return envelope(await service.get(impact_id))


@router.put("/{impact_id}")
async def update_impact(
    impact_id: str,
    data: DeviationImpactUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    service = DeviationImpactService(db)
    impact = await service.update(impact_id, data.answers)
    return envelope(impact, "Deviation impact updated successfully")


@router.delete("/{impact_id}")
async def delete_impact(
    impact_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    service = DeviationImpactService(db)
    await service.delete(impact_id)
    return envelope(message="Deviation impact deleted successfully")
