"""
Investigation Team API Endpoints
One router per workflow entity type. Team members record the team impact
assessment, root cause analysis and historical check through these routes.
"""
from fastapi import APIRouter, Depends, status
from motor.motor_asyncio import AsyncIOMotorDatabase

from eqms.api.v1.deps import ALL_ROLES, get_current_user, require_roles
from eqms.core.responses import envelope
from eqms.db.mongo import get_db
from eqms.models.workflow import (
    ChangeHistoricalCheck, DeviationHistoricalCheck, EntityType, RoleName,
    RootCauseRecord, TeamCreate, TeamImpactRecord, TeamUpdate,
)
from eqms.services.investigation_service import InvestigationService


def build_team_router(entity_type: EntityType, prefix: str, tag: str) -> APIRouter:
    """CRUD routes shared by the three team collections"""
    router = APIRouter(prefix=prefix, tags=[tag])

    @router.post("", status_code=status.HTTP_201_CREATED)
    async def create_team(
        data: TeamCreate,
        db: AsyncIOMotorDatabase = Depends(get_db),
        current_user: dict = Depends(require_roles(RoleName.APPROVER))
    ):
        """
        Assign a team; the parent must be Accepted By QA
        """
        service = InvestigationService(db, entity_type)
        result = await service.create_team(data, current_user)
        return envelope(result, "Investigation team created successfully")

    @router.get("")
    async def list_teams(
        db: AsyncIOMotorDatabase = Depends(get_db),
        current_user: dict = Depends(require_roles(RoleName.SYSTEM_ADMIN, RoleName.APPROVER))
    ):
        service = InvestigationService(db, entity_type)
        return envelope(await service.list_teams())

    @router.get("/{team_id}")
    async def get_team(
        team_id: str,
        db: AsyncIOMotorDatabase = Depends(get_db),
        current_user: dict = Depends(require_roles(*ALL_ROLES))
    ):
        """
        Accepts a team id or the id of the team's parent record
        """
        service = InvestigationService(db, entity_type)
        return envelope(await service.get_team(team_id))

    @router.put("/{team_id}")
    async def update_team(
        team_id: str,
        data: TeamUpdate,
        db: AsyncIOMotorDatabase = Depends(get_db),
        current_user: dict = Depends(require_roles(*ALL_ROLES))
    ):
        service = InvestigationService(db, entity_type)
        team = await service.update_team(team_id, data)
        return envelope(team, "Investigation team updated successfully")

    @router.delete("/{team_id}")
    async def delete_team(
        team_id: str,
        db: AsyncIOMotorDatabase = Depends(get_db),
        current_user: dict = Depends(require_roles(*ALL_ROLES))
    ):
        service = InvestigationService(db, entity_type)
        await service.delete_team(team_id)
        return envelope(message="Investigation team deleted successfully")

    return router


# ============================================================================
# DEVIATION TEAMS
# ============================================================================

router = build_team_router(EntityType.DEVIATION, "/investigation-teams", "Investigation Teams")


@router.post("/impact-assessment", status_code=status.HTTP_201_CREATED)
async def record_team_impact(
    data: TeamImpactRecord,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    """
    Investigation Team Assigned -> Team Impact Assessment Done
    """
    service = InvestigationService(db, EntityType.DEVIATION)
    result = await service.record_team_impact(data.parent_id, data.answers, current_user)
    return envelope(result, "Team impact assessment recorded")


@router.post("/root-cause-analysis", status_code=status.HTTP_201_CREATED)
async def record_root_cause(
    data: RootCauseRecord,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    """
    Root cause analysis for a deviation or a CAPA, chosen by `type`
    """
    entity_type = EntityType.CAPA if data.type == "capa" else EntityType.DEVIATION
    service = InvestigationService(db, entity_type)
    result = await service.record_root_cause(data.target_id, data.answers, current_user)
    return envelope(result, "Root cause analysis recorded")


@router.post("/historical-check")
async def record_deviation_historical_check(
    data: DeviationHistoricalCheck,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    service = InvestigationService(db, EntityType.DEVIATION)
    deviation = await service.record_historical_check(
        data.deviation_id, data.similar_deviations, current_user
    )
    return envelope(deviation, "Historical check recorded")


# ============================================================================
# CAPA TEAMS
# ============================================================================

capa_router = build_team_router(EntityType.CAPA, "/capa/investigation-teams", "CAPA Investigation Teams")


@capa_router.post("/root-cause-analysis", status_code=status.HTTP_201_CREATED)
async def record_capa_root_cause(
    data: TeamImpactRecord,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    """
    Investigation Team Assigned -> Team Investigation Done
    """
    service = InvestigationService(db, EntityType.CAPA)
    result = await service.record_root_cause(data.parent_id, data.answers, current_user)
    return envelope(result, "Root cause analysis recorded")


# ============================================================================
# CHANGE CONTROL TEAMS
# ============================================================================

change_control_router = build_team_router(
    EntityType.CHANGE_CONTROL, "/change-control/investigation-teams", "Change Control Investigation Teams"
)


@change_control_router.post("/impact-assessment", status_code=status.HTTP_201_CREATED)
async def record_change_impact(
    data: TeamImpactRecord,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    service = InvestigationService(db, EntityType.CHANGE_CONTROL)
    result = await service.record_team_impact(data.parent_id, data.answers, current_user)
    return envelope(result, "Team impact assessment recorded")


@change_control_router.post("/historical-check")
async def record_change_historical_check(
    data: ChangeHistoricalCheck,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    service = InvestigationService(db, EntityType.CHANGE_CONTROL)
    change_control = await service.record_historical_check(
        data.change_control_id, data.similar_changes, current_user
    )
    return envelope(change_control, "Historical check recorded")
