"""
Investigation Service
Investigation teams and the records their members capture: team impact
assessment, root cause analysis and historical check.
"""
from datetime import datetime, timezone
from typing import List, Optional
import logging
import uuid

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from eqms.core.exceptions import InvalidStatusError, NotFoundError, ValidationError
from eqms.db.mongo import Collections, NO_ID, strip_id, transaction
from eqms.models.workflow import (
    EntityType, ImpactAnswer, ImpactKind, TeamCreate, TeamUpdate, WorkflowAction, WorkflowStatus,
)
from eqms.services.deviation_service import impact_doc
from eqms.services.impact_validation import validate_answers
from eqms.services.projections import build_impact_out, build_team_out
from eqms.services.workflow_service import IMPACT_COLLECTIONS, TEAM_COLLECTIONS, WorkflowService

logger = logging.getLogger(__name__)


class InvestigationService:
    """Investigation teams for one workflow entity type"""

    def __init__(self, db: AsyncIOMotorDatabase, entity_type: EntityType):
        self.db = db
        self.entity_type = EntityType(entity_type)
        self.workflow = WorkflowService(db, self.entity_type)
        self.teams = db[TEAM_COLLECTIONS[self.entity_type]]
        self.impact_collection = IMPACT_COLLECTIONS[self.entity_type]

    async def _check_members(self, members) -> List[dict]:
        user_ids = list(dict.fromkeys(m.user_id for m in members))
        found = await self.db[Collections.USERS].count_documents({"id": {"$in": user_ids}})
        if found != len(user_ids):
            raise ValidationError("One or more team members do not exist")
        return [{"user_id": user_id} for user_id in user_ids]

    # ========================================================================
    # TEAM CRUD
    # ========================================================================

    async def create_team(self, data: TeamCreate, user: dict) -> dict:
        """
        Create the team and move the parent to Investigation Team Assigned
        The parent must be Accepted By QA.
        """
        entity = await self.workflow.get_entity(data.parent_id)
        if (
            entity.get("status") == WorkflowStatus.INVESTIGATION_TEAM_ASSIGNED.value
            and await self.workflow.get_team(entity) is None
        ):
            return await self._replace_team(entity, data, user)

        entity, transition = await self.workflow.prepare(data.parent_id, WorkflowAction.ASSIGN_TEAM, user)
        members = await self._check_members(data.members)
        team = self._team_doc(entity, members, data, user)
        parent = await self.workflow.commit_with_record(
            entity, WorkflowAction.ASSIGN_TEAM, transition, user,
            TEAM_COLLECTIONS[self.entity_type], team,
            extra={"investigation_team": team["id"], "investigation_assigned_by": user["id"]},
            comments=data.remarks,
        )
        return {"team": await build_team_out(self.db, team), "parent": parent}

    def _team_doc(self, entity: dict, members: List[dict], data: TeamCreate, user: dict) -> dict:
        now = datetime.now(timezone.utc)
        return {
            "id": str(uuid.uuid4()),
            "entity_type": self.entity_type.value,
            "parent_id": entity["id"],
            "members": members,
            "remarks": data.remarks,
            "created_by": user["id"],
            "created_at": now,
            "updated_at": now,
        }

    async def _replace_team(self, entity: dict, data: TeamCreate, user: dict) -> dict:
        """
        Assign a new team to a parent whose team was deleted; the status stays
        Investigation Team Assigned and the same roles as the first assignment apply
        """
        transition = self.workflow.engine.definition[WorkflowStatus.ACCEPTED_BY_QA][WorkflowAction.ASSIGN_TEAM]
        self.workflow.engine.authorize(transition, entity, user)
        members = await self._check_members(data.members)
        team = self._team_doc(entity, members, data, user)

        async with transaction(self.db) as session:
            await self.teams.insert_one(team, session=session)
            strip_id(team)
            parent = await self.workflow.collection.find_one_and_update(
                {"id": entity["id"], "status": entity["status"], "investigation_team": None},
                {"$set": {
                    "investigation_team": team["id"],
                    "investigation_assigned_by": user["id"],
                    "updated_at": datetime.now(timezone.utc),
                }},
                return_document=ReturnDocument.AFTER,
                session=session,
            )
            if parent is None:
                if session is None:
                    await self.teams.delete_one({"id": team["id"]})
                raise InvalidStatusError(
                    self.workflow.engine.label, entity["status"],
                    message="Another investigation team was assigned while the request was processed",
                )

        logger.info(f"{self.entity_type.value} {entity['id']} reassigned to team {team['id']}")
        return {"team": await build_team_out(self.db, team), "parent": strip_id(parent)}

    async def list_teams(self) -> List[dict]:
        teams = await self.teams.find({}, NO_ID).sort("created_at", -1).to_list(length=None)
        return [await build_team_out(self.db, t) for t in teams]

    async def _find_team(self, team_or_parent_id: str) -> dict:
        team = await self.teams.find_one({"id": team_or_parent_id}, NO_ID)
        if team is None:
            team = await self.teams.find_one({"parent_id": team_or_parent_id}, NO_ID)
        if team is None:
            raise NotFoundError("Investigation team", team_or_parent_id)
        return team

    async def get_team(self, team_or_parent_id: str) -> dict:
        """Look up by team id, falling back to the parent entity id"""
        return await build_team_out(self.db, await self._find_team(team_or_parent_id))

    async def update_team(self, team_id: str, data: TeamUpdate) -> dict:
        """Only the provided members and remarks change"""
        updates = {}
        if data.remarks is not None:
            updates["remarks"] = data.remarks
        if data.members is not None:
            if not data.members:
                raise ValidationError("A team needs at least one member")
            updates["members"] = await self._check_members(data.members)
        updates["updated_at"] = datetime.now(timezone.utc)

        team = await self.teams.find_one_and_update(
            {"id": team_id}, {"$set": updates},
            return_document=ReturnDocument.AFTER,
        )
        if team is None:
            raise NotFoundError("Investigation team", team_id)
        return await build_team_out(self.db, strip_id(team))

    async def delete_team(self, team_id: str) -> None:
        """
        Removes the team; the parent keeps its status and drops the link so a
        new team can be assigned
        """
        team = await self.teams.find_one({"id": team_id}, NO_ID)
        if team is None:
            raise NotFoundError("Investigation team", team_id)
        await self.teams.delete_one({"id": team_id})
        await self.workflow.collection.update_one(
            {"id": team["parent_id"], "investigation_team": team_id},
            {"$set": {"investigation_team": None, "updated_at": datetime.now(timezone.utc)}},
        )
        logger.info(f"{self.entity_type.value} investigation team {team_id} deleted")

    # ========================================================================
    # TEAM ACTIONS
    # ========================================================================

    async def _record_impact(
        self,
        parent_id: str,
        action: WorkflowAction,
        kind: ImpactKind,
        link_field: str,
        answers: List[ImpactAnswer],
        user: dict,
    ) -> dict:
        entity, transition = await self.workflow.prepare(parent_id, action, user)
        validated = await validate_answers(self.db, answers)
        impact = impact_doc(entity["id"], kind, validated, user["id"])

        parent = await self.workflow.commit_with_record(
            entity, action, transition, user, self.impact_collection, impact,
            extra={link_field: impact["id"]},
        )
        return {"impact": await build_impact_out(self.db, impact), "parent": parent}

    async def record_team_impact(self, parent_id: str, answers: List[ImpactAnswer], user: dict) -> dict:
        """Deviation and change control: Investigation Team Assigned -> Team Impact Assessment Done"""
        return await self._record_impact(
            parent_id, WorkflowAction.RECORD_IMPACT, ImpactKind.TEAM_IMPACT,
            "team_impact_assessment", answers, user,
        )

    async def record_root_cause(self, parent_id: str, answers: List[ImpactAnswer], user: dict) -> dict:
        """Deviation: after team impact. CAPA: right after team assignment."""
        return await self._record_impact(
            parent_id, WorkflowAction.RECORD_ROOT_CAUSE, ImpactKind.ROOT_CAUSE,
            "root_cause_analysis", answers, user,
        )

    async def record_historical_check(
        self, parent_id: str, similar_ids: Optional[List[str]], user: dict
    ) -> dict:
        """Store references to similar past records and mark the check done"""
        similar_field = (
            "similar_deviations" if self.entity_type == EntityType.DEVIATION else "similar_changes"
        )
        similar_ids = list(dict.fromkeys(similar_ids or []))
        if parent_id in similar_ids:
            raise ValidationError("A record cannot be similar to itself")

        collection = self.workflow.collection
        if similar_ids:
            found = await collection.count_documents({"id": {"$in": similar_ids}})
            if found != len(similar_ids):
                raise ValidationError(f"One or more {similar_field.replace('_', ' ')} do not exist")

        return await self.workflow.transition(
            parent_id, WorkflowAction.RECORD_HISTORICAL_CHECK, user,
            extra={similar_field: similar_ids, "historical_checked_by": user["id"]},
        )
