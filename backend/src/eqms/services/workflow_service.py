"""
Workflow Service - persists status transitions

Every transition is a single conditional update matched on the entity's
current status, so two concurrent requests can never both apply.
"""
from datetime import datetime, timezone
from typing import Optional
import logging

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from eqms.core.exceptions import InvalidStatusError, NotFoundError
from eqms.db.mongo import Collections, NO_ID, strip_id, transaction
from eqms.models.workflow import EntityType, ReviewDecision, WorkflowAction
from eqms.services.workflow_engine import SCOPE_TEAM, Transition, WorkflowEngine

logger = logging.getLogger(__name__)

ENTITY_COLLECTIONS = {
    EntityType.DEVIATION: Collections.DEVIATIONS,
    EntityType.CAPA: Collections.CAPAS,
    EntityType.CHANGE_CONTROL: Collections.CHANGE_CONTROLS,
}

TEAM_COLLECTIONS = {
    EntityType.DEVIATION: Collections.DEVIATION_TEAMS,
    EntityType.CAPA: Collections.CAPA_TEAMS,
    EntityType.CHANGE_CONTROL: Collections.CHANGE_CONTROL_TEAMS,
}

IMPACT_COLLECTIONS = {
    EntityType.DEVIATION: Collections.DEVIATION_IMPACTS,
    EntityType.CAPA: Collections.CAPA_IMPACTS,
    EntityType.CHANGE_CONTROL: Collections.CHANGE_IMPACTS,
}


def history_entry(
    from_status: Optional[str],
    to_status: str,
    action: str,
    user_id: str,
    comments: Optional[str] = None,
) -> dict:
    return {
        "from_status": from_status,
        "to_status": to_status,
        "action": action,
        "changed_by": user_id,
        "changed_at": datetime.now(timezone.utc),
        "comments": comments,
    }


class WorkflowService:
    """Load, guard and apply transitions for one entity type"""

    def __init__(self, db: AsyncIOMotorDatabase, entity_type: EntityType):
        self.db = db
        self.entity_type = EntityType(entity_type)
        self.engine = WorkflowEngine(self.entity_type)
        self.collection = self.db[ENTITY_COLLECTIONS[self.entity_type]]
        self.teams = self.db[TEAM_COLLECTIONS[self.entity_type]]

    async def get_entity(self, entity_id: str) -> dict:
        entity = await self.collection.find_one({"id": entity_id}, NO_ID)
        if not entity:
            raise NotFoundError(self.engine.label, entity_id)
        return entity

    async def get_team(self, entity: dict) -> Optional[dict]:
        """Team linked to the entity, falling back to a lookup by parent id"""
        team = None
        if entity.get("investigation_team"):
            team = await self.teams.find_one({"id": entity["investigation_team"]}, NO_ID)
        if team is None:
            team = await self.teams.find_one({"parent_id": entity["id"]}, NO_ID)
        return team

    async def prepare(self, entity_id: str, action: WorkflowAction, user: dict) -> tuple[dict, Transition]:
        """
        Load the entity and check status, role, department and team membership
        Returns: (entity, transition)
        """
        entity = await self.get_entity(entity_id)
        transition = self.engine.resolve(entity, action)

        team = None
        if transition.scope == SCOPE_TEAM:
            team = await self.get_team(entity)
            if team is None:
                raise NotFoundError("Investigation team")

        self.engine.authorize(transition, entity, user, team)
        return entity, transition

    async def commit(
        self,
        entity: dict,
        action: WorkflowAction,
        transition: Transition,
        user: dict,
        extra: Optional[dict] = None,
        comments: Optional[str] = None,
        session=None,
    ) -> dict:
        """
        Apply the transition only if the entity is still in the status it was
        loaded with. Raises InvalidStatusError when another request got there first.
        """
        action = WorkflowAction(action)
        from_status = entity["status"]
        to_status = transition.next_status.value
        now = datetime.now(timezone.utc)

        updated = await self.collection.find_one_and_update(
            {"id": entity["id"], "status": from_status},
            {
                "$set": {**(extra or {}), "status": to_status, "updated_at": now},
                "$push": {
                    "status_history": history_entry(
                        from_status, to_status, action.value, user["id"], comments
                    )
                },
            },
            return_document=ReturnDocument.AFTER,
            session=session,
        )
        if updated is None:
            logger.warning(
                "Concurrent %s transition lost: id=%s expected=%s action=%s",
                self.entity_type.value, entity["id"], from_status, action.value,
            )
            raise InvalidStatusError(
                self.engine.label,
                from_status,
                message=f"{self.engine.label} status changed while the request was processed",
            )

        logger.info(
            "%s %s: %s -> %s by %s",
            self.entity_type.value, entity["id"], from_status, to_status, user["id"],
        )
        return strip_id(updated)

    async def revert(self, entity: dict, updated: dict, extra: Optional[dict] = None) -> None:
        """
        Undo a committed transition when a follow-up write fails outside a
        transaction. entity is the record as loaded before commit.
        """
        restore = {key: entity.get(key) for key in (extra or {})}
        result = await self.collection.update_one(
            {"id": entity["id"], "status": updated["status"]},
            {
                "$set": {**restore, "status": entity["status"], "updated_at": entity.get("updated_at")},
                "$pop": {"status_history": 1},
            },
        )
        if result.modified_count:
            logger.warning(
                "%s %s reverted: %s -> %s",
                self.entity_type.value, entity["id"], updated["status"], entity["status"],
            )

    async def transition(
        self,
        entity_id: str,
        action: WorkflowAction,
        user: dict,
        extra: Optional[dict] = None,
        comments: Optional[str] = None,
    ) -> dict:
        """Guard and apply a transition with no side-effect record"""
        entity, transition = await self.prepare(entity_id, action, user)
        return await self.commit(entity, action, transition, user, extra, comments)

    # ========================================================================
    # REVIEW STAGES (same for every entity type)
    # ========================================================================

    async def submit(self, entity_id: str, user: dict, comments: Optional[str] = None) -> dict:
        now = datetime.now(timezone.utc)
        return await self.transition(
            entity_id, WorkflowAction.SUBMIT, user,
            extra={"submitted_by": user["id"], "submitted_at": now},
            comments=comments,
        )

    async def department_review(
        self, entity_id: str, decision: ReviewDecision, user: dict, comments: Optional[str] = None
    ) -> dict:
        """Approved moves forward, Rejected sends the record back to Draft"""
        action = (
            WorkflowAction.APPROVE_DEPARTMENT
            if ReviewDecision(decision) == ReviewDecision.APPROVED
            else WorkflowAction.REJECT_DEPARTMENT
        )
        extra = {"reviewed_by": user["id"], "reviewed_at": datetime.now(timezone.utc)}
        if comments is not None:
            extra["review_comments"] = comments
        return await self.transition(entity_id, action, user, extra=extra, comments=comments)

    async def qa_review(
        self, entity_id: str, decision: ReviewDecision, user: dict, comments: Optional[str] = None
    ) -> dict:
        action = (
            WorkflowAction.ACCEPT_QA
            if ReviewDecision(decision) == ReviewDecision.APPROVED
            else WorkflowAction.REJECT_QA
        )
        extra = {"qa_reviewer": user["id"], "qa_reviewed_at": datetime.now(timezone.utc)}
        if comments is not None:
            extra["qa_comments"] = comments
        return await self.transition(entity_id, action, user, extra=extra, comments=comments)

    async def close(self, entity_id: str, user: dict, comments: Optional[str] = None) -> dict:
        return await self.transition(
            entity_id, WorkflowAction.CLOSE, user,
            extra={"closed_by": user["id"], "closed_at": datetime.now(timezone.utc)},
            comments=comments,
        )

    async def commit_with_record(
        self,
        entity: dict,
        action: WorkflowAction,
        transition: Transition,
        user: dict,
        record_collection: str,
        record: dict,
        extra: Optional[dict] = None,
        comments: Optional[str] = None,
    ) -> dict:
        """
        Insert a side-effect record (team, impact, ...) and apply the transition
        together. With transactions disabled the record is removed again when
        the transition loses a race.
        """
        async with transaction(self.db) as session:
            await self.db[record_collection].insert_one(record, session=session)
            strip_id(record)
            try:
                return await self.commit(
                    entity, action, transition, user, extra, comments, session=session
                )
            except InvalidStatusError:
                if session is None:
                    await self.db[record_collection].delete_one({"id": record["id"]})
                raise


class RecordWriter:
    """
    Inserts the records of one creation. Inside a transaction the session
    undoes them on failure; without one, rollback() deletes them by hand.
    """

    def __init__(self, db: AsyncIOMotorDatabase, session=None):
        self.db = db
        self.session = session
        self._inserted: list[tuple[str, str]] = []

    async def insert(self, collection: str, doc: dict) -> dict:
        await self.db[collection].insert_one(doc, session=self.session)
        strip_id(doc)
        self._inserted.append((collection, doc["id"]))
        return doc

    async def rollback(self) -> None:
        if self.session is not None:
            return
        for collection, record_id in reversed(self._inserted):
            await self.db[collection].delete_one({"id": record_id})
        logger.warning(f"Rolled back {len(self._inserted)} records after a failed write")
        self._inserted.clear()
