"""
CAPA Service - Corrective And Preventive Action
"""
from datetime import datetime, timezone
from typing import List, Optional
import logging
import uuid

from fastapi import UploadFile
from motor.motor_asyncio import AsyncIOMotorDatabase

from eqms.core.exceptions import ValidationError
from eqms.db.mongo import Collections, NO_ID, get_or_404, to_mongo, transaction
from eqms.models.capa import CapaCreate, ImmediateActionPlan
from eqms.models.change_control import LinkChangeControl
from eqms.models.deviation import AttachmentType
from eqms.models.workflow import EntityType, WorkflowAction, WorkflowStatus
from eqms.services import storage_service
from eqms.services.change_control_service import ChangeControlService
from eqms.services.deviation_service import attachment_doc, workflow_fields
from eqms.services.numbering import NumberingService, assign_number
from eqms.services.projections import build_capa_out
from eqms.services.workflow_service import RecordWriter, WorkflowService, history_entry

logger = logging.getLogger(__name__)

UPLOAD_FOLDER = "eqms/capa/supporting"


class CapaService:
    """CAPA business logic"""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.numbering = NumberingService(db)
        self.workflow = WorkflowService(db, EntityType.CAPA)

    async def create(self, data: CapaCreate, user: dict, files: Optional[List[UploadFile]] = None) -> dict:
        """Create a CAPA in Draft for an existing deviation"""
        await get_or_404(self.db, Collections.DEVIATIONS, data.deviation_id, "Deviation")
        await get_or_404(self.db, Collections.DEPARTMENTS, data.department_id, "Department")
        if data.target_closure_date < data.initiation_date:
            raise ValidationError("target_closure_date must not be before initiation_date")

        urls = await storage_service.upload_files(files, UPLOAD_FOLDER)
        capa_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc)

        try:
            async with transaction(self.db) as session:
                writer = RecordWriter(self.db, session)
                try:
                    attachment_ids = []
                    for url in urls:
                        attachment = attachment_doc(
                            url, AttachmentType.SUPPORTING_DOCUMENTS, "capa", capa_id, user["id"]
                        )
                        await writer.insert(Collections.ATTACHMENTS, attachment)
                        attachment_ids.append(attachment["id"])

                    capa = {
                        "id": capa_id,
                        **to_mongo(data),
                        "supporting_documents": {"attachments": attachment_ids},
                        "status": WorkflowStatus.DRAFT.value,
                        **workflow_fields(),
                        "root_cause_analysis": None,
                        "immediate_action_plan": None,
                        "change_control_id": None,
                        "created_by": user["id"],
                        "created_at": now,
                        "updated_at": now,
                        "status_history": [
                            history_entry(None, WorkflowStatus.DRAFT.value, "create", user["id"])
                        ],
                    }
                    await assign_number(
                        capa, "capa_number",
                        lambda: self.numbering.capa_number(data.deviation_id, session=session),
                    )
                    await writer.insert(Collections.CAPAS, capa)
                except Exception:
                    await writer.rollback()
                    raise
        except Exception:
            for url in urls:
                storage_service.delete_stored_file(url)
            raise

        logger.info(f"CAPA {capa['capa_number']} created by {user['id']}")
        return await build_capa_out(self.db, capa)

    # ========================================================================
    # READS
    # ========================================================================

    async def list(self, query: Optional[dict] = None) -> List[dict]:
        capas = await self.db[Collections.CAPAS].find(
            query or {}, NO_ID
        ).sort("created_at", -1).to_list(length=None)
        return [await build_capa_out(self.db, c) for c in capas]

    async def get(self, capa_id: str) -> dict:
        capa = await self.workflow.get_entity(capa_id)
        return await build_capa_out(self.db, capa)

    # ========================================================================
    # AFTER THE TEAM INVESTIGATION
    # ========================================================================

    async def start_immediate_actions(self, capa_id: str, plan: ImmediateActionPlan, user: dict) -> dict:
        return await self.workflow.transition(
            capa_id, WorkflowAction.START_IMMEDIATE_ACTIONS, user,
            extra={"immediate_action_plan": {**to_mongo(plan), "recorded_by": user["id"]}},
        )

    async def initiate_change_control(self, capa_id: str, data: LinkChangeControl, user: dict) -> dict:
        """
        Link an existing change control, or raise a new one numbered after the
        CAPA, and move the CAPA to Change Control Initiated
        """
        capa, transition = await self.workflow.prepare(
            capa_id, WorkflowAction.INITIATE_CHANGE_CONTROL, user
        )
        change_controls = ChangeControlService(self.db)

        if data.change_control_id:
            existing = await get_or_404(
                self.db, Collections.CHANGE_CONTROLS, data.change_control_id, "Change control"
            )
            if existing.get("capa_id") and existing["capa_id"] != capa_id:
                raise ValidationError("Change control is already linked to another CAPA")
            extra = {"change_control_id": existing["id"]}
            async with transaction(self.db) as session:
                updated = await self.workflow.commit(
                    capa, WorkflowAction.INITIATE_CHANGE_CONTROL, transition, user,
                    extra=extra, session=session,
                )
                try:
                    # The existing reference number is kept
                    linked = await self.db[Collections.CHANGE_CONTROLS].update_one(
                        {"id": existing["id"], "capa_id": {"$in": [None, capa_id]}},
                        {"$set": {"capa_id": capa_id, "updated_at": datetime.now(timezone.utc)}},
                        session=session,
                    )
                    if linked.matched_count == 0:
                        raise ValidationError("Change control is already linked to another CAPA")
                except Exception:
                    if session is None:
                        await self.workflow.revert(capa, updated, extra)
                    raise
            return {"capa": updated, "change_control": await change_controls.get(existing["id"])}

        payload = {
            **to_mongo(data.change_control),
            "department_id": capa["department_id"],
            "capa_id": capa_id,
        }
        await change_controls.check_references(payload)
        doc = await change_controls.new_document(payload, user)
        updated = await self.workflow.commit_with_record(
            capa, WorkflowAction.INITIATE_CHANGE_CONTROL, transition, user,
            Collections.CHANGE_CONTROLS, doc,
            extra={"change_control_id": doc["id"]},
        )
        logger.info(f"Change control {doc['change_control_number']} raised from CAPA {capa['capa_number']}")
        return {"capa": updated, "change_control": await change_controls.get(doc["id"])}
