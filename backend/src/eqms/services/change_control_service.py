"""
Change Control Service
"""
from datetime import datetime, timezone
from typing import List, Optional
import logging
import re
import uuid

from fastapi import UploadFile
from motor.motor_asyncio import AsyncIOMotorDatabase

from eqms.core.exceptions import ValidationError
from eqms.db.mongo import Collections, NO_ID, get_or_404, to_mongo, transaction
from eqms.models.change_control import ChangeControlCreate
from eqms.models.deviation import AttachmentType
from eqms.models.workflow import EntityType, WorkflowAction, WorkflowStatus
from eqms.services import storage_service
from eqms.services.deviation_service import attachment_doc, check_document_ref, workflow_fields
from eqms.services.numbering import NumberingService, assign_number
from eqms.services.projections import build_change_control_out
from eqms.services.workflow_service import RecordWriter, WorkflowService, history_entry

logger = logging.getLogger(__name__)

UPLOAD_FOLDER = "eqms/change-control/detailed"


class ChangeControlService:
    """Change control business logic"""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.numbering = NumberingService(db)
        self.workflow = WorkflowService(db, EntityType.CHANGE_CONTROL)

    async def check_references(self, payload: dict) -> None:
        """payload is a dumped ChangeControlCreate / CapaChangeControlCreate"""
        await get_or_404(self.db, Collections.DEPARTMENTS, payload.get("department_id"), "Department")
        if payload.get("location_id"):
            await get_or_404(self.db, Collections.LOCATIONS, payload["location_id"], "Location")
        await get_or_404(
            self.db, Collections.CHANGE_CATEGORIES, payload["change_type"]["category_id"], "Change category"
        )
        item = payload["item"]
        if item["type"] == "equipment":
            await get_or_404(self.db, Collections.EQUIPMENTS, item["equipment_id"], "Equipment")
        for document in payload.get("documents") or []:
            await check_document_ref(self.db, document)

        similar = list(dict.fromkeys(payload.get("similar_changes") or []))
        if similar:
            found = await self.db[Collections.CHANGE_CONTROLS].count_documents({"id": {"$in": similar}})
            if found != len(similar):
                raise ValidationError("One or more similar changes do not exist")
        if payload.get("capa_id"):
            await get_or_404(self.db, Collections.CAPAS, payload["capa_id"], "CAPA")

    async def new_document(
        self,
        payload: dict,
        user: dict,
        attachment_ids: Optional[List[str]] = None,
        change_control_id: Optional[str] = None,
        session=None,
    ) -> dict:
        """Build a Draft change control with its reference number"""
        now = datetime.now(timezone.utc)
        doc = {
            "id": change_control_id or str(uuid.uuid4()),
            **payload,
            "capa_id": payload.get("capa_id"),
            "similar_changes": payload.get("similar_changes") or [],
            "detailed_description": {
                **payload["detailed_description"],
                "attachments": attachment_ids or [],
            },
            "status": WorkflowStatus.DRAFT.value,
            **workflow_fields(),
            "team_impact_assessment": None,
            "historical_checked_by": None,
            "acknowledged_by": None,
            "acknowledged_at": None,
            "created_by": user["id"],
            "created_at": now,
            "updated_at": now,
            "status_history": [history_entry(None, WorkflowStatus.DRAFT.value, "create", user["id"])],
        }
        await assign_number(
            doc, "change_control_number",
            lambda: self.numbering.change_control_number(
                doc["department_id"], doc["capa_id"], session=session
            ),
        )
        return doc

    async def create(
        self, data: ChangeControlCreate, user: dict, files: Optional[List[UploadFile]] = None
    ) -> dict:
        payload = to_mongo(data)
        await self.check_references(payload)

        urls = await storage_service.upload_files(files, UPLOAD_FOLDER)
        change_control_id = str(uuid.uuid4())
        try:
            async with transaction(self.db) as session:
                writer = RecordWriter(self.db, session)
                try:
                    attachment_ids = []
                    for url in urls:
                        attachment = attachment_doc(
                            url, AttachmentType.DETAILED_DESCRIPTION,
                            "change_control", change_control_id, user["id"],
                        )
                        await writer.insert(Collections.ATTACHMENTS, attachment)
                        attachment_ids.append(attachment["id"])

                    doc = await self.new_document(
                        payload, user, attachment_ids, change_control_id, session=session
                    )
                    await writer.insert(Collections.CHANGE_CONTROLS, doc)
                except Exception:
                    await writer.rollback()
                    raise
        except Exception:
            for url in urls:
                storage_service.delete_stored_file(url)
            raise

        logger.info(f"Change control {doc['change_control_number']} created by {user['id']}")
        return await build_change_control_out(self.db, doc)

    # ========================================================================
    # READS
    # ========================================================================

    async def list(self, query: Optional[dict] = None) -> List[dict]:
        docs = await self.db[Collections.CHANGE_CONTROLS].find(
            query or {}, NO_ID
        ).sort("created_at", -1).to_list(length=None)
        return [await build_change_control_out(self.db, d) for d in docs]

    async def summary(self, query: dict, search: Optional[str] = None) -> List[dict]:
        """Number, title and initiation date, optionally filtered by title"""
        query = dict(query)
        if search and search.strip():
            query["short_title"] = {"$regex": re.escape(search.strip()), "$options": "i"}
        return await self.db[Collections.CHANGE_CONTROLS].find(
            query,
            {"_id": 0, "id": 1, "change_control_number": 1, "short_title": 1, "initiated_at": 1, "status": 1},
        ).sort("created_at", -1).to_list(length=None)

    async def get(self, change_control_id: str) -> dict:
        doc = await self.workflow.get_entity(change_control_id)
        return await build_change_control_out(self.db, doc)

    # ========================================================================
    # WORKFLOW
    # ========================================================================

    async def acknowledge(self, change_control_id: str, user: dict, comments: Optional[str] = None) -> dict:
        return await self.workflow.transition(
            change_control_id, WorkflowAction.ACKNOWLEDGE, user,
            extra={"acknowledged_by": user["id"], "acknowledged_at": datetime.now(timezone.utc)},
            comments=comments,
        )
