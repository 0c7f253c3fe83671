"""
Deviation Service
Creation with attachments and initial impact, reads, review workflow
"""
from datetime import datetime, timezone
from typing import List, Optional
import logging
import uuid

from fastapi import UploadFile
from motor.motor_asyncio import AsyncIOMotorDatabase

from eqms.core.exceptions import NotFoundError
from eqms.db.mongo import Collections, NO_ID, get_or_404, to_mongo, transaction
from eqms.models.deviation import AttachmentType, DeviationCreate
from eqms.models.workflow import EntityType, ImpactKind, WorkflowStatus
from eqms.services import storage_service
from eqms.services.document_service import DOCUMENT_TYPES
from eqms.services.impact_validation import validate_answers
from eqms.services.numbering import NumberingService, assign_number
from eqms.services.projections import build_deviation_out
from eqms.services.workflow_service import RecordWriter, WorkflowService, history_entry

logger = logging.getLogger(__name__)

UPLOAD_FOLDER = "eqms/deviations"


def attachment_doc(url: str, attachment_type: AttachmentType, parent_type: str, parent_id: str, user_id: str) -> dict:
    return {
        "id": str(uuid.uuid4()),
        "url": url,
        "type": attachment_type.value,
        "parent_type": parent_type,
        "parent_id": parent_id,
        "uploaded_by": user_id,
        "created_at": datetime.now(timezone.utc),
    }


def impact_doc(parent_id: str, kind: ImpactKind, answers: List[dict], user_id: str, **fields) -> dict:
    now = datetime.now(timezone.utc)
    return {
        "id": str(uuid.uuid4()),
        "parent_id": parent_id,
        "kind": kind.value,
        "answers": answers,
        **fields,
        "created_by": user_id,
        "created_at": now,
        "updated_at": now,
    }


def workflow_fields() -> dict:
    """Review and investigation fields every workflow entity starts with"""
    return {
        "submitted_by": None,
        "submitted_at": None,
        "reviewed_by": None,
        "reviewed_at": None,
        "review_comments": None,
        "qa_reviewer": None,
        "qa_reviewed_at": None,
        "qa_comments": None,
        "investigation_team": None,
        "investigation_assigned_by": None,
        "closed_by": None,
        "closed_at": None,
    }


async def check_document_ref(db: AsyncIOMotorDatabase, document: Optional[dict]) -> None:
    if not document:
        return
    config = DOCUMENT_TYPES[document["document_type"]]
    await get_or_404(db, config.collection, document["document_id"], config.label)


class DeviationService:
    """Deviation business logic"""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.numbering = NumberingService(db)
        self.workflow = WorkflowService(db, EntityType.DEVIATION)

    async def _check_references(self, data: DeviationCreate) -> None:
        await get_or_404(self.db, Collections.DEPARTMENTS, data.department_id, "Department")
        await get_or_404(self.db, Collections.LOCATIONS, data.location_id, "Location")
        await get_or_404(
            self.db, Collections.DEVIATION_CATEGORIES, data.deviation_type.category_id, "Deviation category"
        )
        if data.equipment_id:
            await get_or_404(self.db, Collections.EQUIPMENTS, data.equipment_id, "Equipment")
        await check_document_ref(self.db, data.document.model_dump() if data.document else None)

    async def create(
        self,
        data: DeviationCreate,
        user: dict,
        description_files: Optional[List[UploadFile]] = None,
        related_files: Optional[List[UploadFile]] = None,
    ) -> dict:
        """
        Create a deviation in Draft
        Files are stored first; the deviation, its attachments and its initial
        impact assessment are then written together.
        """
        await self._check_references(data)
        answers = None
        if data.impact_assessments:
            answers = await validate_answers(self.db, data.impact_assessments)

        description_urls = await storage_service.upload_files(description_files, f"{UPLOAD_FOLDER}/detailed")
        related_urls = await storage_service.upload_files(related_files, f"{UPLOAD_FOLDER}/related")

        now = datetime.now(timezone.utc)
        deviation_id = str(uuid.uuid4())
        payload = to_mongo(data)
        payload.pop("impact_assessments", None)

        try:
            async with transaction(self.db) as session:
                writer = RecordWriter(self.db, session)
                try:
                    description_ids = []
                    for url in description_urls:
                        doc = attachment_doc(url, AttachmentType.DETAILED_DESCRIPTION, "deviation", deviation_id, user["id"])
                        await writer.insert(Collections.ATTACHMENTS, doc)
                        description_ids.append(doc["id"])

                    related_ids = []
                    for url in related_urls:
                        doc = attachment_doc(url, AttachmentType.RELATED_RECORDS, "deviation", deviation_id, user["id"])
                        await writer.insert(Collections.ATTACHMENTS, doc)
                        related_ids.append(doc["id"])

                    impact_id = None
                    if answers:
                        impact = impact_doc(deviation_id, ImpactKind.INITIAL, answers, user["id"])
                        await writer.insert(Collections.DEVIATION_IMPACTS, impact)
                        impact_id = impact["id"]

                    deviation = {
                        "id": deviation_id,
                        **payload,
                        "detailed_description": {**payload["detailed_description"], "attachments": description_ids},
                        "related_records": {"attachments": related_ids},
                        "impact_assessment": impact_id,
                        "status": WorkflowStatus.DRAFT.value,
                        **workflow_fields(),
                        "team_impact_assessment": None,
                        "root_cause_analysis": None,
                        "similar_deviations": [],
                        "historical_checked_by": None,
                        "created_by": user["id"],
                        "created_at": now,
                        "updated_at": now,
                        "status_history": [
                            history_entry(None, WorkflowStatus.DRAFT.value, "create", user["id"])
                        ],
                    }
                    await assign_number(
                        deviation, "deviation_number",
                        lambda: self.numbering.deviation_number(data.department_id, session=session),
                    )
                    await writer.insert(Collections.DEVIATIONS, deviation)
                except Exception:
                    await writer.rollback()
                    raise
        except Exception:
            for url in description_urls + related_urls:
                storage_service.delete_stored_file(url)
            raise

        logger.info(f"Deviation {deviation['deviation_number']} created by {user['id']}")
        return await build_deviation_out(self.db, deviation)

    # ========================================================================
    # READS
    # ========================================================================

    async def list(self, query: Optional[dict] = None) -> List[dict]:
        deviations = await self.db[Collections.DEVIATIONS].find(
            query or {}, NO_ID
        ).sort("created_at", -1).to_list(length=None)
        return [await build_deviation_out(self.db, d) for d in deviations]

    async def summary(self, query: Optional[dict] = None) -> List[dict]:
        return await self.db[Collections.DEVIATIONS].find(
            query or {}, {"_id": 0, "id": 1, "deviation_number": 1, "summary": 1, "status": 1}
        ).sort("created_at", -1).to_list(length=None)

    async def get(self, deviation_id: str) -> dict:
        deviation = await self.workflow.get_entity(deviation_id)
        return await build_deviation_out(self.db, deviation)

    # ========================================================================
    # ATTACHMENTS
    # ========================================================================

    async def add_attachment(
        self, deviation_id: str, file: UploadFile, attachment_type: AttachmentType, user: dict
    ) -> dict:
        """Upload one more file onto an existing deviation"""
        await self.workflow.get_entity(deviation_id)
        urls = await storage_service.upload_files([file], f"{UPLOAD_FOLDER}/{attachment_type.value}")
        doc = attachment_doc(urls[0], attachment_type, "deviation", deviation_id, user["id"])

        field = (
            "related_records.attachments"
            if attachment_type == AttachmentType.RELATED_RECORDS
            else "detailed_description.attachments"
        )
        writer = None
        try:
            async with transaction(self.db) as session:
                writer = RecordWriter(self.db, session)
                await writer.insert(Collections.ATTACHMENTS, doc)
                await self.db[Collections.DEVIATIONS].update_one(
                    {"id": deviation_id},
                    {"$push": {field: doc["id"]}, "$set": {"updated_at": datetime.now(timezone.utc)}},
                    session=session,
                )
        except Exception:
            if writer is not None:
                await writer.rollback()
            storage_service.delete_stored_file(doc["url"])
            raise
        return doc

    async def delete_attachment(self, attachment_id: str) -> None:
        attachment = await self.db[Collections.ATTACHMENTS].find_one({"id": attachment_id}, NO_ID)
        if not attachment:
            raise NotFoundError("Attachment", attachment_id)

        await self.db[Collections.ATTACHMENTS].delete_one({"id": attachment_id})
        if attachment.get("parent_type") == "deviation":
            await self.db[Collections.DEVIATIONS].update_one(
                {"id": attachment["parent_id"]},
                {"$pull": {
                    "detailed_description.attachments": attachment_id,
                    "related_records.attachments": attachment_id,
                }},
            )
        storage_service.delete_stored_file(attachment["url"])
