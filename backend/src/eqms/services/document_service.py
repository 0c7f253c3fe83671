"""
Controlled Document Service
Manuals, policies, procedures and work instructions share one lifecycle:
a container with a reference number, versions numbered major.minor, and
reviews on each version.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional
import logging
import uuid

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel
from pymongo import ReturnDocument

from eqms.core.exceptions import InvalidStatusError, ValidationError
from eqms.db.mongo import Collections, NO_ID, get_or_404, strip_id, to_mongo
from eqms.models.document import DocumentType, VersionStatus, VersionType
from eqms.services.numbering import NumberingService
from eqms.services.projections import department_ref, user_ref

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DocumentTypeConfig:
    type: DocumentType
    label: str
    prefix: str
    collection: str
    versions: str
    reviews: str


DOCUMENT_TYPES: Dict[str, DocumentTypeConfig] = {
    DocumentType.MANUAL: DocumentTypeConfig(
        DocumentType.MANUAL, "Manual", "MAN",
        Collections.MANUALS, Collections.MANUAL_VERSIONS, Collections.MANUAL_REVIEWS,
    ),
    DocumentType.POLICY: DocumentTypeConfig(
        DocumentType.POLICY, "Policy", "POL",
        Collections.POLICIES, Collections.POLICY_VERSIONS, Collections.POLICY_REVIEWS,
    ),
    DocumentType.PROCEDURE: DocumentTypeConfig(
        DocumentType.PROCEDURE, "Procedure", "SOP",
        Collections.PROCEDURES, Collections.PROCEDURE_VERSIONS, Collections.PROCEDURE_REVIEWS,
    ),
    DocumentType.WORK_INSTRUCTION: DocumentTypeConfig(
        DocumentType.WORK_INSTRUCTION, "Work instruction", "WI",
        Collections.WORK_INSTRUCTIONS, Collections.WORK_INSTRUCTION_VERSIONS,
        Collections.WORK_INSTRUCTION_REVIEWS,
    ),
}

# Query-string spellings accepted by the documents-by-type listing
TYPE_ALIASES = {
    "manual": DocumentType.MANUAL,
    "policy": DocumentType.POLICY,
    "procedure": DocumentType.PROCEDURE,
    "sop": DocumentType.PROCEDURE,
    "work_instruction": DocumentType.WORK_INSTRUCTION,
    "workinstruction": DocumentType.WORK_INSTRUCTION,
    "work-instruction": DocumentType.WORK_INSTRUCTION,
}

LOCKED_STATUSES = {VersionStatus.APPROVED.value, VersionStatus.ARCHIVED.value}
HEADER_FIELDS = {"name", "department_id", "parent_id"}


def version_key(version_number: Optional[str]) -> tuple:
    """(major, minor) for ordering; malformed numbers sort first"""
    try:
        major, minor = (int(part) for part in str(version_number).split("."))
    except ValueError:
        return (-1, -1)
    return (major, minor)


def next_version_number(previous: Optional[str], version_type: VersionType) -> str:
    """
    1.0 for the first version; minor bumps x.y -> x.(y+1),
    major bumps x.y -> (x+1).0
    """
    if not previous:
        return "1.0"
    try:
        major, minor = (int(part) for part in str(previous).split("."))
    except ValueError:
        raise ValidationError(f"Malformed version number: {previous}")

    if VersionType(version_type) == VersionType.MAJOR:
        return f"{major + 1}.0"
    return f"{major}.{minor + 1}"


def resolve_type(value: str) -> DocumentTypeConfig:
    doc_type = TYPE_ALIASES.get((value or "").strip().lower())
    if doc_type is None:
        raise ValidationError("Invalid document type provided")
    return DOCUMENT_TYPES[doc_type]


class DocumentService:
    """Lifecycle of one document type"""

    def __init__(self, db: AsyncIOMotorDatabase, doc_type: DocumentType):
        self.db = db
        self.config = DOCUMENT_TYPES[DocumentType(doc_type)]
        self.documents = db[self.config.collection]
        self.versions = db[self.config.versions]
        self.reviews = db[self.config.reviews]
        self.numbering = NumberingService(db)

    def _content(self, data: BaseModel) -> dict:
        return {k: v for k, v in to_mongo(data).items() if k not in HEADER_FIELDS}

    async def _latest_version(self, parent_id: str) -> Optional[dict]:
        """Highest version number of the parent"""
        versions = await self.versions.find(
            {"parent_id": parent_id}, NO_ID
        ).to_list(length=None)
        if not versions:
            return None
        return max(versions, key=lambda v: version_key(v.get("version_number")))

    async def _new_version(self, parent_id: str, data: BaseModel, user: dict) -> dict:
        content = self._content(data)
        previous = await self._latest_version(parent_id)
        now = datetime.now(timezone.utc)
        version = {
            "id": str(uuid.uuid4()),
            "parent_id": parent_id,
            "document_type": self.config.type.value,
            **content,
            "prepared_by": content.get("prepared_by") or user["id"],
            "approved_by": None,
            "version_number": next_version_number(
                previous["version_number"] if previous else None, content["version_type"]
            ),
            "status": VersionStatus.UNDER_REVIEW.value,
            "created_by": user["id"],
            "created_at": now,
            "updated_at": now,
        }
        await self.versions.insert_one(version)
        return strip_id(version)

    # ========================================================================
    # CONTAINERS
    # ========================================================================

    async def create(self, data: BaseModel, user: dict) -> dict:
        """Create the container and its first version (under review)"""
        department = await get_or_404(self.db, Collections.DEPARTMENTS, data.department_id, "Department")
        dept_code = await self.numbering.department_code(department["id"])
        reference = await self.numbering.document_reference(
            self.config.prefix, self.config.collection, department["id"]
        )

        now = datetime.now(timezone.utc)
        document = {
            "id": str(uuid.uuid4()),
            "document_type": self.config.type.value,
            "name": data.name,
            "department_id": department["id"],
            "dept_code": dept_code,
            "reference_number": reference,
            "created_by": user["id"],
            "created_at": now,
            "updated_at": now,
        }
        await self.documents.insert_one(document)
        strip_id(document)

        try:
            version = await self._new_version(document["id"], data, user)
        except Exception:
            await self.documents.delete_one({"id": document["id"]})
            raise

        logger.info(f"{self.config.label} {reference} created by {user['id']}")
        return {**document, "versions": [version]}

    async def add_version(self, data: BaseModel, user: dict) -> dict:
        await get_or_404(self.db, self.config.collection, data.parent_id, self.config.label)
        version = await self._new_version(data.parent_id, data, user)
        logger.info(f"{self.config.label} {data.parent_id} version {version['version_number']} added")
        return version

    async def list(self, query: Optional[dict] = None) -> List[dict]:
        docs = await self.documents.find(query or {}, NO_ID).sort("created_at", -1).to_list(length=None)
        for doc in docs:
            doc["department"] = await department_ref(self.db, doc.get("department_id"))
        return docs

    async def get_with_versions(self, document_id: str) -> dict:
        document = await get_or_404(self.db, self.config.collection, document_id, self.config.label)
        versions = await self.versions.find(
            {"parent_id": document_id}, NO_ID
        ).sort("created_at", 1).to_list(length=None)
        for version in versions:
            await self._expand_version(version)
        document["department"] = await department_ref(self.db, document.get("department_id"))
        document["versions"] = versions
        return document

    # ========================================================================
    # VERSIONS
    # ========================================================================

    async def _expand_version(self, version: dict) -> dict:
        version["reviews"] = await self.reviews.find(
            {"version_id": version["id"]}, NO_ID
        ).sort("created_at", 1).to_list(length=None)
        version["approver"] = await user_ref(self.db, version.get("approved_by"))
        return version

    async def get_version(self, version_id: str) -> dict:
        version = await get_or_404(self.db, self.config.versions, version_id, f"{self.config.label} version")
        return await self._expand_version(version)

    async def update_version(self, version_id: str, data: BaseModel) -> dict:
        """Edit content; approved and archived versions are frozen"""
        version = await get_or_404(self.db, self.config.versions, version_id, f"{self.config.label} version")
        if version["status"] in LOCKED_STATUSES:
            raise InvalidStatusError(
                f"{self.config.label} version", version["status"],
                message=f"Cannot edit a version that is {version['status']}",
            )

        updates = {
            k: v for k, v in to_mongo(data.model_dump(exclude_unset=True)).items()
            if k not in HEADER_FIELDS and k != "version_type"
        }
        updates["updated_at"] = datetime.now(timezone.utc)
        updated = await self.versions.find_one_and_update(
            {"id": version_id, "status": {"$nin": list(LOCKED_STATUSES)}},
            {"$set": updates},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            raise InvalidStatusError(
                f"{self.config.label} version", None,
                message="Version was approved or archived while the request was processed",
            )
        return strip_id(updated)

    async def review_version(
        self,
        version_id: str,
        comments: str,
        user: dict,
        status: Optional[VersionStatus] = None,
        next_review_date: Optional[datetime] = None,
    ) -> dict:
        """Record a review and optionally move the version's status"""
        version = await get_or_404(self.db, self.config.versions, version_id, f"{self.config.label} version")
        if status is not None and VersionStatus(status) == VersionStatus.APPROVED:
            raise ValidationError("Use the approve endpoint to approve a version")
        if status is not None and version["status"] in LOCKED_STATUSES:
            raise InvalidStatusError(
                f"{self.config.label} version", version["status"],
                message=f"Cannot change the status of a version that is {version['status']}",
            )

        review = {
            "id": str(uuid.uuid4()),
            "version_id": version_id,
            "reviewed_by": user["id"],
            "comments": comments,
            "created_at": datetime.now(timezone.utc),
        }
        await self.reviews.insert_one(review)
        strip_id(review)

        updates = {"updated_at": datetime.now(timezone.utc)}
        if status is not None:
            updates["status"] = VersionStatus(status).value
        if next_review_date is not None:
            updates["next_review_date"] = next_review_date
        await self.versions.update_one({"id": version_id}, {"$set": updates})

        return {"review": review, "version": await self.get_version(version_id)}

    async def approve_version(self, version_id: str, user: dict) -> dict:
        """
        Approve a version; the most recent other approved version of the
        same document is archived so at most one stays approved
        """
        version = await get_or_404(self.db, self.config.versions, version_id, f"{self.config.label} version")
        if version["status"] == VersionStatus.ARCHIVED.value:
            raise InvalidStatusError(
                f"{self.config.label} version", version["status"],
                message="Cannot approve an archived version",
            )

        previous = await self.versions.find(
            {
                "parent_id": version["parent_id"],
                "status": VersionStatus.APPROVED.value,
                "id": {"$ne": version_id},
            },
            NO_ID,
        ).sort("created_at", -1).limit(1).to_list(length=1)

        now = datetime.now(timezone.utc)
        await self.versions.update_one(
            {"id": version_id},
            {"$set": {"status": VersionStatus.APPROVED.value, "approved_by": user["id"],
                      "approved_at": now, "updated_at": now}},
        )
        if previous:
            await self.versions.update_one(
                {"id": previous[0]["id"]},
                {"$set": {"status": VersionStatus.ARCHIVED.value, "archived_at": now, "updated_at": now}},
            )
            logger.info(f"{self.config.label} version {previous[0]['id']} archived")

        logger.info(f"{self.config.label} version {version_id} approved by {user['id']}")
        return await self.get_version(version_id)


async def list_documents_by_type(db: AsyncIOMotorDatabase, document_type: str, query: dict) -> List[dict]:
    """Slim listing across a type: name, reference number, department"""
    config = resolve_type(document_type)
    docs = await db[config.collection].find(
        query, {"_id": 0, "id": 1, "name": 1, "reference_number": 1, "dept_code": 1, "department_id": 1}
    ).sort("created_at", -1).to_list(length=None)
    for doc in docs:
        doc["department"] = await department_ref(db, doc.get("department_id"))
    return docs
