"""
Controlled Document API Endpoints
Manuals, policies, procedures and work instructions share one set of routes.
"""
from fastapi import APIRouter, Depends, Query, status
from motor.motor_asyncio import AsyncIOMotorDatabase

from eqms.api.v1.deps import ALL_ROLES, department_filter, require_roles
from eqms.core.responses import envelope
from eqms.db.mongo import get_db
from eqms.models.document import (
    REQUEST_MODELS, DocumentType, VersionApproveRequest, VersionReviewRequest,
)
from eqms.models.workflow import RoleName
from eqms.services.document_service import DocumentService, list_documents_by_type


def build_document_router(doc_type: DocumentType, prefix: str, tag: str) -> APIRouter:
    router = APIRouter(prefix=prefix, tags=[tag])
    create_model, version_model, content_model = REQUEST_MODELS[doc_type]

    @router.post("/new", status_code=status.HTTP_201_CREATED)
    async def create_document(
        data: create_model,
        db: AsyncIOMotorDatabase = Depends(get_db),
        current_user: dict = Depends(require_roles(*ALL_ROLES))
    ):
        """
        Create the document and its first version (under review)
        """
        service = DocumentService(db, doc_type)
        document = await service.create(data, current_user)
        return envelope(document, f"{service.config.label} created successfully")

    @router.post("/version", status_code=status.HTTP_201_CREATED)
    async def add_version(
        data: version_model,
        db: AsyncIOMotorDatabase = Depends(get_db),
        current_user: dict = Depends(require_roles(*ALL_ROLES))
    ):
        service = DocumentService(db, doc_type)
        version = await service.add_version(data, current_user)
        return envelope(version, f"{service.config.label} version {version['version_number']} added")

    @router.get("")
    async def list_documents(
        db: AsyncIOMotorDatabase = Depends(get_db),
        current_user: dict = Depends(require_roles(*ALL_ROLES))
    ):
        service = DocumentService(db, doc_type)
        return envelope(await service.list())

    @router.get("/department/{department_id}")
    async def list_department_documents(
        department_id: str,
        db: AsyncIOMotorDatabase = Depends(get_db),
        current_user: dict = Depends(require_roles(*ALL_ROLES))
    ):
        service = DocumentService(db, doc_type)
        return envelope(await service.list({"department_id": department_id}))

    @router.get("/version/{version_id}")
    async def get_version(
        version_id: str,
        db: AsyncIOMotorDatabase = Depends(get_db),
        current_user: dict = Depends(require_roles(*ALL_ROLES))
    ):
        service = DocumentService(db, doc_type)
        return envelope(await service.get_version(version_id))

    @router.put("/version/{version_id}")
    async def update_version(
        version_id: str,
        data: content_model,
        db: AsyncIOMotorDatabase = Depends(get_db),
        current_user: dict = Depends(require_roles(*ALL_ROLES))
    ):
        """
        Edit a version's content; approved and archived versions are refused
        """
        service = DocumentService(db, doc_type)
        version = await service.update_version(version_id, data)
        return envelope(version, f"{service.config.label} version updated successfully")

    @router.post("/version/review", status_code=status.HTTP_201_CREATED)
    async def review_version(
        data: VersionReviewRequest,
        db: AsyncIOMotorDatabase = Depends(get_db),
        current_user: dict = Depends(
            require_roles(RoleName.REVIEWER, RoleName.APPROVER, RoleName.SYSTEM_ADMIN)
        )
    ):
        service = DocumentService(db, doc_type)
        result = await service.review_version(
            data.version_id, data.comments, current_user, data.status, data.next_review_date
        )
        return envelope(result, "Review recorded")

    @router.post("/version/approve")
    async def approve_version(
        data: VersionApproveRequest,
        db: AsyncIOMotorDatabase = Depends(get_db),
        current_user: dict = Depends(require_roles(RoleName.APPROVER, RoleName.SYSTEM_ADMIN))
    ):
        """
        Approve a version; the previously approved version is archived
        """
        service = DocumentService(db, doc_type)
        version = await service.approve_version(data.version_id, current_user)
        return envelope(version, f"{service.config.label} version approved")

    @router.get("/{document_id}")
    async def get_document(
        document_id: str,
        db: AsyncIOMotorDatabase = Depends(get_db),
        current_user: dict = Depends(require_roles(*ALL_ROLES))
    ):
        """
        The document with all its versions and their reviews
        """
        service = DocumentService(db, doc_type)
        return envelope(await service.get_with_versions(document_id))

    return router


manual_router = build_document_router(DocumentType.MANUAL, "/manuals", "Manuals")
policy_router = build_document_router(DocumentType.POLICY, "/policies", "Policies")
procedure_router = build_document_router(DocumentType.PROCEDURE, "/procedures", "Procedures")
work_instruction_router = build_document_router(
    DocumentType.WORK_INSTRUCTION, "/work-instructions", "Work Instructions"
)

router = APIRouter(prefix="/documents", tags=["Documents"])


@router.get("")
async def documents_by_type(
    document_type: str = Query(..., description="manual, policy, procedure or work_instruction"),
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(require_roles(*ALL_ROLES))
):
    """
    Containers of one type; Creators outside QA see their own department only
    """
    documents = await list_documents_by_type(db, document_type, department_filter(current_user))
    return envelope(documents)
