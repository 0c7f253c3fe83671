"""
Attachment API
Single-file uploads onto an existing deviation
"""
from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from motor.motor_asyncio import AsyncIOMotorDatabase

from eqms.api.v1.deps import get_current_user
from eqms.core.responses import envelope
from eqms.db.mongo import get_db
from eqms.models.deviation import AttachmentType
from eqms.services.deviation_service import DeviationService


router = APIRouter(prefix="/attachments", tags=["Attachments"])


@router.post("/{deviation_id}", status_code=status.HTTP_201_CREATED)
async def upload_attachment(
    deviation_id: str,
    attachment: UploadFile = File(...),
    type: AttachmentType = Form(AttachmentType.RELATED_RECORDS),
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    service = DeviationService(db)
    doc = await service.add_attachment(deviation_id, attachment, type, current_user)
    return envelope(doc, "Attachment uploaded successfully")


@router.delete("/{attachment_id}")
async def delete_attachment(
    attachment_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    service = DeviationService(db)
    await service.delete_attachment(attachment_id)
    return envelope(message="Attachment deleted successfully")
