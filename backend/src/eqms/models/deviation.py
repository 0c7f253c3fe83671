"""
Deviation Models
"""
from pydantic import BaseModel, Field
from typing import List, Optional, Literal
from datetime import datetime
from enum import Enum

from eqms.models.workflow import DeviationItem, DocumentRef, ImpactAnswer


class DeviationPlanning(str, Enum):
    PLANNED = "Planned"
    UNPLANNED = "Unplanned"


class GmpClass(str, Enum):
    GMP = "GMP"
    NON_GMP = "Non-GMP"


class SeverityLevel(str, Enum):
    MINOR = "Minor"
    MAJOR = "Major"
    CRITICAL = "Critical"


class DeviationType(BaseModel):
    """Planned/unplanned x GMP/non-GMP x category"""
    type1: DeviationPlanning
    type2: GmpClass
    category_id: str


class DeviationDescription(BaseModel):
    question1: str = "What occurred?"
    answer1: str
    question2: str = "How was it identified?"
    answer2: str


class DeviationCreate(BaseModel):
    """Sent as the JSON `data` field of the multipart create request"""
    reported_at: datetime
    deviation_type: DeviationType
    department_id: str
    location_id: str
    equipment_id: Optional[str] = None
    item: DeviationItem = Field(..., discriminator="type")
    document: Optional[DocumentRef] = None
    summary: str = Field(..., min_length=1, max_length=500)
    detailed_description: DeviationDescription
    immediate_measures_taken: Optional[str] = None
    immediate_impact_assessment: Optional[str] = None
    impact_assessments: Optional[List[ImpactAnswer]] = None
    risk_assessment: int = Field(..., ge=1, le=10)
    severity_level: SeverityLevel

    class Config:
        json_schema_extra = {
            "example": {
                "reported_at": "2025-03-01T09:30:00Z",
                "deviation_type": {"type1": "Unplanned", "type2": "GMP", "category_id": "..."},
                "department_id": "...",
                "location_id": "...",
                "item": {"type": "product", "product_name": "Paracetamol 500mg", "batch_number": "B2301"},
                "summary": "Temperature excursion in cold room",
                "detailed_description": {"answer1": "...", "answer2": "..."},
                "risk_assessment": 4,
                "severity_level": "Major",
            }
        }


class DeviationImpactCreate(BaseModel):
    deviation_id: str
    answers: List[ImpactAnswer] = Field(..., min_length=1)


class DeviationImpactUpdate(BaseModel):
    answers: List[ImpactAnswer] = Field(..., min_length=1)


class AttachmentType(str, Enum):
    DETAILED_DESCRIPTION = "detailed_description"
    RELATED_RECORDS = "related_records"
    SUPPORTING_DOCUMENTS = "supporting_documents"


class AttachmentOut(BaseModel):
    id: str
    url: str
    type: AttachmentType
    parent_type: Literal["deviation", "capa", "change_control"]
    parent_id: str
