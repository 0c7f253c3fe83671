"""
Change Control Models
"""
from pydantic import BaseModel, Field, model_validator
from typing import List, Optional
from datetime import datetime
from enum import Enum

from eqms.models.workflow import ChangeItem, DocumentRef


class ChangeMagnitude(str, Enum):
    MAJOR = "Major"
    MINOR = "Minor"
    ADMINISTRATIVE = "Administrative"


class ChangeDuration(str, Enum):
    PERMANENT = "Permanent"
    TEMPORARY = "Temporary"


class ChangeType(BaseModel):
    """Major/minor/administrative x permanent/temporary x category"""
    type1: ChangeMagnitude
    type2: ChangeDuration
    category_id: str


class ChangeDescription(BaseModel):
    question1: str = "What change is proposed?"
    answer1: str
    question2: str = "Why it is required?"
    answer2: str


class ImplementationTimeline(BaseModel):
    start_date: datetime
    end_date: datetime

    @model_validator(mode="after")
    def check_order(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class ChangeControlCreate(BaseModel):
    """Sent as the JSON `data` field of the multipart create request"""
    initiated_at: datetime
    short_title: str = Field(..., min_length=1, max_length=200)
    justification: str
    change_type: ChangeType
    department_id: str
    location_id: Optional[str] = None
    item: ChangeItem = Field(..., discriminator="type")
    documents: List[DocumentRef] = Field(default_factory=list)
    similar_changes: List[str] = Field(default_factory=list)
    current_situation: Optional[str] = None
    detailed_description: ChangeDescription
    immediate_impact_assessment: Optional[str] = None
    risk_assessment: int = Field(..., ge=1, le=10)
    implementation_timeline: ImplementationTimeline
    capa_id: Optional[str] = None


class CapaChangeControlCreate(BaseModel):
    """Change control raised from a CAPA; department and CAPA come from the CAPA"""
    initiated_at: datetime
    short_title: str = Field(..., min_length=1, max_length=200)
    justification: str
    change_type: ChangeType
    location_id: Optional[str] = None
    item: ChangeItem = Field(..., discriminator="type")
    documents: List[DocumentRef] = Field(default_factory=list)
    current_situation: Optional[str] = None
    detailed_description: ChangeDescription
    risk_assessment: int = Field(..., ge=1, le=10)
    implementation_timeline: ImplementationTimeline


class LinkChangeControl(BaseModel):
    """Either link an existing change control or describe a new one"""
    change_control_id: Optional[str] = None
    change_control: Optional[CapaChangeControlCreate] = None

    @model_validator(mode="after")
    def one_of(self):
        if bool(self.change_control_id) == bool(self.change_control):
            raise ValueError("Provide exactly one of change_control_id or change_control")
        return self
