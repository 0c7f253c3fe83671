"""
CAPA Models - Corrective And Preventive Action
"""
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class CapaCreate(BaseModel):
    """Sent as the JSON `data` field of the multipart create request"""
    deviation_id: str
    department_id: str
    initiation_date: datetime
    target_closure_date: datetime
    reason_for_capa: str = Field(..., min_length=1)
    immediate_correction_taken: Optional[str] = None
    investigation_and_root_cause: Optional[str] = None
    corrective_actions: Optional[str] = None
    preventive_actions: Optional[str] = None
    related_records: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "deviation_id": "...",
                "department_id": "...",
                "initiation_date": "2025-03-05T00:00:00Z",
                "target_closure_date": "2025-04-05T00:00:00Z",
                "reason_for_capa": "Recurring cold room excursions",
            }
        }


class ImmediateActionPlan(BaseModel):
    """Plan recorded when a CAPA proceeds with immediate actions"""
    plan: str = Field(..., min_length=1)
    due_date: Optional[datetime] = None
