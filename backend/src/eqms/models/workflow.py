"""
Workflow Models
Statuses, actions and the pieces shared by Deviation, CAPA and Change Control
"""
from pydantic import BaseModel, Field
from typing import List, Optional, Literal, Union, Any
from datetime import datetime
from enum import Enum


# ============================================================================
# ENUMS
# ============================================================================

class EntityType(str, Enum):
    """Workflow entity kinds"""
    DEVIATION = "deviation"
    CAPA = "capa"
    CHANGE_CONTROL = "change_control"


class WorkflowStatus(str, Enum):
    """Statuses across all three workflows"""
    DRAFT = "Draft"
    UNDER_DEPARTMENT_HEAD_REVIEW = "Under Department Head Review"
    APPROVED_BY_DEPARTMENT_HEAD = "Approved By Department Head"
    ACCEPTED_BY_QA = "Accepted By QA"
    INVESTIGATION_TEAM_ASSIGNED = "Investigation Team Assigned"
    TEAM_IMPACT_ASSESSMENT_DONE = "Team Impact Assessment Done"
    ROOT_CAUSE_ANALYSIS_DONE = "Root Cause Analysis Done"
    HISTORICAL_CHECK_DONE = "Historical Check Done"
    TEAM_INVESTIGATION_DONE = "Team Investigation Done"
    IMMEDIATE_ACTIONS_IN_PROGRESS = "Immediate Actions In Progress"
    CHANGE_CONTROL_INITIATED = "Change Control Initiated"
    ACKNOWLEDGED_BY_APPROVER = "Acknowledged By Approver"
    CLOSED = "Closed"


class WorkflowAction(str, Enum):
    """Actions that move a workflow entity forward (or back to Draft)"""
    SUBMIT = "submit"
    APPROVE_DEPARTMENT = "approve_department"
    REJECT_DEPARTMENT = "reject_department"
    ACCEPT_QA = "accept_qa"
    REJECT_QA = "reject_qa"
    ASSIGN_TEAM = "assign_team"
    RECORD_IMPACT = "record_impact"
    RECORD_ROOT_CAUSE = "record_root_cause"
    RECORD_HISTORICAL_CHECK = "record_historical_check"
    START_IMMEDIATE_ACTIONS = "start_immediate_actions"
    INITIATE_CHANGE_CONTROL = "initiate_change_control"
    ACKNOWLEDGE = "acknowledge"
    CLOSE = "close"


class RoleName(str, Enum):
    """Built-in role names"""
    SYSTEM_ADMIN = "System Admin"
    CREATOR = "Creator"
    REVIEWER = "Reviewer"
    APPROVER = "Approver"


class ReviewDecision(str, Enum):
    """Department head / QA review outcome"""
    APPROVED = "Approved"
    REJECTED = "Rejected"


class ImpactKind(str, Enum):
    """What an impact record was captured for"""
    INITIAL = "initial"
    TEAM_IMPACT = "team_impact"
    ROOT_CAUSE = "root_cause"


# ============================================================================
# SHARED PIECES
# ============================================================================

class StatusChange(BaseModel):
    """One entry in an entity's status history"""
    from_status: Optional[str] = None
    to_status: str
    action: str
    changed_by: str
    changed_at: datetime
    comments: Optional[str] = None


class ProductItem(BaseModel):
    type: Literal["product"]
    product_name: str
    product_code: Optional[str] = None
    batch_number: Optional[str] = None


class MaterialItem(BaseModel):
    type: Literal["material"]
    material_name: str
    material_code: Optional[str] = None
    batch_number: Optional[str] = None


class EquipmentItem(BaseModel):
    type: Literal["equipment"]
    equipment_id: str


DeviationItem = Union[ProductItem, MaterialItem]
ChangeItem = Union[ProductItem, MaterialItem, EquipmentItem]


class DocumentRef(BaseModel):
    """Link to a controlled document"""
    document_id: str
    document_type: Literal["manual", "policy", "procedure", "work_instruction"]


class ReviewRequest(BaseModel):
    """Department head or QA review"""
    action: ReviewDecision
    comments: Optional[str] = Field(None, max_length=2000)


class TransitionComment(BaseModel):
    """Body for transitions that only carry a remark"""
    comments: Optional[str] = Field(None, max_length=2000)


# ============================================================================
# IMPACT ASSESSMENT
# ============================================================================

class ImpactAnswer(BaseModel):
    """One answered question; the answer type depends on the question"""
    question_id: str
    answer: Any
    comment: Optional[str] = None


class ImpactAnswers(BaseModel):
    answers: List[ImpactAnswer] = Field(..., min_length=1)


# ============================================================================
# INVESTIGATION TEAM
# ============================================================================

class TeamMemberRef(BaseModel):
    user_id: str


class TeamCreate(BaseModel):
    """Create an investigation team for one workflow entity"""
    parent_id: str
    members: List[TeamMemberRef] = Field(..., min_length=1)
    remarks: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "parent_id": "0f8b6c1e-...",
                "members": [{"user_id": "9a1c..."}],
                "remarks": "Production and QC leads",
            }
        }


class TeamUpdate(BaseModel):
    """Only the provided fields are changed"""
    members: Optional[List[TeamMemberRef]] = None
    remarks: Optional[str] = None


class TeamImpactRecord(ImpactAnswers):
    """Impact assessment recorded by a team member"""
    parent_id: str


class RootCauseRecord(ImpactAnswers):
    """Root cause analysis recorded by a team member"""
    type: Literal["deviation", "capa"]
    target_id: str


class DeviationHistoricalCheck(BaseModel):
    deviation_id: str
    similar_deviations: List[str] = Field(default_factory=list)


class ChangeHistoricalCheck(BaseModel):
    change_control_id: str
    similar_changes: List[str] = Field(default_factory=list)
