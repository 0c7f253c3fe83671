"""
Controlled Document Models
Manuals, policies, procedures (SOP) and work instructions, with versions and reviews
"""
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from enum import Enum


class DocumentType(str, Enum):
    MANUAL = "manual"
    POLICY = "policy"
    PROCEDURE = "procedure"
    WORK_INSTRUCTION = "work_instruction"


class VersionType(str, Enum):
    MINOR = "minor"
    MAJOR = "major"


class VersionStatus(str, Enum):
    DRAFT = "draft"
    UNDER_REVIEW = "under_review"
    UNDER_APPROVAL = "under_approval"
    APPROVED = "approved"
    ARCHIVED = "archived"


# ============================================================================
# VERSION CONTENT (one set of fields per document type)
# ============================================================================

class VersionMeta(BaseModel):
    version_type: VersionType = VersionType.MINOR
    effective_date: Optional[datetime] = None
    prepared_by: Optional[str] = None
    next_review_date: Optional[datetime] = None


class ManualContent(VersionMeta):
    introduction: Optional[str] = None
    objective: Optional[str] = None
    purpose: Optional[str] = None
    scope: Optional[str] = None
    policy_statement: Optional[str] = None
    organizational_structure: Optional[str] = None


class PolicyContent(VersionMeta):
    objective: Optional[str] = None
    scope: Optional[str] = None
    policies: Optional[str] = None
    abbreviations: Optional[str] = None
    responsibilities: Optional[str] = None


class ProcedureContent(VersionMeta):
    purpose: Optional[str] = None
    scope: Optional[str] = None
    procedures: Optional[str] = None
    abbreviations: Optional[str] = None
    responsibilities: Optional[str] = None


class WorkInstructionContent(VersionMeta):
    purpose: Optional[str] = None
    scope: Optional[str] = None
    instructions: Optional[str] = None
    abbreviations: Optional[str] = None
    responsibilities: Optional[str] = None


# ============================================================================
# REQUESTS
# ============================================================================

class DocumentHeader(BaseModel):
    """Container fields sent alongside the first version's content"""
    name: str = Field(..., min_length=1, max_length=200)
    department_id: str


class ParentRef(BaseModel):
    parent_id: str


class ManualCreate(DocumentHeader, ManualContent):
    pass


class PolicyCreate(DocumentHeader, PolicyContent):
    pass


class ProcedureCreate(DocumentHeader, ProcedureContent):
    pass


class WorkInstructionCreate(DocumentHeader, WorkInstructionContent):
    pass


class ManualVersionCreate(ParentRef, ManualContent):
    pass


class PolicyVersionCreate(ParentRef, PolicyContent):
    pass


class ProcedureVersionCreate(ParentRef, ProcedureContent):
    pass


class WorkInstructionVersionCreate(ParentRef, WorkInstructionContent):
    pass


# Per type: (create, new version, update content)
REQUEST_MODELS = {
    DocumentType.MANUAL: (ManualCreate, ManualVersionCreate, ManualContent),
    DocumentType.POLICY: (PolicyCreate, PolicyVersionCreate, PolicyContent),
    DocumentType.PROCEDURE: (ProcedureCreate, ProcedureVersionCreate, ProcedureContent),
    DocumentType.WORK_INSTRUCTION: (
        WorkInstructionCreate, WorkInstructionVersionCreate, WorkInstructionContent
    ),
}


class VersionReviewRequest(BaseModel):
    version_id: str
    comments: str = Field(..., min_length=1, max_length=2000)
    status: Optional[VersionStatus] = None
    next_review_date: Optional[datetime] = None


class VersionApproveRequest(BaseModel):
    version_id: str
