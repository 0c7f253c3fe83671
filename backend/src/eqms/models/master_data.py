"""
Master Data Models
Locations, equipment, categories and impact questions
"""
from pydantic import BaseModel, Field
from typing import Optional
from enum import Enum


class LocationCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    department_id: str


class LocationUpdate(BaseModel):
    """The location code is fixed at creation"""
    name: Optional[str] = Field(None, min_length=1, max_length=150)


class EquipmentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    code: str = Field(..., min_length=1, max_length=50)
    department_id: str


class EquipmentUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=150)
    code: Optional[str] = Field(None, min_length=1, max_length=50)
    department_id: Optional[str] = None


class CategoryCreate(BaseModel):
    """Deviation or change category"""
    name: str = Field(..., min_length=1, max_length=150)


class ResponseType(str, Enum):
    """How an impact question must be answered"""
    YES_NO = "yes_no"
    RATING = "rating"


class QuestionCreate(BaseModel):
    question_text: str = Field(..., min_length=1, max_length=500)
    response_type: ResponseType

    class Config:
        json_schema_extra = {
            "example": {"question_text": "Is product quality affected?", "response_type": "yes_no"}
        }


class QuestionUpdate(BaseModel):
    question_text: Optional[str] = Field(None, min_length=1, max_length=500)
    response_type: Optional[ResponseType] = None
