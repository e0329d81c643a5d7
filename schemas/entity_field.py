"""Entity Field schemas"""

from pydantic import BaseModel, Field, field_validator
from uuid import UUID
from datetime import datetime
from typing import Optional, Literal

from schemas.entity_template import NAME_PATTERN

# Keys of a field that can never change after creation
IMMUTABLE_FIELD_KEYS = ("name", "type", "cardinality", "template_id")


class FieldCreate(BaseModel):
    """Schema for adding a field to a template"""
    name: str = Field(..., max_length=64, pattern=NAME_PATTERN)
    label: str = Field(..., min_length=1, max_length=200)
    type: str = Field(..., max_length=50)
    description: Optional[str] = None
    required: bool = False
    cardinality: Optional[Literal["single", "multi"]] = None
    weight: Optional[int] = None
    settings: dict = Field(default_factory=dict)


class FieldUpdate(BaseModel):
    """Schema for updating a field (structure is immutable)"""
    label: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    required: Optional[bool] = None
    weight: Optional[int] = None
    settings: Optional[dict] = None

    @field_validator("label", "required", "weight", mode="before")
    @classmethod
    def reject_null(cls, v):
        if v is None:
            raise ValueError("This value cannot be null")
        return v

    model_config = {"extra": "forbid"}


class FieldRead(BaseModel):
    """Schema for reading a field"""
    id: UUID
    template_id: UUID
    name: str
    label: str
    description: Optional[str]
    type: str
    required: bool
    cardinality: str
    weight: int
    settings: dict
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
