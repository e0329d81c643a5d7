"""Entity Template schemas"""

from pydantic import BaseModel, Field, field_validator
from uuid import UUID
from datetime import datetime
from typing import Optional, Literal

NAME_PATTERN = r'^[a-z][a-z0-9_]*$'


class TemplateCreate(BaseModel):
    """Schema for creating an entity template"""
    name: str = Field(..., max_length=64, pattern=NAME_PATTERN)
    label: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    settings: dict = Field(default_factory=dict)


class TemplateUpdate(BaseModel):
    """Schema for updating an entity template (name and scope are fixed)"""
    label: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    settings: Optional[dict] = None
    status: Optional[Literal["active", "disabled"]] = None

    @field_validator("label", "settings", "status", mode="before")
    @classmethod
    def reject_null(cls, v):
        if v is None:
            raise ValueError("This value cannot be null")
        return v

    model_config = {"extra": "forbid"}


class TemplateRead(BaseModel):
    """Schema for reading an entity template"""
    id: UUID
    tenant_id: str
    project_id: str
    name: str
    label: str
    description: Optional[str]
    settings: dict
    status: str
    table_name: str
    migration_status: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class TemplateMigrationRead(BaseModel):
    """Schema for reading one applied schema migration"""
    id: UUID
    template_id: UUID
    migration_type: str
    description: Optional[str]
    statements: str
    version: int
    applied_at: datetime

    model_config = {"from_attributes": True}
