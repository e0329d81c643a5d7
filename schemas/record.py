"""Record schemas - listing parameters and results for template records"""

from pydantic import BaseModel, Field
from typing import Any, Optional


class RecordQuery(BaseModel):
    """Schema for querying records of a template"""
    filters: dict[str, Any] = Field(default_factory=dict, description="Column -> value (list = IN)")
    sort: Optional[str] = Field(None, description="Column to order by, '-' prefix for descending")
    page: int = Field(default=1, ge=1)
    page_size: Optional[int] = Field(default=None, ge=1)


class RecordPage(BaseModel):
    """Result of a record query"""
    items: list[dict[str, Any]]
    total: int
    page: int
    page_size: int
