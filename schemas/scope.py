"""Scope schema - the (tenant, project) pair isolating all entity data"""

from pydantic import BaseModel, Field


class Scope(BaseModel):
    """Immutable tenant/project pair; hashable so it can key caches"""
    tenant_id: str = Field(..., min_length=1, max_length=64)
    project_id: str = Field(..., min_length=1, max_length=64)

    model_config = {"frozen": True}

    def __str__(self) -> str:
        return f"{self.tenant_id}/{self.project_id}"
