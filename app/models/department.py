"""
Department models - SLA configuration per responsible department.
"""

from pydantic import BaseModel, Field, field_validator
from typing import List

from app.models.report import ReportCategory


class DepartmentSLA(BaseModel):
    """All values are hours."""
    response_time: float = Field(24, gt=0)
    resolution_time: float = Field(168, gt=0)
    escalation_threshold: float = Field(72, gt=0)


class Department(BaseModel):
    code: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., min_length=1, max_length=100)
    description: str = ""
    categories: List[ReportCategory] = Field(default_factory=list)
    sla: DepartmentSLA = Field(default_factory=DepartmentSLA)
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def _upper_code(cls, value: str) -> str:
        return value.strip().upper()
