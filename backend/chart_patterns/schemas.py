"""
Pydantic schemas for pattern input and evaluation output.
"""

from pydantic import Field, field_validator
from sqlmodel import SQLModel


class PatternCreate(SQLModel):
    """Input for PatternStore.create."""

    name: str = Field(..., min_length=1, max_length=255)
    script: str = Field(..., min_length=1)
    description: str | None = Field(default="")
    examples: str | None = Field(default="")

    @field_validator("name", "script")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v

    @field_validator("description", "examples")
    @classmethod
    def none_to_empty(cls, v: str | None) -> str:
        return v or ""


class PatternMatch(SQLModel):
    """One matched pattern returned by PatternEvaluationCoordinator.evaluate_all."""

    id: str
    name: str
    description: str = ""
