from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field


Recommendation = Literal["accept", "minor_revision", "major_revision", "reject"]

RUBRIC_FIELDS = (
    "problem_statement",
    "literature_review",
    "methodology",
    "results",
    "conclusion",
    "originality",
    "clarity_organization",
    "contribution_knowledge",
    "technical_quality",
)


class ReviewCreate(BaseModel):
    """
    审稿评分表：每项 0-100；同一 (paper, reviewer) 只允许提交一次，提交后不可修改。
    """

    paper_id: UUID
    rating: int = Field(..., ge=0, le=100)
    problem_statement: int = Field(..., ge=0, le=100)
    literature_review: int = Field(..., ge=0, le=100)
    methodology: int = Field(..., ge=0, le=100)
    results: int = Field(..., ge=0, le=100)
    conclusion: int = Field(..., ge=0, le=100)
    originality: int = Field(..., ge=0, le=100)
    clarity_organization: int = Field(..., ge=0, le=100)
    contribution_knowledge: int = Field(..., ge=0, le=100)
    technical_quality: int = Field(..., ge=0, le=100)
    comments: str = ""
    recommendation: Recommendation
