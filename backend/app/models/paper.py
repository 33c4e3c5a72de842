from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


DEFAULT_PAPER_TYPE = "Research Paper"


class PaperStatus(str, Enum):
    """
    论文生命周期状态枚举（7 状态版本）。

    中文注释:
    - 状态机规则集中在 allowed_next，服务层统一校验流转。
    - 旧 6 状态数据（无 recommended_for_publication）是该集合的子集，无需迁移映射。
    """

    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    RECOMMENDED_FOR_PUBLICATION = "recommended_for_publication"
    PUBLISHED = "published"

    @classmethod
    def allowed_next(cls, current: str) -> set[str]:
        """
        状态机规则必须显性可见：

        - draft -> submitted
        - submitted -> under_review / recommended_for_publication / rejected
        - under_review -> approved / rejected
        - approved -> recommended_for_publication / published
        - recommended_for_publication -> published / rejected
        - rejected / published 为终态
        """
        c = (current or "").strip().lower()
        if c == cls.DRAFT.value:
            return {cls.SUBMITTED.value}
        if c == cls.SUBMITTED.value:
            return {cls.UNDER_REVIEW.value, cls.RECOMMENDED_FOR_PUBLICATION.value, cls.REJECTED.value}
        if c == cls.UNDER_REVIEW.value:
            return {cls.APPROVED.value, cls.REJECTED.value}
        if c == cls.APPROVED.value:
            return {cls.RECOMMENDED_FOR_PUBLICATION.value, cls.PUBLISHED.value}
        if c == cls.RECOMMENDED_FOR_PUBLICATION.value:
            return {cls.PUBLISHED.value, cls.REJECTED.value}
        return set()

    @classmethod
    def can_transition(cls, current: str, target: str) -> bool:
        # 状态不变（仅改内容/元数据）总是允许
        if (current or "").strip().lower() == (target or "").strip().lower():
            return True
        return target in cls.allowed_next(current)


# 作者可修改正文内容的阶段
AUTHOR_EDITABLE_STATUSES = frozenset({PaperStatus.DRAFT.value, PaperStatus.SUBMITTED.value})

# 进入这些状态时通知审稿人与作者（管理员裁决）
DECISION_STATUSES = frozenset(
    {PaperStatus.PUBLISHED.value, PaperStatus.REJECTED.value, PaperStatus.APPROVED.value}
)


def normalize_status(value: str | None) -> str | None:
    if value is None:
        return None
    v = str(value).strip().lower()
    if not v:
        return None
    try:
        return PaperStatus(v).value
    except ValueError:
        return None


class PaperCreate(BaseModel):
    """
    作者投稿输入；扩展出版元数据中仅允许预填少量描述性字段。
    """

    title: str = Field(..., min_length=1, max_length=500)
    abstract: str = ""
    content: str = ""
    file_url: str = ""
    type: str = ""
    publication_title_amharic: str = ""
    publication_isced_band: str = ""
    publication_type: str = ""
    journal_type: str = ""
    journal_name: str = ""


class PaperUpdate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    abstract: str = ""
    content: str = ""
    file_url: str = ""
    status: PaperStatus
    # 仅 admin 可置 True，越过状态图
    allow_skip: bool = False


class PaperDetailsUpdate(BaseModel):
    """
    出版元数据 + 科研项目元数据（整块 upsert）。

    中文注释:
    - publication_id 为空时由服务端生成；已有编号的论文忽略该字段（编号一经分配不可变）。
    """

    institution_code: str = ""
    publication_id: str = ""
    publication_isced_band: str = ""
    publication_title_amharic: str = ""
    publication_date: Optional[date] = None
    publication_type: str = ""
    journal_type: str = ""
    journal_name: str = ""
    indigenous_knowledge: bool = False

    fiscal_year: str = ""
    allocated_budget: float = Field(0, ge=0)
    external_budget: float = Field(0, ge=0)
    nrf_fund: float = Field(0, ge=0)
    research_type: str = ""
    completion_status: str = ""
    female_researchers: int = Field(0, ge=0)
    male_researchers: int = Field(0, ge=0)
    outside_female_researchers: int = Field(0, ge=0)
    outside_male_researchers: int = Field(0, ge=0)
    benefited_industry: str = ""
    ethical_clearance: str = ""
    pi_name: str = ""
    pi_gender: str = ""
    co_investigators: str = ""
    produced_prototype: str = ""
    hetril_collaboration: str = ""
    submitted_to_incubator: str = ""

    def to_row(self) -> dict[str, Any]:
        row = self.model_dump()
        pub_date = row.get("publication_date")
        row["publication_date"] = pub_date.isoformat() if pub_date else None
        row["publication_id"] = (row.get("publication_id") or "").strip()
        return row
