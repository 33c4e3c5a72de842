from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class NotificationCreate(BaseModel):
    """
    直接创建通知的输入结构（POST /notifications）
    """

    user_id: UUID
    message: str = Field(..., min_length=1, max_length=2000)
    paper_id: Optional[UUID] = None
