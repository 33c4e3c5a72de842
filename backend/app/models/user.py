from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class UserRole(str, Enum):
    """
    闭合角色枚举；用户创建时确定，本服务内不可修改。
    """

    AUTHOR = "author"
    EDITOR = "editor"
    COORDINATOR = "coordinator"
    ADMIN = "admin"


class UserProfile(BaseModel):
    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    role: UserRole

    model_config = ConfigDict(use_enum_values=True)
