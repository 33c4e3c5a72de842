import logging
from typing import Any

from fastapi import Depends, HTTPException

from app.core.auth_utils import get_current_user
from app.core.role_matrix import can_perform_action, normalize_role
from app.lib.api_client import supabase_admin
from app.models.user import UserRole

logger = logging.getLogger("rpms.roles")

_PROFILE_COLUMNS = "id,email,name,role"


def get_current_profile(current_user: dict = Depends(get_current_user)) -> dict:
    """
    获取当前用户的 profile（含唯一 role）。

    中文注释:
    1) 身份来自外部 Supabase Auth；角色存于 users 表，创建后不可修改。
    2) 首次访问且 users 表无记录时，按 author 自动建档（与自助注册默认角色一致）。
    3) 角色不在闭合枚举内时直接拒绝，避免脏数据绕过权限矩阵。
    4) 同步 def：FastAPI 放到线程池执行，阻塞的 Supabase 调用不占用事件循环。
    """
    user_id = current_user["id"]
    email = current_user.get("email")

    try:
        resp = supabase_admin.table("users").select(_PROFILE_COLUMNS).eq("id", user_id).execute()
        existing = (getattr(resp, "data", None) or [None])[0]
        if existing is None:
            name = (email or "").split("@")[0] or "Unknown"
            inserted = (
                supabase_admin.table("users")
                .insert({"id": user_id, "email": email, "name": name, "role": UserRole.AUTHOR.value})
                .execute()
            )
            existing = (getattr(inserted, "data", None) or [
                {"id": user_id, "email": email, "name": name, "role": UserRole.AUTHOR.value}
            ])[0]
    except Exception as e:
        logger.error("Failed to fetch/create user profile %s: %s", user_id, e)
        raise HTTPException(status_code=500, detail="Failed to load user profile") from e

    role = normalize_role(existing.get("role"))
    if role is None:
        raise HTTPException(status_code=403, detail="Invalid role")
    return {**existing, "id": str(existing.get("id") or user_id), "role": role}


def ensure_action(profile: dict[str, Any], action: str) -> None:
    """
    统一权限闸门：在任何写库之前调用；不通过则 403 且无副作用。
    """
    if not can_perform_action(action=action, role=profile.get("role")):
        raise HTTPException(status_code=403, detail="Insufficient role")
