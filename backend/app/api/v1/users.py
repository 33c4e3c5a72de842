from fastapi import APIRouter, Depends

from app.core.role_matrix import list_allowed_actions
from app.core.roles import get_current_profile
from app.models.user import UserProfile

router = APIRouter(prefix="/users", tags=["Users"])


@router.get("/me")
def get_me(profile: dict = Depends(get_current_profile)):
    """
    当前用户 profile + 可执行动作（前端据此显隐按钮）
    """
    me = UserProfile.model_validate(profile).model_dump()
    me["allowed_actions"] = sorted(list_allowed_actions([me["role"]]))
    return {"success": True, "data": me}
