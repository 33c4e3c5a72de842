from __future__ import annotations

from typing import Iterable

from app.models.user import UserRole

# 中文注释：
# - 这里集中定义“角色 -> 动作”权限矩阵，避免权限逻辑散落在各路由。
# - 每个工作流操作只在服务层入口处按 action 校验一次，校验先于任何写库。

ADMIN_ROLE = UserRole.ADMIN.value

PAPER_CREATE = "paper:create"
PAPER_UPDATE = "paper:update"
PAPER_DELETE = "paper:delete"
PAPER_RECOMMEND = "paper:recommend"
PAPER_UPDATE_DETAILS = "paper:update_details"
REVIEW_CREATE = "review:create"

ROLE_ACTIONS: dict[str, set[str]] = {
    UserRole.AUTHOR.value: {
        PAPER_CREATE,
        PAPER_UPDATE,
        PAPER_DELETE,
    },
    UserRole.EDITOR.value: {
        PAPER_RECOMMEND,
        PAPER_UPDATE_DETAILS,
        REVIEW_CREATE,
    },
    UserRole.COORDINATOR.value: {
        PAPER_UPDATE_DETAILS,
    },
    ADMIN_ROLE: {
        "*",
    },
}

ALL_ACTIONS: frozenset[str] = frozenset(
    {
        PAPER_CREATE,
        PAPER_UPDATE,
        PAPER_DELETE,
        PAPER_RECOMMEND,
        PAPER_UPDATE_DETAILS,
        REVIEW_CREATE,
    }
)


def normalize_role(role: str | None) -> str | None:
    """
    将输入角色归一化（小写、去空）；不在闭合枚举内的角色返回 None。
    """
    raw = str(role or "").strip().lower()
    if not raw:
        return None
    try:
        return UserRole(raw).value
    except ValueError:
        return None


def can_perform_action(*, action: str, role: str | None) -> bool:
    """
    判定角色是否可执行某动作。

    中文注释：
    - admin 拥有全局通配权限；
    - 其余角色按 ROLE_ACTIONS 显式授权；
    - 未知角色一律拒绝。
    """
    normalized = normalize_role(role)
    if normalized is None:
        return False
    if normalized == ADMIN_ROLE:
        return True
    allowed = ROLE_ACTIONS.get(normalized) or set()
    return "*" in allowed or action in allowed


def allowed_roles(action: str) -> set[str]:
    """
    返回可执行某动作的角色集合（action -> roles 视图，便于测试与文档输出）。
    """
    return {role.value for role in UserRole if can_perform_action(action=action, role=role.value)}


def list_allowed_actions(roles: Iterable[str] | None) -> set[str]:
    """
    返回当前角色可执行动作集合（用于前端 capability 输出）。
    """
    actions: set[str] = set()
    for raw in roles or []:
        normalized = normalize_role(raw)
        if normalized == ADMIN_ROLE:
            return set(ALL_ACTIONS)
        if normalized:
            actions.update(ROLE_ACTIONS.get(normalized) or set())
    return actions
