from fastapi import APIRouter, Body, Depends, Query

from app.core.auth_utils import get_current_user
from app.models.notification import NotificationCreate
from app.services.notification_service import NotificationService

router = APIRouter(tags=["Notifications"])


@router.get("/notifications")
def list_notifications(
    limit: int = Query(50, ge=1, le=200),
    current_user: dict = Depends(get_current_user),
):
    """
    获取当前用户的通知列表（轮询，新到旧）
    """
    rows = NotificationService().list_for_user(user_id=str(current_user["id"]), limit=limit)
    return {"success": True, "data": rows}


@router.put("/notifications/{notification_id}/read")
def mark_notification_read(
    notification_id: int,
    current_user: dict = Depends(get_current_user),
):
    """
    将通知标记为已读（仅允许更新自己的记录）
    """
    updated = NotificationService().mark_read(user_id=str(current_user["id"]), notification_id=notification_id)
    return {"success": True, "data": updated}


@router.post("/notifications", status_code=201)
def create_notification(
    payload: NotificationCreate = Body(...),
    _current_user: dict = Depends(get_current_user),
):
    """
    直接创建通知（任意已登录用户可调用，不做角色限制）
    """
    row = NotificationService().create_direct(
        user_id=str(payload.user_id),
        message=payload.message,
        paper_id=str(payload.paper_id) if payload.paper_id else None,
    )
    return {"success": True, "data": row}
