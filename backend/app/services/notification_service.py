from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from fastapi import BackgroundTasks, HTTPException
from postgrest.exceptions import APIError

from app.lib.api_client import supabase_admin

logger = logging.getLogger("rpms.notifications")


@dataclass(frozen=True)
class Delivery:
    """
    一组收件人 + 同一条消息。

    收件人来源（可组合）:
    - role: 触发时实时查询该角色的全部用户
    - user_ids: 显式指定
    - reviewers_of_paper: 触发时查询该论文的全部审稿人
    """

    message: str
    role: Optional[str] = None
    user_ids: tuple[str, ...] = ()
    reviewers_of_paper: bool = False


@dataclass(frozen=True)
class FanoutPlan:
    paper_id: Optional[str]
    deliveries: tuple[Delivery, ...] = field(default_factory=tuple)


class NotificationService:
    """
    通知服务：封装 notifications 表的读写与按角色广播（fan-out）

    中文注释:
    1) fan-out 是尽力而为的旁路：任何失败只记日志，不回滚、不重试触发它的状态流转。
    2) 角色收件人在 fan-out 执行时实时查询 users 表，而不是在状态流转时快照。
    3) 同一次 fan-out 内每个收件人只写一条；多次 fan-out 之间不做去重。
    """

    def __init__(self) -> None:
        self.client = supabase_admin

    def create_notification(
        self,
        *,
        user_id: str,
        message: str,
        paper_id: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        try:
            payload = {
                "user_id": str(user_id),
                "message": message,
                "paper_id": str(paper_id) if paper_id else None,
                "is_read": False,
            }
            res = self.client.table("notifications").insert(payload).execute()
            rows = getattr(res, "data", None) or []
            return rows[0] if rows else None
        except APIError as e:
            # 中文注释:
            # - 收件人已被删除（23503 外键错误）对主流程无影响，且会造成日志刷屏；这里降级为 debug。
            text = str(e).lower()
            code = str(getattr(e, "code", "") or "").lower()
            if "23503" in code or "23503" in text:
                logger.debug("notification skipped for missing user %s: %s", user_id, e)
                return None
            logger.warning("notification insert failed for user %s: %s", user_id, e)
            return None
        except Exception as e:
            logger.warning("notification insert failed for user %s: %s", user_id, e)
            return None

    def list_user_ids_by_role(self, role: str) -> List[str]:
        try:
            res = self.client.table("users").select("id").eq("role", role).execute()
        except Exception as e:
            logger.warning("recipient lookup failed for role=%s: %s", role, e)
            return []
        rows = getattr(res, "data", None) or []
        return [str(r.get("id")) for r in rows if r.get("id")]

    def list_reviewer_ids(self, paper_id: str) -> List[str]:
        try:
            res = self.client.table("reviews").select("reviewer_id").eq("paper_id", str(paper_id)).execute()
        except Exception as e:
            logger.warning("reviewer lookup failed for paper=%s: %s", paper_id, e)
            return []
        rows = getattr(res, "data", None) or []
        return [str(r.get("reviewer_id")) for r in rows if r.get("reviewer_id")]

    def _resolve(self, delivery: Delivery, paper_id: Optional[str]) -> List[str]:
        recipients: List[str] = []
        recipients.extend(str(uid) for uid in delivery.user_ids if uid)
        if delivery.role:
            recipients.extend(self.list_user_ids_by_role(delivery.role))
        if delivery.reviewers_of_paper and paper_id:
            recipients.extend(self.list_reviewer_ids(paper_id))
        return recipients

    def deliver(self, plan: FanoutPlan) -> int:
        """
        执行 fan-out，返回成功写入的通知条数。
        """
        seen: set[str] = set()
        created = 0
        for delivery in plan.deliveries:
            for user_id in self._resolve(delivery, plan.paper_id):
                if user_id in seen:
                    continue
                seen.add(user_id)
                if self.create_notification(user_id=user_id, message=delivery.message, paper_id=plan.paper_id):
                    created += 1
        logger.info(
            "fan-out paper=%s recipients=%s created=%s",
            plan.paper_id,
            len(seen),
            created,
        )
        return created

    def _deliver_detached(self, plan: FanoutPlan) -> None:
        try:
            self.deliver(plan)
        except Exception as e:
            logger.error("fan-out failed for paper=%s: %s", plan.paper_id, e, exc_info=True)

    def schedule(self, plan: FanoutPlan, background_tasks: Optional[BackgroundTasks] = None) -> None:
        """
        HTTP 场景下挂到 BackgroundTasks：响应返回后执行，不受请求取消影响。
        非 HTTP 调用（脚本/测试）无 BackgroundTasks 时直接同步执行。
        """
        if not plan.deliveries:
            return
        if background_tasks is not None:
            background_tasks.add_task(self._deliver_detached, plan)
            return
        self._deliver_detached(plan)

    def notify(
        self,
        recipients: Iterable[str],
        message: str,
        paper_id: Optional[str] = None,
        *,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> None:
        self.schedule(
            FanoutPlan(paper_id=paper_id, deliveries=(Delivery(message=message, user_ids=tuple(recipients)),)),
            background_tasks,
        )

    def list_for_user(self, *, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        try:
            res = (
                self.client.table("notifications")
                .select("*")
                .eq("user_id", user_id)
                .order("created_at", desc=True)
                .limit(limit)
                .execute()
            )
        except Exception as e:
            logger.error("list notifications failed for user %s: %s", user_id, e)
            raise HTTPException(status_code=500, detail="Failed to fetch notifications") from e
        return getattr(res, "data", None) or []

    def mark_read(self, *, user_id: str, notification_id: int) -> Dict[str, Any]:
        """
        将通知标记为已读（仅允许收件人本人；重复标记幂等返回）
        """
        try:
            res = (
                self.client.table("notifications")
                .update({"is_read": True})
                .eq("id", notification_id)
                .eq("user_id", user_id)
                .execute()
            )
        except Exception as e:
            logger.error("mark notification %s read failed: %s", notification_id, e)
            raise HTTPException(status_code=500, detail="Failed to mark notification as read") from e
        rows = getattr(res, "data", None) or []
        if not rows:
            # 中文注释: 不存在或不属于当前用户，统一 404，避免泄露他人通知是否存在
            raise HTTPException(status_code=404, detail="Notification not found")
        return rows[0]

    def create_direct(self, *, user_id: str, message: str, paper_id: Optional[str] = None) -> Dict[str, Any]:
        """
        直接创建单条通知（POST /notifications）；与 fan-out 不同，失败需要告知调用方。
        """
        payload = {
            "user_id": str(user_id),
            "message": message,
            "paper_id": str(paper_id) if paper_id else None,
            "is_read": False,
        }
        try:
            res = self.client.table("notifications").insert(payload).execute()
        except Exception as e:
            logger.error("direct notification insert failed: %s", e)
            raise HTTPException(status_code=500, detail="Failed to create notification") from e
        rows = getattr(res, "data", None) or []
        if not rows:
            raise HTTPException(status_code=500, detail="Failed to create notification")
        return rows[0]
