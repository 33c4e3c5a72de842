from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import BackgroundTasks, HTTPException

from app.core import role_matrix
from app.core.roles import ensure_action
from app.lib.api_client import supabase_admin
from app.models.paper import (
    AUTHOR_EDITABLE_STATUSES,
    DECISION_STATUSES,
    DEFAULT_PAPER_TYPE,
    PaperCreate,
    PaperDetailsUpdate,
    PaperStatus,
    PaperUpdate,
    normalize_status,
)
from app.models.user import UserRole
from app.services.notification_service import Delivery, FanoutPlan, NotificationService
from app.services.publication_id_service import PublicationIdGenerator, is_well_formed_publication_id

logger = logging.getLogger("rpms.papers")


class PaperService:
    """
    论文工作流状态机：投稿、内容修改、推荐出版、出版元数据维护、删除。

    中文注释:
    - 每个操作的第一步都是权限闸门 ensure_action，失败即 403 且无任何写库。
    - 状态流转规则统一由 PaperStatus.allowed_next 判定；仅 admin 可显式传 allow_skip 越过状态图。
    - 写库成功后再安排通知 fan-out；fan-out 失败不影响返回结果。
    - 无乐观锁：并发更新以最后一次写入为准。
    """

    def __init__(
        self,
        *,
        notifier: Optional[NotificationService] = None,
        id_generator: Optional[PublicationIdGenerator] = None,
    ) -> None:
        self.client = supabase_admin
        self.notifier = notifier or NotificationService()
        self.id_generator = id_generator or PublicationIdGenerator()

    def _now(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _is_admin(actor: dict[str, Any]) -> bool:
        return actor.get("role") == UserRole.ADMIN.value

    def _ensure_owner(self, actor: dict[str, Any], paper: dict[str, Any]) -> None:
        if self._is_admin(actor):
            return
        if str(paper.get("author_id") or "") != str(actor.get("id") or ""):
            raise HTTPException(status_code=403, detail="Only the author can modify this paper")

    def _ensure_transition(self, actor: dict[str, Any], current: str, target: str, *, allow_skip: bool) -> None:
        """
        allow_skip:
        - 默认 False，任何角色都必须沿状态图前进（终态不可回退）
        - 仅 admin 可显式置 True 越过状态图
        """
        if allow_skip:
            if not self._is_admin(actor):
                raise HTTPException(status_code=403, detail="Only admins may skip workflow stages")
            logger.info("admin %s skipped workflow: %s -> %s", actor.get("id"), current, target)
            return
        if not PaperStatus.can_transition(current, target):
            raise HTTPException(
                status_code=400,
                detail=f"Invalid transition: {current} -> {target}. Allowed: {sorted(PaperStatus.allowed_next(current))}",
            )

    # === 读取 ===

    def get_paper(self, paper_id: str) -> dict[str, Any]:
        try:
            resp = self.client.table("papers").select("*").eq("id", str(paper_id)).limit(1).execute()
        except Exception as e:
            logger.error("get paper %s failed: %s", paper_id, e)
            raise HTTPException(status_code=500, detail="Failed to fetch paper") from e
        rows = getattr(resp, "data", None) or []
        if not rows:
            raise HTTPException(status_code=404, detail="Paper not found")
        return rows[0]

    def list_papers(self) -> list[dict[str, Any]]:
        """
        全部论文（新到旧），附带作者 name/email。
        """
        try:
            resp = self.client.table("papers").select("*").order("created_at", desc=True).execute()
            papers = getattr(resp, "data", None) or []

            author_ids = sorted({str(p.get("author_id")) for p in papers if p.get("author_id")})
            authors: dict[str, dict[str, Any]] = {}
            if author_ids:
                users_resp = (
                    self.client.table("users")
                    .select("id,name,email")
                    .in_("id", author_ids)
                    .execute()
                )
                for u in getattr(users_resp, "data", None) or []:
                    authors[str(u.get("id"))] = u
        except Exception as e:
            logger.error("list papers failed: %s", e)
            raise HTTPException(status_code=500, detail="Failed to fetch papers") from e

        out: list[dict[str, Any]] = []
        for p in papers:
            author = authors.get(str(p.get("author_id"))) or {}
            out.append(
                {
                    **p,
                    "type": p.get("type") or DEFAULT_PAPER_TYPE,
                    "author_name": author.get("name") or "Unknown",
                    "author_email": author.get("email") or "",
                }
            )
        return out

    # === 写入 ===

    def _update_row(self, paper_id: str, payload: dict[str, Any], *, error_detail: str) -> dict[str, Any]:
        try:
            resp = self.client.table("papers").update(payload).eq("id", str(paper_id)).execute()
        except Exception as e:
            logger.error("%s (paper=%s): %s", error_detail, paper_id, e)
            raise HTTPException(status_code=500, detail=error_detail) from e
        rows = getattr(resp, "data", None) or []
        if not rows:
            # 读取与更新之间被删除
            raise HTTPException(status_code=404, detail="Paper not found")
        return rows[0]

    def create_paper(
        self,
        *,
        actor: dict[str, Any],
        payload: PaperCreate,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> dict[str, Any]:
        ensure_action(actor, role_matrix.PAPER_CREATE)

        row = payload.model_dump()
        row["type"] = (row.get("type") or "").strip() or DEFAULT_PAPER_TYPE
        row["author_id"] = str(actor["id"])
        row["status"] = PaperStatus.SUBMITTED.value

        try:
            resp = self.client.table("papers").insert(row).execute()
        except Exception as e:
            logger.error("create paper failed: %s", e)
            raise HTTPException(status_code=500, detail="Failed to create paper") from e
        rows = getattr(resp, "data", None) or []
        if not rows:
            raise HTTPException(status_code=500, detail="Failed to create paper")
        paper = rows[0]

        self.notifier.schedule(
            FanoutPlan(
                paper_id=str(paper["id"]),
                deliveries=(
                    Delivery(
                        role=UserRole.EDITOR.value,
                        message=f"New paper submitted: {paper.get('title')}",
                    ),
                ),
            ),
            background_tasks,
        )
        return paper

    def update_content(
        self,
        *,
        actor: dict[str, Any],
        paper_id: str,
        payload: PaperUpdate,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> dict[str, Any]:
        ensure_action(actor, role_matrix.PAPER_UPDATE)

        paper = self.get_paper(paper_id)
        self._ensure_owner(actor, paper)

        current = normalize_status(paper.get("status")) or PaperStatus.SUBMITTED.value
        target = PaperStatus(payload.status).value

        if self._is_admin(actor) or payload.allow_skip:
            self._ensure_transition(actor, current, target, allow_skip=payload.allow_skip)
        else:
            if current not in AUTHOR_EDITABLE_STATUSES:
                raise HTTPException(status_code=400, detail=f"Paper is no longer editable in status '{current}'")
            # 作者只能保持状态不变，或 draft -> submitted
            author_targets = {current} | ({PaperStatus.SUBMITTED.value} & PaperStatus.allowed_next(current))
            if target not in author_targets:
                raise HTTPException(
                    status_code=400,
                    detail=f"Invalid transition: {current} -> {target}. Allowed: {sorted(author_targets)}",
                )

        updated = self._update_row(
            paper_id,
            {
                "title": payload.title,
                "abstract": payload.abstract,
                "content": payload.content,
                "file_url": payload.file_url,
                "status": target,
                "updated_at": self._now(),
            },
            error_detail="Failed to update paper",
        )

        if target != current and target in DECISION_STATUSES:
            title = updated.get("title")
            self.notifier.schedule(
                FanoutPlan(
                    paper_id=str(updated["id"]),
                    deliveries=(
                        Delivery(
                            user_ids=(str(updated.get("author_id")),),
                            message=f"Your paper '{title}' has been {target}",
                        ),
                        Delivery(
                            reviewers_of_paper=True,
                            message=f"Admin decision: Paper '{title}' has been {target}",
                        ),
                    ),
                ),
                background_tasks,
            )
        return updated

    def recommend_for_publication(
        self,
        *,
        actor: dict[str, Any],
        paper_id: str,
        allow_skip: bool = False,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> dict[str, Any]:
        ensure_action(actor, role_matrix.PAPER_RECOMMEND)

        paper = self.get_paper(paper_id)
        current = normalize_status(paper.get("status")) or PaperStatus.SUBMITTED.value
        target = PaperStatus.RECOMMENDED_FOR_PUBLICATION.value
        self._ensure_transition(actor, current, target, allow_skip=allow_skip)

        updated = self._update_row(
            paper_id,
            {"status": target, "updated_at": self._now()},
            error_detail="Failed to recommend paper",
        )

        title = updated.get("title")
        self.notifier.schedule(
            FanoutPlan(
                paper_id=str(updated["id"]),
                deliveries=(
                    Delivery(
                        user_ids=(str(updated.get("author_id")),),
                        message=f"Your paper '{title}' has been recommended for publication by an editor",
                    ),
                    Delivery(
                        role=UserRole.ADMIN.value,
                        message=f"Paper '{title}' has been recommended for publication by an editor",
                    ),
                ),
            ),
            background_tasks,
        )
        return updated

    def update_publication_details(
        self,
        *,
        actor: dict[str, Any],
        paper_id: str,
        payload: PaperDetailsUpdate,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> dict[str, Any]:
        ensure_action(actor, role_matrix.PAPER_UPDATE_DETAILS)

        paper = self.get_paper(paper_id)
        current = normalize_status(paper.get("status"))
        if current == PaperStatus.DRAFT.value:
            raise HTTPException(status_code=400, detail="Publication details can only be set after submission")

        row = payload.to_row()
        existing_id = str(paper.get("publication_id") or "").strip()
        if existing_id:
            # 编号一经分配不可变，忽略请求中的值
            row["publication_id"] = existing_id
        elif not row["publication_id"]:
            row["publication_id"] = self.id_generator.generate_next()
        else:
            prefix = self.id_generator.config.prefix
            if not is_well_formed_publication_id(row["publication_id"], prefix=prefix):
                raise HTTPException(
                    status_code=400,
                    detail=f"Publication ID must be '{prefix}' followed by digits",
                )
        row["updated_at"] = self._now()

        updated = self._update_row(paper_id, row, error_detail="Failed to update paper details")

        title = updated.get("title")
        actor_label = str(actor.get("role") or "editor").capitalize()
        self.notifier.schedule(
            FanoutPlan(
                paper_id=str(updated["id"]),
                deliveries=(
                    Delivery(
                        user_ids=(str(updated.get("author_id")),),
                        message=f"Publication details for your paper '{title}' have been updated by an editor",
                    ),
                    Delivery(
                        role=UserRole.ADMIN.value,
                        message=f"Paper details updated for '{title}' by {actor_label}",
                    ),
                    Delivery(
                        role=UserRole.COORDINATOR.value,
                        message=f"Paper details updated for '{title}' by {actor_label}. Please validate.",
                    ),
                ),
            ),
            background_tasks,
        )
        return updated

    def delete_paper(self, *, actor: dict[str, Any], paper_id: str) -> None:
        """
        硬删除；reviews / notifications 由数据库外键 ON DELETE CASCADE 级联清理。
        """
        ensure_action(actor, role_matrix.PAPER_DELETE)

        paper = self.get_paper(paper_id)
        self._ensure_owner(actor, paper)

        try:
            self.client.table("papers").delete().eq("id", str(paper_id)).execute()
        except Exception as e:
            logger.error("delete paper %s failed: %s", paper_id, e)
            raise HTTPException(status_code=500, detail="Failed to delete paper") from e
        logger.info("paper %s deleted by %s", paper_id, actor.get("id"))
