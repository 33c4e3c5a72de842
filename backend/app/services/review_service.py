from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import BackgroundTasks, HTTPException
from postgrest.exceptions import APIError

from app.core import role_matrix
from app.core.roles import ensure_action
from app.lib.api_client import supabase_admin
from app.models.review import ReviewCreate
from app.services.notification_service import NotificationService

logger = logging.getLogger("rpms.reviews")


def _is_unique_violation(error: Exception) -> bool:
    code = str(getattr(error, "code", "") or "")
    return code == "23505" or "23505" in str(error) or "duplicate key" in str(error).lower()


class ReviewService:
    """
    审稿评分：每个 (paper, reviewer) 仅一条，创建后不可修改；提交后通知作者。
    """

    def __init__(self, *, notifier: Optional[NotificationService] = None) -> None:
        self.client = supabase_admin
        self.notifier = notifier or NotificationService()

    def _get_paper(self, paper_id: str) -> dict[str, Any]:
        try:
            resp = (
                self.client.table("papers")
                .select("id,title,author_id")
                .eq("id", paper_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("get paper %s failed: %s", paper_id, e)
            raise HTTPException(status_code=500, detail="Failed to fetch paper") from e
        rows = getattr(resp, "data", None) or []
        if not rows:
            raise HTTPException(status_code=404, detail="Paper not found")
        return rows[0]

    def create_review(
        self,
        *,
        actor: dict[str, Any],
        payload: ReviewCreate,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> dict[str, Any]:
        ensure_action(actor, role_matrix.REVIEW_CREATE)

        paper_id = str(payload.paper_id)
        paper = self._get_paper(paper_id)
        reviewer_id = str(actor["id"])

        try:
            existing = (
                self.client.table("reviews")
                .select("id")
                .eq("paper_id", paper_id)
                .eq("reviewer_id", reviewer_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("review lookup failed: %s", e)
            raise HTTPException(status_code=500, detail="Failed to create review") from e
        if getattr(existing, "data", None):
            raise HTTPException(status_code=409, detail="Review already submitted for this paper")

        row = payload.model_dump()
        row["paper_id"] = paper_id
        row["reviewer_id"] = reviewer_id
        try:
            resp = self.client.table("reviews").insert(row).execute()
        except APIError as e:
            # 并发重复提交：由 UNIQUE(paper_id, reviewer_id) 兜底
            if _is_unique_violation(e):
                raise HTTPException(status_code=409, detail="Review already submitted for this paper") from e
            logger.error("create review failed: %s", e)
            raise HTTPException(status_code=500, detail="Failed to create review") from e
        except Exception as e:
            logger.error("create review failed: %s", e)
            raise HTTPException(status_code=500, detail="Failed to create review") from e
        rows = getattr(resp, "data", None) or []
        if not rows:
            raise HTTPException(status_code=500, detail="Failed to create review")
        review = rows[0]

        self.notifier.notify(
            [str(paper.get("author_id"))],
            (
                f"Your paper '{paper.get('title')}' has been reviewed. "
                f"Rating: {payload.rating}/100, Recommendation: {payload.recommendation}"
            ),
            paper_id,
            background_tasks=background_tasks,
        )
        return review

    def list_reviews(self, *, paper_id: Optional[str] = None) -> list[dict[str, Any]]:
        """
        审稿列表（新到旧），附带审稿人 name/email 与论文标题。
        """
        try:
            query = self.client.table("reviews").select("*")
            if paper_id:
                query = query.eq("paper_id", str(paper_id))
            resp = query.order("created_at", desc=True).execute()
            reviews = getattr(resp, "data", None) or []

            reviewer_ids = sorted({str(r.get("reviewer_id")) for r in reviews if r.get("reviewer_id")})
            paper_ids = sorted({str(r.get("paper_id")) for r in reviews if r.get("paper_id")})

            reviewers: dict[str, dict[str, Any]] = {}
            if reviewer_ids:
                users_resp = self.client.table("users").select("id,name,email").in_("id", reviewer_ids).execute()
                reviewers = {str(u.get("id")): u for u in (getattr(users_resp, "data", None) or [])}

            titles: dict[str, str] = {}
            if paper_ids:
                papers_resp = self.client.table("papers").select("id,title").in_("id", paper_ids).execute()
                titles = {str(p.get("id")): p.get("title") for p in (getattr(papers_resp, "data", None) or [])}
        except Exception as e:
            logger.error("list reviews failed: %s", e)
            raise HTTPException(status_code=500, detail="Failed to fetch reviews") from e

        out: list[dict[str, Any]] = []
        for r in reviews:
            reviewer = reviewers.get(str(r.get("reviewer_id"))) or {}
            out.append(
                {
                    **r,
                    "reviewer_name": reviewer.get("name") or "Unknown",
                    "reviewer_email": reviewer.get("email") or "",
                    "paper_title": titles.get(str(r.get("paper_id"))) or "Unknown Paper",
                }
            )
        return out
