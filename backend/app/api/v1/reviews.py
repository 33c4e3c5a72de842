from typing import Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Body, Depends

from app.core.roles import get_current_profile
from app.models.review import ReviewCreate
from app.services.review_service import ReviewService

router = APIRouter(tags=["Reviews"])


@router.get("/reviews")
def list_reviews(paper_id: Optional[UUID] = None, _profile: dict = Depends(get_current_profile)):
    rows = ReviewService().list_reviews(paper_id=str(paper_id) if paper_id else None)
    return {"success": True, "data": rows}


@router.post("/reviews", status_code=201)
def create_review(
    background_tasks: BackgroundTasks,
    payload: ReviewCreate = Body(...),
    profile: dict = Depends(get_current_profile),
):
    """
    编辑提交审稿评分（每篇论文每位审稿人一次）
    """
    review = ReviewService().create_review(actor=profile, payload=payload, background_tasks=background_tasks)
    return {"success": True, "data": review}
