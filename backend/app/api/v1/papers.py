from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Body, Depends, Query

from app.core.roles import get_current_profile
from app.models.paper import PaperCreate, PaperDetailsUpdate, PaperUpdate
from app.services.paper_service import PaperService

router = APIRouter(tags=["Papers"])

# 中文注释:
# - 路由函数使用同步 def：FastAPI 会放到线程池执行，Supabase 的阻塞调用只占用当前 worker。
# - 权限校验统一在 PaperService 各操作入口完成（role_matrix）。


@router.get("/papers")
def list_papers(_profile: dict = Depends(get_current_profile)):
    """
    全部论文列表（附作者信息），任意已登录用户可见
    """
    return {"success": True, "data": PaperService().list_papers()}


@router.post("/papers", status_code=201)
def create_paper(
    background_tasks: BackgroundTasks,
    payload: PaperCreate = Body(...),
    profile: dict = Depends(get_current_profile),
):
    """
    作者投稿：直接进入 submitted，并通知全部编辑
    """
    paper = PaperService().create_paper(actor=profile, payload=payload, background_tasks=background_tasks)
    return {"success": True, "data": paper}


@router.get("/papers/{paper_id}")
def get_paper(paper_id: UUID, _profile: dict = Depends(get_current_profile)):
    return {"success": True, "data": PaperService().get_paper(str(paper_id))}


@router.put("/papers/{paper_id}")
def update_paper(
    paper_id: UUID,
    background_tasks: BackgroundTasks,
    payload: PaperUpdate = Body(...),
    profile: dict = Depends(get_current_profile),
):
    paper = PaperService().update_content(
        actor=profile,
        paper_id=str(paper_id),
        payload=payload,
        background_tasks=background_tasks,
    )
    return {"success": True, "data": paper}


@router.delete("/papers/{paper_id}")
def delete_paper(paper_id: UUID, profile: dict = Depends(get_current_profile)):
    PaperService().delete_paper(actor=profile, paper_id=str(paper_id))
    return {"success": True, "message": "Paper deleted successfully"}


@router.post("/papers/{paper_id}/recommend")
def recommend_paper(
    paper_id: UUID,
    background_tasks: BackgroundTasks,
    allow_skip: bool = Query(False),
    profile: dict = Depends(get_current_profile),
):
    """
    编辑推荐出版：通知全部管理员与作者
    """
    paper = PaperService().recommend_for_publication(
        actor=profile,
        paper_id=str(paper_id),
        allow_skip=allow_skip,
        background_tasks=background_tasks,
    )
    return {"success": True, "data": paper}


@router.put("/papers/{paper_id}/details")
def update_paper_details(
    paper_id: UUID,
    background_tasks: BackgroundTasks,
    payload: PaperDetailsUpdate = Body(...),
    profile: dict = Depends(get_current_profile),
):
    """
    编辑/协调员维护出版元数据；publication_id 为空时自动分配
    """
    paper = PaperService().update_publication_details(
        actor=profile,
        paper_id=str(paper_id),
        payload=payload,
        background_tasks=background_tasks,
    )
    return {"success": True, "data": paper}
