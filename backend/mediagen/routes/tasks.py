"""
生成任务路由
所有任务类型共用一套接口：/api/tasks/{task_type}
"""
import logging
from datetime import datetime

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy import func
from sqlalchemy.orm import Session

from mediagen.auth import get_current_user
from mediagen.database import get_db
from mediagen.errors import task_not_found_error
from mediagen.models import GenerationTaskMixin, User
from mediagen.schemas import (
    AllTasksResponse,
    APIResponse,
    BatchDeleteRequest,
    BatchDeleteResponse,
    TaskCreatedResponse,
    TaskListResponse,
    TaskResponse,
    TaskStatsResponse,
)
from mediagen.services.orchestrator import TaskOrchestrator, get_orchestrator
from mediagen.services.task_queue import task_queue

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tasks", tags=["tasks"])

COMMON_FIELDS = {
    name for name in dir(GenerationTaskMixin) if not name.startswith("_")
}


def task_to_response(task, task_type: str) -> TaskResponse:
    params = {
        column.name: getattr(task, column.name)
        for column in task.__table__.columns
        if column.name not in COMMON_FIELDS
    }
    return TaskResponse(
        id=task.id,
        task_type=task_type,
        status=task.status,
        credits_cost=task.credits_cost,
        external_task_id=task.external_task_id,
        result_urls=task.result_urls,
        result_text=task.result_text,
        error_message=task.error_message,
        duration_seconds=task.duration_seconds,
        params=params,
        created_at=task.created_at,
        updated_at=task.updated_at,
    )


@router.get("", response_model=AllTasksResponse)
def list_all_tasks(
    limit: int = Query(50, ge=1, le=200),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    orchestrator: TaskOrchestrator = Depends(get_orchestrator),
):
    """
    获取所有类型的任务

    - 按创建时间倒序合并
    - counts 为各类型任务总数
    """
    merged = []
    counts = {}
    for task_type, adapter in orchestrator.adapters.items():
        model = adapter.task_model
        query = db.query(model).filter(model.user_id == current_user.id)
        counts[task_type] = query.with_entities(func.count(model.id)).scalar() or 0
        for task in query.order_by(model.created_at.desc()).limit(limit).all():
            merged.append(task_to_response(task, task_type))

    merged.sort(key=lambda t: t.created_at or datetime.min, reverse=True)
    return AllTasksResponse(tasks=merged[:limit], counts=counts, total=sum(counts.values()))


@router.get("/stats", response_model=TaskStatsResponse)
def get_task_stats(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    orchestrator: TaskOrchestrator = Depends(get_orchestrator),
):
    """获取全局并发与队列统计"""
    by_type = orchestrator.admission.active_counts(db)
    return TaskStatsResponse(
        active=sum(by_type.values()),
        max_concurrent=orchestrator.admission.max_concurrent,
        by_type=by_type,
        queue=task_queue.get_queue_stats(),
    )


@router.post("/{task_type}", response_model=TaskCreatedResponse)
def create_task(
    task_type: str,
    payload: dict = Body(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    orchestrator: TaskOrchestrator = Depends(get_orchestrator),
):
    """
    提交生成任务

    - 提交时扣除积分，失败（非违规）自动退还
    - 后台执行，通过 GET /api/tasks/{task_type}/{task_id} 轮询状态
    - 并发任务达到上限时返回 429，可稍后重试
    """
    task = orchestrator.submit(db, current_user, task_type, payload)
    return TaskCreatedResponse(
        id=task.id,
        task_type=task_type,
        status=task.status,
        credits_cost=task.credits_cost,
        created_at=task.created_at,
    )


@router.get("/{task_type}", response_model=TaskListResponse)
def list_tasks(
    task_type: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    orchestrator: TaskOrchestrator = Depends(get_orchestrator),
):
    """获取某类任务的分页列表"""
    model = orchestrator.get_adapter(task_type).task_model
    query = db.query(model).filter(model.user_id == current_user.id)
    total = query.count()
    tasks = (
        query.order_by(model.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return TaskListResponse(
        tasks=[task_to_response(t, task_type) for t in tasks],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/{task_type}/{task_id}", response_model=TaskResponse)
def get_task(
    task_type: str,
    task_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    orchestrator: TaskOrchestrator = Depends(get_orchestrator),
):
    """获取任务详情（前端轮询用）"""
    model = orchestrator.get_adapter(task_type).task_model
    task = db.query(model).filter(
        model.id == task_id,
        model.user_id == current_user.id
    ).first()
    if not task:
        raise task_not_found_error(task_id)
    return task_to_response(task, task_type)


@router.delete("/{task_type}/{task_id}", response_model=APIResponse)
def delete_task(
    task_type: str,
    task_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    orchestrator: TaskOrchestrator = Depends(get_orchestrator),
):
    """
    删除任务记录

    - 仅删除记录，不会取消生成服务端的任务，也不会退还积分
    """
    model = orchestrator.get_adapter(task_type).task_model
    task = db.query(model).filter(
        model.id == task_id,
        model.user_id == current_user.id
    ).first()
    if not task:
        raise task_not_found_error(task_id)

    db.delete(task)
    db.commit()
    logger.info(f"Task {task_id} deleted by user {current_user.id}")
    return APIResponse(success=True, message="Task deleted")


@router.post("/{task_type}/batch-delete", response_model=BatchDeleteResponse)
def batch_delete_tasks(
    task_type: str,
    request: BatchDeleteRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    orchestrator: TaskOrchestrator = Depends(get_orchestrator),
):
    """批量删除任务记录，只删除属于当前用户的任务"""
    model = orchestrator.get_adapter(task_type).task_model
    deleted = db.query(model).filter(
        model.user_id == current_user.id,
        model.id.in_(request.task_ids)
    ).delete(synchronize_session=False)
    db.commit()
    logger.info(f"User {current_user.id} batch deleted {deleted} {task_type} tasks")
    return BatchDeleteResponse(deleted_count=deleted)
