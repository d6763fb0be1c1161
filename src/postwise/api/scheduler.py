"""调度器手动触发 API."""

from typing import Any

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request

from postwise.scheduler.tasks import TaskScheduler

router = APIRouter(prefix="/api/scheduler", tags=["scheduler"])


def _get_scheduler(request: Request) -> TaskScheduler:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="调度器未启用")
    return scheduler


@router.get("/status")
async def get_scheduler_status(request: Request) -> dict[str, Any]:
    """调度器和各任务的运行状态."""
    return _get_scheduler(request).status()


@router.post("/crawl", status_code=202)
async def trigger_crawl(
    request: Request,
    background_tasks: BackgroundTasks,
) -> dict[str, str]:
    """立即执行一次抓取."""
    scheduler = _get_scheduler(request)
    if scheduler.crawl_guard.running:
        raise HTTPException(status_code=409, detail="已有抓取任务在运行中")

    background_tasks.add_task(scheduler.run_crawl)
    return {"message": "抓取已开始"}


@router.post("/performance", status_code=202)
async def trigger_performance(
    request: Request,
    background_tasks: BackgroundTasks,
) -> dict[str, str]:
    """立即执行一次成效采集."""
    scheduler = _get_scheduler(request)
    if scheduler.performance_guard.running:
        raise HTTPException(status_code=409, detail="已有成效采集任务在运行中")

    background_tasks.add_task(scheduler.run_performance)
    return {"message": "成效采集已开始"}
