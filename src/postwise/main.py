"""PostWise 主应用入口."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from postwise.api import jobs, manuscripts, scheduler
from postwise.config import get_settings
from postwise.models.database import async_session_maker, close_db, init_db
from postwise.scheduler import create_scheduler

# 配置日志
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """应用生命周期管理."""
    app_settings = get_settings()

    # 启动时初始化
    logger.info("正在初始化数据库...")
    await init_db(app_settings.database_url)

    task_scheduler = None
    if app_settings.scheduler_enabled:
        task_scheduler = create_scheduler(app_settings, async_session_maker())

        # 恢复上次中断的任务
        logger.info("正在检查中断的任务...")
        await task_scheduler.worker.recover()

        logger.info("正在启动定时任务...")
        task_scheduler.start()
    else:
        logger.info("定时任务已禁用")
    app.state.scheduler = task_scheduler

    logger.info("PostWise 启动完成！")
    yield

    # 关闭时清理
    logger.info("正在关闭...")
    if task_scheduler is not None:
        await task_scheduler.shutdown()
    await close_db()
    logger.info("PostWise 已关闭")


app = FastAPI(
    title="PostWise",
    description="新闻抓取、AI 原稿生成与发布成效追踪",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册路由
app.include_router(manuscripts.router)
app.include_router(jobs.router)
app.include_router(scheduler.router)

# 本地对象存储的公开访问路径
_files_dir = Path(get_settings().data_dir) / "files"
_files_dir.mkdir(parents=True, exist_ok=True)
app.mount("/files", StaticFiles(directory=_files_dir), name="files")


@app.get("/health")
async def health() -> dict:
    """健康检查."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "postwise.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
