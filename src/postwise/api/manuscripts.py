"""原稿 API."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from postwise.config import get_settings
from postwise.core.errors import ConflictError, NotFoundError, ValidationError
from postwise.core.manuscripts import ManuscriptService
from postwise.models.database import get_session

router = APIRouter(prefix="/api/manuscripts", tags=["manuscripts"])


class GenerateRequest(BaseModel):
    """原稿生成请求."""

    user_id: int
    source_id: int
    prompt_id: int
    image_template_id: int
    keyword: str | None = None
    length_option: str | None = None
    new_image_count: int = Field(default=0)


class PublishRequest(BaseModel):
    """发布登记请求."""

    url: str
    platform: str
    keyword: str | None = None


def get_service(session: AsyncSession = Depends(get_session)) -> ManuscriptService:
    settings = get_settings()
    return ManuscriptService(
        session,
        job_max_attempts=settings.job_max_attempts,
        tracking_window_days=settings.tracking_window_days,
    )


def _to_http(error: Exception) -> HTTPException:
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, ConflictError):
        return HTTPException(status_code=409, detail=str(error))
    return HTTPException(status_code=400, detail=str(error))


@router.post("/generate", status_code=201)
async def generate_manuscript(
    body: GenerateRequest,
    service: ManuscriptService = Depends(get_service),
) -> dict[str, Any]:
    """创建原稿并投递生成任务."""
    try:
        return await service.request_generation(
            user_id=body.user_id,
            source_id=body.source_id,
            prompt_id=body.prompt_id,
            image_template_id=body.image_template_id,
            keyword=body.keyword,
            length_option=body.length_option,
            new_image_count=body.new_image_count,
        )
    except (NotFoundError, ValidationError) as e:
        raise _to_http(e) from e


@router.get("/{manuscript_id}/status")
async def get_manuscript_status(
    manuscript_id: int,
    service: ManuscriptService = Depends(get_service),
) -> dict[str, Any]:
    """查询生成状态（前端轮询）."""
    try:
        return await service.get_status(manuscript_id)
    except NotFoundError as e:
        raise _to_http(e) from e


@router.post("/{manuscript_id}/publish", status_code=201)
async def publish_manuscript(
    manuscript_id: int,
    body: PublishRequest,
    service: ManuscriptService = Depends(get_service),
) -> dict[str, Any]:
    """登记发布结果，开始成效追踪."""
    try:
        posting = await service.publish(
            manuscript_id, body.url, body.platform, body.keyword
        )
    except (NotFoundError, ValidationError, ConflictError) as e:
        raise _to_http(e) from e
    return {"posting": posting.model_dump()}


@router.get("/{manuscript_id}/performance")
async def get_manuscript_performance(
    manuscript_id: int,
    service: ManuscriptService = Depends(get_service),
) -> dict[str, Any]:
    """发布记录、追踪窗口和全部数据点."""
    try:
        result = await service.get_performance(manuscript_id)
    except NotFoundError as e:
        raise _to_http(e) from e

    posting = result["posting"]
    tracking = result["tracking"]
    return {
        "posting": posting.model_dump() if posting else None,
        "tracking": tracking.model_dump() if tracking else None,
        "data": [point.model_dump() for point in result["data"]],
    }
