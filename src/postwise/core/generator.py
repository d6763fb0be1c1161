"""原稿生成流水线."""

import logging
import shutil
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from postwise.config import Settings
from postwise.core.errors import (
    InvalidPayloadError,
    ManuscriptNotFoundError,
    SourceNotFoundError,
)
from postwise.core.sources import remove_worker
from postwise.imaging.base import ImageAIProvider
from postwise.imaging.storage import ObjectStorage, cleanup_local_file
from postwise.llm.base import LLMProvider
from postwise.llm.factory import create_llm_provider
from postwise.models.manuscript import (
    ImageType,
    LengthOption,
    Manuscript,
    ManuscriptImage,
    ManuscriptStatus,
)
from postwise.models.source import Source, SourceImage
from postwise.utils.clock import utcnow
from postwise.utils.html_parser import html_to_text, insert_images_into_html

logger = logging.getLogger(__name__)

BODY_PLACEHOLDER = "{원문}"
KEYWORD_PLACEHOLDER = "{키워드}"

LENGTH_GUIDE = {
    LengthOption.SHORT: "500자 내외의 짧은 글",
    LengthOption.MEDIUM: "1000자 내외의 보통 길이 글",
    LengthOption.LONG: "2000자 내외의 긴 글",
}

LLMFactory = Callable[[Settings, str | None, str | None], LLMProvider]


class ImageTemplatePayload(BaseModel):
    """任务中携带的图片模板快照."""

    original_image_prompt: str = ""
    new_image_prompt: str | None = None
    remove_watermark: bool = False


class GenerationPayload(BaseModel):
    """原稿生成任务参数."""

    manuscript_id: int
    user_id: int
    source_id: int
    prompt_content: str
    model_provider: str | None = None
    model_name: str | None = None
    image_template: ImageTemplatePayload = Field(default_factory=ImageTemplatePayload)
    keyword: str | None = None
    length_option: str = LengthOption.MEDIUM
    new_image_count: int = Field(default=0, ge=0, le=10)

    @classmethod
    def parse(cls, data: dict[str, Any]) -> "GenerationPayload":
        """校验任务参数，格式错误时抛出不可重试的异常."""
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            msg = f"任务参数格式错误: {e.error_count()} 处"
            raise InvalidPayloadError(msg) from e


@dataclass
class _StoredImage:
    key: str
    url: str
    source_image_id: int | None = None


def build_prompt(
    prompt_content: str,
    source_html: str,
    keyword: str | None,
    length_option: str,
) -> str:
    """组装最终提示词：替换正文/关键词占位符并追加长度要求."""
    prompt = prompt_content.replace(BODY_PLACEHOLDER, source_html)
    prompt = prompt.replace(KEYWORD_PLACEHOLDER, keyword or "")
    guide = LENGTH_GUIDE.get(length_option, LENGTH_GUIDE[LengthOption.MEDIUM])
    return f"{prompt}\n\n글 길이: {guide}"


def build_image_context(
    title: str, keyword: str | None, content: str, max_chars: int = 1200
) -> str:
    """生成新图时作为参考的上下文."""
    parts = [f"제목: {title}"]
    if keyword:
        parts.append(f"키워드: {keyword}")
    if content:
        parts.append(content)
    return "\n".join(parts)[:max_chars]


class ManuscriptGenerator:
    """原稿生成流水线.

    提示词组装 → LLM 生成 → 原图变换 → 新图生成 → 图片排版 → 落库。
    单张图片失败只记录日志并跳过；其余步骤失败会向上抛出，由 worker
    决定是否重试。无论成功与否都会解除用户在源文章上的作业登记。
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        image_ai: ImageAIProvider,
        storage: ObjectStorage,
        llm_factory: LLMFactory = create_llm_provider,
    ) -> None:
        self.session_factory = session_factory
        self.settings = settings
        self.image_ai = image_ai
        self.storage = storage
        self.llm_factory = llm_factory
        self.data_dir = Path(settings.data_dir)

    async def generate(self, payload: GenerationPayload) -> None:
        """执行一次生成."""
        try:
            await self._generate(payload)
        finally:
            await self.release_worker(payload.source_id, payload.user_id)

    async def release_worker(self, source_id: int, user_id: int) -> None:
        """解除作业登记（幂等）."""
        try:
            async with self.session_factory() as session:
                await remove_worker(session, source_id, user_id)
                await session.commit()
        except Exception:
            logger.exception(f"解除作业登记失败: source={source_id} user={user_id}")

    async def _generate(self, payload: GenerationPayload) -> None:
        manuscript_id = payload.manuscript_id

        # 1. 读取源文章
        async with self.session_factory() as session:
            source = await session.get(Source, payload.source_id)
            if source is None:
                msg = f"源文章不存在: #{payload.source_id}"
                raise SourceNotFoundError(msg)
            result = await session.execute(
                select(SourceImage)
                .where(SourceImage.source_id == source.id)
                .order_by(SourceImage.id)  # type: ignore[arg-type]
            )
            source_images = list(result.scalars().all())

        # 2. 组装提示词
        prompt = build_prompt(
            payload.prompt_content,
            source.content_html,
            payload.keyword,
            payload.length_option,
        )

        # 3. 调用 LLM
        provider = self.llm_factory(
            self.settings, payload.model_provider, payload.model_name
        )
        try:
            llm_result = await provider.generate(prompt)
        finally:
            await provider.close()
        content_html = llm_result.text
        logger.info(
            f"原稿 #{manuscript_id} 文本生成完成 "
            f"({provider.name}, {llm_result.tokens_used} tokens)"
        )

        scratch_dir = self.data_dir / "tmp" / "manuscripts" / str(manuscript_id)
        try:
            # 4. 原图变换
            processed = await self._process_source_images(
                payload, source_images, scratch_dir
            )

            # 5. 新图生成
            generated: list[_StoredImage] = []
            template = payload.image_template
            if payload.new_image_count > 0 and template.new_image_prompt:
                context = build_image_context(
                    source.title,
                    payload.keyword,
                    html_to_text(source.content_html),
                    self.settings.image_context_max_chars,
                )
                generated = await self._generate_new_images(
                    payload, template.new_image_prompt, context, scratch_dir
                )
        finally:
            shutil.rmtree(scratch_dir, ignore_errors=True)

        # 6. 图片排版
        image_urls = [img.url for img in processed] + [img.url for img in generated]
        if image_urls:
            content_html = insert_images_into_html(content_html, image_urls)

        # 7. 落库
        await self._save(manuscript_id, content_html, processed, generated)
        logger.info(
            f"原稿 #{manuscript_id} 生成完成: 原图 {len(processed)} 张, "
            f"新图 {len(generated)} 张"
        )

    async def _process_source_images(
        self,
        payload: GenerationPayload,
        source_images: list[SourceImage],
        scratch_dir: Path,
    ) -> list[_StoredImage]:
        template = payload.image_template
        stored: list[_StoredImage] = []

        for index, image in enumerate(source_images, 1):
            try:
                output = await self.image_ai.process_image(
                    source_path=self.data_dir / image.local_path,
                    prompt=template.original_image_prompt,
                    remove_watermark=template.remove_watermark,
                    output_dir=scratch_dir,
                    filename=f"original_{index}.png",
                )
                item = await self._store(payload.manuscript_id, output)
                item.source_image_id = image.id
                stored.append(item)
            except Exception as e:
                logger.warning(
                    f"原稿 #{payload.manuscript_id} 原图 {index} 处理失败，跳过: {e}"
                )

        return stored

    async def _generate_new_images(
        self,
        payload: GenerationPayload,
        prompt: str,
        context: str,
        scratch_dir: Path,
    ) -> list[_StoredImage]:
        stored: list[_StoredImage] = []

        for index in range(1, payload.new_image_count + 1):
            try:
                output = await self.image_ai.generate_image(
                    prompt=prompt,
                    context=context,
                    output_dir=scratch_dir,
                    filename=f"generated_{index}.png",
                )
                stored.append(await self._store(payload.manuscript_id, output))
            except Exception as e:
                logger.warning(
                    f"原稿 #{payload.manuscript_id} 新图 {index} 生成失败，跳过: {e}"
                )

        return stored

    async def _store(self, manuscript_id: int, local_path: Path) -> _StoredImage:
        """上传到对象存储并删除临时文件."""
        key = f"manuscripts/{manuscript_id}/{local_path.name}"
        uploaded = await self.storage.upload(local_path, key)
        cleanup_local_file(local_path)
        return _StoredImage(key=uploaded.key, url=uploaded.url)

    async def _save(
        self,
        manuscript_id: int,
        content_html: str,
        processed: list[_StoredImage],
        generated: list[_StoredImage],
    ) -> None:
        async with self.session_factory() as session:
            manuscript = await session.get(Manuscript, manuscript_id)
            if manuscript is None:
                msg = f"原稿不存在: #{manuscript_id}"
                raise ManuscriptNotFoundError(msg)

            manuscript.content_html = content_html
            manuscript.status = ManuscriptStatus.GENERATED
            manuscript.updated_at = utcnow()

            sort_order = 0
            for image in processed:
                session.add(
                    ManuscriptImage(
                        manuscript_id=manuscript_id,
                        image_type=ImageType.ORIGINAL_PROCESSED,
                        original_source_image_id=image.source_image_id,
                        file_path=image.key,
                        file_url=image.url,
                        sort_order=sort_order,
                    )
                )
                sort_order += 1
            for image in generated:
                session.add(
                    ManuscriptImage(
                        manuscript_id=manuscript_id,
                        image_type=ImageType.GENERATED,
                        file_path=image.key,
                        file_url=image.url,
                        sort_order=sort_order,
                    )
                )
                sort_order += 1

            await session.commit()
