"""测试配置和 fixtures."""

from collections.abc import AsyncGenerator
from datetime import timedelta
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from postwise import models  # noqa: F401
from postwise.config import Settings
from postwise.imaging.base import ImageAIError, ImageAIProvider
from postwise.imaging.storage import LocalObjectStorage
from postwise.llm.base import LLMConfig, LLMProvider, LLMResult, Message
from postwise.models.prompt import ImageTemplate, Prompt
from postwise.models.source import Source, SourceImage
from postwise.utils.clock import utcnow


class FakeLLM(LLMProvider):
    """记录收到的提示词，返回固定文本."""

    name = "fake"

    def __init__(self, reply: str = "<p>첫 문단</p><p>둘째 문단</p>") -> None:
        super().__init__(LLMConfig(model="fake-model"))
        self.reply = reply
        self.prompts: list[str] = []
        self.closed = False

    async def chat(self, messages: list[Message]) -> LLMResult:
        self.prompts.append(messages[-1].content)
        return LLMResult(text=self.reply, tokens_used=42)

    async def close(self) -> None:
        self.closed = True


class FakeImageAI(ImageAIProvider):
    """把图片写到输出目录；指定序号的调用会失败."""

    def __init__(
        self,
        fail_process: set[int] | None = None,
        fail_generate: set[int] | None = None,
    ) -> None:
        self.fail_process = fail_process or set()
        self.fail_generate = fail_generate or set()
        self.process_calls = 0
        self.generate_calls = 0
        self.contexts: list[str] = []

    async def process_image(
        self,
        source_path: Path,
        prompt: str,
        remove_watermark: bool,
        output_dir: Path,
        filename: str,
    ) -> Path:
        self.process_calls += 1
        if self.process_calls in self.fail_process:
            raise ImageAIError("transform failed")
        output_dir.mkdir(parents=True, exist_ok=True)
        output = output_dir / filename
        output.write_bytes(b"processed")
        return output

    async def generate_image(
        self,
        prompt: str,
        context: str,
        output_dir: Path,
        filename: str,
    ) -> Path:
        self.generate_calls += 1
        self.contexts.append(context)
        if self.generate_calls in self.fail_generate:
            raise ImageAIError("generate failed")
        output_dir.mkdir(parents=True, exist_ok=True)
        output = output_dir / filename
        output.write_bytes(b"generated")
        return output


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """测试配置（不读取 .env）."""
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        data_dir=str(tmp_path / "data"),
        storage_public_base_url="http://cdn.test/files",
        crawl_article_delay_seconds=0,
    )


@pytest_asyncio.fixture
async def session_factory(
    tmp_path: Path,
) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """基于临时文件的 SQLite 数据库（并发测试需要多个连接）."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def storage(settings: Settings) -> LocalObjectStorage:
    return LocalObjectStorage(
        Path(settings.data_dir) / "files", settings.storage_public_base_url
    )


async def create_source(
    session_factory: async_sessionmaker[AsyncSession],
    data_dir: Path,
    image_count: int = 0,
    title: str = "테스트 기사",
    url: str = "https://n.news.naver.com/article/001/0000000001",
) -> Source:
    """创建一篇带本地图片的源文章."""
    now = utcnow()
    async with session_factory() as session:
        source = Source(
            title=title,
            original_url=url,
            url_hash=url,
            content_html="<p>기사 본문입니다.</p>",
            category="종합",
            source_site="테스트신문",
            crawled_at=now,
            expires_at=now + timedelta(days=7),
        )
        session.add(source)
        await session.flush()
        assert source.id is not None

        image_dir = data_dir / "uploads" / "sources" / str(source.id)
        image_dir.mkdir(parents=True, exist_ok=True)
        for index in range(image_count):
            path = image_dir / f"img{index}.jpg"
            path.write_bytes(b"jpeg")
            session.add(
                SourceImage(
                    source_id=source.id,
                    original_url=f"https://img.test/{index}.jpg",
                    local_path=path.relative_to(data_dir).as_posix(),
                )
            )
        await session.commit()
        return source


async def create_prompt_and_template(
    session_factory: async_sessionmaker[AsyncSession],
    new_image_prompt: str | None = "일러스트를 그려주세요",
) -> tuple[Prompt, ImageTemplate]:
    async with session_factory() as session:
        prompt = Prompt(
            name="기본",
            content="다음 기사로 글을 써주세요: {원문} 키워드: {키워드}",
            model_provider="openai",
            model_name="gpt-4o-mini",
        )
        template = ImageTemplate(
            name="기본 템플릿",
            original_image_prompt="사진을 수채화로",
            new_image_prompt=new_image_prompt,
            remove_watermark=True,
        )
        session.add(prompt)
        session.add(template)
        await session.commit()
        return prompt, template
