"""图片 AI 抽象基类."""

from abc import ABC, abstractmethod
from pathlib import Path

_MIME_BY_EXT = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".gif": "image/gif",
}

_EXT_BY_MIME = {
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
    "image/gif": ".gif",
    "image/png": ".png",
}


class ImageAIError(Exception):
    """图片 AI 调用失败."""


def mime_type_from_path(path: Path) -> str:
    """根据扩展名推断 MIME 类型（未知时按 png 处理）."""
    return _MIME_BY_EXT.get(path.suffix.lower(), "image/png")


def with_image_extension(path: Path, mime_type: str) -> Path:
    """确保文件扩展名与 MIME 类型一致."""
    return path.with_suffix(_EXT_BY_MIME.get(mime_type, ".png"))


def build_transform_prompt(prompt: str, remove_watermark: bool) -> str:
    """组装原图变换指令."""
    instructions = [prompt.strip() if prompt else ""]
    if remove_watermark:
        instructions.append("워터마크는 제거해주세요.")
    return "\n".join(i for i in instructions if i)


def build_generation_prompt(prompt: str, context: str) -> str:
    """组装新图生成指令."""
    base = (prompt or "").strip()
    ctx = (context or "").strip()
    if not ctx:
        return base
    return f"{base}\n\n[참고 컨텍스트]\n{ctx}"


class ImageAIProvider(ABC):
    """图片变换/生成服务."""

    @abstractmethod
    async def process_image(
        self,
        source_path: Path,
        prompt: str,
        remove_watermark: bool,
        output_dir: Path,
        filename: str,
    ) -> Path:
        """变换原图并返回输出路径.

        变换调用失败时复制原图作为输出；原图不存在等无法恢复的情况抛出
        ``ImageAIError``。
        """
        ...

    @abstractmethod
    async def generate_image(
        self,
        prompt: str,
        context: str,
        output_dir: Path,
        filename: str,
    ) -> Path:
        """生成新图并返回输出路径，失败时抛出 ``ImageAIError``."""
        ...

    async def close(self) -> None:
        """释放底层客户端."""
        return None
