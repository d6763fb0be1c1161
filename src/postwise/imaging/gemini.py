"""Gemini 图片 Provider."""

import asyncio
import base64
import logging
import shutil
from pathlib import Path
from typing import Any

import httpx

from postwise.imaging.base import (
    ImageAIError,
    ImageAIProvider,
    build_generation_prompt,
    build_transform_prompt,
    mime_type_from_path,
    with_image_extension,
)

logger = logging.getLogger(__name__)


class GeminiImageProvider(ImageAIProvider):
    """基于 Gemini 多模态 generateContent 的图片变换/生成."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-flash-image",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def close(self) -> None:
        """关闭客户端."""
        await self._client.aclose()

    async def process_image(
        self,
        source_path: Path,
        prompt: str,
        remove_watermark: bool,
        output_dir: Path,
        filename: str,
    ) -> Path:
        """变换原图，调用失败时回退为原图副本."""
        if not source_path.is_file():
            msg = f"原图不存在: {source_path}"
            raise ImageAIError(msg)

        output_dir.mkdir(parents=True, exist_ok=True)
        output_path = output_dir / filename

        try:
            data, mime_type = await self._call(
                build_transform_prompt(prompt, remove_watermark),
                input_image=source_path,
            )
        except ImageAIError as e:
            logger.warning(f"图片变换失败，使用原图: {source_path.name} - {e}")
            final_path = with_image_extension(
                output_path, mime_type_from_path(source_path)
            )
            await asyncio.to_thread(shutil.copyfile, source_path, final_path)
            return final_path

        final_path = with_image_extension(output_path, mime_type)
        await asyncio.to_thread(final_path.write_bytes, data)
        return final_path

    async def generate_image(
        self,
        prompt: str,
        context: str,
        output_dir: Path,
        filename: str,
    ) -> Path:
        """生成新图."""
        output_dir.mkdir(parents=True, exist_ok=True)
        data, mime_type = await self._call(build_generation_prompt(prompt, context))

        final_path = with_image_extension(output_dir / filename, mime_type)
        await asyncio.to_thread(final_path.write_bytes, data)
        return final_path

    async def _call(
        self, prompt: str, input_image: Path | None = None
    ) -> tuple[bytes, str]:
        """调用 Gemini，返回 (图片字节, MIME 类型)."""
        if not self.api_key:
            msg = "GEMINI_API_KEY 未配置"
            raise ImageAIError(msg)

        parts: list[dict[str, Any]] = []
        if input_image is not None:
            raw = await asyncio.to_thread(input_image.read_bytes)
            parts.append(
                {
                    "inline_data": {
                        "mime_type": mime_type_from_path(input_image),
                        "data": base64.b64encode(raw).decode("ascii"),
                    }
                }
            )
        parts.append({"text": prompt})

        url = f"{self.base_url}/models/{self.model}:generateContent"
        payload = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "temperature": 0.7,
                "responseModalities": ["TEXT", "IMAGE"],
            },
        }

        try:
            response = await self._client.post(
                url, params={"key": self.api_key}, json=payload
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            msg = f"Gemini 图片请求失败: {e}"
            raise ImageAIError(msg) from e

        data = response.json()
        candidates = data.get("candidates") or [{}]
        for part in candidates[0].get("content", {}).get("parts", []):
            inline = part.get("inline_data") or part.get("inlineData")
            if inline and inline.get("data"):
                mime_type = (
                    inline.get("mime_type") or inline.get("mimeType") or "image/png"
                )
                return base64.b64decode(inline["data"]), mime_type

        msg = "Gemini 图片响应为空"
        raise ImageAIError(msg)
