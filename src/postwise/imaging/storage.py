"""对象存储."""

import asyncio
import logging
import shutil
from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class StoredObject(BaseModel):
    """已上传的对象."""

    key: str
    url: str


class ObjectStorage(ABC):
    """持久化对象存储."""

    @abstractmethod
    async def upload(self, local_path: Path, key: str) -> StoredObject:
        """上传本地文件."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """删除对象（不存在时忽略）."""
        ...


class LocalObjectStorage(ObjectStorage):
    """本地目录存储，通过静态文件服务对外提供访问."""

    def __init__(self, root_dir: Path, public_base_url: str) -> None:
        self.root_dir = root_dir
        self.public_base_url = public_base_url.rstrip("/")

    def _resolve(self, key: str) -> Path:
        target = (self.root_dir / key).resolve()
        if not target.is_relative_to(self.root_dir.resolve()):
            msg = f"非法的存储 key: {key}"
            raise ValueError(msg)
        return target

    async def upload(self, local_path: Path, key: str) -> StoredObject:
        """复制文件到存储目录."""
        target = self._resolve(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(shutil.copyfile, local_path, target)
        return StoredObject(key=key, url=f"{self.public_base_url}/{key}")

    async def delete(self, key: str) -> None:
        """删除文件."""
        self._resolve(key).unlink(missing_ok=True)


def cleanup_local_file(path: Path) -> None:
    """删除临时文件（尽力而为）."""
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.debug(f"临时文件删除失败: {path} - {e}")
