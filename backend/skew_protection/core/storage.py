"""Key-value storage port and its built-in backends"""

import json
import logging
import shutil
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional
from skew_protection.core.config import Settings
from skew_protection.models.errors import ApplicationError, ErrorCode, StorageError

logger = logging.getLogger(__name__)


class Storage:
    """
    Minimal async key-value contract consumed by the manifest store, the
    dedup engine, the retention policy and the asset router.

    Structured values (`get`/`set`) are JSON documents; raw values
    (`get_raw`/`set_raw`) are bytes. Missing keys return None.
    """

    async def has(self, key: str) -> bool:
        raise NotImplementedError

    async def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    async def get_raw(self, key: str) -> Optional[bytes]:
        raise NotImplementedError

    async def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    async def set_raw(self, key: str, data: bytes) -> None:
        raise NotImplementedError

    async def remove(self, key: str) -> None:
        raise NotImplementedError

    async def list_keys(self, prefix: Optional[str] = None) -> List[str]:
        raise NotImplementedError

    async def clear(self, prefix: Optional[str] = None) -> None:
        for key in await self.list_keys(prefix):
            await self.remove(key)

    async def close(self) -> None:
        """Release backend resources"""


def normalize_key(key: str) -> str:
    """Normalize to a relative '/'-separated key, rejecting traversal"""
    cleaned = key.replace("\\", "/").strip("/")
    parts = PurePosixPath(cleaned).parts
    if not cleaned or any(part in ("..", ".") for part in parts):
        raise ApplicationError(
            code=ErrorCode.INVALID_KEY,
            message=f"Invalid storage key: {key!r}",
        )
    return "/".join(parts)


class MemoryStorage(Storage):
    """In-process storage; contents vanish with the process"""

    def __init__(self):
        self._data: Dict[str, Any] = {}

    async def has(self, key: str) -> bool:
        return normalize_key(key) in self._data

    async def get(self, key: str) -> Optional[Any]:
        value = self._data.get(normalize_key(key))
        if isinstance(value, bytes):
            try:
                return json.loads(value.decode("utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError):
                return None
        # Hand out a copy so callers can't mutate stored documents in place
        return json.loads(json.dumps(value)) if value is not None else None

    async def get_raw(self, key: str) -> Optional[bytes]:
        value = self._data.get(normalize_key(key))
        if value is None:
            return None
        if isinstance(value, bytes):
            return value
        return json.dumps(value).encode("utf-8")

    async def set(self, key: str, value: Any) -> None:
        self._data[normalize_key(key)] = json.loads(json.dumps(value))

    async def set_raw(self, key: str, data: bytes) -> None:
        self._data[normalize_key(key)] = bytes(data)

    async def remove(self, key: str) -> None:
        self._data.pop(normalize_key(key), None)

    async def list_keys(self, prefix: Optional[str] = None) -> List[str]:
        keys = sorted(self._data.keys())
        if prefix:
            prefix = prefix.replace("\\", "/").strip("/")
            keys = [k for k in keys if k.startswith(prefix)]
        return keys


class FileSystemStorage(Storage):
    """Stores each key as a file under a base directory"""

    def __init__(self, base: str):
        self.base_path = Path(base).resolve()
        logger.info(f"Using storage path: {self.base_path}")

    def _path(self, key: str) -> Path:
        return self.base_path.joinpath(*normalize_key(key).split("/"))

    async def has(self, key: str) -> bool:
        return self._path(key).is_file()

    async def get(self, key: str) -> Optional[Any]:
        data = await self.get_raw(key)
        if data is None:
            return None
        try:
            return json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Stored value for '{key}' is not valid JSON: {e}")
            return None

    async def get_raw(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        if not path.is_file():
            return None
        try:
            return path.read_bytes()
        except OSError as e:
            raise StorageError(key, str(e)) from e

    async def set(self, key: str, value: Any) -> None:
        await self.set_raw(key, json.dumps(value, indent=2, ensure_ascii=False).encode("utf-8"))

    async def set_raw(self, key: str, data: bytes) -> None:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            raise StorageError(key, str(e)) from e

    async def remove(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(key, str(e)) from e
        self._prune_empty_dirs(path.parent)

    async def list_keys(self, prefix: Optional[str] = None) -> List[str]:
        if not self.base_path.exists():
            return []
        keys = sorted(
            path.relative_to(self.base_path).as_posix()
            for path in self.base_path.rglob("*")
            if path.is_file()
        )
        if prefix:
            prefix = prefix.replace("\\", "/").strip("/")
            keys = [k for k in keys if k.startswith(prefix)]
        return keys

    async def clear(self, prefix: Optional[str] = None) -> None:
        if not prefix:
            if self.base_path.exists():
                shutil.rmtree(self.base_path)
            return
        await super().clear(prefix)

    def _prune_empty_dirs(self, directory: Path) -> None:
        while directory != self.base_path and self.base_path in directory.parents:
            try:
                directory.rmdir()
            except OSError:
                break
            directory = directory.parent


def create_storage(settings: Settings) -> Storage:
    """Select the storage backend once, from configuration"""
    if settings.storage_driver == "memory":
        logger.info("Using in-memory storage")
        return MemoryStorage()
    if settings.storage_driver == "fs":
        return FileSystemStorage(settings.storage_base)
    raise ApplicationError(
        code=ErrorCode.CONFIGURATION_ERROR,
        message=f"Unknown storage driver: {settings.storage_driver}",
    )
