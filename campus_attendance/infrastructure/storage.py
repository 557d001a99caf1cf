import json
import threading
from pathlib import Path
from typing import Optional

import redis
import structlog

from ..application.ports import IKeyValueStorage

logger = structlog.get_logger()


class InMemoryStorage(IKeyValueStorage):
    def __init__(self):
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str, ttl: int = None) -> bool:
        # срок жизни хранится внутри значения, ttl здесь не нужен
        self._data[key] = value
        return True

    def delete(self, key: str) -> bool:
        self._data.pop(key, None)
        return True


class JsonFileStorage(IKeyValueStorage):
    """Аналог localStorage браузера: один JSON-файл с парами ключ/строка."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("session_storage_unreadable", path=str(self.path))
            return {}
        return data if isinstance(data, dict) else {}

    def _dump(self, data: dict[str, str]) -> bool:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
            tmp.replace(self.path)
            return True
        except OSError as e:
            logger.warning("session_storage_write_failed", path=str(self.path), error=str(e))
            return False

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            value = self._load().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str, ttl: int = None) -> bool:
        with self._lock:
            data = self._load()
            data[key] = value
            return self._dump(data)

    def delete(self, key: str) -> bool:
        with self._lock:
            data = self._load()
            if key not in data:
                return True
            del data[key]
            return self._dump(data)


class RedisStorage(IKeyValueStorage):
    def __init__(self, url: str, client: Optional[redis.Redis] = None):
        self.url = url
        self._client = client

    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(
                self.url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True
            )
        return self._client

    def get(self, key: str) -> Optional[str]:
        """Получить значение из Redis"""
        try:
            return self.client().get(key)
        except Exception:
            # Если Redis недоступен, считаем что записи нет
            return None

    def set(self, key: str, value: str, ttl: int = None) -> bool:
        """Сохранить значение в Redis"""
        try:
            if ttl:
                self.client().setex(key, ttl, value)
            else:
                self.client().set(key, value)
            return True
        except Exception:
            return False

    def delete(self, key: str) -> bool:
        """Удалить значение из Redis"""
        try:
            self.client().delete(key)
            return True
        except Exception:
            return False


def storage_from_url(url: str) -> IKeyValueStorage:
    if url.startswith(("redis://", "rediss://", "unix://")):
        return RedisStorage(url)
    if url.startswith("memory://"):
        return InMemoryStorage()
    return JsonFileStorage(url.removeprefix("file://"))
