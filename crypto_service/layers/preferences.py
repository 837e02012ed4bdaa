"""
偏好设置存储层
保存少量标量设置（模拟数据开关、日初余额等），写入首个可用后端，读取时按优先级查找：
Redis（哈希） → MongoDB（preferences 集合） → 文件（prefs.json）
"""

import json
import logging
import os
from typing import Any, Dict, Optional

from crypto_service.config import settings
from crypto_service.db import get_preferences_collection, get_redis

logger = logging.getLogger(__name__)

# ── 偏好键 ───────────────────────────────────────────────
PREF_USE_MOCK_DATA = "use_mock_data"
PREF_BALANCE_AT_START_OF_DAY = "balance_at_start_of_day"
PREF_LAST_DAY_CHECKED = "last_day_checked"

_REDIS_HASH = "crypto_service:preferences"
_PREFS_FILE = "prefs.json"

_MISSING = object()


class PreferenceStore:
    """键值偏好存储，值为可 JSON 序列化的标量"""

    def __init__(self, prefs_dir: Optional[str] = None):
        self._dir = prefs_dir or settings.PREFS_DIR

    @property
    def file_path(self) -> str:
        return os.path.join(self._dir, _PREFS_FILE)

    # ── 文件后端 ──────────────────────────────────────────

    def _read_file(self) -> Dict[str, Any]:
        if not os.path.exists(self.file_path):
            return {}
        try:
            with open(self.file_path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
            return data if isinstance(data, dict) else {}
        except (OSError, ValueError) as exc:
            logger.debug(f"偏好文件读取失败: {exc}")
            return {}

    def _write_file(self, data: Dict[str, Any]) -> None:
        os.makedirs(self._dir, exist_ok=True)
        with open(self.file_path, "w", encoding="utf-8") as fh:
            json.dump(data, fh, ensure_ascii=False, indent=2)

    # ── 读写接口 ──────────────────────────────────────────

    async def _lookup(self, key: str) -> Any:
        # L1: Redis
        redis = get_redis()
        if redis:
            try:
                raw = await redis.hget(_REDIS_HASH, key)
                if raw is not None:
                    logger.debug(f"偏好命中（Redis）: {key}")
                    return json.loads(raw)
            except Exception as exc:
                logger.debug(f"Redis 读取失败: {exc}")

        # L2: MongoDB
        collection = get_preferences_collection()
        if collection is not None:
            try:
                doc = await collection.find_one({"key": key})
                if doc:
                    logger.debug(f"偏好命中（MongoDB）: {key}")
                    return doc.get("value")
            except Exception as exc:
                logger.debug(f"MongoDB 读取失败: {exc}")

        # L3: 文件
        data = self._read_file()
        if key in data:
            logger.debug(f"偏好命中（文件）: {key}")
            return data[key]
        return _MISSING

    async def get(self, key: str, default: Any = None) -> Any:
        value = await self._lookup(key)
        return default if value is _MISSING else value

    async def contains(self, key: str) -> bool:
        return await self._lookup(key) is not _MISSING

    async def set(self, key: str, value: Any) -> None:
        # L1: Redis
        redis = get_redis()
        if redis:
            try:
                await redis.hset(_REDIS_HASH, key, json.dumps(value))
                logger.debug(f"偏好写入（Redis）: {key}")
                return
            except Exception as exc:
                logger.debug(f"Redis 写入失败: {exc}")

        # L2: MongoDB
        collection = get_preferences_collection()
        if collection is not None:
            try:
                await collection.update_one(
                    {"key": key},
                    {"$set": {"key": key, "value": value}},
                    upsert=True,
                )
                logger.debug(f"偏好写入（MongoDB）: {key}")
                return
            except Exception as exc:
                logger.debug(f"MongoDB 写入失败: {exc}")

        # L3: 文件
        data = self._read_file()
        data[key] = value
        self._write_file(data)
        logger.debug(f"偏好写入（文件）: {key}")

    async def remove(self, key: str) -> None:
        """从所有后端删除该键"""
        redis = get_redis()
        if redis:
            try:
                await redis.hdel(_REDIS_HASH, key)
            except Exception as exc:
                logger.debug(f"Redis 删除失败: {exc}")
        collection = get_preferences_collection()
        if collection is not None:
            try:
                await collection.delete_one({"key": key})
            except Exception as exc:
                logger.debug(f"MongoDB 删除失败: {exc}")
        data = self._read_file()
        if key in data:
            del data[key]
            self._write_file(data)

    # ── 类型化读取 ────────────────────────────────────────

    async def get_bool(self, key: str) -> Optional[bool]:
        value = await self.get(key)
        return value if isinstance(value, bool) else None

    async def get_float(self, key: str) -> Optional[float]:
        value = await self.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return float(value)

    async def get_str(self, key: str) -> Optional[str]:
        value = await self.get(key)
        return value if isinstance(value, str) else None


# ── 模块级别单例 ──────────────────────────────────────────
_store: Optional[PreferenceStore] = None


def get_preference_store() -> PreferenceStore:
    global _store
    if _store is None:
        _store = PreferenceStore()
    return _store
