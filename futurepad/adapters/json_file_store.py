"""JSON File Key-Value Store Adapter

KeyValueStore ABC のローカルファイル実装。
全てのキーを1つの JSON ファイル（{key: value}）に保持し、
書き込みは一時ファイル + os.replace で原子的に置き換える。
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path

from futurepad.domain.errors import StorageFailure
from futurepad.domain.ports import KeyValueStore

logger = logging.getLogger(__name__)


class JsonFileKeyValueStore(KeyValueStore):
    """
    単一 JSON ファイルを使った KeyValueStore 実装。

    APScheduler のワーカースレッドからも呼ばれるため、
    読み込み→更新→書き込みはロックで直列化する。
    """

    def __init__(self, path: str | Path) -> None:
        """
        Args:
            path: JSON ファイルのパス（親ディレクトリは自動作成）
        """
        self._path = Path(path)
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)
        logger.debug("Stored key=%s (%d bytes)", key, len(value))

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if key not in data:
                return
            del data[key]
            self._write(data)
        logger.debug("Removed key=%s", key)

    def _read(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            with self._path.open(encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise StorageFailure(f"Failed to read {self._path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageFailure(f"Corrupted store file: {self._path}")
        return data

    def _write(self, data: dict[str, str]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=self._path.parent, prefix=".kv-", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False)
            os.replace(tmp_path, self._path)
        except OSError as e:
            raise StorageFailure(f"Failed to write {self._path}: {e}") from e
