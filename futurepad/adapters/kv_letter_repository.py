"""KeyValueStore-backed Letter Repository

LetterRepository ABC の実装。手紙は全件を1つのキー（letters）に
{id: letter_dict} の JSON として保存する。
"""

from __future__ import annotations

import json
import logging
import threading

from futurepad.domain.models import Letter
from futurepad.domain.ports import KeyValueStore, LetterRepository

logger = logging.getLogger(__name__)

LETTERS_KEY = "letters"


class KeyValueLetterRepository(LetterRepository):
    """KeyValueStore 上の LetterRepository 実装"""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store
        self._lock = threading.Lock()

    def get(self, letter_id: str) -> Letter | None:
        data = self._load().get(letter_id)
        return Letter.from_dict(data) if data else None

    def list(self) -> list[Letter]:
        return [Letter.from_dict(item) for item in self._load().values()]

    def save(self, letter: Letter) -> None:
        with self._lock:
            data = self._load()
            data[letter.id] = letter.to_dict()
            self._store.set(LETTERS_KEY, json.dumps(data, ensure_ascii=False))

    def delete(self, letter_id: str) -> None:
        with self._lock:
            data = self._load()
            if data.pop(letter_id, None) is None:
                return
            self._store.set(LETTERS_KEY, json.dumps(data, ensure_ascii=False))

    def _load(self) -> dict[str, dict]:
        raw = self._store.get(LETTERS_KEY)
        return json.loads(raw) if raw else {}
