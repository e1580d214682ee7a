"""Firestore Key-Value Store Adapter

KeyValueStore ABC の Firestore 実装。

Firestore コレクション構造:
  {collection}/{user_id}/entries/{key}   ← {"value": "<JSON文字列>", "updated_at": ...}

キーにスラッシュを含めるとサブコレクション扱いになるため、
ドキュメントIDに使う前に置換する。
"""

from __future__ import annotations

import logging

from google.api_core import exceptions as gcp_exceptions
from google.cloud import firestore

from futurepad.domain.errors import StorageFailure
from futurepad.domain.ports import KeyValueStore

logger = logging.getLogger(__name__)

_ENTRIES = "entries"


class FirestoreKeyValueStore(KeyValueStore):
    """
    Firestore を使った KeyValueStore 実装。

    ユーザーごとにドキュメントを分け、その下の entries サブコレクションに
    1キー1ドキュメントで保存する。
    """

    def __init__(
        self,
        db: firestore.Client,
        user_id: str,
        collection: str = "futurepad_devices",
    ) -> None:
        """
        Args:
            db: 初期化済みの Firestore クライアント
            user_id: 保存先のユーザーID
            collection: ルートコレクション名
        """
        self._entries = db.collection(collection).document(user_id).collection(_ENTRIES)

    def get(self, key: str) -> str | None:
        try:
            snap = self._entries.document(self._doc_id(key)).get()
        except gcp_exceptions.GoogleAPICallError as e:
            raise StorageFailure(f"Failed to read key={key}: {e}") from e
        if not snap.exists:
            return None
        return (snap.to_dict() or {}).get("value")

    def set(self, key: str, value: str) -> None:
        try:
            self._entries.document(self._doc_id(key)).set(
                {"value": value, "updated_at": firestore.SERVER_TIMESTAMP}
            )
        except gcp_exceptions.GoogleAPICallError as e:
            raise StorageFailure(f"Failed to write key={key}: {e}") from e
        logger.debug("Stored key=%s in Firestore", key)

    def remove(self, key: str) -> None:
        try:
            self._entries.document(self._doc_id(key)).delete()
        except gcp_exceptions.GoogleAPICallError as e:
            raise StorageFailure(f"Failed to delete key={key}: {e}") from e

    @staticmethod
    def _doc_id(key: str) -> str:
        return key.replace("/", "__")
