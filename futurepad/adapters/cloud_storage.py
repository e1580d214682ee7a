"""Cloud Storage Adapter

ImageStorage ABC の Google Cloud Storage 実装。
手紙の完全削除時に、添付画像の blob を削除する。
"""

from __future__ import annotations

import logging

from google.api_core.exceptions import NotFound
from google.cloud import storage

from futurepad.domain.ports import ImageStorage

logger = logging.getLogger(__name__)


class GCSImageStorage(ImageStorage):
    """
    Google Cloud Storage を使った ImageStorage 実装。

    画像の storage_id はバケット内の blob パスそのもの。
    パス規約: letters/{user_id}/{letter_id}/{filename}
    """

    def __init__(self, bucket_name: str, client: storage.Client | None = None) -> None:
        """
        Args:
            bucket_name: GCS バケット名
            client: 初期化済みの GCS クライアント（省略時は ADC で自動初期化）
        """
        self._client = client or storage.Client()
        self._bucket = self._client.bucket(bucket_name)
        self._bucket_name = bucket_name

    def delete(self, storage_id: str) -> None:
        """
        GCS から画像を削除。

        Note:
            既に存在しない場合は削除済みとして扱う。それ以外の失敗は呼び出し元へ送出する。
        """
        blob = self._bucket.blob(storage_id)
        try:
            blob.delete()
        except NotFound:
            logger.warning(
                "Image already absent: bucket=%s, path=%s", self._bucket_name, storage_id
            )
            return
        logger.info("Deleted image: bucket=%s, path=%s", self._bucket_name, storage_id)
