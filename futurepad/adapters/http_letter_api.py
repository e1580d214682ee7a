"""HTTP Letter API Adapter

RemoteLetterApi ABC の httpx 実装。

エンドポイント:
  PUT    /letters/{id}             ← 手紙の全フィールドを upsert
  DELETE /letters/{id}/permanent   ← 完全削除（画像のクリーンアップはサーバー側）
  PUT    /profile                  ← ユーザー情報
  PUT    /profile/settings         ← ポータブル設定

全レスポンスは {"success": bool, "message": str, "data"?: ...} のエンベロープ。
"""

from __future__ import annotations

import logging

import httpx

from futurepad.domain.errors import NetworkFailure
from futurepad.domain.models import Letter, PortableSettings, User
from futurepad.domain.ports import RemoteLetterApi

logger = logging.getLogger(__name__)


class HttpLetterApi(RemoteLetterApi):
    """
    httpx.Client を使った RemoteLetterApi 実装。

    全リクエストはタイムアウト付き。認証トークンはセッション管理側から
    渡されたものを Authorization ヘッダーに付けるだけで、取得・更新はしない。
    """

    def __init__(
        self,
        base_url: str,
        health_url: str | None = None,
        token: str | None = None,
        timeout: float = 15.0,
        client: httpx.Client | None = None,
    ) -> None:
        """
        Args:
            base_url: API のベースURL（例: "http://localhost:3000/api"）
            health_url: 到達性チェック用URL（省略時は base_url のオリジン）
            token: Bearer トークン
            timeout: リクエストのタイムアウト秒
            client: 初期化済みクライアント（テスト用）
        """
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = client or httpx.Client(
            base_url=base_url.rstrip("/"), headers=headers, timeout=timeout
        )
        self._health_url = health_url or str(httpx.URL(base_url).copy_with(path="/"))

    def is_reachable(self) -> bool:
        try:
            response = self._client.get(self._health_url)
        except httpx.HTTPError as e:
            logger.info("Letter API unreachable: %s", e)
            return False
        return response.status_code < 500

    def upsert_letter(self, letter: Letter) -> None:
        body = letter.to_dict()
        self._request("PUT", f"/letters/{letter.id}", json=body)
        logger.debug("Upserted letter: id=%s", letter.id)

    def permanent_delete(self, letter_id: str) -> None:
        try:
            self._request("DELETE", f"/letters/{letter_id}/permanent")
        except NetworkFailure as e:
            # 既にリモートに無い場合は削除済みとして扱う
            if e.status_code == 404:
                logger.info("Letter already absent remotely: id=%s", letter_id)
                return
            raise
        logger.info("Permanently deleted remote letter: id=%s", letter_id)

    def update_profile(self, user: User) -> None:
        self._request("PUT", "/profile", json={"name": user.name, "email": user.email})

    def update_settings(self, settings: PortableSettings) -> None:
        self._request("PUT", "/profile/settings", json=settings.to_dict())

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, json: dict | None = None) -> dict:
        """
        リクエストを送りエンベロープを検証する。

        Raises:
            NetworkFailure: 通信エラー、HTTPエラー、success=false の場合
        """
        try:
            response = self._client.request(method, path, json=json)
        except httpx.HTTPError as e:
            raise NetworkFailure(f"{method} {path} failed: {e}") from e

        try:
            envelope = response.json()
        except ValueError:
            envelope = {}
        if not isinstance(envelope, dict):
            envelope = {}

        if response.is_error:
            message = envelope.get("message") or response.reason_phrase
            raise NetworkFailure(
                f"{method} {path} returned {response.status_code}: {message}",
                status_code=response.status_code,
            )
        if envelope.get("success") is False:
            raise NetworkFailure(
                f"{method} {path} rejected: {envelope.get('message', 'unknown error')}"
            )
        return envelope
