"""Web Push Notifier Adapter

Notifier ABC の pywebpush + VAPID 実装。
通知トリガーが発火したとき、登録済みのブラウザ/端末サブスクリプションへ
プッシュ通知を送る。

VAPID (Voluntary Application Server Identification):
- 公開鍵と秘密鍵のペアでアプリサーバーを認証する仕組み
- ブラウザのプッシュサービス（FCM 等）がサーバーを識別できる
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from pywebpush import WebPushException, webpush

from futurepad.domain.models import NotificationContent
from futurepad.domain.ports import Notifier

logger = logging.getLogger(__name__)

_MAX_BODY = 200


@dataclass(frozen=True)
class VapidConfig:
    """VAPID 認証の設定"""

    private_key: str  # VAPID 秘密鍵（PEM 形式 or Base64url）
    claims_email: str  # VAPID クレームのメールアドレス


@dataclass(frozen=True)
class PushSubscription:
    """Push Manager が生成したサブスクリプション情報"""

    endpoint: str
    keys: dict  # {"auth": "...", "p256dh": "..."}

    @classmethod
    def from_json(cls, raw: str) -> PushSubscription:
        data = json.loads(raw)
        return cls(endpoint=data["endpoint"], keys=data["keys"])


class WebPushNotifier(Notifier):
    """
    pywebpush を使った Notifier 実装。

    同じ通知IDの通知は tag で上書きされるため、
    リマインダーの再スケジュールで二重に表示されることはない。
    """

    def __init__(self, vapid: VapidConfig, subscription: PushSubscription) -> None:
        """
        Args:
            vapid: VAPID キーとクレームの設定
            subscription: 送信先のサブスクリプション
        """
        self._vapid = vapid
        self._subscription = subscription

    def deliver(self, content: NotificationContent) -> None:
        """
        通知を送信する。

        Raises:
            WebPushException: 送信に失敗した場合
        """
        payload = self._build_payload(content)
        try:
            webpush(
                subscription_info={
                    "endpoint": self._subscription.endpoint,
                    "keys": self._subscription.keys,
                },
                data=json.dumps(payload, ensure_ascii=False),
                vapid_private_key=self._vapid.private_key,
                vapid_claims={"sub": f"mailto:{self._vapid.claims_email}"},
                content_encoding="aes128gcm",
                ttl=86400,
            )
            logger.info(
                "Web Push sent: endpoint=%s..., tag=%s",
                self._subscription.endpoint[:40],
                payload.get("tag"),
            )
        except WebPushException as e:
            logger.error(
                "Web Push failed: endpoint=%s..., error=%s",
                self._subscription.endpoint[:40],
                e,
            )
            raise

    @staticmethod
    def _build_payload(content: NotificationContent) -> dict:
        """
        通知ペイロードを組み立てる。

        手紙に紐づく通知はタップで手紙を開く URL、
        毎日のリマインダーは執筆画面の URL を付ける。
        """
        body = content.body
        if len(body) > _MAX_BODY:
            body = body[: _MAX_BODY - 3] + "..."

        letter_id = content.data.get("letterId", "")
        url = f"/letters/{letter_id}" if letter_id else "/write"
        payload = {"title": content.title, "body": body, "url": url}
        if content.data.get("notificationId"):
            payload["tag"] = content.data["notificationId"]
        return payload
