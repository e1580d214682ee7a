"""Ports - 外部コラボレータのインターフェース定義（ABC）

各Port（抽象基底クラス）は外部サービスとの契約を定義する。
Adapter はこれらのABCを継承し、全ての抽象メソッドを実装する。
実装漏れはインスタンス化時に検出される。
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from futurepad.domain.models import (
    Letter,
    NotificationContent,
    PortableSettings,
    Trigger,
    User,
)


class KeyValueStore(ABC):
    """ローカルの永続KVストア（JSONファイル、Firestore等）

    失敗時は StorageFailure を送出する。
    """

    @abstractmethod
    def get(self, key: str) -> str | None:
        """値を取得。存在しない場合は None"""
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """値を保存（上書き）"""
        pass

    @abstractmethod
    def remove(self, key: str) -> None:
        """値を削除。存在しない場合は何もしない"""
        pass


class LetterRepository(ABC):
    """手紙レコードの永続化"""

    @abstractmethod
    def get(self, letter_id: str) -> Letter | None:
        pass

    @abstractmethod
    def list(self) -> list[Letter]:
        """削除済みを含む全件"""
        pass

    @abstractmethod
    def save(self, letter: Letter) -> None:
        """作成または更新"""
        pass

    @abstractmethod
    def delete(self, letter_id: str) -> None:
        """レコードを物理削除"""
        pass


class ImageStorage(ABC):
    """添付画像のリモートストレージ（Cloud Storage等）"""

    @abstractmethod
    def delete(self, storage_id: str) -> None:
        """画像を削除。失敗時は例外を送出する"""
        pass


class LocalNotificationApi(ABC):
    """ローカル通知スケジューラ（APScheduler等）"""

    @abstractmethod
    def schedule(
        self, identifier: str, content: NotificationContent, trigger: Trigger
    ) -> str:
        """
        トリガーを登録し識別子を返す。同じ識別子の既存トリガーは置き換える。

        Raises:
            TriggerSchedulingFailure: 登録を拒否された場合
        """
        pass

    @abstractmethod
    def cancel(self, identifier: str) -> None:
        """トリガーを取り消す。未知の識別子は無視"""
        pass

    @abstractmethod
    def list_all(self) -> list[str]:
        """現在生きているトリガーの識別子一覧"""
        pass


class Notifier(ABC):
    """トリガー発火時の配信先（Web Push等）"""

    @abstractmethod
    def deliver(self, content: NotificationContent) -> None:
        pass


class RemoteLetterApi(ABC):
    """リモート Letter API（HTTP）

    レスポンスは {success, message, data?} のエンベロープ。
    通信エラー・success=false は NetworkFailure として送出する。
    """

    @abstractmethod
    def is_reachable(self) -> bool:
        """到達性チェック（タイムアウト付き）"""
        pass

    @abstractmethod
    def upsert_letter(self, letter: Letter) -> None:
        """手紙の全フィールドを送信（存在しなければ作成）"""
        pass

    @abstractmethod
    def permanent_delete(self, letter_id: str) -> None:
        """手紙をリモートから完全削除（画像のクリーンアップを含む）"""
        pass

    @abstractmethod
    def update_profile(self, user: User) -> None:
        pass

    @abstractmethod
    def update_settings(self, settings: PortableSettings) -> None:
        pass
