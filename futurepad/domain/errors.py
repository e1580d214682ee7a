"""ドメイン固有の例外クラス"""


class FuturePadError(Exception):
    """FuturePad の基底例外"""

    pass


class ValidationError(FuturePadError):
    """手紙の入力値エラー（本文長・気分・配達日の範囲など）。リトライしない"""

    pass


class InvalidStateError(FuturePadError):
    """現在の状態では実行できない操作（ゴミ箱にない手紙の復元など）"""

    pass


class LetterNotFoundError(FuturePadError):
    """指定IDの手紙が存在しない"""

    pass


class TriggerSchedulingFailure(FuturePadError):
    """通知スケジューラがトリガー登録を拒否した（権限なし等）"""

    pass


class StorageFailure(FuturePadError):
    """ローカルKVストアの読み書きエラー"""

    pass


class SyncFailure(FuturePadError):
    """リモートへの同期（push）に失敗"""

    pass


class NetworkFailure(SyncFailure):
    """リモート Letter API との通信エラー"""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code  # HTTP ステータス（通信自体の失敗は None）


class BackupError(FuturePadError):
    """バックアップ/リストアの基底例外"""

    pass


class IncompatibleVersion(BackupError):
    """バックアップのバージョンが現在のエンジンと異なる"""

    pass


class InvalidBackup(BackupError):
    """バックアップの構造が壊れている（user/letters 欠落など）"""

    pass
