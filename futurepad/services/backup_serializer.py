"""BackupSerializer - バックアップの作成・読み込み・リストア

ユーザー・手紙・ポータブル設定のスナップショットを JSON にシリアライズする。
スナップショットは常にKVストアにもローカルバックアップとして保存し、
バックアップ用ディレクトリが設定されていればファイルにも書き出す。

バージョンは完全一致のみ受け付ける（マイグレーションはしない）。
"""

from __future__ import annotations

import json
import logging
import platform
from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from futurepad import __version__
from futurepad.domain.errors import (
    IncompatibleVersion,
    InvalidBackup,
    StorageFailure,
)
from futurepad.domain.models import (
    BackupHandle,
    BackupInfo,
    BackupOptions,
    BackupResult,
    BackupSnapshot,
    InlineBackup,
    IntegrityReport,
    Letter,
    PortableSettings,
    RestoreResult,
    StoredBackup,
    User,
    format_instant,
    parse_instant,
    utcnow,
)
from futurepad.domain.ports import KeyValueStore

logger = logging.getLogger(__name__)

BACKUP_VERSION = "1.0.0"
LOCAL_BACKUP_KEY = "app_backup_data"
NEXT_AUTO_BACKUP_KEY = "next_auto_backup"

# リストア時に必須のフィールド（欠けた手紙は除外）
_RESTORE_REQUIRED = ("id", "title", "content", "userId")
# 整合性チェックで確認するフィールド
_INTEGRITY_FIELDS = ("id", "title", "content", "userId", "deliveryDate", "mood")


class BackupSerializer:
    """スナップショットの作成とリストアを扱うサービス"""

    def __init__(
        self,
        store: KeyValueStore,
        backup_dir: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """
        Args:
            store: ローカルバックアップの保存先
            backup_dir: バックアップファイルの書き出し先（None ならインライン）
            clock: 現在時刻（テストで差し替え）
        """
        self._store = store
        self._backup_dir = Path(backup_dir) if backup_dir else None
        self._clock = clock

    # ── 作成 ────────────────────────────────────────────────────────────────

    def create_snapshot(
        self,
        user: User,
        letters: list[Letter],
        settings: PortableSettings,
        options: BackupOptions | None = None,
    ) -> BackupResult:
        """
        スナップショットを作成し、ローカルバックアップとして保存する。

        Returns:
            BackupResult（handle はファイルパスまたはシリアライズ済み文字列）

        Raises:
            StorageFailure: KVストアまたはファイルへの書き込みに失敗した場合
        """
        options = options or BackupOptions()
        now = self._clock()

        letter_dicts = []
        for letter in letters:
            data = letter.to_dict()
            if not options.include_images:
                data["images"] = []
                data["featuredImage"] = None
            letter_dicts.append(data)

        snapshot = BackupSnapshot(
            version=BACKUP_VERSION,
            timestamp=format_instant(now),
            user=user.to_dict(),
            letters=letter_dicts,
            settings=settings.to_dict() if options.include_settings else {},
            metadata={
                "deviceInfo": f"{platform.system()} {platform.release()}".strip(),
                "appVersion": __version__,
                "totalLetters": len(letters),
            },
        )

        if options.compress:
            serialized = json.dumps(
                snapshot.to_dict(), ensure_ascii=False, separators=(",", ":")
            )
        else:
            serialized = json.dumps(snapshot.to_dict(), ensure_ascii=False, indent=2)

        self._store.set(LOCAL_BACKUP_KEY, serialized)

        handle: BackupHandle
        if self._backup_dir is not None:
            path = self._backup_dir / f"futurepad_backup_{now:%Y%m%dT%H%M%SZ}.json"
            try:
                self._backup_dir.mkdir(parents=True, exist_ok=True)
                path.write_text(serialized, encoding="utf-8")
            except OSError as e:
                raise StorageFailure(f"Failed to write backup file {path}: {e}") from e
            handle = StoredBackup(path=str(path))
        else:
            handle = InlineBackup(data=serialized)

        logger.info(
            "Backup created: letters=%d, images=%s, settings=%s, size=%d",
            len(letters),
            options.include_images,
            options.include_settings,
            len(serialized),
        )
        return BackupResult(snapshot=snapshot, handle=handle)

    # ── 読み込み・リストア ──────────────────────────────────────────────────

    def load_snapshot(self, source: BackupHandle | str) -> dict[str, Any]:
        """
        ハンドル・ファイルパス・JSON文字列のいずれかからバックアップを読み込む。

        Raises:
            InvalidBackup: 読み込めない、または構造が不正な場合
        """
        text = self._read_text(source)
        try:
            data = json.loads(text)
        except ValueError as e:
            raise InvalidBackup(f"Backup is not valid JSON: {e}") from e

        if not _is_valid_backup_data(data):
            raise InvalidBackup("Invalid backup file format")
        return data

    def restore_snapshot(self, data: dict[str, Any] | str) -> RestoreResult:
        """
        バックアップからユーザー・手紙・設定を復元する。

        必須フィールド（id, title, content, userId）が欠けた手紙や
        パースできない手紙は除外し、件数を dropped に記録する。

        Raises:
            IncompatibleVersion: バージョンが一致しない場合（最初にチェック）
            InvalidBackup: user / letters が欠落・不正な場合
        """
        if isinstance(data, str):
            try:
                data = json.loads(data)
            except ValueError as e:
                raise InvalidBackup(f"Backup is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise InvalidBackup("Backup must be a JSON object")

        version = data.get("version")
        if version != BACKUP_VERSION:
            raise IncompatibleVersion(
                f"Incompatible backup version: {version} (expected {BACKUP_VERSION})"
            )

        raw_user = data.get("user")
        raw_letters = data.get("letters")
        if not isinstance(raw_user, dict) or not raw_user.get("id"):
            raise InvalidBackup("Backup has no valid user")
        if not isinstance(raw_letters, list):
            raise InvalidBackup("Backup has no valid letters list")

        letters: list[Letter] = []
        dropped = 0
        for item in raw_letters:
            if not isinstance(item, dict) or not all(
                item.get(key) for key in _RESTORE_REQUIRED
            ):
                dropped += 1
                continue
            try:
                letters.append(Letter.from_dict(item))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning("Unparsable letter dropped: id=%s, error=%s", item["id"], e)
                dropped += 1

        if dropped:
            logger.warning("Some letters were invalid and excluded: dropped=%d", dropped)

        raw_settings = data.get("settings")
        settings = PortableSettings.from_dict(
            raw_settings if isinstance(raw_settings, dict) else None
        )
        logger.info("Backup restored: letters=%d, dropped=%d", len(letters), dropped)
        return RestoreResult(
            user=User.from_dict(raw_user),
            letters=letters,
            settings=settings,
            dropped=dropped,
        )

    def validate_integrity(self, data: dict[str, Any] | str) -> IntegrityReport:
        """バックアップの問題点を列挙する。例外は送出しない"""
        if isinstance(data, str):
            try:
                data = json.loads(data)
            except ValueError as e:
                return IntegrityReport(is_valid=False, issues=[f"Unreadable backup: {e}"])
        if not isinstance(data, dict):
            return IntegrityReport(is_valid=False, issues=["Backup must be a JSON object"])

        issues: list[str] = []
        if data.get("version") != BACKUP_VERSION:
            issues.append(f"Version mismatch: {data.get('version')} vs {BACKUP_VERSION}")

        user = data.get("user")
        if not isinstance(user, dict) or not user.get("id"):
            issues.append("Missing user ID")

        letters = data.get("letters")
        if not isinstance(letters, list):
            issues.append("Invalid letters data")
        else:
            for index, letter in enumerate(letters):
                if not isinstance(letter, dict):
                    issues.append(f"Letter {index}: not an object")
                    continue
                for key in _INTEGRITY_FIELDS:
                    if not letter.get(key):
                        issues.append(f"Letter {index}: Missing {key}")

        metadata = data.get("metadata")
        if not isinstance(metadata, dict) or "totalLetters" not in metadata:
            issues.append("Missing metadata")

        return IntegrityReport(is_valid=not issues, issues=issues)

    # ── ローカルバックアップ ────────────────────────────────────────────────

    def get_local_backup(self) -> dict[str, Any] | None:
        """KVストアの最新バックアップ。無い・壊れている場合は None"""
        try:
            raw = self._store.get(LOCAL_BACKUP_KEY)
        except StorageFailure as e:
            logger.error("Failed to read local backup: %s", e)
            return None
        if not raw:
            return None
        try:
            return self.load_snapshot(InlineBackup(data=raw))
        except InvalidBackup:
            logger.warning("Local backup data is corrupted")
            return None

    def clear_local_backup(self) -> None:
        try:
            self._store.remove(LOCAL_BACKUP_KEY)
        except StorageFailure as e:
            logger.error("Failed to clear local backup: %s", e)

    def backup_info(self, source: BackupHandle | str) -> BackupInfo:
        """
        Raises:
            InvalidBackup: 読み込めない場合
        """
        text = self._read_text(source)
        data = self.load_snapshot(InlineBackup(data=text))
        return BackupInfo(
            size=len(text.encode("utf-8")),
            created=data["timestamp"],
            letters_count=len(data["letters"]),
            has_images=any(
                isinstance(letter, dict) and letter.get("images")
                for letter in data["letters"]
            ),
        )

    def check_auto_backup(
        self,
        user: User,
        letters: list[Letter],
        settings: PortableSettings,
        interval_hours: int = 24,
    ) -> bool:
        """
        次回の自動バックアップ時刻を過ぎていれば（未設定も含む）バックアップを作成する。

        自動バックアップは画像を含めない。失敗はログのみで False を返す。

        Returns:
            バックアップを作成した場合 True
        """
        now = self._clock()
        try:
            raw = self._store.get(NEXT_AUTO_BACKUP_KEY)
            if raw and parse_instant(raw) > now:
                return False

            self.create_snapshot(
                user,
                letters,
                settings,
                BackupOptions(include_images=False, include_settings=True, compress=True),
            )
            next_backup = now + timedelta(hours=interval_hours)
            self._store.set(NEXT_AUTO_BACKUP_KEY, format_instant(next_backup))
        except (StorageFailure, ValueError) as e:
            logger.error("Auto backup failed: %s", e)
            return False

        logger.info("Auto backup created; next at %s", format_instant(next_backup))
        return True

    # ── 内部処理 ────────────────────────────────────────────────────────────

    @staticmethod
    def _read_text(source: BackupHandle | str) -> str:
        if isinstance(source, InlineBackup):
            return source.data
        if isinstance(source, StoredBackup):
            path = Path(source.path)
        elif source.lstrip().startswith(("{", "[")):
            return source
        else:
            path = Path(source)
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise InvalidBackup(f"Backup file not readable: {path}: {e}") from e


def _is_valid_backup_data(data: Any) -> bool:
    return (
        isinstance(data, dict)
        and isinstance(data.get("version"), str)
        and isinstance(data.get("timestamp"), str)
        and isinstance(data.get("user"), dict)
        and isinstance(data.get("letters"), list)
        and isinstance(data.get("metadata"), dict)
        and isinstance(data["metadata"].get("totalLetters"), int)
    )
