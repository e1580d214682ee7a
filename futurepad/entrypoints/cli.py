#!/usr/bin/env python3
"""CLI Entrypoint - コマンドラインから実行

使い方:
    python -m futurepad.entrypoints.cli status
    python -m futurepad.entrypoints.cli sync [--force]
    python -m futurepad.entrypoints.cli backup export [--pretty] [--no-images]
    python -m futurepad.entrypoints.cli backup validate <file>
    python -m futurepad.entrypoints.cli backup import <file>
    python -m futurepad.entrypoints.cli reconcile

環境変数:
    FUTUREPAD_USER_ID: 手紙の持ち主（必須）
    LOG_LEVEL: ログレベル (DEBUG, INFO, WARNING, ERROR) デフォルト: INFO
    K_SERVICE / CLOUD_RUN_JOB: Cloud Run 環境では自動設定されJSON形式ログに切替
"""

import argparse
import json
import logging
import sys

from futurepad.domain.errors import BackupError
from futurepad.domain.models import BackupOptions, InlineBackup, StoredBackup
from futurepad.entrypoints.factory import Container, create_container
from futurepad.logging_config import setup_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="futurepad", description="FuturePad - letters to your future self"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="DEBUG ログを出力")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="同期状態と登録済み通知を表示")

    sync = sub.add_parser("sync", help="リモートへ同期")
    sync.add_argument("--force", action="store_true", help="オフラインでも push を試みる")

    backup = sub.add_parser("backup", help="バックアップの作成・検証・復元")
    backup_sub = backup.add_subparsers(dest="backup_command", required=True)
    export = backup_sub.add_parser("export", help="バックアップを作成")
    export.add_argument("--pretty", action="store_true", help="インデント付きJSON")
    export.add_argument("--no-images", action="store_true", help="画像を含めない")
    export.add_argument("--no-settings", action="store_true", help="設定を含めない")
    validate = backup_sub.add_parser("validate", help="バックアップの整合性チェック")
    validate.add_argument("file")
    restore = backup_sub.add_parser("import", help="バックアップから復元")
    restore.add_argument("file")

    sub.add_parser("reconcile", help="通知レジストリを整合し、欠けたトリガーを復元")
    return parser


def run(args: argparse.Namespace, container: Container) -> int:
    """サブコマンドを実行し、終了コードを返す"""
    if args.command == "status":
        return _status(container)
    if args.command == "sync":
        return _sync(container, force=args.force)
    if args.command == "reconcile":
        pruned = container.notifications.reconcile()
        added = container.notifications.ensure_scheduled(container.letters.list_upcoming())
        print(f"pruned={len(pruned)} restored={added}")
        return 0
    if args.backup_command == "export":
        return _backup_export(container, args)
    if args.backup_command == "validate":
        return _backup_validate(container, args.file)
    return _backup_import(container, args.file)


def _status(container: Container) -> int:
    status = container.sync.initialize()
    history = container.sync.get_history()
    output = {
        "sync": status.to_dict(),
        "lastSync": history[0].to_dict() if history else None,
        "letters": {
            "active": len(container.letters.list_active()),
            "upcoming": len(container.letters.list_upcoming()),
            "trash": len(container.letters.list_trash()),
        },
        "notifications": [r.to_dict() for r in container.notifications.list_scheduled()],
    }
    print(json.dumps(output, ensure_ascii=False, indent=2))
    return 0


def _sync(container: Container, force: bool) -> int:
    container.sync.initialize()
    user, letters, settings = container.current_state()
    if force:
        ok = container.sync.force_sync(user, letters, settings)
    else:
        ok = container.sync.sync_data(user, letters, settings)

    status = container.sync.get_status()
    if ok:
        logger.info("Sync succeeded: letters=%d", len(letters))
        return 0
    if not status.is_online and not force:
        logger.warning("Offline: changes queued (pending=%d)", status.pending_changes)
    else:
        logger.error("Sync failed: %s", status.last_error)
    return 1


def _backup_export(container: Container, args: argparse.Namespace) -> int:
    user, letters, settings = container.current_state()
    result = container.backup.create_snapshot(
        user,
        letters,
        settings,
        BackupOptions(
            include_images=not args.no_images,
            include_settings=not args.no_settings,
            compress=not args.pretty,
        ),
    )
    if isinstance(result.handle, StoredBackup):
        print(result.handle.path)
    elif isinstance(result.handle, InlineBackup):
        print(result.handle.data)
    return 0


def _backup_validate(container: Container, path: str) -> int:
    data = container.backup.load_snapshot(path)
    report = container.backup.validate_integrity(data)
    for issue in report.issues:
        print(issue)
    print("valid" if report.is_valid else "invalid")
    return 0 if report.is_valid else 1


def _backup_import(container: Container, path: str) -> int:
    restored = container.backup.restore_snapshot(container.backup.load_snapshot(path))
    container.letters.import_letters(restored.letters)
    container.settings.save_settings(restored.settings)
    print(f"restored={len(restored.letters)} dropped={restored.dropped}")
    return 0


def main(argv: list[str] | None = None) -> None:
    """メインエントリーポイント"""
    args = build_parser().parse_args(argv)
    setup_logging("DEBUG" if args.verbose else None)

    try:
        container = create_container()
        sys.exit(run(args, container))

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(130)

    except BackupError as e:
        logger.error("Backup error: %s", e)
        sys.exit(2)

    except Exception:
        logger.exception("Fatal error")
        sys.exit(1)


if __name__ == "__main__":
    main()
