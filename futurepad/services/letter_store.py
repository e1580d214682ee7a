"""LetterStore - 手紙の正準レコードとライフサイクル操作

ユーザー操作による状態遷移を永続化し、購読者（通知スケジューラ、同期エンジン）へ
ライフサイクルイベントを発行する。遷移そのものは domain.lifecycle の純粋関数に任せる。
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime

from futurepad.domain import lifecycle
from futurepad.domain.errors import InvalidStateError, LetterNotFoundError
from futurepad.domain.models import (
    Letter,
    LetterEvent,
    LetterEventKind,
    LetterImage,
    LockState,
    Mood,
    PermanentDeleteResult,
    utcnow,
)
from futurepad.domain.ports import ImageStorage, LetterRepository

logger = logging.getLogger(__name__)

LetterListener = Callable[[LetterEvent], None]


class LetterStore:
    """
    手紙の作成・更新・配達・削除・復元を扱うサービス。

    イベント購読者の例外はログに残して握りつぶす。
    通知の登録失敗などで手紙の操作自体を失敗させないため。
    """

    def __init__(
        self,
        repository: LetterRepository,
        user_id: str,
        image_storage: ImageStorage | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """
        Args:
            repository: 手紙の永続化先
            user_id: 手紙の持ち主
            image_storage: 添付画像の削除先（None の場合は画像削除をスキップ）
            clock: 現在時刻（テストで差し替え）
        """
        self._repo = repository
        self._user_id = user_id
        self._images = image_storage
        self._clock = clock
        self._listeners: list[LetterListener] = []

    def subscribe(self, listener: LetterListener) -> None:
        self._listeners.append(listener)

    # ── 参照 ────────────────────────────────────────────────────────────────

    def get(self, letter_id: str, include_deleted: bool = False) -> Letter:
        """
        Raises:
            LetterNotFoundError: 存在しない、または削除済み（include_deleted=False）
        """
        letter = self._repo.get(letter_id)
        if letter is None or (letter.is_deleted and not include_deleted):
            raise LetterNotFoundError(f"Letter not found: {letter_id}")
        return letter

    def list_active(self) -> list[Letter]:
        """ゴミ箱以外の手紙（新しい順）"""
        letters = [letter for letter in self._repo.list() if not letter.is_deleted]
        return sorted(letters, key=lambda letter: letter.created_at, reverse=True)

    def list_trash(self) -> list[Letter]:
        """ゴミ箱の手紙（最近削除した順）"""
        letters = [letter for letter in self._repo.list() if letter.is_deleted]
        return sorted(
            letters,
            key=lambda letter: letter.deleted_at or letter.created_at,
            reverse=True,
        )

    def list_upcoming(self) -> list[Letter]:
        """まだロック中の手紙"""
        now = self._clock()
        return [
            letter
            for letter in self.list_active()
            if lifecycle.compute_lock_state(letter, now) is LockState.LOCKED
        ]

    def list_overdue(self) -> list[Letter]:
        """配達日を過ぎたが未配達の手紙"""
        now = self._clock()
        return [
            letter
            for letter in self.list_active()
            if not letter.is_delivered and letter.delivery_date <= now
        ]

    def lock_state(self, letter: Letter | str) -> LockState:
        """手紙（またはID）の現在のロック状態"""
        if isinstance(letter, str):
            letter = self.get(letter)
        return lifecycle.compute_lock_state(letter, self._clock())

    # ── 変更 ────────────────────────────────────────────────────────────────

    def create(
        self,
        content: str,
        delivery_date: datetime,
        mood: Mood | str | None = None,
        images: list[LetterImage] | None = None,
        title: str | None = None,
    ) -> Letter:
        """
        手紙を作成して保存する。

        Raises:
            ValidationError: 入力値が範囲外の場合
        """
        letter = lifecycle.new_letter(
            user_id=self._user_id,
            content=content,
            delivery_date=delivery_date,
            now=self._clock(),
            mood=mood,
            images=images,
            title=title,
        )
        self._repo.save(letter)
        logger.info(
            "Letter created: id=%s, delivery=%s, images=%d",
            letter.id,
            letter.delivery_date.isoformat(),
            len(letter.images),
        )
        self._emit(LetterEventKind.CREATED, letter)
        return letter

    def update(
        self,
        letter_id: str,
        title: str | None = None,
        content: str | None = None,
        delivery_date: datetime | None = None,
        mood: Mood | str | None = None,
    ) -> Letter:
        """
        指定されたフィールドだけを検証して更新する。

        Raises:
            ValidationError: 入力値が範囲外の場合
            InvalidStateError: 配達済みの手紙の配達日を変えようとした場合
        """
        letter = self.get(letter_id)
        now = self._clock()
        changes: dict = {}
        if title is not None:
            changes["title"] = lifecycle.validate_title(title)
        if content is not None:
            changes["content"] = lifecycle.validate_content(content)
        if mood is not None:
            changes["mood"] = lifecycle.parse_mood(mood)
        if delivery_date is not None:
            if letter.is_delivered:
                raise InvalidStateError(
                    f"Letter {letter_id} is already delivered; delivery date is fixed"
                )
            changes["delivery_date"] = lifecycle.validate_delivery_date(
                delivery_date, now
            )
        if not changes:
            return letter

        updated = replace(letter, updated_at=now, **changes)
        self._repo.save(updated)
        logger.info("Letter updated: id=%s, fields=%s", letter_id, sorted(changes))
        self._emit(LetterEventKind.UPDATED, updated)
        return updated

    def mark_delivered(self, letter_id: str) -> Letter:
        letter = self.get(letter_id)
        if letter.is_delivered:
            return letter
        delivered = lifecycle.mark_delivered(letter, self._clock())
        self._repo.save(delivered)
        logger.info("Letter delivered: id=%s", letter_id)
        self._emit(LetterEventKind.DELIVERED, delivered)
        return delivered

    def soft_delete(self, letter_id: str) -> Letter:
        """ゴミ箱へ移動。既にゴミ箱にある場合はそのまま返す"""
        letter = self.get(letter_id, include_deleted=True)
        if letter.is_deleted:
            return letter
        deleted = lifecycle.soft_delete(letter, self._clock())
        self._repo.save(deleted)
        logger.info("Letter moved to trash: id=%s", letter_id)
        self._emit(LetterEventKind.SOFT_DELETED, deleted)
        return deleted

    def restore(self, letter_id: str) -> Letter:
        """
        Raises:
            InvalidStateError: ゴミ箱にない手紙の場合
        """
        letter = self.get(letter_id, include_deleted=True)
        restored = lifecycle.restore(letter, self._clock())
        self._repo.save(restored)
        logger.info("Letter restored: id=%s", letter_id)
        self._emit(LetterEventKind.RESTORED, restored)
        return restored

    def remove_image(self, letter_id: str, index: int) -> Letter:
        """画像を1枚外し、リモートの画像も削除する（失敗はログのみ）"""
        letter = self.get(letter_id)
        updated, removed = lifecycle.remove_image(letter, index, self._clock())
        self._repo.save(updated)
        error = self._delete_image(removed.storage_id)
        if error:
            logger.warning(
                "Image removed from letter but remote delete failed: id=%s, image=%s",
                letter_id,
                removed.storage_id,
            )
        self._emit(LetterEventKind.UPDATED, updated)
        return updated

    def permanent_delete(self, letter_id: str) -> PermanentDeleteResult:
        """
        手紙を完全に削除し、添付画像を1枚ずつ削除する。

        画像削除の失敗は他の画像やレコード削除を止めず、結果に集約して返す。
        """
        letter = self.get(letter_id, include_deleted=True)
        self._repo.delete(letter_id)

        deleted: list[str] = []
        failed: dict[str, str] = {}
        for image in letter.images:
            error = self._delete_image(image.storage_id)
            if error:
                failed[image.storage_id] = error
            else:
                deleted.append(image.storage_id)

        if failed:
            logger.warning(
                "Letter permanently deleted with %d image failure(s): id=%s",
                len(failed),
                letter_id,
            )
        else:
            logger.info("Letter permanently deleted: id=%s", letter_id)
        self._emit(LetterEventKind.PERMANENTLY_DELETED, letter)
        return PermanentDeleteResult(
            letter_id=letter_id, deleted_images=deleted, failed_images=failed
        )

    def import_letters(self, letters: list[Letter]) -> int:
        """
        バックアップから復元した手紙を upsert する。件数を返す

        既存の手紙が配達済みなら、古いスナップショットから戻しても配達済みのまま。
        """
        for letter in letters:
            existing = self._repo.get(letter.id)
            if existing is not None:
                letter = replace(
                    letter,
                    is_delivered=existing.is_delivered or letter.is_delivered,
                    updated_at=max(existing.updated_at, letter.updated_at),
                )
            self._repo.save(letter)
            self._emit(LetterEventKind.UPDATED, letter)
        logger.info("Imported %d letters", len(letters))
        return len(letters)

    # ── 内部処理 ────────────────────────────────────────────────────────────

    def _delete_image(self, storage_id: str) -> str | None:
        """画像を削除。失敗時はエラーメッセージを返す"""
        if self._images is None or not storage_id:
            return None
        try:
            self._images.delete(storage_id)
        except Exception as e:
            logger.warning("Failed to delete image %s: %s", storage_id, e)
            return str(e) or type(e).__name__
        return None

    def _emit(self, kind: LetterEventKind, letter: Letter) -> None:
        event = LetterEvent(kind=kind, letter=letter)
        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "Letter event listener failed: kind=%s, id=%s", kind.value, letter.id
                )
