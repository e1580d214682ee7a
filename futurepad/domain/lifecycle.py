"""手紙のライフサイクル - 副作用のない状態遷移とロック判定

全ての関数は新しい Letter を返し、引数を変更しない。
現在時刻は呼び出し側から注入する（端末時計の巻き戻しは補正しない）。
"""

from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import datetime, timedelta

from futurepad.domain.errors import InvalidStateError, ValidationError
from futurepad.domain.models import Letter, LetterImage, LockState, Mood

MIN_CONTENT_LENGTH = 10
MAX_CONTENT_LENGTH = 5000
MAX_TITLE_LENGTH = 200
MAX_CAPTION_LENGTH = 500
MAX_IMAGES = 5
MIN_DELIVERY_DELAY = timedelta(days=1)
MAX_DELIVERY_DELAY = timedelta(days=365)


def parse_mood(mood: Mood | str | None) -> Mood:
    """気分の値を Mood に変換。None はデフォルトの reflective"""
    if mood is None:
        return Mood.REFLECTIVE
    if isinstance(mood, Mood):
        return mood
    try:
        return Mood(mood.strip().lower())
    except ValueError:
        allowed = ", ".join(m.value for m in Mood)
        raise ValidationError(
            f"Invalid mood value '{mood}'. Must be one of: {allowed}"
        ) from None


def validate_content(content: str) -> str:
    text = (content or "").strip()
    if len(text) < MIN_CONTENT_LENGTH:
        raise ValidationError(
            f"Content must be at least {MIN_CONTENT_LENGTH} characters"
        )
    if len(text) > MAX_CONTENT_LENGTH:
        raise ValidationError(
            f"Content must be no more than {MAX_CONTENT_LENGTH} characters"
        )
    return text


def validate_title(title: str) -> str:
    text = title.strip()
    if not text:
        raise ValidationError("Title is required")
    if len(text) > MAX_TITLE_LENGTH:
        raise ValidationError(f"Title must be less than {MAX_TITLE_LENGTH} characters")
    return text


def validate_delivery_date(delivery_date: datetime, now: datetime) -> datetime:
    """配達日は now+1日 以上 now+365日 以下"""
    if delivery_date.tzinfo is None:
        raise ValidationError("Delivery date must be timezone-aware")
    if delivery_date < now + MIN_DELIVERY_DELAY:
        raise ValidationError("Delivery date must be at least 1 day in the future")
    if delivery_date > now + MAX_DELIVERY_DELAY:
        raise ValidationError("Delivery date must be within 365 days")
    return delivery_date


def validate_images(images: list[LetterImage]) -> list[LetterImage]:
    if len(images) > MAX_IMAGES:
        raise ValidationError(f"A letter can have at most {MAX_IMAGES} images")
    for image in images:
        if not image.url or not image.storage_id:
            raise ValidationError("Image url and storage id are required")
        if len(image.caption) > MAX_CAPTION_LENGTH:
            raise ValidationError(
                f"Image caption must be less than {MAX_CAPTION_LENGTH} characters"
            )
    return list(images)


def new_letter(
    user_id: str,
    content: str,
    delivery_date: datetime,
    now: datetime,
    mood: Mood | str | None = None,
    images: list[LetterImage] | None = None,
    title: str | None = None,
) -> Letter:
    """
    入力を検証して新しい手紙を作る。

    Raises:
        ValidationError: 本文長・気分・タイトル・画像・配達日のいずれかが範囲外
    """
    text = validate_content(content)
    parsed_mood = parse_mood(mood)
    validate_delivery_date(delivery_date, now)
    checked_images = validate_images(images or [])
    if title is None or not title.strip():
        title = f"Letter from {now.date().isoformat()}"

    return Letter(
        id=uuid.uuid4().hex,
        user_id=user_id,
        title=validate_title(title),
        content=text,
        mood=parsed_mood,
        created_at=now,
        updated_at=now,
        delivery_date=delivery_date,
        images=checked_images,
    )


def compute_lock_state(letter: Letter, now: datetime) -> LockState:
    """未配達かつ配達日が未来なら Locked。配達日ちょうどで Unlocked になる"""
    if not letter.is_delivered and letter.delivery_date > now:
        return LockState.LOCKED
    return LockState.UNLOCKED


def mark_delivered(letter: Letter, now: datetime) -> Letter:
    """配達済みにする（冪等、戻らない）"""
    if letter.is_delivered:
        return letter
    return replace(letter, is_delivered=True, updated_at=now)


def soft_delete(letter: Letter, now: datetime) -> Letter:
    if letter.is_deleted:
        return letter
    return replace(letter, is_deleted=True, deleted_at=now)


def restore(letter: Letter, now: datetime) -> Letter:
    """
    ゴミ箱から戻す。

    Raises:
        InvalidStateError: 削除されていない手紙の場合
    """
    if not letter.is_deleted:
        raise InvalidStateError(f"Letter {letter.id} is not in the trash")
    return replace(letter, is_deleted=False, deleted_at=None, updated_at=now)


def remove_image(letter: Letter, index: int, now: datetime) -> tuple[Letter, LetterImage]:
    """
    index 番目の画像を外す。featured_image は先頭画像に自動追従する。

    Returns:
        (更新後の手紙, 外した画像)
    """
    if index < 0 or index >= len(letter.images):
        raise ValidationError(f"Invalid image index: {index}")
    removed = letter.images[index]
    images = letter.images[:index] + letter.images[index + 1 :]
    return replace(letter, images=images, updated_at=now), removed
