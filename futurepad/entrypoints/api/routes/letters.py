"""手紙 API ルート

GET    /api/letters                       → 200 [Letter...]（?view=active|upcoming|overdue|trash）
POST   /api/letters                       → 201 Letter
GET    /api/letters/{id}                  → 200 Letter
PATCH  /api/letters/{id}                  → 200 Letter
POST   /api/letters/{id}/deliver          → 200 Letter
DELETE /api/letters/{id}                  → 200 Letter（ゴミ箱へ移動）
POST   /api/letters/{id}/restore          → 200 Letter
DELETE /api/letters/{id}/permanent        → 200 { letterId, deletedImages, failedImages }
DELETE /api/letters/{id}/images/{index}   → 200 Letter

レスポンスの Letter は camelCase の wire 形式に lockState を加えたもの。
画像ストレージと通信する完全削除・画像削除は def で定義し、スレッドプールで実行する。
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from futurepad.domain.models import Letter, LetterImage, parse_instant
from futurepad.entrypoints.api.deps import get_letter_store
from futurepad.services.letter_store import LetterStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/letters", tags=["letters"])


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ImageRequest(_CamelModel):
    url: str
    storage_id: str
    caption: str = ""


class LetterCreateRequest(_CamelModel):
    content: str
    delivery_date: datetime
    mood: str | None = None
    title: str | None = None
    images: list[ImageRequest] = Field(default_factory=list)


class LetterUpdateRequest(_CamelModel):
    title: str | None = None
    content: str | None = None
    delivery_date: datetime | None = None
    mood: str | None = None


def _to_response(letter: Letter, store: LetterStore) -> dict:
    data = letter.to_dict()
    data["lockState"] = store.lock_state(letter).value
    return data


@router.get("")
async def list_letters(
    view: Literal["active", "upcoming", "overdue", "trash"] = "active",
    store: LetterStore = Depends(get_letter_store),
) -> list[dict]:
    """手紙一覧を返す"""
    listing = {
        "active": store.list_active,
        "upcoming": store.list_upcoming,
        "overdue": store.list_overdue,
        "trash": store.list_trash,
    }[view]
    return [_to_response(letter, store) for letter in listing()]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_letter(
    body: LetterCreateRequest,
    store: LetterStore = Depends(get_letter_store),
) -> dict:
    """手紙を作成する（通知トリガーも登録される）"""
    letter = store.create(
        content=body.content,
        delivery_date=parse_instant(body.delivery_date),
        mood=body.mood,
        images=[
            LetterImage(url=img.url, storage_id=img.storage_id, caption=img.caption)
            for img in body.images
        ],
        title=body.title,
    )
    return _to_response(letter, store)


@router.get("/{letter_id}")
async def get_letter(
    letter_id: str,
    store: LetterStore = Depends(get_letter_store),
) -> dict:
    return _to_response(store.get(letter_id), store)


@router.patch("/{letter_id}")
async def update_letter(
    letter_id: str,
    body: LetterUpdateRequest,
    store: LetterStore = Depends(get_letter_store),
) -> dict:
    """指定されたフィールドだけ更新する"""
    letter = store.update(
        letter_id,
        title=body.title,
        content=body.content,
        delivery_date=parse_instant(body.delivery_date) if body.delivery_date else None,
        mood=body.mood,
    )
    return _to_response(letter, store)


@router.post("/{letter_id}/deliver")
async def deliver_letter(
    letter_id: str,
    store: LetterStore = Depends(get_letter_store),
) -> dict:
    return _to_response(store.mark_delivered(letter_id), store)


@router.delete("/{letter_id}")
async def delete_letter(
    letter_id: str,
    store: LetterStore = Depends(get_letter_store),
) -> dict:
    """ゴミ箱へ移動する（復元可能）"""
    return _to_response(store.soft_delete(letter_id), store)


@router.post("/{letter_id}/restore")
async def restore_letter(
    letter_id: str,
    store: LetterStore = Depends(get_letter_store),
) -> dict:
    return _to_response(store.restore(letter_id), store)


@router.delete("/{letter_id}/permanent")
def permanently_delete_letter(
    letter_id: str,
    store: LetterStore = Depends(get_letter_store),
) -> dict:
    """完全に削除する。画像削除の失敗は failedImages に入る"""
    result = store.permanent_delete(letter_id)
    return {
        "letterId": result.letter_id,
        "deletedImages": result.deleted_images,
        "failedImages": result.failed_images,
    }


@router.delete("/{letter_id}/images/{index}")
def remove_image(
    letter_id: str,
    index: int,
    store: LetterStore = Depends(get_letter_store),
) -> dict:
    return _to_response(store.remove_image(letter_id, index), store)
