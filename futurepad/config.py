"""設定管理 - 環境変数の型安全な読み込み"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

_STORAGE_BACKENDS = ("file", "firestore")


@dataclass(frozen=True)
class AppConfig:
    """アプリケーション設定"""

    user_id: str
    user_name: str = ""
    user_email: str = ""
    api_url: str = "http://localhost:3000/api"
    health_url: str = ""  # 空なら api_url のオリジン
    api_token: str = ""
    request_timeout: float = 15.0
    data_dir: str = ".futurepad"
    storage_backend: str = "file"  # "file" | "firestore"
    firestore_collection: str = "futurepad_devices"
    gcs_bucket: str = ""  # 空なら画像削除をスキップ
    backup_dir: str = ""  # 空ならバックアップはインライン
    sync_interval_minutes: int = 5
    timezone: str = "UTC"
    vapid_private_key: str = ""
    vapid_claims_email: str = ""
    webpush_subscription: str = ""  # PushSubscription の JSON

    @property
    def store_path(self) -> str:
        return os.path.join(self.data_dir, "store.json")

    @classmethod
    def from_env(cls) -> "AppConfig":
        """環境変数から設定を読み込む"""
        load_dotenv()

        user_id = os.getenv("FUTUREPAD_USER_ID")
        if not user_id:
            raise ValueError("FUTUREPAD_USER_ID is not set in environment")

        storage_backend = os.getenv("FUTUREPAD_STORAGE_BACKEND", "file").lower()
        if storage_backend not in _STORAGE_BACKENDS:
            raise ValueError(
                f"FUTUREPAD_STORAGE_BACKEND must be one of {_STORAGE_BACKENDS}: "
                f"{storage_backend}"
            )

        return cls(
            user_id=user_id,
            user_name=os.getenv("FUTUREPAD_USER_NAME", ""),
            user_email=os.getenv("FUTUREPAD_USER_EMAIL", ""),
            api_url=os.getenv("FUTUREPAD_API_URL", "http://localhost:3000/api"),
            health_url=os.getenv("FUTUREPAD_HEALTH_URL", ""),
            api_token=os.getenv("FUTUREPAD_API_TOKEN", ""),
            request_timeout=float(os.getenv("FUTUREPAD_REQUEST_TIMEOUT", "15")),
            data_dir=os.getenv("FUTUREPAD_DATA_DIR", ".futurepad"),
            storage_backend=storage_backend,
            firestore_collection=os.getenv(
                "FUTUREPAD_FIRESTORE_COLLECTION", "futurepad_devices"
            ),
            gcs_bucket=os.getenv("FUTUREPAD_GCS_BUCKET", ""),
            backup_dir=os.getenv("FUTUREPAD_BACKUP_DIR", ""),
            sync_interval_minutes=int(os.getenv("FUTUREPAD_SYNC_INTERVAL_MINUTES", "5")),
            timezone=os.getenv("FUTUREPAD_TIMEZONE", "UTC"),
            vapid_private_key=os.getenv("VAPID_PRIVATE_KEY", ""),
            vapid_claims_email=os.getenv("VAPID_CLAIMS_EMAIL", ""),
            webpush_subscription=os.getenv("WEBPUSH_SUBSCRIPTION", ""),
        )
