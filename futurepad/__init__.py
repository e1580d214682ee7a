"""FuturePad - 未来の自分への手紙（ロック・通知・同期・バックアップのコア）"""

__version__ = "1.0.0"
