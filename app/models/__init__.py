"""数据库模型模块"""

from app.models.snapshot import SCORE_FIELDS, Snapshot

__all__ = [
    "Snapshot",
    "SCORE_FIELDS",
]
