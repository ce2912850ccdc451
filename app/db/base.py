"""数据库基类"""
from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase

# 与 migrations/versions 中手写的索引名保持一致
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
}


class Base(DeclarativeBase):
    """SQLAlchemy 2.0 Declarative Base（snapshots 表）"""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


__all__ = ["Base"]
