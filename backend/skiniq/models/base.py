"""
基础模型模块

定义所有模型共用的工具函数。
"""
from datetime import datetime, timezone

from sqlmodel import SQLModel


def utc_now() -> datetime:
    """当前 UTC 时间（带时区）"""
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """
    把从数据库读出的时间统一成带时区的 UTC 时间

    SQLite 不保存时区信息，读出来是 naive datetime；PostgreSQL 返回 aware datetime。
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


__all__ = ["SQLModel", "utc_now", "as_utc"]
