# daswos/models/base.py
"""
Declarative base (SQLAlchemy 2.x) с naming conventions и TZ-утилитами.

Модели не держат ссылок на движок или сессию: связь с БД передаётся явно
через daswos.core.db.Database.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase


# --------------------------------------------------------------------------------------
# TZ-утилиты
# --------------------------------------------------------------------------------------
def utcnow_tz() -> datetime:
    """Текущее время в UTC (tz-aware)."""
    return datetime.now(UTC)


def to_utc(dt: datetime) -> datetime:
    """Привести дату к UTC (если naive: считаем, что это UTC и проставляем tzinfo)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


# --------------------------------------------------------------------------------------
# SQLAlchemy naming conventions (единые имена ограничений/индексов)
# --------------------------------------------------------------------------------------
NAMING_CONVENTIONS: dict[str, str] = {
    "ix": "ix__%(table_name)s__%(column_0_N_name)s",
    "uq": "uq__%(table_name)s__%(column_0_N_name)s",
    "ck": "ck__%(table_name)s__%(constraint_name)s",
    "fk": "fk__%(table_name)s__%(column_0_N_name)s__%(referred_table_name)s",
    "pk": "pk__%(table_name)s",
}


class Base(DeclarativeBase):
    """Root declarative base (SQLAlchemy 2.x) с naming conventions."""

    metadata = MetaData(naming_convention=NAMING_CONVENTIONS)

    def __repr__(self) -> str:  # pragma: no cover
        cols = [f"{k}={getattr(self, k, None)!r}" for k in self.__mapper__.c.keys()]
        return f"<{self.__class__.__name__}({', '.join(cols)})>"


__all__ = ["Base", "NAMING_CONVENTIONS", "utcnow_tz", "to_utc"]
