from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, String, orm
from sqlalchemy.orm import mapped_column
from sqlalchemy.types import TypeDecorator

from typing_extensions import Annotated

str64 = Annotated[str, 64]
str512 = Annotated[str, 512]
str1024 = Annotated[str, 1024]
ulidpk = Annotated[str, mapped_column(String(26), primary_key=True)]


class UTCDateTime(TypeDecorator):
    """
    A timezone-aware datetime column.

    Values are normalised to UTC on the way in and always come back aware, including from
    backends (SQLite) that store datetimes without an offset.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: Optional[datetime], dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(orm.DeclarativeBase):
    type_annotation_map = {
        str64: String(64),
        str512: String(512),
        str1024: String(1024),
        ulidpk: String(26),
        datetime: UTCDateTime(),
    }
