from datetime import datetime, timezone

from sqlalchemy.orm import DeclarativeBase

from fieldops.db.types import UTCDateTime


def utcnow() -> datetime:
    """Timezone-aware current time (column defaults)."""
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    type_annotation_map = {
        datetime: UTCDateTime(),
    }
