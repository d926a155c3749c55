from __future__ import annotations

from datetime import datetime

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from invoicedesk.db.base import Base, IDMixin, UTCDateTime, utcnow


class RateLimitCounter(IDMixin, Base):
    __tablename__ = "rate_limit_counters"

    key: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    window_start: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
