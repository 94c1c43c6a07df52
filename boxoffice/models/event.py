from sqlalchemy import String, Integer, DateTime, Boolean
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from boxoffice.db.session import Base

class Event(Base):
    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str] = mapped_column(String(200))
    organizer_id: Mapped[str] = mapped_column(String(36), index=True)

    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    is_seated: Mapped[bool] = mapped_column(Boolean, default=False)
    ga_capacity: Mapped[int] = mapped_column(Integer, default=0)  # general admission only
    currency: Mapped[str] = mapped_column(String(3), default="inr")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
