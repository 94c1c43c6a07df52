from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from boxoffice.db.session import Base

class Allocation(Base):
    """Permanent sale of a unit to a paid booking. At most one per unit, ever."""
    __tablename__ = "allocations"

    event_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    unit_id: Mapped[str] = mapped_column(String(40), primary_key=True)

    booking_id: Mapped[str] = mapped_column(String(36), index=True)
    allocated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
