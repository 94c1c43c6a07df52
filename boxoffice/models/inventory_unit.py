from sqlalchemy import String, Integer, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from boxoffice.db.session import Base

class InventoryUnit(Base):
    __tablename__ = "inventory_units"

    event_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    unit_id: Mapped[str] = mapped_column(String(40), primary_key=True)  # A1, B12, GA-0001

    unit_type: Mapped[str] = mapped_column(String(60))
    price: Mapped[int] = mapped_column(Integer)  # current price; bookings keep their own snapshot
    section: Mapped[str] = mapped_column(String(60), default="")
    row_label: Mapped[str] = mapped_column(String(10), default="")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
