from sqlalchemy import String, Integer
from sqlalchemy.orm import Mapped, mapped_column
from boxoffice.db.session import Base

class BookingUnit(Base):
    __tablename__ = "booking_units"

    booking_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    unit_id: Mapped[str] = mapped_column(String(40), primary_key=True)

    unit_type: Mapped[str] = mapped_column(String(60))
    price: Mapped[int] = mapped_column(Integer)  # snapshot at reservation time, never updated
