from datetime import timedelta

from sqlalchemy import text
from sqlalchemy.exc import ProgrammingError, OperationalError

from boxoffice.db.session import SessionLocal
from boxoffice.core.clock import utcnow
from boxoffice.models.event import Event
from boxoffice.services.inventory_service import define_event

DEMO_ORGANIZER = "demo-organizer"

# title, days from now, seated layout or general admission
DEMO_EVENTS = [
    {
        "title": "Demo Concert",
        "days": 30,
        "seat_types": [
            {"name": "VIP", "price": 250000, "quantity": 20, "color": "#F59E0B"},
            {"name": "Standard", "price": 99900, "quantity": 80},
        ],
        "seats_per_row": 10,
    },
    {
        "title": "Demo Meetup",
        "days": 14,
        "general_admission": {"capacity": 150, "price": 29900},
    },
]


def run(db=None):
    if db is None:
        db = SessionLocal()
    try:
        # If migrations haven't been applied yet, seeding must not crash the API.
        try:
            db.execute(text("SELECT 1 FROM events LIMIT 1"))
        except (ProgrammingError, OperationalError):
            db.rollback()
            print("[seed] events table not found yet. Skipping seeding (run alembic upgrade head).")
            return

        now = utcnow()
        for demo in DEMO_EVENTS:
            exists = db.query(Event).filter(Event.title == demo["title"], Event.organizer_id == DEMO_ORGANIZER).first()
            if exists:
                continue
            event = define_event(
                db,
                title=demo["title"],
                starts_at=now + timedelta(days=demo["days"]),
                organizer_id=DEMO_ORGANIZER,
                seat_types=demo.get("seat_types"),
                general_admission=demo.get("general_admission"),
                seats_per_row=demo.get("seats_per_row", 10),
            )
            print(f"[seed] created event {event.title} ({event.id})")
    finally:
        db.close()


if __name__ == "__main__":
    run()
