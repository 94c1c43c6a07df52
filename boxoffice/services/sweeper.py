import logging
import threading
from datetime import datetime
from sqlalchemy.orm import Session
from sqlalchemy import select, update, delete
from boxoffice.core.clock import utcnow
from boxoffice.models.booking import Booking, PENDING, EXPIRED
from boxoffice.models.hold import Hold
from boxoffice.services.audit_service import log_audit

logger = logging.getLogger(__name__)

def expire_holds(db: Session, now: datetime | None = None) -> dict:
    """Drop lapsed holds and expire the pending bookings that no longer hold anything.

    Both statements compare against the same `now`, and both are single
    conditional writes: a booking confirmed in the meantime is no longer
    `pending` and is left alone.
    """
    now = now or utcnow()
    candidates = db.execute(
        select(Booking.id).where(Booking.status == PENDING, Booking.hold_expires_at < now)
    ).scalars().all()

    holds = db.execute(
        delete(Hold).where(Hold.expires_at < now).execution_options(synchronize_session=False)
    ).rowcount
    live_hold = select(Hold.unit_id).where(Hold.booking_id == Booking.id).correlate(Booking).exists()
    bookings = db.execute(
        update(Booking)
        .where(Booking.status == PENDING, Booking.hold_expires_at < now, ~live_hold)
        .values(status=EXPIRED, expired_at=now)
        .execution_options(synchronize_session=False)
    ).rowcount
    if bookings:
        expired_ids = db.execute(
            select(Booking.id).where(Booking.id.in_(candidates), Booking.status == EXPIRED, Booking.expired_at == now)
        ).scalars().all()
        for bid in expired_ids:
            log_audit(db, actor="sweeper", action="booking.expired", entity_type="booking", entity_id=bid)
    db.commit()
    if holds or bookings:
        logger.info("Sweeper released %d holds, expired %d bookings", holds, bookings)
    return {"holds_released": holds, "bookings_expired": bookings}

class HoldSweeper:
    """Runs `expire_holds` every `interval` seconds on a background thread.

    Owned by the application lifespan: `start()` on startup, `stop()` on
    shutdown. Tests call `run_once()` directly.
    """

    def __init__(self, session_factory, interval: float):
        self.session_factory = session_factory
        self.interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def run_once(self, now: datetime | None = None) -> dict:
        db = self.session_factory()
        try:
            return expire_holds(db, now)
        finally:
            db.close()

    def _loop(self):
        while not self._stop.wait(self.interval):
            try:
                self.run_once()
            except Exception:
                # keep sweeping; the next tick retries
                logger.exception("Hold sweep failed")

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="hold-sweeper", daemon=True)
        self._thread.start()
        logger.info("Hold sweeper started (every %ss)", self.interval)

    def stop(self, timeout: float = 5.0):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Hold sweeper stopped")

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())
