from sqlalchemy.orm import Session
from sqlalchemy.exc import ProgrammingError
from boxoffice.db.session import SessionLocal
from boxoffice.services import sweeper

def expire_holds():
    db: Session = SessionLocal()
    try:
        try:
            return sweeper.expire_holds(db)
        except ProgrammingError:
            # DB not migrated yet; don't crash the worker.
            db.rollback()
            return {"skipped": True, "reason": "missing_tables"}
    finally:
        db.close()
