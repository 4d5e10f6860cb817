import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from confreg import config
from confreg.database import Base, SessionLocal, engine
from confreg.services.bootstrap import ensure_organizer, seed_validation_tables


def seed(reset: bool = True) -> str | None:
    """Rebuild the schema, load validation tables and create the organizer.

    Returns the organizer PIN when the organizer was created by this call.
    """
    if reset:
        Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        added = seed_validation_tables(db)
        organizer_pin = ensure_organizer(db, config.ORGANIZER_EMAIL)
    finally:
        db.close()

    print(f"Seeded {added} validation table values.")
    if organizer_pin:
        print(f"Organizer {config.ORGANIZER_EMAIL} created with PIN {organizer_pin}.")
    return organizer_pin


if __name__ == "__main__":
    seed(reset="--reset" in sys.argv)
