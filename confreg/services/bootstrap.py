import json
import logging
from pathlib import Path

from sqlalchemy.orm import Session

from confreg.database import insert_returning_id
from confreg.models import Credential, Registration, ValidationTableEntry
from confreg.services.security import generate_pin
from confreg.services.validation import to_snake

logger = logging.getLogger(__name__)


def _seed_file_path() -> Path:
    return Path(__file__).resolve().parents[2] / "data" / "seed" / "validation_tables.json"


def seed_validation_tables(db: Session, seed_path: Path | None = None) -> int:
    """Load ``{"table_name": ["value", ...]}`` pairs, skipping ones already present."""
    seed_path = seed_path or _seed_file_path()
    if not seed_path.is_file():
        logger.warning("Validation table seed file missing", extra={"context": {"path": str(seed_path)}})
        return 0

    tables = json.loads(seed_path.read_text())
    existing = {
        (row.validation_table, row.value)
        for row in db.query(ValidationTableEntry.validation_table, ValidationTableEntry.value).all()
    }
    added = 0
    for table, values in tables.items():
        name = to_snake(table)
        for value in values:
            if (name, value) in existing:
                continue
            db.add(ValidationTableEntry(validation_table=name, value=value))
            existing.add((name, value))
            added += 1
    db.commit()
    return added


def ensure_organizer(db: Session, organizer_email: str) -> str | None:
    """Create the bootstrap organizer; returns its PIN only when newly created."""
    if not organizer_email:
        return None
    existing = db.query(Registration).filter(Registration.email == organizer_email).first()
    if existing:
        if not existing.is_organizer:
            existing.is_organizer = True
            db.commit()
        return None

    login_pin = generate_pin()
    registration_id = insert_returning_id(
        db,
        Registration(
            email=organizer_email,
            last_name="Organizer",
            proxy_email=organizer_email,
            question1="n/a",
            question2="n/a",
            is_attendee=False,
            is_organizer=True,
        ),
    )
    db.add(Credential(registration_id=registration_id, login_pin=login_pin))
    db.commit()
    logger.info("Bootstrap organizer created", extra={"context": {"email": organizer_email, "registrationId": registration_id}})
    return login_pin
