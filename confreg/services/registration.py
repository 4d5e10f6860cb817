import logging

from pydantic.alias_generators import to_camel
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from confreg import config
from confreg.database import insert_returning_id, is_duplicate_key
from confreg.errors import (
    ApiError,
    BadRequest,
    Conflict,
    Forbidden,
    MethodNotAllowed,
    MissingRequiredFields,
    NotFound,
    ServerError,
)
from confreg.logging_config import log_db_error, redact
from confreg.models import Credential, Registration
from confreg.services.email import send_email
from confreg.services.security import AuthContext, generate_pin
from confreg.services.validation import (
    PRIVILEGED_FIELDS,
    REQUIRED_FIELDS,
    ROLE_FIELDS,
    invalid_phone_fields,
    is_valid_email,
    missing_required_fields,
    to_bool,
    to_null,
)

logger = logging.getLogger(__name__)

SAVE_REGISTRATION_ERROR = "Failed to save registration"
FETCH_REGISTRATION_ERROR = "Failed to fetch registration"
REGISTRATION_NOT_FOUND = "Registration not found"
SEND_PIN_ERROR = "Failed to send pin"
ORGANIZER_ONLY_ERROR = "Only organizers may grant organizer access"

BOOL_FIELDS = {
    "has_proxy",
    "cancelled_attendance",
    "day1_attendee",
    "day2_attendee",
    *ROLE_FIELDS,
}
LOWERCASE_FIELDS = {"email", "proxy_email"}


def _camel(names) -> list[str]:
    return [to_camel(name) for name in names]


def normalize_fields(fields: dict) -> dict:
    values = {}
    for name, raw in fields.items():
        if name == "id":
            continue
        if name in BOOL_FIELDS:
            values[name] = to_bool(raw)
        elif name in REQUIRED_FIELDS and name not in LOWERCASE_FIELDS:
            values[name] = str(raw).strip()
        elif name in LOWERCASE_FIELDS:
            cleaned = to_null(raw)
            values[name] = cleaned.lower() if cleaned else None
        else:
            values[name] = to_null(raw)
    return values


def _check_phones(fields: dict):
    bad = invalid_phone_fields(fields)
    if bad:
        raise BadRequest("Invalid phone number(s)", fields=_camel(bad))


def create_registration(db: Session, fields: dict, is_organizer: bool = False) -> tuple[int, str]:
    """Insert a registration and its credential atomically; returns (id, plaintext PIN)."""
    if fields.get("id"):
        raise MethodNotAllowed("Use PUT /:id to update an existing registration")

    missing = missing_required_fields(fields)
    if missing:
        raise MissingRequiredFields(_camel(missing))

    email = str(fields["email"]).strip().lower()
    if not is_valid_email(email):
        raise BadRequest("Invalid email address", email=email)
    _check_phones(fields)

    values = normalize_fields(fields)
    granted = [name for name in PRIVILEGED_FIELDS if values.get(name)]
    if granted and not is_organizer:
        raise Forbidden(ORGANIZER_ONLY_ERROR, fields=_camel(granted))
    values.setdefault("is_attendee", True)

    login_pin = generate_pin()
    try:
        existing = db.query(Registration.id).filter(Registration.email == email).first()
        if existing:
            raise Conflict(email=email)

        new_id = insert_returning_id(db, Registration(**values))
        db.add(Credential(registration_id=new_id, login_pin=login_pin))
        db.commit()
    except ApiError:
        db.rollback()
        raise
    except IntegrityError as exc:
        db.rollback()
        if is_duplicate_key(exc):
            raise Conflict(email=email) from exc
        log_db_error(logger, exc, SAVE_REGISTRATION_ERROR, email=email, body=redact(fields))
        raise ServerError(SAVE_REGISTRATION_ERROR) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        log_db_error(logger, exc, SAVE_REGISTRATION_ERROR, email=email, body=redact(fields))
        raise ServerError(SAVE_REGISTRATION_ERROR) from exc

    logger.info("Registration created", extra={"context": {"email": email, "registrationId": new_id}})
    return new_id, login_pin


def login(db: Session, email: str, pin: str) -> tuple[Registration, str]:
    """Exact (email, PIN) match; unknown email and wrong PIN fail the same way."""
    try:
        row = (
            db.query(Registration, Credential.login_pin)
            .join(Credential, Credential.registration_id == Registration.id)
            .filter(Registration.email == email, Credential.login_pin == pin)
            .first()
        )
    except SQLAlchemyError as exc:
        log_db_error(logger, exc, FETCH_REGISTRATION_ERROR, email=email)
        raise ServerError(FETCH_REGISTRATION_ERROR) from exc

    if not row:
        logger.warning("Registration lookup: not found", extra={"context": {"email": email}})
        raise NotFound(REGISTRATION_NOT_FOUND, email=email)

    registration, login_pin = row
    logger.info("Login successful", extra={"context": {"email": email, "registrationId": registration.id}})
    return registration, login_pin


def authorize(auth: AuthContext | None, registration_id: int):
    """Owner or organizer; anything else, including no identity, is forbidden."""
    if not auth or not auth.registration_id:
        raise Forbidden(id=registration_id)
    if auth.registration_id != registration_id and not auth.is_organizer:
        raise Forbidden(id=registration_id)


def get_registration(db: Session, registration_id: int) -> tuple[Registration, str]:
    try:
        row = (
            db.query(Registration, Credential.login_pin)
            .join(Credential, Credential.registration_id == Registration.id)
            .filter(Registration.id == registration_id)
            .first()
        )
    except SQLAlchemyError as exc:
        log_db_error(logger, exc, FETCH_REGISTRATION_ERROR, registrationId=registration_id)
        raise ServerError(FETCH_REGISTRATION_ERROR) from exc

    if not row:
        logger.warning(REGISTRATION_NOT_FOUND, extra={"context": {"registrationId": registration_id}})
        raise NotFound(REGISTRATION_NOT_FOUND, id=registration_id)
    return row[0], row[1]


def _drop_unchanged_privileges(db: Session, registration_id: int, fields: dict) -> dict:
    """Strip privileged flags that repeat the stored value; refuse any real change."""
    sent = [name for name in PRIVILEGED_FIELDS if name in fields]
    if not sent:
        return fields
    current = db.get(Registration, registration_id)
    changed = [
        name for name in sent if current is None or to_bool(fields[name]) != bool(getattr(current, name))
    ]
    if changed:
        raise Forbidden(ORGANIZER_ONLY_ERROR, fields=_camel(changed))
    return {k: v for k, v in fields.items() if k not in sent}


def update_registration(db: Session, registration_id: int, fields: dict, is_organizer: bool = False) -> int:
    """Apply a partial update; returns the number of rows the database touched."""
    fields = {k: v for k, v in fields.items() if k != "id"}

    _check_phones(fields)
    missing = missing_required_fields(fields, partial=True)
    if missing:
        raise MissingRequiredFields(_camel(missing))

    email = None
    if "email" in fields:
        email = str(fields["email"]).strip().lower()
        if not is_valid_email(email):
            raise BadRequest("Invalid email address", email=email)

    if not is_organizer:
        fields = _drop_unchanged_privileges(db, registration_id, fields)

    values = normalize_fields(fields)
    if not values:
        raise BadRequest("No fields to update")

    try:
        rows_affected = (
            db.query(Registration)
            .filter(Registration.id == registration_id)
            .update(values, synchronize_session=False)
        )
        db.commit()
        db.expire_all()
    except IntegrityError as exc:
        db.rollback()
        if is_duplicate_key(exc):
            raise Conflict(email=email) from exc
        log_db_error(logger, exc, SAVE_REGISTRATION_ERROR, registrationId=registration_id, body=redact(fields))
        raise ServerError(SAVE_REGISTRATION_ERROR) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        log_db_error(logger, exc, SAVE_REGISTRATION_ERROR, registrationId=registration_id, body=redact(fields))
        raise ServerError(SAVE_REGISTRATION_ERROR) from exc

    logger.info(
        "Registration updated",
        extra={"context": {"registrationId": registration_id, "rowsAffected": rows_affected}},
    )
    return rows_affected


def lost_pin(db: Session, email: str) -> dict:
    """Email the PIN for ``email``; never reveals whether the account exists."""
    contact_us = f"Please contact {config.ORGANIZER_CONTACT}"
    try:
        registration = db.query(Registration).filter(Registration.email == email).first()
        credential = (
            db.query(Credential).filter(Credential.registration_id == registration.id).first()
            if registration
            else None
        )
        if not registration or not credential:
            logger.warning(
                "Lost PIN lookup failed",
                extra={"context": {"email": email, "reason": "registration" if not registration else "credential"}},
            )
            raise NotFound(contact_us, email=email)

        text = (
            f"Your conference registration PIN is {credential.login_pin}.\n\n"
            "Use it with this email address to view or update your registration.\n"
        )
        if config.SEND_EMAIL:
            send_email(email, "Conference registration PIN", text, config.SMTP_SERVER)
        else:
            logger.info(
                "Lost PIN email (send disabled)",
                extra={"context": {"email": email, "registrationId": registration.id}},
            )
    except ApiError:
        raise
    except Exception as exc:
        log_db_error(logger, exc, SEND_PIN_ERROR, email=email)
        raise ServerError(SEND_PIN_ERROR) from exc

    logger.info("Sending PIN", extra={"context": {"email": email}})
    return {"sent": True}


def list_registrations(db: Session) -> list[Registration]:
    return db.query(Registration).order_by(Registration.id.asc()).all()


def email_exists(db: Session, email: str) -> int | None:
    row = db.query(Registration.id).filter(Registration.email == email).first()
    return row[0] if row else None


def pending_rsvp_targets(db: Session) -> list[tuple[Registration, str]]:
    """Invitations whose invitee has not filled in a last name yet."""
    return (
        db.query(Registration, Credential.login_pin)
        .join(Credential, Credential.registration_id == Registration.id)
        .filter(or_(Registration.last_name.is_(None), Registration.last_name == ""))
        .order_by(Registration.id.asc())
        .all()
    )
