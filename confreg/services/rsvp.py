"""Bulk RSVP invitations from an uploaded CSV, and reminders for pending ones.

Upload is all-or-nothing: every row is validated first and a single bad
row rejects the whole file. Accepted rows are inserted in one transaction;
email goes out afterwards, one recipient at a time, and delivery failures
are reported instead of raised.
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from confreg import config
from confreg.database import insert_returning_id
from confreg.errors import BadRequest, PayloadTooLarge, ServerError
from confreg.models import Credential, Registration
from confreg.services import email as email_service
from confreg.services.csv_parser import CsvParseError, CsvRow, looks_like_header, parse_csv
from confreg.services.registration import email_exists, pending_rsvp_targets
from confreg.services.security import generate_pin
from confreg.services.validation import is_valid_email

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 2 * 1024 * 1024
ALLOWED_MIME = {"text/csv", "application/csv", "text/plain", "application/vnd.ms-excel"}
PLACEHOLDER_ANSWER = "RSVP pending"
INVITE_SUBJECT = "Conference RSVP"
REMINDER_SUBJECT = "Conference RSVP Reminder"

ROLE_CODES = {
    "": (False, False),
    "O": (True, False),
    "P": (False, True),
    "OP": (True, True),
    "PO": (True, True),
}


@dataclass
class PreparedRow:
    row_number: int
    email: str
    name: str
    is_organizer: bool
    is_presenter: bool


@dataclass
class EmailTarget:
    registration_id: int
    email: str
    name: str
    login_pin: str


@dataclass
class DispatchStats:
    attempted: int = 0
    sent: int = 0
    logged: int = 0
    failures: list[dict] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "attempted": self.attempted,
            "sent": self.sent,
            "logged": self.logged,
            "failures": self.failures,
        }


@dataclass
class DispatchSettings:
    send: bool
    smtp_server: str
    rsvp_url: str
    template: str


def load_dispatch_settings() -> DispatchSettings:
    """Validate email configuration before any upload work starts."""
    rsvp_url = config.RSVP_URL.strip()
    smtp_server = config.SMTP_SERVER.strip()
    if not rsvp_url:
        logger.error("RSVP_URL is not configured")
        raise ServerError("RSVP_URL is not configured")
    if config.SEND_EMAIL and not smtp_server:
        logger.error("SEND_EMAIL is true but SMTP_SERVER is not configured")
        raise ServerError("SMTP server is not configured")
    try:
        template = email_service.load_template()
    except OSError as exc:
        logger.error("Failed to load RSVP email template", extra={"context": {"error": str(exc)}})
        raise ServerError("Email template not available") from exc
    return DispatchSettings(send=config.SEND_EMAIL, smtp_server=smtp_server, rsvp_url=rsvp_url, template=template)


def check_upload(content_type: str | None, data: bytes | None):
    mime = (content_type or "").split(";")[0].strip().lower()
    if mime and mime not in ALLOWED_MIME:
        raise BadRequest("CSV upload rejected", reason="Unsupported file type")
    if data is None:
        raise BadRequest("No CSV file provided")
    if len(data) > MAX_UPLOAD_BYTES:
        raise PayloadTooLarge("CSV file is too large", maxBytes=MAX_UPLOAD_BYTES)
    if len(data) == 0:
        raise BadRequest("CSV file is empty")


def parse_role(raw: str) -> tuple[bool, bool] | None:
    """(is_organizer, is_presenter) for a role code, None when the code is unknown."""
    return ROLE_CODES.get(raw.strip().upper())


def split_name(full_name: str) -> tuple[str | None, str]:
    parts = full_name.split()
    if not parts:
        return None, ""
    if len(parts) == 1:
        return None, parts[0]
    return parts[0], " ".join(parts[1:])


def _add_issue(issues: dict[int, list[str]], row_number: int, message: str):
    issues.setdefault(row_number, []).append(message)


def prepare_rows(db: Session, rows: list[CsvRow]) -> tuple[list[PreparedRow], dict[int, list[str]]]:
    issues: dict[int, list[str]] = {}
    prepared: list[PreparedRow] = []
    seen_emails: set[str] = set()

    for row in rows:
        columns = [col.strip() for col in row.columns]
        raw_email = columns[0] if columns else ""
        raw_name = columns[1] if len(columns) > 1 else ""
        raw_role = columns[2] if len(columns) > 2 else ""
        extra = columns[3:]

        email = raw_email.lower()
        if not raw_email:
            _add_issue(issues, row.row_number, "Missing email address")
        elif not is_valid_email(email):
            _add_issue(issues, row.row_number, "Invalid email address")

        if email:
            if email in seen_emails:
                _add_issue(issues, row.row_number, "Duplicate email in upload")
            else:
                seen_emails.add(email)

        if not raw_name:
            _add_issue(issues, row.row_number, "Missing name")

        role = parse_role(raw_role)
        if role is None:
            _add_issue(issues, row.row_number, f'Invalid role designation "{raw_role}"')

        if any(extra):
            _add_issue(issues, row.row_number, "Unexpected extra column data")

        if row.row_number not in issues:
            prepared.append(
                PreparedRow(
                    row_number=row.row_number,
                    email=email,
                    name=raw_name,
                    is_organizer=role[0],
                    is_presenter=role[1],
                )
            )

    for row in prepared:
        existing_id = email_exists(db, row.email)
        if existing_id:
            _add_issue(issues, row.row_number, "Email is already registered")
            logger.error(
                "RSVP upload email already exists",
                extra={"context": {"rowNumber": row.row_number, "email": row.email, "registrationId": existing_id}},
            )

    return prepared, issues


def persist_rows(db: Session, rows: list[PreparedRow]) -> list[EmailTarget]:
    created = []
    try:
        for row in rows:
            first_name, _last = split_name(row.name)
            login_pin = generate_pin()
            registration_id = insert_returning_id(
                db,
                Registration(
                    email=row.email,
                    first_name=first_name,
                    last_name="",
                    is_attendee=True,
                    is_organizer=row.is_organizer,
                    is_presenter=row.is_presenter,
                    question1=PLACEHOLDER_ANSWER,
                    question2=PLACEHOLDER_ANSWER,
                ),
            )
            db.add(Credential(registration_id=registration_id, login_pin=login_pin))
            created.append(EmailTarget(registration_id, row.email, row.name, login_pin))
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    return created


def dispatch(targets: list[EmailTarget], subject: str, settings: DispatchSettings) -> DispatchStats:
    stats = DispatchStats(attempted=len(targets))
    for target in targets:
        body = email_service.fill_template(settings.template, target.name, target.login_pin, settings.rsvp_url)
        context = {"email": target.email, "registrationId": target.registration_id, "subject": subject}
        try:
            if settings.send:
                email_service.send_email(target.email, subject, body, settings.smtp_server)
                stats.sent += 1
                logger.info("RSVP email sent", extra={"context": context})
            else:
                stats.logged += 1
                logger.info("RSVP email (send disabled)", extra={"context": {**context, "body": body}})
        except Exception as exc:
            stats.failures.append({"email": target.email, "error": str(exc)})
            logger.error("Failed to deliver RSVP email", extra={"context": {**context, "error": str(exc)}})
    return stats


def upload(db: Session, content_type: str | None, data: bytes | None) -> dict:
    check_upload(content_type, data)
    settings = load_dispatch_settings()

    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise BadRequest("CSV upload rejected", reason="File is not UTF-8 text") from exc

    try:
        rows = parse_csv(text)
    except CsvParseError as exc:
        raise BadRequest(str(exc)) from exc

    if not rows:
        raise BadRequest("CSV file did not contain any data")
    data_rows = rows[1:] if looks_like_header(rows[0]) else rows
    if not data_rows:
        raise BadRequest("CSV file does not contain any RSVP rows")

    prepared, issues = prepare_rows(db, data_rows)
    if issues:
        details = [{"row": row_number, "problems": problems} for row_number, problems in sorted(issues.items())]
        logger.warning("RSVP upload rejected", extra={"context": {"issues": details}})
        raise BadRequest("RSVP upload rejected", issues=details)

    try:
        created = persist_rows(db, prepared)
    except SQLAlchemyError as exc:
        logger.error("Failed to create RSVP registrations", exc_info=exc)
        raise ServerError("Failed to create registrations") from exc

    stats = dispatch(created, INVITE_SUBJECT, settings)
    return {"processed": len(created), "email": stats.as_dict()}


def remind(db: Session) -> dict:
    settings = load_dispatch_settings()
    try:
        pending = pending_rsvp_targets(db)
    except SQLAlchemyError as exc:
        logger.error("Failed to load pending RSVP reminders", exc_info=exc)
        raise ServerError("Failed to load pending RSVPs") from exc

    if not pending:
        logger.info("No RSVP reminders to send")
        return {"processed": 0, "email": DispatchStats().as_dict()}

    targets = [
        EmailTarget(
            registration_id=registration.id,
            email=registration.email,
            name=(registration.first_name or "").strip() or registration.email,
            login_pin=login_pin,
        )
        for registration, login_pin in pending
    ]
    stats = dispatch(targets, REMINDER_SUBJECT, settings)
    return {"processed": len(targets), "email": stats.as_dict()}
