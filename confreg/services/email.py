import logging
import smtplib
from email.message import EmailMessage
from pathlib import Path

from confreg import config

logger = logging.getLogger(__name__)

ASSETS_DIR = Path(__file__).resolve().parents[1] / "assets"
TEMPLATE_FILENAMES = ("rsvp-email-template.txt", "rsvp-email.txt")

_cached_template: str | None = None


class TemplateNotFound(FileNotFoundError):
    pass


def load_template(assets_dir: Path = ASSETS_DIR) -> str:
    """Read the RSVP email template once; the legacy file name is still accepted."""
    global _cached_template
    if _cached_template is not None:
        return _cached_template

    for name in TEMPLATE_FILENAMES:
        path = assets_dir / name
        if path.is_file():
            _cached_template = path.read_text(encoding="utf-8")
            logger.debug("Loaded RSVP email template", extra={"context": {"templatePath": str(path)}})
            return _cached_template

    searched = ", ".join(str(assets_dir / name) for name in TEMPLATE_FILENAMES)
    raise TemplateNotFound(f"RSVP email template not found. Looked in: {searched}")


def clear_template_cache():
    global _cached_template
    _cached_template = None


def fill_template(template: str, name: str, login_pin: str, rsvp_url: str) -> str:
    return (
        template.replace("{#NAME}", name)
        .replace("{#RSVP_URL}", rsvp_url)
        .replace("{#LOGIN_PIN}", login_pin)
    )


def _smtp_host_port(smtp_server: str) -> tuple[str, int]:
    host, _, port = smtp_server.partition(":")
    return host, int(port) if port.isdigit() else 25


def send_email(to: str, subject: str, text: str, smtp_server: str | None = None):
    server = (smtp_server or config.SMTP_SERVER).strip()
    if not server:
        raise RuntimeError("SMTP_SERVER not configured")

    msg = EmailMessage()
    msg["From"] = config.SMTP_FROM
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(text)

    host, port = _smtp_host_port(server)
    with smtplib.SMTP(host, port, timeout=30) as smtp:
        if config.SMTP_USERNAME:
            smtp.starttls()
            smtp.login(config.SMTP_USERNAME, config.SMTP_PASSWORD)
        smtp.send_message(msg)
    logger.info("Email sent", extra={"context": {"to": to, "subject": subject, "smtpServer": host}})
