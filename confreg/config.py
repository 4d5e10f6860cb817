import os


def _int_env(name: str, default: int) -> int:
    try:
        value = int(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def _bool_env(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() == "true"


APP_ENV = os.getenv("APP_ENV", "development").lower()
IS_PRODUCTION = APP_ENV in {"prod", "production"}

UI_ORIGIN = os.getenv("UI_ORIGIN", "").strip()
INTERNAL_SECRET = os.getenv("INTERNAL_SECRET", "").strip()
COOKIE_SECURE = _bool_env("COOKIE_SECURE", "true")
SESSION_TTL_SECONDS = _int_env("SESSION_TTL_SECONDS", 60 * 60)
TRUST_PROXY_HEADERS = _bool_env("TRUST_PROXY_HEADERS")

SEND_EMAIL = _bool_env("SEND_EMAIL")
SMTP_SERVER = os.getenv("SMTP_SERVER", "").strip()
SMTP_USERNAME = os.getenv("SMTP_USERNAME", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
SMTP_FROM = os.getenv("SMTP_FROM", "registration@conference.local")
RSVP_URL = os.getenv("RSVP_URL", "").strip()
ORGANIZER_CONTACT = os.getenv("ORGANIZER_CONTACT", "us")

DEFAULT_PRESENTER_MAX_BYTES = 2 * 1024 * 1024
PRESENTER_MAX_BYTES = _int_env("PRESENTER_MAX_BYTES", DEFAULT_PRESENTER_MAX_BYTES)
UPLOAD_DIR = os.getenv("UPLOAD_DIR", "data/presenter-photos")

LOG_DIR = os.getenv("LOG_DIR", "logs")
LOG_LEVEL = os.getenv("LOG_LEVEL", "info").upper()
LOG_TO_FILE = _bool_env("LOG_TO_FILE", "true")
LOG_PREFIX = os.getenv("LOG_PREFIX", "app")

HTTPS = _bool_env("HTTPS")
HTTPS_CERT = os.getenv("HTTPS_CERT", "/certs/localhost.pem")
HTTPS_KEY = os.getenv("HTTPS_KEY", "/certs/localhost-key.pem")
BIND_HOST = os.getenv("BIND_HOST", "0.0.0.0")
BACKEND_PORT = _int_env("BACKEND_PORT", 8080)

ORGANIZER_EMAIL = os.getenv("ORGANIZER_EMAIL", "").strip().lower()
SEED_ON_STARTUP = _bool_env("SEED_ON_STARTUP")


def enforce_production_security():
    if not IS_PRODUCTION:
        return
    insecure = []
    if not INTERNAL_SECRET:
        insecure.append("INTERNAL_SECRET must be set")
    if not UI_ORIGIN:
        insecure.append("UI_ORIGIN must be set")
    if not COOKIE_SECURE:
        insecure.append("COOKIE_SECURE must be true")
    if insecure:
        raise RuntimeError("Production security configuration error: " + "; ".join(insecure))
