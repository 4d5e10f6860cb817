import hmac
import logging
import time
from urllib.parse import urlsplit

import uvicorn
from fastapi import Depends, FastAPI, File, Request, Response, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.gzip import GZipMiddleware

from confreg import config
from confreg.database import Base, SessionLocal, engine, get_db
from confreg.errors import ApiError, BadRequest, Forbidden, NotFound, ServerError, TooManyRequests, Unauthorized
from confreg.logging_config import log_db_error, setup_logging
from confreg.models import Registration, ValidationTableEntry
from confreg.schemas import LoginRequest, RegistrationPayload, registration_json
from confreg.services import presenters, rsvp
from confreg.services.bootstrap import ensure_organizer, seed_validation_tables
from confreg.services.registration import (
    REGISTRATION_NOT_FOUND,
    authorize,
    create_registration,
    get_registration,
    list_registrations,
    login,
    lost_pin,
    update_registration,
)
from confreg.services.security import (
    CSRF_HEADER,
    SAFE_METHODS,
    SESSION_COOKIE,
    AuthContext,
    EmailAttemptLimiter,
    InMemoryRateLimiter,
    InMemorySessionStore,
    SessionStore,
)
from confreg.services.validation import to_snake

setup_logging()
logger = logging.getLogger("confreg")

config.enforce_production_security()

app = FastAPI(title="Conference Registration", version="1.0.0")
Base.metadata.create_all(bind=engine)
app.add_middleware(GZipMiddleware, minimum_size=1024)

app.state.sessions = InMemorySessionStore(config.SESSION_TTL_SECONDS)
app.state.email_limiter = EmailAttemptLimiter()
app.state.rate_limiter = InMemoryRateLimiter()


if config.SEED_ON_STARTUP:
    db = SessionLocal()
    try:
        seed_validation_tables(db)
        if ensure_organizer(db, config.ORGANIZER_EMAIL):
            logger.warning(
                "Bootstrap organizer created; use the lost PIN flow or scripts/seed_data.py to obtain its PIN",
                extra={"context": {"email": config.ORGANIZER_EMAIL}},
            )
    finally:
        db.close()


def _client_ip(request: Request) -> str:
    xff = request.headers.get("x-forwarded-for", "")
    if config.TRUST_PROXY_HEADERS and xff:
        return xff.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _set_session_cookie(response: Response, session_id: str, max_age: int):
    response.set_cookie(
        key=SESSION_COOKIE,
        value=session_id,
        httponly=True,
        secure=config.COOKIE_SECURE,
        samesite="strict",
        path="/",
        max_age=max_age,
    )


def _parse_id(raw: str) -> int:
    value = (raw or "").strip()
    if not value.isdigit():
        logger.warning("Invalid registration id", extra={"context": {"rawId": raw}})
        raise BadRequest("Invalid ID", raw=raw)
    return int(value)


def check_rate_limit(request: Request, bucket: str, limit: int, period_seconds: int):
    key = f"{bucket}:{_client_ip(request)}"
    if not request.app.state.rate_limiter.allow(key, limit, period_seconds):
        raise TooManyRequests(period_seconds, "Rate limit exceeded")


def origin_allowed(request: Request) -> bool:
    allowed = config.UI_ORIGIN.rstrip("/")
    if not allowed:
        return False
    origin = request.headers.get("origin")
    if origin:
        return origin.rstrip("/") == allowed
    referer = request.headers.get("referer")
    if not referer:
        return False
    parts = urlsplit(referer)
    return f"{parts.scheme}://{parts.netloc}" == allowed


def current_auth(request: Request, response: Response, db: Session = Depends(get_db)) -> AuthContext | None:
    sessions: SessionStore = request.app.state.sessions
    session_id = request.cookies.get(SESSION_COOKIE)
    session = sessions.get(session_id)
    if not session:
        return None
    registration = db.get(Registration, session.registration_id)
    if not registration:
        sessions.delete(session_id)
        return None
    _set_session_cookie(response, session.session_id, sessions.ttl_seconds)
    return AuthContext(
        registration_id=registration.id,
        is_organizer=bool(registration.is_organizer),
        session_id=session.session_id,
        csrf_token=session.csrf_token,
    )


def session_guard(request: Request, auth: AuthContext | None = Depends(current_auth)) -> AuthContext | None:
    """CSRF and origin checks for state-changing requests that carry a session cookie."""
    if request.method in SAFE_METHODS:
        return auth
    if request.cookies.get(SESSION_COOKIE) and not auth:
        raise Unauthorized()
    if auth:
        token = request.headers.get(CSRF_HEADER, "").strip()
        if not token or token != auth.csrf_token:
            raise Forbidden("Forbidden (csrf)")
        if not origin_allowed(request):
            raise Forbidden("Forbidden (origin)")
    return auth


def require_auth(auth: AuthContext | None = Depends(session_guard)) -> AuthContext:
    if not auth:
        raise Unauthorized()
    return auth


def require_organizer(auth: AuthContext = Depends(require_auth)) -> AuthContext:
    if not auth.is_organizer:
        raise Forbidden()
    return auth


@app.exception_handler(ApiError)
async def api_error_handler(_request: Request, exc: ApiError):
    headers = {}
    if isinstance(exc, TooManyRequests):
        headers["Retry-After"] = str(exc.retry_after_seconds)
    return JSONResponse(exc.to_dict(), status_code=exc.status_code, headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(_request: Request, exc: RequestValidationError):
    fields = sorted({str(err["loc"][-1]) for err in exc.errors() if err.get("loc")})
    return JSONResponse({"error": "Invalid request", "fields": fields}, status_code=400)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404:
        logger.warning("Route not found", extra={"context": {"method": request.method, "path": request.url.path}})
        return JSONResponse({"error": "Not found", "method": request.method, "path": request.url.path}, status_code=404)
    return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code, headers=getattr(exc, "headers", None))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled error",
        exc_info=exc,
        extra={"context": {"method": request.method, "path": request.url.path}},
    )
    return JSONResponse({"error": "Internal Server Error"}, status_code=500)


@app.middleware("http")
async def proxy_seal(request: Request, call_next):
    """Only the edge proxy, which injects X-Internal-Secret, may reach the API."""
    if request.url.path == "/healthz":
        return await call_next(request)
    if request.method == "OPTIONS":
        return Response(status_code=204)

    expected = config.INTERNAL_SECRET
    if not expected:
        if not config.IS_PRODUCTION:
            return await call_next(request)
        return JSONResponse({"error": "INTERNAL_SECRET not configured"}, status_code=500)

    provided = request.headers.get("x-internal-secret", "").strip()
    if not hmac.compare_digest(provided.encode(), expected.encode()):
        return JSONResponse({"error": "unauthorized"}, status_code=401)
    return await call_next(request)


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers.setdefault("Cache-Control", "no-store")
    if config.COOKIE_SECURE:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


@app.middleware("http")
async def request_logger(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "http",
        extra={
            "context": {
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "durationMs": round((time.perf_counter() - start) * 1000, 1),
                "ip": _client_ip(request),
            }
        },
    )
    return response


if config.UI_ORIGIN:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[config.UI_ORIGIN],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "X-CSRF-Token", "X-Internal-Secret"],
    )


@app.get("/healthz")
def health_check():
    return {"ok": True}


@app.post("/api/registrations", status_code=201)
def create_registration_route(
    payload: RegistrationPayload,
    auth: AuthContext | None = Depends(session_guard),
    db: Session = Depends(get_db),
):
    fields = payload.model_dump(exclude_unset=True)
    new_id, login_pin = create_registration(db, fields, is_organizer=bool(auth and auth.is_organizer))
    return {"id": new_id, "loginPin": login_pin}


@app.get("/api/registrations")
def list_registrations_route(auth: AuthContext = Depends(require_organizer), db: Session = Depends(get_db)):
    try:
        rows = list_registrations(db)
    except SQLAlchemyError as exc:
        log_db_error(logger, exc, "Failed to list registrations")
        raise ServerError("Failed to fetch registrations") from exc
    return {"registrations": [registration_json(row) for row in rows]}


def _login_response(request: Request, email: str, pin: str, db: Session) -> JSONResponse:
    email = (email or "").strip().lower()
    pin = (pin or "").strip()
    if not email or not pin:
        logger.warning(
            "Login failed: missing credentials",
            extra={"context": {"email": email, "emailProvided": bool(email), "pinProvided": bool(pin)}},
        )
        raise BadRequest("Missing credentials", emailProvided=bool(email), pinProvided=bool(pin))

    limiter = request.app.state.email_limiter
    ip = _client_ip(request)
    retry_after = limiter.check(email, ip)
    if retry_after:
        raise TooManyRequests(retry_after)

    try:
        registration, login_pin = login(db, email, pin)
    except ApiError as exc:
        if exc.status_code == 404:
            limiter.record_failure(email, ip)
        raise
    limiter.reset(email, ip)

    sessions: SessionStore = request.app.state.sessions
    sessions.expire()
    session = sessions.create(registration.id)
    response = JSONResponse({"registration": registration_json(registration, login_pin), "csrf": session.csrf_token})
    _set_session_cookie(response, session.session_id, sessions.ttl_seconds)
    return response


@app.get("/api/registrations/login")
def login_route(request: Request, email: str = "", pin: str = "", db: Session = Depends(get_db)):
    return _login_response(request, email, pin, db)


@app.post("/api/registrations/login")
def login_post_route(request: Request, payload: LoginRequest, db: Session = Depends(get_db)):
    return _login_response(request, payload.email, payload.pin, db)


@app.get("/api/registrations/lost-pin")
def lost_pin_route(request: Request, email: str = "", db: Session = Depends(get_db)):
    email = email.strip().lower()
    if not email:
        raise BadRequest("Email required")
    check_rate_limit(request, "lost_pin", limit=10, period_seconds=10 * 60)
    return lost_pin(db, email)


@app.get("/api/registrations/{registration_id}")
def get_registration_route(
    registration_id: str,
    auth: AuthContext | None = Depends(current_auth),
    db: Session = Depends(get_db),
):
    reg_id = _parse_id(registration_id)
    authorize(auth, reg_id)
    registration, login_pin = get_registration(db, reg_id)
    logger.info("Registration found", extra={"context": {"email": registration.email, "registrationId": reg_id}})
    return {"registration": registration_json(registration, login_pin)}


@app.put("/api/registrations/{registration_id}")
def update_registration_route(
    registration_id: str,
    payload: RegistrationPayload,
    auth: AuthContext | None = Depends(session_guard),
    db: Session = Depends(get_db),
):
    reg_id = _parse_id(registration_id)
    authorize(auth, reg_id)
    update_registration(db, reg_id, payload.model_dump(exclude_unset=True), is_organizer=auth.is_organizer)
    registration, login_pin = get_registration(db, reg_id)
    return {"registration": registration_json(registration, login_pin)}


@app.post("/api/rsvp/upload", status_code=201)
def rsvp_upload_route(
    file: UploadFile | None = File(None),
    auth: AuthContext = Depends(require_organizer),
    db: Session = Depends(get_db),
):
    if file is None:
        raise BadRequest("No CSV file provided")
    data = file.file.read(rsvp.MAX_UPLOAD_BYTES + 1)
    logger.info(
        "RSVP upload received",
        extra={"context": {"registrationId": auth.registration_id, "fileName": file.filename, "bytes": len(data)}},
    )
    return rsvp.upload(db, file.content_type, data)


@app.post("/api/rsvp/remind")
def rsvp_remind_route(auth: AuthContext = Depends(require_organizer), db: Session = Depends(get_db)):
    logger.info("RSVP reminders requested", extra={"context": {"registrationId": auth.registration_id}})
    return rsvp.remind(db)


@app.get("/api/validation-tables/{table}")
def validation_table_route(table: str, db: Session = Depends(get_db)):
    name = to_snake(table.strip())
    if not name:
        raise BadRequest("validation_table_required")
    try:
        rows = (
            db.query(ValidationTableEntry.value)
            .filter(ValidationTableEntry.validation_table == name)
            .order_by(ValidationTableEntry.value.asc())
            .all()
        )
    except SQLAlchemyError as exc:
        log_db_error(logger, exc, "Failed to load validation table", table=name)
        raise ServerError("Failed to load validation table") from exc
    return {"values": [row[0] for row in rows]}


@app.post("/api/presenters/photo", status_code=201)
def presenter_photo_upload_route(
    request: Request,
    photo: UploadFile | None = File(None),
    _auth: AuthContext | None = Depends(session_guard),
):
    check_rate_limit(request, "presenter_photo", limit=12, period_seconds=10 * 60)
    if photo is None:
        raise BadRequest("No photo provided")
    data = photo.file.read(config.PRESENTER_MAX_BYTES + 1)
    try:
        return presenters.store_photo(photo.content_type, data)
    except OSError as exc:
        logger.error("Presenter photo save failed", exc_info=exc)
        raise ServerError("Failed to save presenter photo") from exc


@app.get("/api/presenters/{registration_id}/photo")
def presenter_photo_route(
    registration_id: str,
    auth: AuthContext | None = Depends(current_auth),
    db: Session = Depends(get_db),
):
    reg_id = _parse_id(registration_id)
    authorize(auth, reg_id)
    registration = db.get(Registration, reg_id)
    if not registration:
        raise NotFound(REGISTRATION_NOT_FOUND, id=reg_id)
    path = presenters.resolve_photo(reg_id, registration.presenter_pic_url)
    headers = {"Cache-Control": "private, max-age=600"}
    if auth.is_organizer:
        return FileResponse(path, headers=headers, filename=f"portrait{path.suffix}")
    return FileResponse(path, headers=headers)


@app.post("/api/session/logout")
def logout_route(request: Request):
    sessions: SessionStore = request.app.state.sessions
    session_id = request.cookies.get(SESSION_COOKIE)
    session = sessions.get(session_id)
    if session:
        logger.info("Session destroyed", extra={"context": {"registrationId": session.registration_id}})
    sessions.delete(session_id)
    response = JSONResponse({"ok": True})
    response.delete_cookie(SESSION_COOKIE, path="/", secure=config.COOKIE_SECURE, httponly=True, samesite="strict")
    return response


@app.get("/api/config")
def config_route():
    return {"presenterMaxBytes": config.PRESENTER_MAX_BYTES}


def run():
    ssl_options = {}
    if config.HTTPS:
        ssl_options = {"ssl_certfile": config.HTTPS_CERT, "ssl_keyfile": config.HTTPS_KEY}
    logger.info(
        "Server listening",
        extra={"context": {"protocol": "https" if config.HTTPS else "http", "host": config.BIND_HOST, "port": config.BACKEND_PORT}},
    )
    uvicorn.run("confreg.main:app", host=config.BIND_HOST, port=config.BACKEND_PORT, log_config=None, **ssl_options)


if __name__ == "__main__":
    run()
